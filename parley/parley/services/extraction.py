import io
import logging
import re

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PPTX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"


class ExtractedDocument(BaseModel):
    """Result of content extraction from an uploaded file."""

    title: str
    text: str


def extract_text_plain(data: bytes, name: str) -> ExtractedDocument:
    """Extract content from plain text or markdown bytes."""
    encodings = ["utf-8", "latin-1", "cp1252"]

    for encoding in encodings:
        try:
            return ExtractedDocument(title=name, text=data.decode(encoding))
        except UnicodeDecodeError:
            continue

    raise ValueError(f"Could not decode {name} with any supported encoding")


def extract_pdf(data: bytes, name: str) -> ExtractedDocument:
    """Extract content from a PDF using pdfminer.six."""
    from pdfminer.high_level import extract_text

    return ExtractedDocument(title=name, text=extract_text(io.BytesIO(data)))


def extract_docx(data: bytes, name: str) -> ExtractedDocument:
    """Extract content from a DOCX file using python-docx."""
    from docx import Document

    doc = Document(io.BytesIO(data))
    text = "\n".join(p.text for p in doc.paragraphs)

    # Prefer the title from document properties
    title = doc.core_properties.title or name

    return ExtractedDocument(title=title, text=text)


def extract_pptx(data: bytes, name: str) -> ExtractedDocument:
    """Extract content from a PPTX file using python-pptx."""
    from pptx import Presentation

    prs = Presentation(io.BytesIO(data))
    slides_text = []

    for slide_num, slide in enumerate(prs.slides, 1):
        slide_content = []
        for shape in slide.shapes:
            if hasattr(shape, "text") and shape.text:
                slide_content.append(shape.text)
        if slide_content:
            slides_text.append(f"[Slide {slide_num}]\n" + "\n".join(slide_content))

    return ExtractedDocument(title=name, text="\n\n".join(slides_text))


# MIME type to extractor mapping; its keys are the accepted upload types
EXTRACTORS = {
    "text/plain": extract_text_plain,
    "text/markdown": extract_text_plain,
    "application/pdf": extract_pdf,
    DOCX_MIME_TYPE: extract_docx,
    PPTX_MIME_TYPE: extract_pptx,
}

ALLOWED_MIME_TYPES = tuple(EXTRACTORS)


def extract_content(data: bytes, mime_type: str, name: str) -> ExtractedDocument:
    """
    Extract text content from uploaded bytes based on their MIME type.

    Raises:
        ValueError: If the MIME type is not supported
        Exception: If extraction fails
    """
    extractor = EXTRACTORS.get(mime_type)
    if not extractor:
        raise ValueError(f"Unsupported file type: {mime_type} for file {name}")

    try:
        return extractor(data, name)
    except Exception as e:
        logger.exception(f"Failed to extract content from {name}: {e}")
        raise


class ChunkSpec(BaseModel):
    """Specification for a single chunk of text."""

    index: int
    text: str
    char_start: int
    char_end: int


class ChunkMetadata(BaseModel):
    """Metadata stored with every chunk embedding. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    chunk_index: int
    char_start: int
    char_end: int
    document_name: str
    mime_type: str


def normalize_whitespace(text: str) -> str:
    """Normalize whitespace in text."""
    # Replace multiple whitespace with single space
    text = re.sub(r"[ \t]+", " ", text)
    # Replace multiple newlines with double newline
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def chunk_text(
    text: str,
    chunk_size: int = 1000,
    overlap: int = 200,
) -> list[ChunkSpec]:
    """
    Split text into overlapping chunks.

    The split is deterministic: the same text and parameters always
    produce the same chunks.

    Args:
        text: The text to chunk
        chunk_size: Maximum characters per chunk
        overlap: Number of characters to overlap between chunks

    Returns:
        List of ChunkSpec objects
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    text = normalize_whitespace(text)

    if not text:
        return []

    chunks = []
    start = 0
    index = 0

    while start < len(text):
        end = min(len(text), start + chunk_size)

        # Try to break at a sentence boundary if not at the end
        if end < len(text):
            # Look for sentence end within the last 20% of the chunk
            search_start = start + int(chunk_size * 0.8)
            for i in range(end, search_start, -1):
                if text[i - 1] in ".!?\n":
                    end = i
                    break

        chunks.append(
            ChunkSpec(
                index=index,
                text=text[start:end],
                char_start=start,
                char_end=end,
            )
        )

        index += 1

        if end >= len(text):
            break

        # Move start forward, but ensure we make progress
        new_start = end - overlap
        if new_start <= start:
            new_start = end

        start = new_start

    return chunks
