"""Split a stored document into chunks and embed each one."""

import logging
from dataclasses import dataclass
from uuid import UUID, uuid4

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from parley.config import settings
from parley.errors import EmbeddingError, NotFoundError, ParleyError
from parley.models import Document, DocumentChunkEmbedding, DocumentStatus, utcnow
from parley.services.embeddings import EmbeddingService
from parley.services.extraction import ChunkMetadata, chunk_text, extract_content
from parley.services.storage import LocalBlobStorage

logger = logging.getLogger(__name__)


@dataclass
class EmbedDocumentResult:
    chunks_created: int


async def _mark_error(session: AsyncSession, document: Document, message: str) -> None:
    document.status = DocumentStatus.ERROR
    document.error = message
    await session.commit()
    logger.error(f"Document {document.id} failed to embed: {message}")


async def embed_document(
    session: AsyncSession,
    document_id: UUID,
    embedding_service: EmbeddingService | None,
    storage: LocalBlobStorage,
    chunk_size: int | None = None,
    overlap: int | None = None,
) -> EmbedDocumentResult:
    """
    Extract, chunk and embed a document, replacing any earlier chunk set.

    Every chunk is embedded before anything is written. If extraction or any
    embedding call fails the document moves to error status, no chunk rows
    change, and EmbeddingError is raised.
    """
    document = await session.get(Document, document_id)
    if not document:
        raise NotFoundError("Document", document_id)

    chunk_size = chunk_size or settings.chunk_size
    overlap = settings.chunk_overlap if overlap is None else overlap

    try:
        if embedding_service is None:
            raise EmbeddingError("No embedding service configured")

        data = storage.read(document.storage_id)
        try:
            extracted = extract_content(data, document.mime_type, document.name)
        except ValueError as e:
            raise EmbeddingError(f"Failed to extract text: {e}") from e

        chunk_specs = chunk_text(extracted.text, chunk_size=chunk_size, overlap=overlap)
        if not chunk_specs:
            raise EmbeddingError("Document contains no extractable text")

        logger.info(f"Embedding {len(chunk_specs)} chunks for document {document.id}")

        vectors = []
        for spec in chunk_specs:
            vectors.append(await embedding_service.embed(spec.text))
    except ParleyError as e:
        await _mark_error(session, document, e.message)
        if isinstance(e, EmbeddingError):
            raise
        raise EmbeddingError(e.message) from e
    except Exception as e:
        # Parser errors from pdfminer/docx/pptx surface here
        await _mark_error(session, document, str(e))
        raise EmbeddingError(f"Failed to process document: {e}") from e

    await session.execute(
        delete(DocumentChunkEmbedding).where(DocumentChunkEmbedding.document_id == document.id)
    )

    now = utcnow()
    for spec, vector in zip(chunk_specs, vectors, strict=True):
        metadata = ChunkMetadata(
            chunk_index=spec.index,
            char_start=spec.char_start,
            char_end=spec.char_end,
            document_name=document.name,
            mime_type=document.mime_type,
        )
        session.add(
            DocumentChunkEmbedding(
                id=uuid4(),
                document_id=document.id,
                chunk_index=spec.index,
                content=spec.text,
                chunk_metadata=metadata.model_dump(),
                embedding=vector,
                created_at=now,
            )
        )

    document.status = DocumentStatus.PROCESSED
    document.error = None
    document.chunk_count = len(chunk_specs)
    await session.commit()

    logger.info(f"Stored {len(chunk_specs)} chunk embeddings for document {document.id}")
    return EmbedDocumentResult(chunks_created=len(chunk_specs))
