"""Document ingestion: validate, store bytes, register metadata, schedule embedding."""

import logging
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parley.config import settings
from parley.errors import ConsistencyError, NotFoundError, ValidationError
from parley.models import (
    Channel,
    Document,
    DocumentChunkEmbedding,
    DocumentStatus,
    Job,
    JobType,
    utcnow,
)
from parley.services.extraction import ALLOWED_MIME_TYPES
from parley.services.scheduler import schedule_job
from parley.services.storage import LocalBlobStorage

logger = logging.getLogger(__name__)


def validate_mime_type(mime_type: str) -> None:
    """Raise ValidationError naming the type and the allowed set if it is not accepted."""
    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            f"Unsupported file type: {mime_type}. Allowed types: {', '.join(ALLOWED_MIME_TYPES)}"
        )


def validate_size(size_bytes: int) -> None:
    if size_bytes <= 0:
        raise ValidationError("Uploaded file is empty")
    if size_bytes > settings.max_upload_bytes:
        raise ValidationError(
            f"Uploaded file is {size_bytes} bytes, the limit is {settings.max_upload_bytes}"
        )


def validate_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise ValidationError("Document name is required")
    return name


async def get_channel(session: AsyncSession, channel_id: UUID) -> Channel:
    channel = await session.get(Channel, channel_id)
    if not channel:
        raise NotFoundError("Channel", channel_id)
    return channel


async def get_document(session: AsyncSession, document_id: UUID) -> Document:
    document = await session.get(Document, document_id)
    if not document:
        raise NotFoundError("Document", document_id)
    return document


async def _find_by_storage_id(session: AsyncSession, storage_id: str) -> Document | None:
    result = await session.execute(select(Document).where(Document.storage_id == storage_id))
    return result.scalar_one_or_none()


async def register_upload(
    session: AsyncSession,
    storage: LocalBlobStorage,
    storage_id: str,
    name: str,
    mime_type: str,
    channel_id: UUID,
) -> Document:
    """
    Register metadata for bytes already in blob storage and schedule embedding.

    Idempotent on storage_id: retrying a registration returns the document
    created by the first successful attempt. A registration that can never
    succeed (bad type, bad size) deletes the blob so it is not left orphaned.
    """
    existing = await _find_by_storage_id(session, storage_id)
    if existing:
        logger.info(f"Storage id {storage_id} already registered as document {existing.id}")
        return existing

    try:
        name = validate_name(name)
        validate_mime_type(mime_type)
        size_bytes = storage.size(storage_id)
        validate_size(size_bytes)
    except ValidationError:
        storage.delete(storage_id)
        raise

    await get_channel(session, channel_id)

    document = Document(
        id=uuid4(),
        channel_id=channel_id,
        name=name,
        mime_type=mime_type,
        size_bytes=size_bytes,
        storage_id=storage_id,
        status=DocumentStatus.PROCESSING,
        uploaded_at=utcnow(),
    )
    session.add(document)
    await session.flush()
    schedule_job(session, JobType.EMBED_DOCUMENT, document_id=document.id)

    try:
        await session.commit()
    except IntegrityError:
        # A concurrent registration of the same blob won the race
        await session.rollback()
        existing = await _find_by_storage_id(session, storage_id)
        if not existing:
            raise
        return existing

    logger.info(f"Registered document {document.id} ({name}, {mime_type}, {size_bytes} bytes)")
    return document


async def upload(
    session: AsyncSession,
    storage: LocalBlobStorage,
    name: str,
    mime_type: str,
    content: bytes,
    channel_id: UUID,
) -> Document:
    """Store bytes and register the document in one call. Validates before storing anything."""
    validate_name(name)
    validate_mime_type(mime_type)
    validate_size(len(content))
    await get_channel(session, channel_id)

    storage_id = storage.put_bytes(content)
    return await register_upload(session, storage, storage_id, name, mime_type, channel_id)


async def list_documents(session: AsyncSession, channel_id: UUID) -> list[Document]:
    """List a channel's documents, newest first."""
    await get_channel(session, channel_id)
    result = await session.execute(
        select(Document)
        .where(Document.channel_id == channel_id)
        .order_by(Document.uploaded_at.desc(), Document.id)
    )
    return list(result.scalars().all())


async def list_chunks(session: AsyncSession, document_id: UUID) -> list[DocumentChunkEmbedding]:
    await get_document(session, document_id)
    result = await session.execute(
        select(DocumentChunkEmbedding)
        .where(DocumentChunkEmbedding.document_id == document_id)
        .order_by(DocumentChunkEmbedding.chunk_index)
    )
    return list(result.scalars().all())


async def reembed_document(session: AsyncSession, document_id: UUID) -> Job:
    """Put a document back into processing and schedule a fresh embedding run."""
    document = await get_document(session, document_id)
    document.status = DocumentStatus.PROCESSING
    document.error = None
    job = schedule_job(session, JobType.EMBED_DOCUMENT, document_id=document.id)
    await session.commit()
    return job


async def delete_document(
    session: AsyncSession,
    storage: LocalBlobStorage,
    document_id: UUID,
) -> int:
    """
    Delete a document: chunk embeddings first, then the record, then the blob.

    Returns the number of chunk embeddings removed.
    """
    document = await get_document(session, document_id)
    storage_id = document.storage_id

    result = await session.execute(
        delete(DocumentChunkEmbedding).where(DocumentChunkEmbedding.document_id == document_id)
    )
    removed = result.rowcount or 0
    await session.execute(delete(Job).where(Job.document_id == document_id))

    remaining = await session.scalar(
        select(func.count(DocumentChunkEmbedding.id)).where(
            DocumentChunkEmbedding.document_id == document_id
        )
    )
    if remaining:
        await session.rollback()
        raise ConsistencyError(
            f"Document {document_id} still has {remaining} chunk embeddings after delete"
        )

    await session.execute(delete(Document).where(Document.id == document_id))
    await session.commit()
    logger.info(f"Deleted document {document_id} and {removed} chunk embeddings")

    try:
        storage.delete(storage_id)
    except Exception as e:
        # The record is gone; an unreferenced blob is harmless
        logger.exception(f"Failed to delete blob {storage_id} for document {document_id}: {e}")

    return removed
