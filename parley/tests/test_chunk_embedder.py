"""Tests for document chunking and embedding."""

from uuid import uuid4

import pytest
from sqlalchemy import select

from parley.errors import EmbeddingError, NotFoundError
from parley.models import DocumentChunkEmbedding, DocumentStatus
from parley.services import ingestion
from parley.services.chunk_embedder import embed_document
from parley.services.extraction import chunk_text

GUIDE = " ".join(f"Step {i} of the onboarding guide explains one more thing." for i in range(60))


async def stored_chunks(session, document_id) -> list[DocumentChunkEmbedding]:
    result = await session.execute(
        select(DocumentChunkEmbedding)
        .where(DocumentChunkEmbedding.document_id == document_id)
        .order_by(DocumentChunkEmbedding.chunk_index)
    )
    return list(result.scalars().all())


@pytest.fixture
async def guide(session, storage, channel):
    return await ingestion.upload(
        session, storage, "guide.txt", "text/plain", GUIDE.encode(), channel.id
    )


async def test_embeds_every_chunk(session, storage, guide, embedder):
    expected = chunk_text(GUIDE, chunk_size=1000, overlap=200)

    result = await embed_document(
        session, guide.id, embedder, storage, chunk_size=1000, overlap=200
    )

    assert len(expected) > 1
    assert result.chunks_created == len(expected)
    assert guide.status == DocumentStatus.PROCESSED
    assert guide.chunk_count == len(expected)
    assert guide.error is None

    chunks = await stored_chunks(session, guide.id)
    assert [c.chunk_index for c in chunks] == list(range(len(expected)))
    assert [c.content for c in chunks] == [spec.text for spec in expected]
    assert chunks[0].chunk_metadata == {
        "chunk_index": 0,
        "char_start": 0,
        "char_end": expected[0].char_end,
        "document_name": "guide.txt",
        "mime_type": "text/plain",
    }
    assert len(embedder.calls) == len(expected)


async def test_rerun_replaces_chunk_set(session, storage, guide, embedder):
    first = await embed_document(session, guide.id, embedder, storage)
    second = await embed_document(session, guide.id, embedder, storage)

    assert first.chunks_created == second.chunks_created
    assert len(await stored_chunks(session, guide.id)) == second.chunks_created


async def test_embedding_failure_keeps_previous_chunks(
    session, storage, guide, embedder, failing_embedder
):
    first = await embed_document(session, guide.id, embedder, storage)

    with pytest.raises(EmbeddingError, match="rate limited"):
        await embed_document(session, guide.id, failing_embedder, storage)

    assert guide.status == DocumentStatus.ERROR
    assert "rate limited" in guide.error
    assert len(await stored_chunks(session, guide.id)) == first.chunks_created


async def test_without_embedding_service(session, storage, guide):
    with pytest.raises(EmbeddingError, match="No embedding service"):
        await embed_document(session, guide.id, None, storage)

    assert guide.status == DocumentStatus.ERROR


async def test_document_without_text(session, storage, channel, embedder):
    document = await ingestion.upload(
        session, storage, "blank.txt", "text/plain", b"  \n\n  ", channel.id
    )

    with pytest.raises(EmbeddingError, match="no extractable text"):
        await embed_document(session, document.id, embedder, storage)

    assert document.status == DocumentStatus.ERROR
    assert await stored_chunks(session, document.id) == []


async def test_unparseable_pdf(session, storage, channel, embedder):
    document = await ingestion.upload(
        session, storage, "report.pdf", "application/pdf", b"this is not a pdf", channel.id
    )

    with pytest.raises(EmbeddingError):
        await embed_document(session, document.id, embedder, storage)

    assert document.status == DocumentStatus.ERROR
    assert document.error


async def test_missing_document(session, storage, embedder):
    with pytest.raises(NotFoundError):
        await embed_document(session, uuid4(), embedder, storage)
