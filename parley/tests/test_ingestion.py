"""Tests for document upload, registration and deletion."""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from parley.config import settings
from parley.errors import NotFoundError, StorageError, ValidationError
from parley.models import Document, DocumentChunkEmbedding, DocumentStatus, Job, JobType
from parley.services import conversation, ingestion
from parley.services.chunk_embedder import embed_document


async def count(session, model, *criteria) -> int:
    query = select(func.count()).select_from(model)
    if criteria:
        query = query.where(*criteria)
    return await session.scalar(query)


class TestUpload:
    async def test_upload_creates_processing_document_and_job(self, session, storage, channel):
        document = await ingestion.upload(
            session, storage, "notes.txt", "text/plain", b"hello world", channel.id
        )

        assert document.status == DocumentStatus.PROCESSING
        assert document.size_bytes == 11
        assert storage.read(document.storage_id) == b"hello world"

        jobs = (await session.execute(select(Job))).scalars().all()
        assert len(jobs) == 1
        assert jobs[0].job_type == JobType.EMBED_DOCUMENT
        assert jobs[0].document_id == document.id

    async def test_unsupported_type_names_allowed_types(self, session, storage, channel):
        with pytest.raises(ValidationError) as exc_info:
            await ingestion.upload(session, storage, "logo.png", "image/png", b"\x89PNG", channel.id)

        assert "image/png" in exc_info.value.message
        assert "text/plain" in exc_info.value.message
        assert await count(session, Document) == 0
        assert not storage.root.exists()

    async def test_empty_file_is_rejected(self, session, storage, channel):
        with pytest.raises(ValidationError, match="empty"):
            await ingestion.upload(session, storage, "empty.txt", "text/plain", b"", channel.id)

    async def test_oversized_file_is_rejected(self, session, storage, channel, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 10)

        with pytest.raises(ValidationError, match="limit"):
            await ingestion.upload(
                session, storage, "big.txt", "text/plain", b"x" * 11, channel.id
            )

    async def test_unknown_channel(self, session, storage):
        with pytest.raises(NotFoundError):
            await ingestion.upload(session, storage, "notes.txt", "text/plain", b"hi", uuid4())


class TestRegisterUpload:
    async def test_repeat_registration_returns_same_document(self, session, storage, channel):
        storage_id = storage.put_bytes(b"quarterly numbers")

        first = await ingestion.register_upload(
            session, storage, storage_id, "q3.txt", "text/plain", channel.id
        )
        second = await ingestion.register_upload(
            session, storage, storage_id, "q3.txt", "text/plain", channel.id
        )

        assert first.id == second.id
        assert await count(session, Document) == 1
        assert await count(session, Job) == 1

    async def test_bad_type_deletes_blob(self, session, storage, channel):
        storage_id = storage.put_bytes(b"binary")

        with pytest.raises(ValidationError):
            await ingestion.register_upload(
                session, storage, storage_id, "app.exe", "application/x-msdownload", channel.id
            )

        assert not storage.exists(storage_id)

    async def test_missing_blob(self, session, storage, channel):
        with pytest.raises(NotFoundError):
            await ingestion.register_upload(
                session, storage, "f" * 32, "gone.txt", "text/plain", channel.id
            )


class TestQueries:
    async def test_list_documents_newest_first(self, session, storage, channel):
        older = await ingestion.upload(session, storage, "a.txt", "text/plain", b"a", channel.id)
        newer = await ingestion.upload(session, storage, "b.txt", "text/plain", b"b", channel.id)
        newer.uploaded_at = older.uploaded_at.replace(year=older.uploaded_at.year + 1)
        await session.commit()

        documents = await ingestion.list_documents(session, channel.id)

        assert [d.id for d in documents] == [newer.id, older.id]

    async def test_list_documents_is_scoped_to_channel(self, session, storage, channel):
        other = await conversation.create_channel(session, "engineering")
        await ingestion.upload(session, storage, "a.txt", "text/plain", b"a", channel.id)

        assert await ingestion.list_documents(session, other.id) == []

    async def test_get_missing_document(self, session):
        with pytest.raises(NotFoundError):
            await ingestion.get_document(session, uuid4())

    async def test_reembed_schedules_job(self, session, storage, channel, embedder):
        document = await ingestion.upload(
            session, storage, "a.txt", "text/plain", b"some text", channel.id
        )
        await embed_document(session, document.id, embedder, storage)

        job = await ingestion.reembed_document(session, document.id)

        assert job.job_type == JobType.EMBED_DOCUMENT
        assert document.status == DocumentStatus.PROCESSING
        assert await count(session, Job, Job.document_id == document.id) == 2


class TestDeleteDocument:
    async def test_removes_chunks_record_and_blob(self, session, storage, channel, embedder):
        document = await ingestion.upload(
            session, storage, "guide.txt", "text/plain", ("Sentence. " * 300).encode(), channel.id
        )
        result = await embed_document(session, document.id, embedder, storage, chunk_size=500)
        document_id = document.id
        storage_id = document.storage_id

        removed = await ingestion.delete_document(session, storage, document_id)

        assert removed == result.chunks_created
        assert await count(session, Document, Document.id == document_id) == 0
        assert (
            await count(
                session,
                DocumentChunkEmbedding,
                DocumentChunkEmbedding.document_id == document_id,
            )
            == 0
        )
        assert await count(session, Job, Job.document_id == document_id) == 0
        assert not storage.exists(storage_id)

    async def test_missing_document(self, session, storage):
        with pytest.raises(NotFoundError):
            await ingestion.delete_document(session, storage, uuid4())

    async def test_blob_delete_failure_does_not_fail(self, session, storage, channel, monkeypatch):
        document = await ingestion.upload(session, storage, "a.txt", "text/plain", b"a", channel.id)

        def broken_delete(storage_id):
            raise StorageError(f"Failed to delete blob {storage_id}")

        monkeypatch.setattr(storage, "delete", broken_delete)

        removed = await ingestion.delete_document(session, storage, document.id)

        assert removed == 0
        assert await count(session, Document) == 0
