"""Tests for the HTTP API."""

from uuid import uuid4

import pytest

from parley.config import settings
from parley.models import EMBEDDING_DIMENSIONS
from parley.services.embeddings import get_embedding_service
from parley.workers.embedding import EmbeddingWorker
from parley.workers.generation import GenerationWorker

HANDBOOK = (
    "Expense reports are due on the fifth working day of each month. "
    "Receipts over fifty euros must be attached."
).encode()


@pytest.fixture
async def default_channel(api_client) -> dict:
    response = await api_client.post("/v0/admin/channels/default")
    assert response.status_code == 200
    return response.json()


async def upload_document(api_client, channel_id: str, content: bytes = HANDBOOK) -> dict:
    url_response = await api_client.post("/v0/storage/upload-url")
    assert url_response.status_code == 200

    put_response = await api_client.put(url_response.json()["upload_url"], content=content)
    assert put_response.status_code == 200

    register_response = await api_client.post(
        "/v0/documents",
        json={
            "storage_id": put_response.json()["storage_id"],
            "name": "handbook.txt",
            "mime_type": "text/plain",
            "channel_id": channel_id,
        },
    )
    assert register_response.status_code == 201
    return register_response.json()


class TestHealthAndAuth:
    async def test_health(self, api_client):
        response = await api_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "healthy"}

    async def test_missing_identity(self, api_client):
        response = await api_client.get("/v0/admin/channels", headers={"X-Auth-Request-Email": ""})

        assert response.status_code == 401
        assert response.json()["error"] == "AuthenticationError"

    async def test_identity_creates_user(self, api_client):
        response = await api_client.post("/v0/admin/users", json={"name": "alice@example.com"})

        assert response.status_code == 200
        assert response.json()["name"] == "alice@example.com"


class TestChannels:
    async def test_default_channel_is_idempotent(self, api_client, default_channel):
        response = await api_client.post("/v0/admin/channels/default")

        assert response.json()["id"] == default_channel["id"]

    async def test_create_and_list(self, api_client, default_channel):
        created = await api_client.post("/v0/admin/channels", json={"name": "engineering"})
        duplicate = await api_client.post("/v0/admin/channels", json={"name": "engineering"})
        listed = await api_client.get("/v0/admin/channels")

        assert created.status_code == 201
        assert duplicate.status_code == 400
        assert [c["name"] for c in listed.json()] == ["engineering", "general"]


class TestDocuments:
    async def test_two_phase_upload(self, api_client, default_channel):
        document = await upload_document(api_client, default_channel["id"])

        assert document["status"] == "processing"
        assert document["size_bytes"] == len(HANDBOOK)
        assert document["chunk_count"] == 0

    async def test_registration_retry_is_idempotent(self, api_client, default_channel):
        url = (await api_client.post("/v0/storage/upload-url")).json()["upload_url"]
        storage_id = (await api_client.put(url, content=b"retry me")).json()["storage_id"]
        payload = {
            "storage_id": storage_id,
            "name": "retry.txt",
            "mime_type": "text/plain",
            "channel_id": default_channel["id"],
        }

        first = await api_client.post("/v0/documents", json=payload)
        second = await api_client.post("/v0/documents", json=payload)
        listed = await api_client.get(f"/v0/channels/{default_channel['id']}/documents")

        assert first.json()["id"] == second.json()["id"]
        assert len(listed.json()) == 1

    async def test_forged_upload_url(self, api_client):
        response = await api_client.put("/v0/storage/upload/abc.123.def", content=b"data")

        assert response.status_code == 403

    async def test_upload_url_accepts_one_upload(
        self, api_client, default_channel, session_factory, storage, embedder
    ):
        upload_url = (await api_client.post("/v0/storage/upload-url")).json()["upload_url"]
        stored = (await api_client.put(upload_url, content=b"Original policy text.")).json()
        document = (
            await api_client.post(
                "/v0/documents",
                json={
                    "storage_id": stored["storage_id"],
                    "name": "policy.txt",
                    "mime_type": "text/plain",
                    "channel_id": default_channel["id"],
                },
            )
        ).json()
        worker = EmbeddingWorker(session_factory, embedding_service=embedder, storage=storage)
        assert await worker.run_once() is True

        replay = await api_client.put(upload_url, content=b"Different content sent later.")

        assert replay.status_code == 409
        assert replay.json()["error"] == "ConflictError"
        assert storage.read(stored["storage_id"]) == b"Original policy text."
        fetched = (await api_client.get(f"/v0/documents/{document['id']}")).json()
        assert fetched["status"] == "processed"
        assert fetched["size_bytes"] == len(b"Original policy text.")

    async def test_oversized_upload_is_rejected_before_storing(
        self, api_client, storage, monkeypatch
    ):
        monkeypatch.setattr(settings, "max_upload_bytes", 8)
        upload_url = (await api_client.post("/v0/storage/upload-url")).json()["upload_url"]

        response = await api_client.put(upload_url, content=b"far more than eight bytes")

        assert response.status_code == 413
        token = upload_url.rsplit("/", 1)[-1]
        assert not storage.exists(storage.verify_token(token))

    async def test_unsupported_type(self, api_client, default_channel):
        url = (await api_client.post("/v0/storage/upload-url")).json()["upload_url"]
        storage_id = (await api_client.put(url, content=b"\x89PNG")).json()["storage_id"]

        response = await api_client.post(
            "/v0/documents",
            json={
                "storage_id": storage_id,
                "name": "logo.png",
                "mime_type": "image/png",
                "channel_id": default_channel["id"],
            },
        )

        assert response.status_code == 400
        assert "Unsupported file type: image/png" in response.json()["detail"]

    async def test_multipart_upload(self, api_client, default_channel):
        response = await api_client.post(
            "/v0/documents/upload",
            data={"channel_id": default_channel["id"]},
            files={"file": ("notes.md", b"# Notes\n\nShip on Friday.", "text/markdown")},
        )

        assert response.status_code == 201
        assert response.json()["name"] == "notes.md"
        assert response.json()["mime_type"] == "text/markdown"

    async def test_embed_search_and_delete(
        self, api_client, default_channel, session_factory, storage, embedder
    ):
        document = await upload_document(api_client, default_channel["id"])
        worker = EmbeddingWorker(session_factory, embedding_service=embedder, storage=storage)
        assert await worker.run_once() is True

        fetched = (await api_client.get(f"/v0/documents/{document['id']}")).json()
        assert fetched["status"] == "processed"
        assert fetched["chunk_count"] == 1

        chunks = (await api_client.get(f"/v0/documents/{document['id']}/chunks")).json()
        assert chunks[0]["metadata"]["document_name"] == "handbook.txt"

        search = await api_client.post(
            "/v0/search/chunks",
            json={
                "query": chunks[0]["content"],
                "scope": {"channel_id": default_channel["id"]},
                "k": 3,
            },
        )
        assert search.status_code == 200
        results = search.json()["results"]
        assert results[0]["document_id"] == document["id"]
        assert results[0]["score"] == pytest.approx(1.0)

        deleted = await api_client.delete(f"/v0/documents/{document['id']}")
        assert deleted.json() == {"id": document["id"], "chunks_deleted": 1}

        missing = await api_client.get(f"/v0/documents/{document['id']}")
        assert missing.status_code == 404
        assert missing.json()["error"] == "NotFoundError"

    async def test_reembed(self, api_client, default_channel):
        document = await upload_document(api_client, default_channel["id"])

        response = await api_client.post(f"/v0/documents/{document['id']}/reembed")

        assert response.status_code == 202
        assert response.json()["status"] == "processing"


class TestSearch:
    async def test_raw_embedding(self, api_client):
        response = await api_client.post(
            "/v0/search/chunks", json={"embedding": [0.0] * EMBEDDING_DIMENSIONS}
        )

        assert response.status_code == 200
        assert response.json() == {"results": []}

    async def test_wrong_dimensions(self, api_client):
        response = await api_client.post("/v0/search/chunks", json={"embedding": [1.0, 2.0]})

        assert response.status_code == 400

    async def test_needs_query_or_embedding(self, api_client):
        response = await api_client.post("/v0/search/chunks", json={"k": 3})

        assert response.status_code == 400

    async def test_text_query_without_embeddings(self, api_client):
        from parley.main import app

        app.dependency_overrides[get_embedding_service] = lambda: None

        response = await api_client.post("/v0/search/chunks", json={"query": "expenses"})

        assert response.status_code == 503


class TestChat:
    async def test_conversation_round_trip(
        self, api_client, session_factory, completion, embedder
    ):
        thread = (await api_client.post("/v0/threads", json={})).json()
        assert thread["title"] == "New thread"

        sent = await api_client.post(
            f"/v0/threads/{thread['id']}/messages",
            json={"content": "When are expense reports due?"},
        )
        assert sent.status_code == 202
        assert sent.json()["author_name"] == "alice@example.com"

        worker = GenerationWorker(
            session_factory, completion_service=completion, embedding_service=embedder
        )
        assert await worker.run_once() is True

        messages = (await api_client.get(f"/v0/threads/{thread['id']}/messages")).json()
        assert [(m["author_name"], m["sequence"]) for m in messages] == [
            ("alice@example.com", 1),
            ("AI", 2),
        ]

        renamed = (await api_client.get(f"/v0/threads/{thread['id']}")).json()
        assert renamed["title"] == "When are expense reports due?"
        assert renamed["updated_at"] == messages[-1]["created_at"]

        generations = (await api_client.get(f"/v0/threads/{thread['id']}/generations")).json()
        assert generations[0]["status"] == "SUCCEEDED"
        assert generations[0]["stage"] == "RESPONSE_PERSISTED"

        channel_messages = (
            await api_client.get(f"/v0/channels/{thread['channel_id']}/messages?limit=1")
        ).json()
        assert [m["author_name"] for m in channel_messages] == ["AI"]

    async def test_blank_message(self, api_client):
        thread = (await api_client.post("/v0/threads", json={})).json()

        response = await api_client.post(
            f"/v0/threads/{thread['id']}/messages", json={"content": "   "}
        )

        assert response.status_code == 400

    async def test_list_and_delete_threads(self, api_client, default_channel):
        created = (
            await api_client.post(
                "/v0/threads", json={"channel_id": default_channel["id"], "title": "Planning"}
            )
        ).json()
        await api_client.post(f"/v0/threads/{created['id']}/messages", json={"content": "hi"})

        listed = (await api_client.get(f"/v0/channels/{default_channel['id']}/threads")).json()
        assert [t["id"] for t in listed] == [created["id"]]

        deleted = await api_client.delete(f"/v0/threads/{created['id']}")
        assert deleted.json() == {"id": created["id"], "messages_deleted": 1}
        assert (await api_client.get(f"/v0/threads/{created['id']}")).status_code == 404

    async def test_unknown_thread(self, api_client):
        response = await api_client.get(f"/v0/threads/{uuid4()}/messages")

        assert response.status_code == 404


class TestAdminImport:
    async def test_import_and_backfill(self, api_client, default_channel):
        imported = await api_client.post(
            "/v0/admin/import/messages",
            json={
                "messages": [
                    {"content": "legacy hello", "channel_id": default_channel["id"]},
                    {
                        "content": "legacy reply",
                        "channel_id": default_channel["id"],
                        "created_at": "2021-03-01T10:00:00Z",
                    },
                ]
            },
        )
        backfilled = await api_client.post(
            "/v0/admin/backfill/users", json={"users": [{"name": "erin@example.com"}]}
        )

        assert imported.json() == {"imported": 2, "threads_created": 1}
        assert backfilled.json() == {"created": 1, "updated": 0}
