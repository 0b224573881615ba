from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from parley.models import ConversationStage, DocumentStatus, GenerationStatus
from parley.services.backfill import LegacyMessage, LegacyUser

# ============================================================================
# Admin Schemas
# ============================================================================


class ChannelCreate(BaseModel):
    name: str


class ChannelResponse(BaseModel):
    id: UUID
    name: str
    created_at: datetime


class UserCreate(BaseModel):
    name: str  # email


class UserResponse(BaseModel):
    id: UUID
    name: str
    created_at: datetime
    last_active_at: datetime


class ImportMessagesRequest(BaseModel):
    messages: list[LegacyMessage]


class ImportMessagesResponse(BaseModel):
    imported: int
    threads_created: int


class BackfillUsersRequest(BaseModel):
    users: list[LegacyUser]


class BackfillUsersResponse(BaseModel):
    created: int
    updated: int


# ============================================================================
# Storage & Document Schemas
# ============================================================================


class UploadUrlResponse(BaseModel):
    upload_url: str
    expires_at: datetime


class StoredBlobResponse(BaseModel):
    storage_id: str
    size_bytes: int


class RegisterDocumentRequest(BaseModel):
    storage_id: str
    name: str
    mime_type: str
    channel_id: UUID


class DocumentResponse(BaseModel):
    id: UUID
    channel_id: UUID
    name: str
    mime_type: str
    size_bytes: int
    storage_id: str
    status: DocumentStatus
    error: str | None = None
    chunk_count: int
    uploaded_at: datetime


class ChunkResponse(BaseModel):
    id: UUID
    chunk_index: int
    content: str
    metadata: dict[str, Any]
    created_at: datetime


class DeleteDocumentResponse(BaseModel):
    id: UUID
    chunks_deleted: int


class ReembedResponse(BaseModel):
    document_id: UUID
    job_id: UUID
    status: DocumentStatus


class SearchScope(BaseModel):
    document_id: UUID | None = None
    channel_id: UUID | None = None


class SearchChunksRequest(BaseModel):
    query: str | None = None
    embedding: list[float] | None = None  # Used as-is when given, skips the embedding call
    scope: SearchScope | None = None
    k: int = Field(default=5, ge=1, le=50)


class ChunkSearchResult(BaseModel):
    chunk_id: UUID
    document_id: UUID
    document_name: str
    score: float
    snippet: str
    metadata: dict[str, Any]


class SearchChunksResponse(BaseModel):
    results: list[ChunkSearchResult]


# ============================================================================
# Chat Schemas
# ============================================================================


class ThreadCreate(BaseModel):
    channel_id: UUID | None = None  # Default channel when omitted
    title: str | None = None


class ThreadResponse(BaseModel):
    id: UUID
    channel_id: UUID
    title: str
    created_at: datetime
    updated_at: datetime


class MessageCreate(BaseModel):
    content: str


class MessageResponse(BaseModel):
    id: UUID
    thread_id: UUID
    channel_id: UUID
    author_id: UUID | None = None
    author_name: str
    content: str
    created_at: datetime
    sequence: int


class DeleteThreadResponse(BaseModel):
    id: UUID
    messages_deleted: int


class GenerationResponse(BaseModel):
    id: UUID
    job_id: UUID | None = None
    status: GenerationStatus
    stage: ConversationStage
    model: str | None = None
    context_messages: int
    retrieved_chunk_ids: list[str]
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    latency_ms: int | None = None
    error: str | None = None
    created_at: datetime
