import enum
from datetime import UTC, datetime
from uuid import UUID

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

EMBEDDING_DIMENSIONS = 1536


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC without tzinfo."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


# ============================================================================
# Enums
# ============================================================================


class DocumentStatus(str, enum.Enum):
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class JobType(str, enum.Enum):
    EMBED_DOCUMENT = "EMBED_DOCUMENT"
    GENERATE_RESPONSE = "GENERATE_RESPONSE"


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class ConversationStage(str, enum.Enum):
    """Stages a message-send event passes through on its way to an assistant reply."""

    RECEIVED = "RECEIVED"
    PERSISTED = "PERSISTED"
    RESPONSE_SCHEDULED = "RESPONSE_SCHEDULED"
    CONTEXT_LOADED = "CONTEXT_LOADED"
    COMPLETION_REQUESTED = "COMPLETION_REQUESTED"
    RESPONSE_PERSISTED = "RESPONSE_PERSISTED"
    FAILED = "FAILED"


class GenerationStatus(str, enum.Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# ============================================================================
# Channels, Users
# ============================================================================


class Channel(Base):
    __tablename__ = "channel"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("name", name="uq_channel_name"),)

    # Relationships
    threads: Mapped[list["Thread"]] = relationship(back_populates="channel")
    documents: Mapped[list["Document"]] = relationship(back_populates="channel")


class User(Base):
    __tablename__ = "app_user"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)  # email from the auth proxy
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_active_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("name", name="uq_user_name"),
        Index("ix_user_last_active", "last_active_at"),
    )


# ============================================================================
# Threads, Messages
# ============================================================================


class Thread(Base):
    __tablename__ = "thread"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    channel_id: Mapped[UUID] = mapped_column(
        ForeignKey("channel.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    # Highest Message.sequence handed out in this thread
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_thread_channel", "channel_id"),
        Index("ix_thread_updated", "updated_at"),
    )

    # Relationships
    channel: Mapped["Channel"] = relationship(back_populates="threads")


class Message(Base):
    __tablename__ = "message"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    thread_id: Mapped[UUID] = mapped_column(
        ForeignKey("thread.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[UUID] = mapped_column(
        ForeignKey("channel.id", ondelete="CASCADE"), nullable=False
    )
    # NULL author means the assistant wrote it
    author_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("app_user.id", ondelete="SET NULL"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("thread_id", "sequence", name="uq_message_sequence"),
        Index("ix_message_thread", "thread_id", "created_at"),
        Index("ix_message_channel", "channel_id", "created_at"),
    )

    # Relationships
    author: Mapped["User | None"] = relationship()

    @property
    def is_assistant(self) -> bool:
        return self.author_id is None


# ============================================================================
# Documents, Chunk Embeddings
# ============================================================================


class Document(Base):
    __tablename__ = "document"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    channel_id: Mapped[UUID] = mapped_column(
        ForeignKey("channel.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_id: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus), nullable=False, default=DocumentStatus.PROCESSING
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("storage_id", name="uq_document_storage"),
        Index("ix_document_channel", "channel_id", "uploaded_at"),
        Index("ix_document_status", "status"),
    )

    # Relationships
    channel: Mapped["Channel"] = relationship(back_populates="documents")
    chunk_embeddings: Mapped[list["DocumentChunkEmbedding"]] = relationship(
        back_populates="document", cascade="all, delete"
    )


class DocumentChunkEmbedding(Base):
    __tablename__ = "document_chunk_embedding"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("document.id", ondelete="CASCADE"), nullable=False
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # Validated against services.extraction.ChunkMetadata before write
    chunk_metadata = mapped_column("metadata", JSONB, nullable=False)
    embedding = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunk_embedding_index"),
        Index("ix_chunk_embedding_document", "document_id"),
    )

    # Relationships
    document: Mapped["Document"] = relationship(back_populates="chunk_embeddings")


# ============================================================================
# Jobs & Generations
# ============================================================================


class Job(Base):
    __tablename__ = "job"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    job_type: Mapped[JobType] = mapped_column(Enum(JobType), nullable=False)
    thread_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("thread.id", ondelete="CASCADE"), nullable=True
    )
    document_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("document.id", ondelete="CASCADE"), nullable=True
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus), nullable=False, default=JobStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    run_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_job_pending", "status", "job_type", "run_at"),
        Index("ix_job_thread", "thread_id", "status"),
    )


class Generation(Base):
    """One run of the response generator for a thread (success or failure)."""

    __tablename__ = "generation"

    id: Mapped[UUID] = mapped_column(primary_key=True)
    thread_id: Mapped[UUID] = mapped_column(
        ForeignKey("thread.id", ondelete="CASCADE"), nullable=False
    )
    job_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("job.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[GenerationStatus] = mapped_column(Enum(GenerationStatus), nullable=False)
    stage: Mapped[ConversationStage] = mapped_column(Enum(ConversationStage), nullable=False)
    model: Mapped[str | None] = mapped_column(Text, nullable=True)
    context_messages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retrieved_chunk_ids = mapped_column(JSONB, nullable=False, default=list)
    prompt_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completion_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    latency_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_generation_thread", "thread_id", "created_at"),)
