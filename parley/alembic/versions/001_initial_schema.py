"""Initial schema

Revision ID: 001
Revises:
Create Date: 2025-03-02

"""

from collections.abc import Sequence

import sqlalchemy as sa
from pgvector.sqlalchemy import Vector

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# Timestamps are stored as naive UTC
UTC_NOW = sa.text("(now() at time zone 'utc')")


def upgrade() -> None:
    # Enable pgvector extension
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # Create enums
    op.execute("""
        CREATE TYPE documentstatus AS ENUM ('PROCESSING', 'PROCESSED', 'ERROR');
        CREATE TYPE jobtype AS ENUM ('EMBED_DOCUMENT', 'GENERATE_RESPONSE');
        CREATE TYPE jobstatus AS ENUM ('PENDING', 'IN_PROGRESS', 'SUCCEEDED', 'FAILED');
        CREATE TYPE generationstatus AS ENUM ('SUCCEEDED', 'FAILED');
        CREATE TYPE conversationstage AS ENUM (
            'RECEIVED', 'PERSISTED', 'RESPONSE_SCHEDULED', 'CONTEXT_LOADED',
            'COMPLETION_REQUESTED', 'RESPONSE_PERSISTED', 'FAILED'
        );
    """)

    # channel
    op.create_table(
        "channel",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_channel_name"),
    )

    # app_user
    op.create_table(
        "app_user",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column("last_active_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_user_name"),
    )
    op.create_index("ix_user_last_active", "app_user", ["last_active_at"])

    # thread
    op.create_table(
        "thread",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("channel_id", sa.UUID(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column("last_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["channel_id"], ["channel.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("updated_at >= created_at", name="ck_thread_updated_after_created"),
    )
    op.create_index("ix_thread_channel", "thread", ["channel_id"])
    op.create_index("ix_thread_updated", "thread", ["updated_at"])

    # message
    op.create_table(
        "message",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("thread_id", sa.UUID(), nullable=False),
        sa.Column("channel_id", sa.UUID(), nullable=False),
        sa.Column("author_id", sa.UUID(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["thread_id"], ["thread.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["channel_id"], ["channel.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["author_id"], ["app_user.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("thread_id", "sequence", name="uq_message_sequence"),
    )
    op.create_index("ix_message_thread", "message", ["thread_id", "created_at"])
    op.create_index("ix_message_channel", "message", ["channel_id", "created_at"])

    # document
    op.create_table(
        "document",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("channel_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("mime_type", sa.Text(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("storage_id", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("PROCESSING", "PROCESSED", "ERROR", name="documentstatus", create_type=False),
            nullable=False,
            server_default="PROCESSING",
        ),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("chunk_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.ForeignKeyConstraint(["channel_id"], ["channel.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("storage_id", name="uq_document_storage"),
    )
    op.create_index("ix_document_channel", "document", ["channel_id", "uploaded_at"])
    op.create_index("ix_document_status", "document", ["status"])

    # document_chunk_embedding
    op.create_table(
        "document_chunk_embedding",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("metadata", sa.dialects.postgresql.JSONB(), nullable=False),
        sa.Column("embedding", Vector(1536), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.ForeignKeyConstraint(["document_id"], ["document.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_id", "chunk_index", name="uq_chunk_embedding_index"),
    )
    op.create_index("ix_chunk_embedding_document", "document_chunk_embedding", ["document_id"])
    op.execute("""
        CREATE INDEX ix_chunk_embedding_vector
        ON document_chunk_embedding
        USING hnsw (embedding vector_cosine_ops)
    """)

    # job
    op.create_table(
        "job",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column(
            "job_type",
            sa.Enum("EMBED_DOCUMENT", "GENERATE_RESPONSE", name="jobtype", create_type=False),
            nullable=False,
        ),
        sa.Column("thread_id", sa.UUID(), nullable=True),
        sa.Column("document_id", sa.UUID(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "IN_PROGRESS", "SUCCEEDED", "FAILED", name="jobstatus", create_type=False
            ),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("run_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.ForeignKeyConstraint(["thread_id"], ["thread.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["document_id"], ["document.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_pending", "job", ["status", "job_type", "run_at"])
    op.create_index("ix_job_thread", "job", ["thread_id", "status"])

    # generation
    op.create_table(
        "generation",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("thread_id", sa.UUID(), nullable=False),
        sa.Column("job_id", sa.UUID(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("SUCCEEDED", "FAILED", name="generationstatus", create_type=False),
            nullable=False,
        ),
        sa.Column(
            "stage",
            sa.Enum(
                "RECEIVED",
                "PERSISTED",
                "RESPONSE_SCHEDULED",
                "CONTEXT_LOADED",
                "COMPLETION_REQUESTED",
                "RESPONSE_PERSISTED",
                "FAILED",
                name="conversationstage",
                create_type=False,
            ),
            nullable=False,
        ),
        sa.Column("model", sa.Text(), nullable=True),
        sa.Column("context_messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "retrieved_chunk_ids",
            sa.dialects.postgresql.JSONB(),
            nullable=False,
            server_default="[]",
        ),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("completion_tokens", sa.Integer(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=UTC_NOW),
        sa.ForeignKeyConstraint(["thread_id"], ["thread.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["job_id"], ["job.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_generation_thread", "generation", ["thread_id", "created_at"])


def downgrade() -> None:
    op.drop_table("generation")
    op.drop_table("job")
    op.drop_table("document_chunk_embedding")
    op.drop_table("document")
    op.drop_table("message")
    op.drop_table("thread")
    op.drop_table("app_user")
    op.drop_table("channel")

    op.execute("DROP TYPE conversationstage")
    op.execute("DROP TYPE generationstatus")
    op.execute("DROP TYPE jobstatus")
    op.execute("DROP TYPE jobtype")
    op.execute("DROP TYPE documentstatus")
    op.execute("DROP EXTENSION IF EXISTS vector")
