"""Semantic search over stored chunk embeddings."""

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import numpy as np
from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.errors import ValidationError
from parley.models import (
    EMBEDDING_DIMENSIONS,
    Document,
    DocumentChunkEmbedding,
    DocumentStatus,
)
from parley.services.embeddings import EmbeddingService

logger = logging.getLogger(__name__)

# Rows fetched from the vector index per requested result, rescored in Python
CANDIDATE_POOL_FACTOR = 4


@dataclass
class ScoredChunk:
    chunk_id: UUID
    document_id: UUID
    document_name: str
    score: float
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two vectors; 0.0 if either has zero magnitude."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def candidate_query(document_id: UUID | None = None, channel_id: UUID | None = None) -> Select:
    """Chunks in scope, skipping documents whose last embedding run failed."""
    query = (
        select(DocumentChunkEmbedding, Document.name)
        .join(Document, Document.id == DocumentChunkEmbedding.document_id)
        .where(Document.status != DocumentStatus.ERROR)
    )
    if document_id:
        query = query.where(DocumentChunkEmbedding.document_id == document_id)
    elif channel_id:
        query = query.where(Document.channel_id == channel_id)
    return query


def nearest_query(
    query_embedding: list[float],
    limit: int,
    document_id: UUID | None = None,
    channel_id: UUID | None = None,
) -> Select:
    """Candidates ordered by pgvector cosine distance, so the HNSW index serves the scan."""
    distance = DocumentChunkEmbedding.embedding.cosine_distance(query_embedding)
    return (
        candidate_query(document_id, channel_id)
        .order_by(distance)
        .limit(limit * CANDIDATE_POOL_FACTOR)
    )


def uses_vector_index(session: AsyncSession, query_embedding: list[float]) -> bool:
    # Cosine distance to a zero vector is undefined, so that query scans everything
    if not np.any(query_embedding):
        return False
    return session.get_bind().dialect.name == "postgresql"


async def search(
    session: AsyncSession,
    query_embedding: list[float],
    document_id: UUID | None = None,
    channel_id: UUID | None = None,
    limit: int = 5,
) -> list[ScoredChunk]:
    """
    Rank chunk embeddings by cosine similarity to a query vector.

    Candidates are restricted to one document when `document_id` is given,
    otherwise to the documents of `channel_id` when given, otherwise all
    chunks. Results are ordered by descending score with ties broken by
    chunk id. Read-only.

    On PostgreSQL the nearest rows come from the vector index and only those
    are rescored; elsewhere every candidate is scored with numpy.
    """
    if len(query_embedding) != EMBEDDING_DIMENSIONS:
        raise ValidationError(
            f"Query embedding has {len(query_embedding)} dimensions, expected {EMBEDDING_DIMENSIONS}"
        )
    if limit <= 0:
        return []

    if uses_vector_index(session, query_embedding):
        query = nearest_query(query_embedding, limit, document_id, channel_id)
    else:
        query = candidate_query(document_id, channel_id)

    result = await session.execute(query)
    rows = result.all()

    scored = [
        ScoredChunk(
            chunk_id=chunk.id,
            document_id=chunk.document_id,
            document_name=document_name,
            score=cosine_similarity(query_embedding, chunk.embedding),
            content=chunk.content,
            metadata=dict(chunk.chunk_metadata or {}),
        )
        for chunk, document_name in rows
    ]
    scored.sort(key=lambda c: (-c.score, str(c.chunk_id)))

    logger.debug(f"Scored {len(scored)} candidate chunks, returning top {limit}")
    return scored[:limit]


async def search_text(
    session: AsyncSession,
    embedding_service: EmbeddingService,
    query: str,
    document_id: UUID | None = None,
    channel_id: UUID | None = None,
    limit: int = 5,
) -> list[ScoredChunk]:
    """Embed a text query and search with it."""
    if not query.strip():
        raise ValidationError("Search query is required")
    query_embedding = await embedding_service.embed(query)
    return await search(
        session,
        query_embedding,
        document_id=document_id,
        channel_id=channel_id,
        limit=limit,
    )
