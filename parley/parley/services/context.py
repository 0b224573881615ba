"""Build the role-tagged message list sent to the completion service."""

import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.config import settings
from parley.errors import NotFoundError, ParleyError, ValidationError
from parley.models import Message, Thread
from parley.services.embeddings import EmbeddingService
from parley.services.retrieval import ScoredChunk, search_text

logger = logging.getLogger(__name__)

EXCERPTS_HEADING = "Relevant document excerpts:"


@dataclass
class ContextMessage:
    role: str  # system | user | assistant
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class AssembledContext:
    messages: list[ContextMessage]
    retrieved_chunks: list[ScoredChunk] = field(default_factory=list)

    def as_prompt(self) -> list[dict[str, str]]:
        return [message.to_dict() for message in self.messages]


def message_role(message: Message) -> str:
    return "assistant" if message.is_assistant else "user"


def coalesce_messages(turns: list[tuple[str, str]]) -> list[ContextMessage]:
    """Merge consecutive turns with the same role into one entry, joined by newlines."""
    merged: list[ContextMessage] = []
    for role, content in turns:
        if merged and merged[-1].role == role:
            merged[-1].content = f"{merged[-1].content}\n{content}"
        else:
            merged.append(ContextMessage(role=role, content=content))
    return merged


def format_excerpts(chunks: list[ScoredChunk]) -> str:
    excerpts = [f"[{chunk.document_name}]\n{chunk.content}" for chunk in chunks]
    return EXCERPTS_HEADING + "\n\n" + "\n\n".join(excerpts)


async def load_history(
    session: AsyncSession,
    thread_id: UUID,
    history_window: int,
) -> list[Message]:
    """Newest `history_window` messages of a thread, returned oldest first."""
    result = await session.execute(
        select(Message)
        .where(Message.thread_id == thread_id)
        .order_by(Message.created_at.desc(), Message.sequence.desc())
        .limit(history_window)
    )
    messages = list(result.scalars().all())
    messages.reverse()
    return messages


async def assemble_context(
    session: AsyncSession,
    thread_id: UUID,
    history_window: int = 10,
    retrieval_query: str | None = None,
    embedding_service: EmbeddingService | None = None,
    system_prompt: str | None = None,
) -> AssembledContext:
    """
    Assemble the completion context for a thread.

    The result always starts with exactly one system message. When a
    retrieval query and an embedding service are given, the best-matching
    chunks from the thread's channel are appended to the system message.
    Retrieval is best-effort: failures are logged and the context is built
    without excerpts.
    """
    if history_window < 0:
        raise ValidationError("history_window must not be negative")

    thread = await session.get(Thread, thread_id)
    if not thread:
        raise NotFoundError("Thread", thread_id)

    system_content = system_prompt or settings.system_prompt
    retrieved: list[ScoredChunk] = []

    if retrieval_query and retrieval_query.strip() and embedding_service is not None:
        try:
            retrieved = await search_text(
                session,
                embedding_service,
                retrieval_query,
                channel_id=thread.channel_id,
                limit=settings.retrieval_limit,
            )
        except ParleyError as e:
            logger.warning(f"Retrieval failed for thread {thread_id}, continuing without excerpts: {e}")
            retrieved = []

        if retrieved:
            system_content = f"{system_content}\n\n{format_excerpts(retrieved)}"

    history = await load_history(session, thread_id, history_window)
    turns = [(message_role(message), message.content) for message in history]

    messages = [ContextMessage(role="system", content=system_content)]
    messages.extend(coalesce_messages(turns))

    logger.debug(
        f"Assembled context for thread {thread_id}: {len(history)} messages -> "
        f"{len(messages)} entries, {len(retrieved)} excerpts"
    )
    return AssembledContext(messages=messages, retrieved_chunks=retrieved)
