"""Conversation orchestration: channels, threads, messages and assistant replies.

A user message is written and a GENERATE_RESPONSE job is queued in the same
transaction; the reply is produced later by the generation worker:

    RECEIVED -> PERSISTED -> RESPONSE_SCHEDULED          (send_message, request path)
    -> CONTEXT_LOADED -> COMPLETION_REQUESTED
    -> RESPONSE_PERSISTED                                (generate_response, worker)

Any failure in the worker half ends in FAILED and is recorded as a Generation.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parley.config import settings
from parley.errors import (
    ConsistencyError,
    EmptyCompletionError,
    NotFoundError,
    ValidationError,
)
from parley.models import (
    Channel,
    ConversationStage,
    Generation,
    Job,
    JobType,
    Message,
    Thread,
    User,
    utcnow,
)
from parley.services.completion import CompletionService
from parley.services.context import assemble_context
from parley.services.embeddings import EmbeddingService
from parley.services.observability import GenerationTracker
from parley.services.scheduler import schedule_job

logger = logging.getLogger(__name__)

ASSISTANT_NAME = "AI"
DEFAULT_THREAD_TITLE = "New thread"


@dataclass
class MessageView:
    """A message with its author name resolved ("AI" for the assistant)."""

    id: UUID
    thread_id: UUID
    channel_id: UUID
    author_id: UUID | None
    author_name: str
    content: str
    created_at: datetime
    sequence: int


def truncate_title(content: str, max_length: int = 50) -> str:
    """Shorten content to a thread title, ending in "..." when cut."""
    content = content.strip()
    if len(content) <= max_length:
        return content
    return content[: max_length - 3] + "..."


# ============================================================================
# Channels & users
# ============================================================================


async def _find_channel(session: AsyncSession, name: str) -> Channel | None:
    result = await session.execute(select(Channel).where(Channel.name == name))
    return result.scalar_one_or_none()


async def ensure_default_channel(session: AsyncSession, name: str | None = None) -> Channel:
    """Return the default channel, creating it on first use. Idempotent."""
    name = name or settings.default_channel_name
    channel = await _find_channel(session, name)
    if channel:
        return channel

    channel = Channel(id=uuid4(), name=name, created_at=utcnow())
    session.add(channel)
    try:
        await session.commit()
    except IntegrityError:
        # Created concurrently
        await session.rollback()
        channel = await _find_channel(session, name)
        if not channel:
            raise
        return channel

    logger.info(f"Created default channel {channel.id} ({name})")
    return channel


async def create_channel(session: AsyncSession, name: str) -> Channel:
    name = name.strip()
    if not name:
        raise ValidationError("Channel name is required")
    if await _find_channel(session, name):
        raise ValidationError(f"Channel {name} already exists")

    channel = Channel(id=uuid4(), name=name, created_at=utcnow())
    session.add(channel)
    await session.commit()
    logger.info(f"Created channel {channel.id} ({name})")
    return channel


async def get_channel(session: AsyncSession, channel_id: UUID) -> Channel:
    channel = await session.get(Channel, channel_id)
    if not channel:
        raise NotFoundError("Channel", channel_id)
    return channel


async def list_channels(session: AsyncSession) -> list[Channel]:
    result = await session.execute(select(Channel).order_by(Channel.name))
    return list(result.scalars().all())


async def _find_user(session: AsyncSession, name: str) -> User | None:
    result = await session.execute(select(User).where(User.name == name))
    return result.scalar_one_or_none()


async def get_or_create_user(session: AsyncSession, name: str) -> User:
    """Look a user up by name, creating them once if absent."""
    name = name.strip()
    if not name:
        raise ValidationError("User name is required")

    user = await _find_user(session, name)
    if user:
        return user

    now = utcnow()
    user = User(id=uuid4(), name=name, created_at=now, last_active_at=now)
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        user = await _find_user(session, name)
        if not user:
            raise
        return user

    logger.info(f"Created user {user.id} ({name})")
    return user


async def touch_user(session: AsyncSession, user: User, interval_seconds: int) -> None:
    """Best-effort last_active_at bump, written at most once per interval."""
    now = utcnow()
    if now - user.last_active_at < timedelta(seconds=interval_seconds):
        return
    user.last_active_at = now
    await session.commit()


# ============================================================================
# Threads
# ============================================================================


async def create_thread(
    session: AsyncSession,
    channel_id: UUID,
    title: str | None = None,
) -> Thread:
    await get_channel(session, channel_id)

    now = utcnow()
    thread = Thread(
        id=uuid4(),
        channel_id=channel_id,
        title=(title or "").strip() or DEFAULT_THREAD_TITLE,
        created_at=now,
        updated_at=now,
        last_sequence=0,
    )
    session.add(thread)
    await session.commit()
    logger.info(f"Created thread {thread.id} in channel {channel_id}")
    return thread


async def get_thread(session: AsyncSession, thread_id: UUID) -> Thread:
    thread = await session.get(Thread, thread_id)
    if not thread:
        raise NotFoundError("Thread", thread_id)
    return thread


async def list_threads(session: AsyncSession, channel_id: UUID) -> list[Thread]:
    """A channel's threads, most recently active first."""
    await get_channel(session, channel_id)
    result = await session.execute(
        select(Thread)
        .where(Thread.channel_id == channel_id)
        .order_by(Thread.updated_at.desc(), Thread.id)
    )
    return list(result.scalars().all())


async def delete_thread(session: AsyncSession, thread_id: UUID) -> int:
    """
    Delete a thread: messages, generations and jobs first, then the thread.

    Returns the number of messages removed.
    """
    await get_thread(session, thread_id)

    result = await session.execute(delete(Message).where(Message.thread_id == thread_id))
    removed = result.rowcount or 0
    await session.execute(delete(Generation).where(Generation.thread_id == thread_id))
    await session.execute(delete(Job).where(Job.thread_id == thread_id))

    remaining = await session.scalar(
        select(func.count(Message.id)).where(Message.thread_id == thread_id)
    )
    if remaining:
        await session.rollback()
        raise ConsistencyError(f"Thread {thread_id} still has {remaining} messages after delete")

    await session.execute(delete(Thread).where(Thread.id == thread_id))
    await session.commit()
    logger.info(f"Deleted thread {thread_id} and {removed} messages")
    return removed


# ============================================================================
# Messages
# ============================================================================


async def lock_thread(session: AsyncSession, thread_id: UUID) -> Thread:
    """Load a thread with a row lock so sequence and updated_at are assigned serially."""
    result = await session.execute(
        select(Thread)
        .where(Thread.id == thread_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    thread = result.scalar_one_or_none()
    if not thread:
        raise NotFoundError("Thread", thread_id)
    return thread


def append_message(
    session: AsyncSession,
    thread: Thread,
    author_id: UUID | None,
    content: str,
    created_at: datetime | None = None,
) -> Message:
    """
    Add a message to a locked thread and bump the thread's updated_at.

    The timestamp never goes below the thread's updated_at, so message
    timestamps within a thread are non-decreasing and updated_at equals the
    newest message's created_at.
    """
    now = max(created_at or utcnow(), thread.updated_at)
    thread.last_sequence += 1
    thread.updated_at = now

    message = Message(
        id=uuid4(),
        thread_id=thread.id,
        channel_id=thread.channel_id,
        author_id=author_id,
        content=content,
        created_at=now,
        sequence=thread.last_sequence,
    )
    session.add(message)
    return message


async def send_message(
    session: AsyncSession,
    thread_id: UUID,
    author_id: UUID,
    content: str,
) -> Message:
    """
    Persist a user message and schedule the assistant reply.

    Returns as soon as the message and its GENERATE_RESPONSE job are
    committed; the reply is written later by the generation worker.
    """
    if not content or not content.strip():
        raise ValidationError("Message content is required")

    logger.debug(f"Thread {thread_id}: {ConversationStage.RECEIVED.value}")

    if not await session.get(User, author_id):
        raise NotFoundError("User", author_id)
    thread = await lock_thread(session, thread_id)

    is_first = thread.last_sequence == 0
    message = append_message(session, thread, author_id, content)
    if is_first:
        thread.title = truncate_title(content, settings.title_max_length)

    await session.flush()
    logger.debug(f"Thread {thread_id}: {ConversationStage.PERSISTED.value}")

    job = schedule_job(session, JobType.GENERATE_RESPONSE, thread_id=thread.id)
    await session.commit()

    logger.info(
        f"Thread {thread_id}: message {message.id} (seq {message.sequence}) "
        f"{ConversationStage.RESPONSE_SCHEDULED.value} as job {job.id}"
    )
    return message


async def write_agent_response(
    session: AsyncSession,
    thread_id: UUID,
    channel_id: UUID,
    content: str,
) -> Message:
    """Persist an assistant message (no author) and bump the thread's updated_at."""
    thread = await lock_thread(session, thread_id)
    if thread.channel_id != channel_id:
        await session.rollback()
        raise ValidationError(f"Thread {thread_id} does not belong to channel {channel_id}")

    message = append_message(session, thread, None, content)
    await session.commit()
    logger.info(f"Thread {thread_id}: assistant message {message.id} (seq {message.sequence})")
    return message


async def _latest_user_message(session: AsyncSession, thread_id: UUID) -> str | None:
    result = await session.execute(
        select(Message.content)
        .where(Message.thread_id == thread_id, Message.author_id.is_not(None))
        .order_by(Message.created_at.desc(), Message.sequence.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def generate_response(
    session: AsyncSession,
    thread_id: UUID,
    completion_service: CompletionService,
    embedding_service: EmbeddingService | None = None,
    job_id: UUID | None = None,
) -> Message:
    """
    Produce and persist the assistant's reply for a thread.

    Runs out-of-band from the request that sent the message. Errors are
    recorded as a failed Generation and re-raised to the caller (the worker).
    """
    thread = await get_thread(session, thread_id)
    channel_id = thread.channel_id

    async with GenerationTracker(session, thread_id, job_id=job_id) as tracker:
        retrieval_query = None
        if settings.enable_retrieval and embedding_service is not None:
            retrieval_query = await _latest_user_message(session, thread_id)

        context = await assemble_context(
            session,
            thread_id,
            history_window=settings.history_window,
            retrieval_query=retrieval_query,
            embedding_service=embedding_service,
        )
        tracker.context_messages = len(context.messages)
        tracker.retrieved_chunk_ids = [chunk.chunk_id for chunk in context.retrieved_chunks]
        tracker.advance(ConversationStage.CONTEXT_LOADED)

        tracker.advance(ConversationStage.COMPLETION_REQUESTED)
        result = await completion_service.complete(context.as_prompt())
        tracker.set_usage(result.model, result.prompt_tokens, result.completion_tokens)
        if not result.content or not result.content.strip():
            raise EmptyCompletionError()

        message = await write_agent_response(session, thread_id, channel_id, result.content)
        tracker.advance(ConversationStage.RESPONSE_PERSISTED)

    return message


def _message_view(message: Message, author_name: str | None) -> MessageView:
    return MessageView(
        id=message.id,
        thread_id=message.thread_id,
        channel_id=message.channel_id,
        author_id=message.author_id,
        author_name=ASSISTANT_NAME if message.author_id is None else (author_name or ""),
        content=message.content,
        created_at=message.created_at,
        sequence=message.sequence,
    )


async def list_messages(session: AsyncSession, thread_id: UUID) -> list[MessageView]:
    """A thread's messages, oldest first."""
    await get_thread(session, thread_id)
    result = await session.execute(
        select(Message, User.name)
        .outerjoin(User, User.id == Message.author_id)
        .where(Message.thread_id == thread_id)
        .order_by(Message.created_at, Message.sequence)
    )
    return [_message_view(message, name) for message, name in result.all()]


async def list_channel_messages(
    session: AsyncSession,
    channel_id: UUID,
    limit: int = 100,
) -> list[MessageView]:
    """The newest `limit` messages across a channel's threads, oldest first."""
    await get_channel(session, channel_id)
    result = await session.execute(
        select(Message, User.name)
        .outerjoin(User, User.id == Message.author_id)
        .where(Message.channel_id == channel_id)
        .order_by(Message.created_at.desc(), Message.sequence.desc())
        .limit(limit)
    )
    views = [_message_view(message, name) for message, name in result.all()]
    views.reverse()
    return views
