"""One-time backfill of legacy records into the canonical schema.

Legacy exports may carry messages without a thread or timestamp and users
without timestamps. These batch operations fill the gaps once, so the rest
of the code never deals with optional thread ids or creation times.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID, uuid4

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.errors import NotFoundError, ValidationError
from parley.models import Message, Thread, User, utcnow
from parley.services.conversation import get_channel, lock_thread

logger = logging.getLogger(__name__)

IMPORTED_THREAD_TITLE = "Imported messages"


class LegacyMessage(BaseModel):
    content: str
    thread_id: UUID | None = None
    channel_id: UUID | None = None
    author_id: UUID | None = None
    created_at: datetime | None = None


class LegacyUser(BaseModel):
    name: str
    created_at: datetime | None = None
    last_active_at: datetime | None = None


@dataclass
class MessageImportResult:
    imported: int
    threads_created: int


@dataclass
class UserBackfillResult:
    created: int
    updated: int


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


async def _imported_thread(
    session: AsyncSession,
    channel_id: UUID,
    created: dict[UUID, Thread],
) -> tuple[Thread, bool]:
    """The channel's "Imported messages" thread, created on first use."""
    if channel_id in created:
        return created[channel_id], False

    result = await session.execute(
        select(Thread)
        .where(Thread.channel_id == channel_id, Thread.title == IMPORTED_THREAD_TITLE)
        .order_by(Thread.created_at)
        .limit(1)
    )
    thread = result.scalar_one_or_none()
    if thread:
        created[channel_id] = await lock_thread(session, thread.id)
        return created[channel_id], False

    await get_channel(session, channel_id)
    now = utcnow()
    thread = Thread(
        id=uuid4(),
        channel_id=channel_id,
        title=IMPORTED_THREAD_TITLE,
        created_at=now,
        updated_at=now,
        last_sequence=0,
    )
    session.add(thread)
    await session.flush()
    created[channel_id] = thread
    return thread, True


async def import_legacy_messages(
    session: AsyncSession,
    records: list[LegacyMessage],
) -> MessageImportResult:
    """
    Import legacy messages in input order, in one transaction.

    Messages without a thread go to their channel's "Imported messages"
    thread; messages with a thread take the thread's channel. Missing
    timestamps default to the import time, and input order is kept by the
    per-thread sequence.
    """
    threads: dict[UUID, Thread] = {}
    imported_threads: dict[UUID, Thread] = {}
    threads_created = 0
    import_time = utcnow()

    for i, record in enumerate(records):
        if not record.content.strip():
            raise ValidationError(f"Record {i}: message content is required")

        if record.thread_id:
            thread = threads.get(record.thread_id)
            if thread is None:
                thread = await lock_thread(session, record.thread_id)
                threads[thread.id] = thread
            if record.channel_id and record.channel_id != thread.channel_id:
                raise ValidationError(
                    f"Record {i}: thread {thread.id} does not belong to channel {record.channel_id}"
                )
        elif record.channel_id:
            thread, was_created = await _imported_thread(session, record.channel_id, imported_threads)
            threads_created += int(was_created)
        else:
            raise ValidationError(f"Record {i}: a thread_id or channel_id is required")

        if record.author_id and not await session.get(User, record.author_id):
            raise NotFoundError("User", record.author_id)

        # Legacy timestamps are kept as-is; updated_at only moves forward
        created_at = _naive_utc(record.created_at) or import_time
        thread.last_sequence += 1
        thread.updated_at = max(thread.updated_at, created_at)
        session.add(
            Message(
                id=uuid4(),
                thread_id=thread.id,
                channel_id=thread.channel_id,
                author_id=record.author_id,
                content=record.content,
                created_at=created_at,
                sequence=thread.last_sequence,
            )
        )

    await session.commit()
    logger.info(f"Imported {len(records)} legacy messages ({threads_created} threads created)")
    return MessageImportResult(imported=len(records), threads_created=threads_created)


async def backfill_users(
    session: AsyncSession,
    records: list[LegacyUser],
) -> UserBackfillResult:
    """
    Create legacy users, filling missing timestamps.

    created_at defaults to the import time and last_active_at to created_at.
    Existing users only have their timestamps moved earlier (created_at) or
    later (last_active_at), never the other way.
    """
    import_time = utcnow()
    created = 0
    updated = 0

    for i, record in enumerate(records):
        name = record.name.strip()
        if not name:
            raise ValidationError(f"Record {i}: user name is required")

        created_at = _naive_utc(record.created_at) or import_time
        last_active_at = max(_naive_utc(record.last_active_at) or created_at, created_at)

        result = await session.execute(select(User).where(User.name == name))
        user = result.scalar_one_or_none()
        if user is None:
            session.add(
                User(id=uuid4(), name=name, created_at=created_at, last_active_at=last_active_at)
            )
            await session.flush()
            created += 1
            continue

        changed = False
        if created_at < user.created_at:
            user.created_at = created_at
            changed = True
        if last_active_at > user.last_active_at:
            user.last_active_at = last_active_at
            changed = True
        updated += int(changed)

    await session.commit()
    logger.info(f"Backfilled users: {created} created, {updated} updated")
    return UserBackfillResult(created=created, updated=updated)
