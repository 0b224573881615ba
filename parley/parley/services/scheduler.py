"""Deferred task scheduling on top of the job table.

Jobs are added to the caller's session and commit together with the rows
that caused them, so a job never runs for a message or document that was
rolled back. Workers pick them up after commit. Delivery is at-most-once:
a job that fails is marked FAILED and not retried.
"""

import logging
from datetime import timedelta
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from parley.models import Job, JobType, utcnow

logger = logging.getLogger(__name__)


def schedule_job(
    session: AsyncSession,
    job_type: JobType,
    *,
    thread_id: UUID | None = None,
    document_id: UUID | None = None,
    delay_seconds: float = 0,
) -> Job:
    """Queue a job to run after `delay_seconds`. Does not commit."""
    now = utcnow()
    job = Job(
        id=uuid4(),
        job_type=job_type,
        thread_id=thread_id,
        document_id=document_id,
        run_at=now + timedelta(seconds=delay_seconds),
        created_at=now,
        updated_at=now,
    )
    session.add(job)
    logger.info(
        f"Scheduled {job_type.value} job {job.id} "
        f"(thread={thread_id}, document={document_id}, delay={delay_seconds}s)"
    )
    return job
