import asyncio
import logging
from abc import ABC, abstractmethod
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from parley.config import settings
from parley.db import async_session_factory
from parley.models import Job, JobStatus, JobType, utcnow

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """
    Base class for job workers.

    Jobs are delivered at most once: a claimed job is marked IN_PROGRESS and
    ends SUCCEEDED or FAILED; failed jobs are not picked up again unless
    worker_max_attempts is raised above 1 and the job is reset to PENDING.
    """

    job_type: JobType
    # Skip jobs for a thread that already has one IN_PROGRESS
    serialize_by_thread: bool = False

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory or async_session_factory
        self.running = False

    @abstractmethod
    async def process_job(self, session: AsyncSession, job: Job) -> None:
        """Process a single job. Implement in subclass."""

    async def claim_job(self, session: AsyncSession) -> Job | None:
        """
        Claim the oldest runnable job using SELECT FOR UPDATE SKIP LOCKED.
        Returns the claimed job or None if no jobs available.
        """
        query = (
            select(Job)
            .where(
                Job.status == JobStatus.PENDING,
                Job.job_type == self.job_type,
                Job.attempts < settings.worker_max_attempts,
                Job.run_at <= utcnow(),
            )
            .order_by(Job.run_at, Job.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
        )

        if self.serialize_by_thread:
            busy = select(Job.thread_id).where(
                Job.status == JobStatus.IN_PROGRESS,
                Job.thread_id.is_not(None),
            )
            query = query.where(or_(Job.thread_id.is_(None), Job.thread_id.not_in(busy)))

        result = await session.execute(query)
        job = result.scalar_one_or_none()
        if not job:
            await session.rollback()
            return None

        job.status = JobStatus.IN_PROGRESS
        job.attempts += 1
        job.updated_at = utcnow()
        await session.commit()
        return job

    async def _finish(
        self, session: AsyncSession, job_id: UUID, status: JobStatus, error: str | None
    ) -> None:
        # The job row may already be gone (thread or document deleted meanwhile)
        await session.rollback()
        result = await session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(status=status, last_error=error, updated_at=utcnow())
        )
        await session.commit()
        if not result.rowcount:
            logger.warning(f"Job {job_id} was deleted before it finished")

    async def mark_succeeded(self, session: AsyncSession, job_id: UUID) -> None:
        """Mark a job as succeeded."""
        await self._finish(session, job_id, JobStatus.SUCCEEDED, None)
        logger.info(f"Job {job_id} succeeded")

    async def mark_failed(self, session: AsyncSession, job_id: UUID, error: str) -> None:
        """Mark a job as failed."""
        await self._finish(session, job_id, JobStatus.FAILED, error)
        logger.error(f"Job {job_id} failed: {error}")

    async def run_once(self) -> bool:
        """
        Try to claim and process a single job.
        Returns True if a job was processed, False otherwise.
        """
        async with self.session_factory() as session:
            job = await self.claim_job(session)

            if not job:
                return False

            job_id = job.id
            logger.info(f"Processing job {job_id} (type={job.job_type.value}, attempt={job.attempts})")

            try:
                await self.process_job(session, job)
                await self.mark_succeeded(session, job_id)
                return True
            except Exception as e:
                logger.exception(f"Error processing job {job_id}: {e}")
                await self.mark_failed(session, job_id, str(e))
                return True  # We did process (attempt) a job

    async def run(self) -> None:
        """Run the worker loop continuously."""
        self.running = True
        logger.info(f"Starting {self.__class__.__name__} worker")

        while self.running:
            try:
                processed = await self.run_once()

                if not processed:
                    # No jobs available, sleep before checking again
                    await asyncio.sleep(settings.worker_poll_interval_seconds)
            except Exception as e:
                logger.exception(f"Worker error: {e}")
                await asyncio.sleep(settings.worker_poll_interval_seconds)

    def stop(self) -> None:
        """Stop the worker loop."""
        self.running = False
        logger.info(f"Stopping {self.__class__.__name__} worker")
