import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from parley.models import Job, JobType
from parley.services.completion import CompletionService, get_completion_service
from parley.services.conversation import generate_response
from parley.services.embeddings import EmbeddingService, get_embedding_service
from parley.workers.base import BaseWorker

logger = logging.getLogger(__name__)


class GenerationWorker(BaseWorker):
    """Worker that writes the assistant's reply to a thread."""

    job_type = JobType.GENERATE_RESPONSE
    serialize_by_thread = True

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        completion_service: CompletionService | None = None,
        embedding_service: EmbeddingService | None = None,
    ):
        super().__init__(session_factory)
        self.completion_service = completion_service or get_completion_service()
        self.embedding_service = embedding_service or get_embedding_service()

    async def process_job(self, session: AsyncSession, job: Job) -> None:
        """
        Process a GENERATE_RESPONSE job:
        1. Assemble the thread's context (with document excerpts when enabled)
        2. Call the completion service
        3. Persist the assistant message
        Failures are recorded as a Generation before the job is marked failed.
        """
        if not job.thread_id:
            raise ValueError("GENERATE_RESPONSE job requires thread_id")

        message = await generate_response(
            session,
            job.thread_id,
            self.completion_service,
            embedding_service=self.embedding_service,
            job_id=job.id,
        )
        logger.info(f"Wrote reply {message.id} to thread {message.thread_id}")
