import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from parley.models import Job, JobType
from parley.services.chunk_embedder import embed_document
from parley.services.embeddings import EmbeddingService, get_embedding_service
from parley.services.storage import LocalBlobStorage, get_storage
from parley.workers.base import BaseWorker

logger = logging.getLogger(__name__)


class EmbeddingWorker(BaseWorker):
    """Worker that chunks and embeds uploaded documents."""

    job_type = JobType.EMBED_DOCUMENT

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        embedding_service: EmbeddingService | None = None,
        storage: LocalBlobStorage | None = None,
    ):
        super().__init__(session_factory)
        self.embedding_service = embedding_service or get_embedding_service()
        self.storage = storage or get_storage()

    async def process_job(self, session: AsyncSession, job: Job) -> None:
        """
        Process an EMBED_DOCUMENT job:
        1. Read the stored bytes and extract text
        2. Chunk and embed every chunk
        3. Replace the document's chunk embeddings and mark it processed
        """
        if not job.document_id:
            raise ValueError("EMBED_DOCUMENT job requires document_id")

        result = await embed_document(
            session,
            job.document_id,
            self.embedding_service,
            self.storage,
        )
        logger.info(f"Embedded document {job.document_id}: {result.chunks_created} chunks")
