"""Generation observability.

Records one Generation row per response-generation run, successful or not,
so a reply that never arrived can be traced to the stage where it stopped.
"""

import logging
import time
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from parley.models import ConversationStage, Generation, GenerationStatus, Thread

logger = logging.getLogger(__name__)


class GenerationTracker:
    """
    Context manager for tracking a response generation.

    Usage:
        async with GenerationTracker(session, thread_id, job_id=job.id) as tracker:
            context = await assemble_context(...)
            tracker.advance(ConversationStage.CONTEXT_LOADED)
            tracker.context_messages = len(context)

            result = await completion_service.complete(...)
            tracker.set_usage(result.model, result.prompt_tokens, result.completion_tokens)

    Exceptions are recorded with the stage reached and then re-raised.
    """

    def __init__(
        self,
        session: AsyncSession,
        thread_id: UUID,
        job_id: UUID | None = None,
    ):
        self.session = session
        self.thread_id = thread_id
        self.job_id = job_id

        self.generation_id = uuid4()
        self.stage = ConversationStage.RESPONSE_SCHEDULED
        self.model: str | None = None
        self.context_messages = 0
        self.retrieved_chunk_ids: list[UUID] = []
        self.prompt_tokens: int | None = None
        self.completion_tokens: int | None = None
        self._start_time: float | None = None

    def advance(self, stage: ConversationStage) -> None:
        logger.debug(f"Generation {self.generation_id} for thread {self.thread_id}: {stage.value}")
        self.stage = stage

    def set_usage(self, model: str, prompt_tokens: int | None, completion_tokens: int | None) -> None:
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens

    async def __aenter__(self) -> "GenerationTracker":
        self._start_time = time.perf_counter()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        latency_ms = None
        if self._start_time:
            latency_ms = int((time.perf_counter() - self._start_time) * 1000)

        if exc_val is not None:
            # Discard whatever the failed step left pending before recording
            await self.session.rollback()
            if await self.session.get(Thread, self.thread_id) is None:
                logger.warning(
                    f"Generation {self.generation_id} not recorded: "
                    f"thread {self.thread_id} was deleted ({exc_val})"
                )
                return
            status = GenerationStatus.FAILED
            failed_at = self.stage
            stage = ConversationStage.FAILED
            error = f"{failed_at.value}: {exc_val}"
        else:
            status = GenerationStatus.SUCCEEDED
            stage = self.stage
            error = None

        generation = Generation(
            id=self.generation_id,
            thread_id=self.thread_id,
            job_id=self.job_id,
            status=status,
            stage=stage,
            model=self.model,
            context_messages=self.context_messages,
            retrieved_chunk_ids=[str(chunk_id) for chunk_id in self.retrieved_chunk_ids],
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            latency_ms=latency_ms,
            error=error,
        )
        self.session.add(generation)
        await self.session.commit()

        logger.info(
            f"Recorded generation {self.generation_id}: thread={self.thread_id}, "
            f"status={status.value}, stage={stage.value}, latency={latency_ms}ms"
        )


async def list_generations(
    session: AsyncSession,
    thread_id: UUID,
    limit: int = 100,
    offset: int = 0,
) -> list[Generation]:
    """List a thread's generation records, newest first."""
    query = (
        select(Generation)
        .where(Generation.thread_id == thread_id)
        .order_by(Generation.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(query)
    return list(result.scalars().all())
