import asyncio
import logging
import signal

from parley.config import settings
from parley.workers.embedding import EmbeddingWorker
from parley.workers.generation import GenerationWorker

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def run_workers():
    """Run all workers concurrently."""
    embedding_worker = EmbeddingWorker()
    generation_worker = GenerationWorker()

    # Handle shutdown signals
    def handle_shutdown(sig, frame):  # noqa: ARG001
        logger.info(f"Received shutdown signal: {sig}")
        embedding_worker.stop()
        generation_worker.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    # Run workers concurrently
    await asyncio.gather(
        embedding_worker.run(),
        generation_worker.run(),
    )


def main():
    """Entry point for the worker process."""
    logger.info("Starting Parley workers")
    asyncio.run(run_workers())


if __name__ == "__main__":
    main()
