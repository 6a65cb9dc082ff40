from __future__ import annotations

import argparse
import signal
import time

from mindlog.ai_client import create_ai_client
from mindlog.config import get_settings
from mindlog.embeddings import create_embedding_client
from mindlog.logging_utils import init_logger
from mindlog.scheduler import PipelineScheduler
from mindlog.storage import MemoryRepository


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the mindlog memory pipeline: analyze → group → index → habits → summary"
    )
    parser.add_argument(
        "--no-ai",
        action="store_true",
        help="Start without an AI provider (capture analysis idles, documents use templates)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run every job once in order and exit instead of scheduling them",
    )
    args = parser.parse_args()

    settings = get_settings()
    logger = init_logger("pipeline", settings.logging.directory, settings.logging.level)
    repository = MemoryRepository(settings.storage.database_path)
    embedder = create_embedding_client(settings.embedding, logger)

    scheduler = PipelineScheduler(settings, repository, logger, embedder=embedder)
    if not args.no_ai:
        if settings.ai.configured:
            scheduler.connect_ai(create_ai_client(settings.ai, logger))
        else:
            logger.warning("AI provider %s has no API key; starting without AI", settings.ai.provider)

    logger.info("=" * 60)
    logger.info("mindlog pipeline started")
    logger.info("Database: %s", settings.storage.database_path)
    logger.info("Memory root: %s", settings.storage.memory_root)
    logger.info("AI connected: %s", scheduler.is_ai_connected())
    logger.info("=" * 60)

    if args.once:
        for job in scheduler.jobs:
            logger.info("Running job: %s", job.name)
            result = scheduler.run_job(job)
            if result is not None and hasattr(result, "as_dict"):
                logger.info("%s -> %s", job.name, result.as_dict())
        logger.info("Stats: %s", scheduler.queries.stats())
        return

    running = True

    def _graceful_stop(signum, frame):
        nonlocal running
        running = False
        logger.info("Received signal %s - shutting down pipeline", signum)

    signal.signal(signal.SIGINT, _graceful_stop)
    signal.signal(signal.SIGTERM, _graceful_stop)

    handle = scheduler.start()
    try:
        while running and handle.running:
            time.sleep(1)
    finally:
        handle.stop()
        logger.info("Pipeline stopped")


if __name__ == "__main__":
    main()
