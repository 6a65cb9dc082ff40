from __future__ import annotations

import argparse
import sys

from mindlog.ai_client import create_ai_client
from mindlog.capture_analyzer import CaptureAnalyzer
from mindlog.config import get_settings
from mindlog.logging_utils import init_logger
from mindlog.models import BatchStats
from mindlog.storage import MemoryRepository


def main() -> None:
    parser = argparse.ArgumentParser(description="Analyze pending mindlog captures with the configured AI provider")
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum pending captures per batch (defaults to ANALYSIS_BATCH_SIZE)",
    )
    parser.add_argument(
        "--until-empty",
        action="store_true",
        help="Keep analyzing in batches until no pending captures remain (stops when a batch makes no progress)",
    )
    args = parser.parse_args()

    settings = get_settings()
    logger = init_logger("analyzer", settings.logging.directory, settings.logging.level)
    if not settings.ai.configured:
        logger.error("AI provider %s is not configured (set AI_API_KEY)", settings.ai.provider)
        sys.exit(1)

    repo = MemoryRepository(settings.storage.database_path)
    client = create_ai_client(settings.ai, logger)
    analyzer = CaptureAnalyzer(client, repo, settings.analyzer, logger)
    logger.info("Analyzer backend: %s", client.provider_name)

    batch_size = max(1, int(args.limit)) if args.limit is not None else settings.analyzer.batch_size
    total = BatchStats()

    while True:
        stats = analyzer.run_batch(limit=batch_size)
        total.analyzed += stats.analyzed
        total.skipped += stats.skipped
        total.failed += stats.failed

        if not args.until_empty or repo.pending_count() == 0:
            break
        if stats.analyzed == 0 and stats.skipped == 0:
            # Every capture in the batch failed; the same ones would come back next round.
            logger.warning("Batch made no progress; stopping this run")
            break

    logger.info(
        "Analyzer finished: analyzed=%s skipped=%s failed=%s pending=%s",
        total.analyzed,
        total.skipped,
        total.failed,
        repo.pending_count(),
    )


if __name__ == "__main__":
    main()
