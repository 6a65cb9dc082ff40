from __future__ import annotations

import argparse
import sys
from datetime import datetime

from mindlog.ai_client import AICell, create_ai_client
from mindlog.config import get_settings
from mindlog.errors import NoActivityError
from mindlog.logging_utils import init_logger
from mindlog.storage import MemoryRepository
from mindlog.summary_generator import SummaryGenerator


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a mindlog daily, weekly or monthly summary")
    period = parser.add_mutually_exclusive_group()
    period.add_argument("--date", help="Daily summary for YYYY-MM-DD (defaults to today)")
    period.add_argument("--weekly", metavar="START", help="Weekly summary for the 7 days starting YYYY-MM-DD")
    period.add_argument("--monthly", metavar="YYYY-MM", help="Monthly summary")
    parser.add_argument("--no-ai", action="store_true", help="Use the template instead of the AI provider")
    args = parser.parse_args()

    settings = get_settings()
    logger = init_logger("summarizer", settings.logging.directory, settings.logging.level)
    repo = MemoryRepository(settings.storage.database_path)

    cell = AICell()
    if not args.no_ai and settings.summary.enable_ai and settings.ai.configured:
        cell.set(create_ai_client(settings.ai, logger))

    generator = SummaryGenerator(
        repo,
        settings.storage.memory_root,
        cell,
        settings.timezone,
        logger,
        enable_ai=settings.summary.enable_ai and not args.no_ai,
    )

    try:
        if args.weekly:
            summary = generator.generate_weekly(args.weekly)
        elif args.monthly:
            year, month = (int(part) for part in args.monthly.split("-", 1))
            summary = generator.generate_monthly(year, month)
        else:
            target_date = args.date or datetime.now(tz=settings.timezone).strftime("%Y-%m-%d")
            summary = generator.generate_daily(target_date)
    except NoActivityError as exc:
        logger.warning("%s", exc)
        sys.exit(1)

    logger.info("Summary saved to %s", settings.storage.memory_root / summary.markdown_path)


if __name__ == "__main__":
    main()
