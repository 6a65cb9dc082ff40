from __future__ import annotations

import argparse

from mindlog.chunker import Chunker
from mindlog.config import get_settings
from mindlog.embeddings import create_embedding_client
from mindlog.hybrid_search import HybridSearch
from mindlog.index_manager import IndexManager
from mindlog.logging_utils import init_logger
from mindlog.storage import MemoryRepository


def main() -> None:
    parser = argparse.ArgumentParser(description="Sync the mindlog memory index and search it")
    parser.add_argument("--query", "-q", help="Search text. Without it, only the index sync runs.")
    parser.add_argument("--keyword", action="store_true", help="Rank the query by keyword matching only; the sync still embeds")
    parser.add_argument("--limit", type=int, default=None, help="Maximum results (defaults to SEARCH_MAX_RESULTS)")
    parser.add_argument("--no-sync", action="store_true", help="Search the existing index without re-scanning")
    args = parser.parse_args()

    settings = get_settings()
    logger = init_logger("searcher", settings.logging.directory, settings.logging.level)
    repo = MemoryRepository(settings.storage.database_path)
    embedder = create_embedding_client(settings.embedding, logger)

    if not args.no_sync:
        index = IndexManager(
            repo, settings.storage.memory_root, Chunker(settings.chunking), logger, embedder=embedder
        )
        stats = index.sync()
        logger.info("Index sync: %s", stats.as_dict())

    if not args.query:
        return

    search = HybridSearch(repo, settings.search, logger, embedder=embedder)
    if args.keyword or embedder is None:
        results = search.keyword_search(args.query, args.limit)
    else:
        results = search.search(args.query)[: args.limit or settings.search.max_results]

    if not results:
        print("No results")
        return

    for key, hits in search.group_by_activity(results).items():
        print(f"== {key} ({len(hits)} hits)")
        for hit in hits:
            preview = " ".join(hit.text.split())[:160]
            print(f"  [{hit.score:.3f}] {hit.file_path}:{hit.start_line}-{hit.end_line}  {preview}")


if __name__ == "__main__":
    main()
