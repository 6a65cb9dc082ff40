from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence

from .config import SearchSettings
from .embeddings import EmbeddingClient
from .errors import AIError
from .models import SearchResult, TextChunk
from .storage import MemoryRepository

_KEYWORD_NORMALIZER = 1.0 + math.log(10.0)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def keyword_score(text: str, query: str) -> float:
    """Log-scaled occurrence count of ``query`` in ``text``; ten hits saturate at 1.0."""
    needle = query.strip().casefold()
    if not needle:
        return 0.0
    count = text.casefold().count(needle)
    if count == 0:
        return 0.0
    return min(1.0, (1.0 + math.log(count)) / _KEYWORD_NORMALIZER)


def activity_key_from_path(path: str) -> Optional[str]:
    parts = path.split("/")
    if len(parts) >= 3 and parts[0] == "activities":
        name = parts[2]
        if name.endswith(".md"):
            name = name[: -len(".md")]
        return f"{parts[1]}/{name}"
    return None


class HybridSearch:
    def __init__(
        self,
        repository: MemoryRepository,
        settings: SearchSettings,
        log,
        embedder: Optional[EmbeddingClient] = None,
    ):
        self._repo = repository
        self._settings = settings
        self._logger = log
        self._embedder = embedder

    def search(self, query: str) -> List[SearchResult]:
        query_vector = self._embed_query(query)
        results: List[SearchResult] = []
        for chunk in self._repo.all_chunks():
            result = self._score(chunk, query, query_vector)
            if result.score >= self._settings.min_similarity:
                results.append(result)
        results.sort(key=lambda item: item.score, reverse=True)
        return results[: self._settings.max_results]

    def keyword_search(self, query: str, limit: Optional[int] = None) -> List[SearchResult]:
        results = []
        for chunk in self._repo.all_chunks():
            score = keyword_score(chunk.text, query)
            if score > 0:
                results.append(_result(chunk, score=score, vector_score=0.0, keyword=score))
        results.sort(key=lambda item: item.score, reverse=True)
        return results[: limit or self._settings.max_results]

    def group_by_activity(self, results: List[SearchResult]) -> Dict[str, List[SearchResult]]:
        grouped: Dict[str, List[SearchResult]] = {}
        for result in results:
            key = result.activity_id or activity_key_from_path(result.file_path) or "unknown"
            grouped.setdefault(key, []).append(result)
        return grouped

    def _score(self, chunk: TextChunk, query: str, query_vector: Optional[List[float]]) -> SearchResult:
        keyword = keyword_score(chunk.text, query)
        if query_vector is None:
            # Without a query embedding the keyword signal is the whole score.
            return _result(chunk, score=keyword, vector_score=0.0, keyword=keyword)
        vector = cosine_similarity(query_vector, chunk.embedding or [])
        combined = self._settings.vector_weight * vector + self._settings.keyword_weight * keyword
        return _result(chunk, score=combined, vector_score=vector, keyword=keyword)

    def _embed_query(self, query: str) -> Optional[List[float]]:
        if self._embedder is None or not query.strip():
            return None
        try:
            return self._embedder.embed(query)
        except AIError as exc:
            self._logger.warning("Query embedding failed, using keyword scores only: %s", exc)
            return None


def _result(chunk: TextChunk, *, score: float, vector_score: float, keyword: float) -> SearchResult:
    return SearchResult(
        chunk_id=chunk.id,
        file_path=chunk.file_path,
        text=chunk.text,
        start_line=chunk.start_line,
        end_line=chunk.end_line,
        score=score,
        vector_score=vector_score,
        keyword_score=keyword,
        activity_id=chunk.activity_id,
    )
