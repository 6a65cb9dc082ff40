from __future__ import annotations

from typing import Any, List, Tuple

from .ai_client import decode_json, post_json, raise_for_status
from .config import EmbeddingSettings
from .errors import AIMalformedResponse


class EmbeddingClient:
    """Remote embeddings through an OpenAI-compatible ``/embeddings`` endpoint."""

    def __init__(self, settings: EmbeddingSettings, log, batch_size: int = 32):
        self._settings = settings
        self._logger = log
        self.batch_size = batch_size

    @property
    def model(self) -> str:
        return self._settings.model

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        results: List[List[float]] = []
        for start in range(0, len(texts), self.batch_size):
            results.extend(self._embed_chunk(texts[start : start + self.batch_size]))
        return results

    def _embed_chunk(self, texts: List[str]) -> List[List[float]]:
        headers = {"Content-Type": "application/json"}
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"
        res = post_json(
            f"{(self._settings.base_url or '').rstrip('/')}/embeddings",
            headers=headers,
            payload={"model": self._settings.model, "input": texts},
            timeout=self._settings.timeout_seconds,
            provider="embeddings",
        )
        raise_for_status(res, "embeddings")
        data = decode_json(res, "embeddings").get("data")
        if not isinstance(data, list) or len(data) != len(texts):
            raise AIMalformedResponse("Embedding response does not match the request size")
        return [vector for _, vector in sorted(_parse_item(position, item) for position, item in enumerate(data))]


def _parse_item(position: int, item: Any) -> Tuple[int, List[float]]:
    if not isinstance(item, dict) or not isinstance(item.get("embedding"), list):
        raise AIMalformedResponse(f"Embedding item {position} has no embedding list")
    index = item.get("index", position)
    if not isinstance(index, int):
        raise AIMalformedResponse(f"Embedding item {position} has a non-integer index")
    try:
        return index, [float(value) for value in item["embedding"]]
    except (TypeError, ValueError) as exc:
        raise AIMalformedResponse(f"Embedding item {position} has non-numeric values") from exc


def create_embedding_client(settings: EmbeddingSettings, log) -> EmbeddingClient | None:
    if not settings.enabled:
        log.info("Embeddings disabled; search uses keyword scores only")
        return None
    return EmbeddingClient(settings, log)
