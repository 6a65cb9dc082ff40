from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import List, Optional

from .chunker import Chunker
from .embeddings import EmbeddingClient
from .errors import AIError
from .models import MemoryChunk, SyncStats, TextChunk
from .storage import MemoryRepository
from .utils import hash_text

MARKDOWN_SUFFIXES = {".md", ".markdown"}


class IndexManager:
    """Keeps memory_chunks in step with the markdown tree under ``memory_root``."""

    def __init__(
        self,
        repository: MemoryRepository,
        memory_root: Path,
        chunker: Chunker,
        log,
        embedder: Optional[EmbeddingClient] = None,
    ):
        self._repo = repository
        self._root = memory_root
        self._chunker = chunker
        self._logger = log
        self._embedder = embedder

    def scan(self) -> List[Path]:
        if not self._root.exists():
            return []
        return sorted(
            path for path in self._root.rglob("*") if path.is_file() and path.suffix.lower() in MARKDOWN_SUFFIXES
        )

    def sync(self) -> SyncStats:
        stats = SyncStats()
        files = self.scan()
        stats.total = len(files)
        seen: set[str] = set()

        for path in files:
            relative = path.relative_to(self._root).as_posix()
            seen.add(relative)
            try:
                created = self.index_file(path, relative)
            except (OSError, UnicodeDecodeError, AIError, sqlite3.Error) as exc:
                self._logger.error("Failed to index %s: %s", relative, exc)
                stats.failed += 1
                continue
            if created is None:
                stats.skipped += 1
            else:
                stats.indexed += 1
                stats.new_chunks += created

        for stale in set(self._repo.indexed_paths()) - seen:
            self._logger.info("Removing index entries for deleted document %s", stale)
            self._repo.remove_file(stale)

        if stats.indexed or stats.failed:
            self._logger.info(
                "Index sync: total=%s indexed=%s skipped=%s failed=%s new_chunks=%s",
                stats.total,
                stats.indexed,
                stats.skipped,
                stats.failed,
                stats.new_chunks,
            )
        return stats

    def index_file(self, path: Path, relative: str) -> Optional[int]:
        """Re-chunk one document when its content changed; returns chunk count or None if unchanged."""
        content = path.read_text(encoding="utf-8")
        file_hash = hash_text(content)
        model = self._embedder.model if self._embedder is not None else None
        state = self._repo.get_file_state(relative)
        # Files indexed without vectors are embedded once an embedder is available.
        if state is not None and state[0] == file_hash and (model is None or state[1] == model):
            self._relink(relative)
            return None

        pieces = self._chunker.chunk(content)
        vectors = self._embed(pieces)
        activity_id = self._repo.activity_id_for_document(relative)
        prefix = hash_text(relative)
        chunks = [
            TextChunk(
                id=f"{prefix}-{index:04d}",
                file_path=relative,
                start_line=piece.start_line,
                end_line=piece.end_line,
                hash=piece.hash,
                text=piece.text,
                embedding=vector,
                activity_id=activity_id,
            )
            for index, (piece, vector) in enumerate(zip(pieces, vectors))
        ]

        stat = path.stat()
        self._repo.replace_file_chunks(
            relative, file_hash, stat.st_mtime, stat.st_size, chunks, embedding_model=model
        )
        if activity_id:
            self._repo.mark_activity_indexed(activity_id)
        self._logger.debug("Indexed %s (%s chunks)", relative, len(chunks))
        return len(chunks)

    def _relink(self, relative: str) -> None:
        """Attach chunks indexed before their activity row was committed."""
        activity_id = self._repo.activity_id_for_document(relative)
        if activity_id is None:
            return
        if self._repo.link_document_chunks(relative, activity_id):
            self._repo.mark_activity_indexed(activity_id)
            self._logger.info("Linked existing chunks of %s to activity %s", relative, activity_id)

    def _embed(self, pieces: List[MemoryChunk]) -> List[Optional[List[float]]]:
        if self._embedder is None:
            return [None] * len(pieces)

        model = self._embedder.model
        vectors: List[Optional[List[float]]] = [
            self._repo.get_cached_embedding(piece.hash, model) for piece in pieces
        ]
        missing = [index for index, vector in enumerate(vectors) if vector is None]
        if missing:
            fresh = self._embedder.embed_batch([pieces[index].text for index in missing])
            for index, vector in zip(missing, fresh):
                vectors[index] = vector
                self._repo.cache_embedding(pieces[index].hash, model, vector)
        return vectors
