from __future__ import annotations

from typing import List, Sequence, Tuple

from .config import ChunkSettings
from .models import MemoryChunk
from .utils import hash_text

_CJK_RANGES = (
    (0x4E00, 0x9FFF),
    (0x3400, 0x4DBF),
    (0x20000, 0x2A6DF),
    (0x2A700, 0x2B73F),
    (0x2B740, 0x2B81F),
    (0x2B820, 0x2CEAF),
    (0xF900, 0xFAFF),
    (0x2F800, 0x2FA1F),
)


def is_cjk(ch: str) -> bool:
    code = ord(ch)
    return any(low <= code <= high for low, high in _CJK_RANGES)


def estimate_tokens(text: str) -> int:
    """Cheap token estimate: one per CJK character, one per ASCII alphanumeric word."""
    tokens = 0
    in_word = False
    for ch in text:
        if is_cjk(ch):
            tokens += 1
            in_word = False
        elif ch.isascii() and ch.isalnum():
            if not in_word:
                tokens += 1
                in_word = True
        else:
            in_word = False
    return tokens


def frontmatter_end(lines: Sequence[str]) -> int:
    """Index of the first body line; 0 when there is no closed front-matter block."""
    if not lines or lines[0].strip() != "---":
        return 0
    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            return index + 1
    return 0


class Chunker:
    def __init__(self, settings: ChunkSettings):
        self._settings = settings

    def chunk(self, markdown: str) -> List[MemoryChunk]:
        lines = markdown.splitlines()
        body_start = frontmatter_end(lines)
        body = lines[body_start:]

        chunks: List[MemoryChunk] = []
        cursor = 0
        while cursor < len(body):
            text, end = self._collect(body, cursor)
            if text:
                chunks.append(
                    MemoryChunk(
                        start_line=body_start + cursor + 1,
                        end_line=body_start + end,
                        text=text,
                        hash=hash_text(text),
                    )
                )
            if end >= len(body):
                break

            next_cursor = end - self._overlap_lines(body, cursor, end)
            if next_cursor <= cursor:
                next_cursor = end
            cursor = next_cursor
        return chunks

    def _collect(self, lines: Sequence[str], start: int) -> Tuple[str, int]:
        target = self._settings.target_tokens
        collected: List[str] = []
        tokens = 0
        end = start
        for index in range(start, len(lines)):
            line_tokens = estimate_tokens(lines[index])
            if collected and tokens + line_tokens > target and tokens >= self._settings.min_tokens:
                break
            collected.append(lines[index])
            tokens += line_tokens
            end = index + 1
            if tokens >= target:
                break
        return "\n".join(collected).strip(), end

    def _overlap_lines(self, lines: Sequence[str], start: int, end: int) -> int:
        budget = self._settings.overlap_tokens
        tokens = 0
        count = 0
        for index in range(end - 1, start - 1, -1):
            line_tokens = estimate_tokens(lines[index])
            if tokens + line_tokens > budget:
                break
            tokens += line_tokens
            count += 1
        return count
