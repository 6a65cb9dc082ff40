from __future__ import annotations

import pytest

from mindlog.chunker import Chunker, estimate_tokens, frontmatter_end, is_cjk
from mindlog.config import ChunkSettings
from mindlog.utils import hash_text


class TestTokenEstimate:
    @pytest.mark.parametrize(
        "text,expected",
        [("", 0), ("hello world", 2), ("你好", 2), ("abc中文def", 4), ("foo_bar-baz 42", 4), ("   ", 0)],
    )
    def test_estimate(self, text, expected):
        assert estimate_tokens(text) == expected

    def test_is_cjk(self):
        assert is_cjk("中")
        assert not is_cjk("a")
        assert not is_cjk("。")


class TestFrontmatter:
    def test_closed_block(self):
        assert frontmatter_end(["---", "id: x", "---", "# Title"]) == 3

    def test_no_block(self):
        assert frontmatter_end(["# Title", "---"]) == 0

    def test_unclosed_block(self):
        assert frontmatter_end(["---", "id: x", "# Title"]) == 0


class TestChunker:
    def test_small_document_with_frontmatter(self):
        content = "---\nid: activity-1\ntitle: test\n---\n# Title\n\nBody text"
        chunks = Chunker(ChunkSettings()).chunk(content)
        assert len(chunks) == 1
        chunk = chunks[0]
        assert chunk.text == "# Title\n\nBody text"
        assert (chunk.start_line, chunk.end_line) == (5, 7)
        assert chunk.hash == hash_text(chunk.text)

    def test_frontmatter_is_not_indexed(self):
        content = "---\nsecret_key: value\n---\nvisible"
        chunks = Chunker(ChunkSettings()).chunk(content)
        assert all("secret_key" not in chunk.text for chunk in chunks)

    def test_long_document_splits_with_overlap(self):
        lines = [f"line{i} alpha beta gamma" for i in range(10)]
        chunker = Chunker(ChunkSettings(target_tokens=10, overlap_tokens=4, min_tokens=5))
        chunks = chunker.chunk("\n".join(lines))

        assert len(chunks) > 1
        assert chunks[0].start_line == 1
        assert chunks[-1].end_line == 10
        for before, after in zip(chunks, chunks[1:]):
            assert after.start_line <= before.end_line
            assert after.start_line > before.start_line

    def test_without_overlap_chunks_tile_the_document(self):
        lines = [f"word{i} more words here" for i in range(12)]
        chunker = Chunker(ChunkSettings(target_tokens=8, overlap_tokens=0, min_tokens=4))
        chunks = chunker.chunk("\n".join(lines))
        covered = [line for chunk in chunks for line in range(chunk.start_line, chunk.end_line + 1)]
        assert covered == list(range(1, 13))

    def test_rechunking_is_idempotent(self):
        content = "\n".join(f"第{i}行 记录了一些中文内容 and english words" for i in range(40))
        chunker = Chunker(ChunkSettings(target_tokens=50, overlap_tokens=10, min_tokens=20))
        first = [chunk.hash for chunk in chunker.chunk(content)]
        second = [chunk.hash for chunk in chunker.chunk(content)]
        assert first == second

    def test_content_change_changes_hash(self):
        chunker = Chunker(ChunkSettings())
        assert chunker.chunk("alpha beta")[0].hash != chunker.chunk("alpha gamma")[0].hash

    def test_blank_document_has_no_chunks(self):
        assert Chunker(ChunkSettings()).chunk("\n\n   \n") == []
        assert Chunker(ChunkSettings()).chunk("") == []

    def test_terminates_with_zero_minimum(self):
        lines = [" ".join(f"w{j}" for j in range(30)) for _ in range(5)]
        chunker = Chunker(ChunkSettings(target_tokens=10, overlap_tokens=50, min_tokens=0))
        chunks = chunker.chunk("\n".join(lines))
        assert [chunk.start_line for chunk in chunks] == [1, 2, 3, 4, 5]
