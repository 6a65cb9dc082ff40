from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from mindlog.chunker import Chunker
from mindlog.config import ChunkSettings
from mindlog.errors import AIUnreachable
from mindlog.index_manager import IndexManager

DOC = "---\nid: activity-test-0001\n---\n# VSCode中编写代码\n\n## 📋 活动总结\n\n在VSCode中花费了10分钟。\n"


@pytest.fixture
def manager(repo, memory_root, log):
    return IndexManager(repo, memory_root, Chunker(ChunkSettings()), log)


def write(root, relative, content):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class TestSync:
    def test_first_sync_indexes_documents(self, manager, repo, memory_root):
        write(memory_root, "activities/2024-03-15/activity-001.md", DOC)
        write(memory_root, "notes.txt", "ignored")

        stats = manager.sync()

        assert stats.total == 1
        assert stats.indexed == 1
        assert stats.new_chunks == 1
        chunks = repo.all_chunks()
        assert chunks[0].file_path == "activities/2024-03-15/activity-001.md"
        assert "活动总结" in chunks[0].text

    def test_unchanged_file_is_skipped(self, manager, memory_root):
        write(memory_root, "activities/2024-03-15/activity-001.md", DOC)
        manager.sync()
        stats = manager.sync()
        assert (stats.indexed, stats.skipped) == (0, 1)

    def test_changed_file_replaces_chunks(self, manager, repo, memory_root):
        path = write(memory_root, "projects/mindlog.md", "# mindlog\n\nfirst version")
        manager.sync()
        path.write_text("# mindlog\n\nsecond version", encoding="utf-8")

        stats = manager.sync()

        assert stats.indexed == 1
        texts = [chunk.text for chunk in repo.chunks_for_file("projects/mindlog.md")]
        assert texts == ["# mindlog\n\nsecond version"]

    def test_empty_file_counts_as_indexed(self, manager, repo, memory_root):
        write(memory_root, "habits/empty.md", "")
        stats = manager.sync()
        assert (stats.indexed, stats.new_chunks) == (1, 0)
        assert repo.indexed_paths() == ["habits/empty.md"]

    def test_deleted_file_is_purged(self, manager, repo, memory_root):
        path = write(memory_root, "projects/gone.md", "# gone\n\ncontent")
        manager.sync()
        path.unlink()

        manager.sync()

        assert repo.indexed_paths() == []
        assert repo.all_chunks() == []

    def test_missing_root(self, repo, tmp_path, log):
        manager = IndexManager(repo, tmp_path / "nowhere", Chunker(ChunkSettings()), log)
        assert manager.sync().total == 0

    def test_activity_documents_are_linked(self, manager, repo, memory_root, save_session, base_time):
        session = save_session("VSCode", base_time)
        write(memory_root, session.markdown_path, DOC)

        manager.sync()

        assert repo.all_chunks()[0].activity_id == session.id
        assert repo.get_activity(session.id, with_entries=False).indexed


class TestEmbeddings:
    @pytest.fixture
    def embedder(self):
        client = MagicMock()
        client.model = "test-embed"
        client.embed_batch.side_effect = lambda texts: [[1.0, 0.0] for _ in texts]
        return client

    def test_vectors_are_stored_and_cached(self, repo, memory_root, log, embedder):
        manager = IndexManager(repo, memory_root, Chunker(ChunkSettings()), log, embedder=embedder)
        write(memory_root, "a.md", "shared content")
        write(memory_root, "b.md", "shared content")

        manager.sync()

        assert embedder.embed_batch.call_count == 1
        assert all(chunk.embedding == [1.0, 0.0] for chunk in repo.all_chunks())
        assert repo.get_cached_embedding(repo.all_chunks()[0].hash, "test-embed") == [1.0, 0.0]

    def test_embedding_failure_is_retried_next_sync(self, repo, memory_root, log, embedder):
        embedder.embed_batch.side_effect = [AIUnreachable("down"), [[0.5, 0.5]]]
        manager = IndexManager(repo, memory_root, Chunker(ChunkSettings()), log, embedder=embedder)
        write(memory_root, "a.md", "content")

        assert manager.sync().failed == 1
        assert repo.indexed_paths() == []

        assert manager.sync().indexed == 1
        assert repo.all_chunks()[0].embedding == [0.5, 0.5]

    def test_keyword_only_index_is_embedded_once_an_embedder_exists(self, repo, memory_root, log, embedder):
        write(memory_root, "a.md", "content")
        IndexManager(repo, memory_root, Chunker(ChunkSettings()), log).sync()
        assert repo.all_chunks()[0].embedding is None

        manager = IndexManager(repo, memory_root, Chunker(ChunkSettings()), log, embedder=embedder)
        assert manager.sync().indexed == 1
        assert repo.all_chunks()[0].embedding == [1.0, 0.0]

        assert manager.sync().skipped == 1
        assert embedder.embed_batch.call_count == 1

    def test_sync_without_embedder_keeps_vectors(self, repo, memory_root, log, embedder):
        write(memory_root, "a.md", "content")
        IndexManager(repo, memory_root, Chunker(ChunkSettings()), log, embedder=embedder).sync()

        stats = IndexManager(repo, memory_root, Chunker(ChunkSettings()), log).sync()

        assert stats.skipped == 1
        assert repo.all_chunks()[0].embedding == [1.0, 0.0]

    def test_changing_embedding_model_reindexes(self, repo, memory_root, log, embedder):
        write(memory_root, "a.md", "content")
        IndexManager(repo, memory_root, Chunker(ChunkSettings()), log, embedder=embedder).sync()
        embedder.model = "other-embed"

        stats = IndexManager(repo, memory_root, Chunker(ChunkSettings()), log, embedder=embedder).sync()

        assert stats.indexed == 1
        assert repo.get_file_state("a.md")[1] == "other-embed"


class TestRelink:
    def test_document_indexed_before_its_session_is_linked_later(
        self, manager, repo, memory_root, save_session, base_time
    ):
        path = "activities/2024-03-15/activity-test-0001.md"
        write(memory_root, path, DOC)
        manager.sync()
        assert repo.all_chunks()[0].activity_id is None

        session = save_session("VSCode", base_time, markdown_path=path)
        stats = manager.sync()

        assert stats.skipped == 1
        assert [chunk.activity_id for chunk in repo.chunks_for_file(path)] == [session.id]
        assert repo.get_activity(session.id, with_entries=False).indexed

    def test_linked_chunks_are_left_alone(self, manager, repo, memory_root, save_session, base_time):
        session = save_session("VSCode", base_time)
        write(memory_root, session.markdown_path, DOC)
        manager.sync()

        assert repo.link_document_chunks(session.markdown_path, "activity-other") == 0
        assert repo.all_chunks()[0].activity_id == session.id
