from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest

from mindlog.chunker import Chunker
from mindlog.config import ChunkSettings, EmbeddingSettings
from mindlog.embeddings import EmbeddingClient, create_embedding_client
from mindlog.errors import AIMalformedResponse
from mindlog.index_manager import IndexManager

LOG = logging.getLogger("mindlog.tests.embeddings")
SETTINGS = EmbeddingSettings(base_url="http://localhost:8080/v1", model="embed-small")


def response(payload):
    res = MagicMock()
    res.status_code = 200
    res.text = ""
    res.json.return_value = payload
    return res


class TestEmbeddingClient:
    @patch("mindlog.ai_client.requests.post")
    def test_vectors_follow_response_index(self, post):
        post.return_value = response(
            {"data": [{"index": 1, "embedding": [0, 1]}, {"index": 0, "embedding": [1, 0]}]}
        )
        vectors = EmbeddingClient(SETTINGS, LOG).embed_batch(["a", "b"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert post.call_args.args[0] == "http://localhost:8080/v1/embeddings"
        assert post.call_args.kwargs["json"] == {"model": "embed-small", "input": ["a", "b"]}

    @patch("mindlog.ai_client.requests.post")
    def test_batches_are_split(self, post):
        post.side_effect = lambda *args, **kwargs: response(
            {"data": [{"embedding": [1.0]} for _ in kwargs["json"]["input"]]}
        )
        client = EmbeddingClient(SETTINGS, LOG, batch_size=2)
        assert len(client.embed_batch(["a", "b", "c"])) == 3
        assert post.call_count == 2

    @pytest.mark.parametrize(
        "data",
        [
            ["not an object"],
            [{"index": 0}],
            [{"index": 0, "embedding": "0.1,0.2"}],
            [{"index": "first", "embedding": [0.1]}],
            [{"index": 0, "embedding": ["x"]}],
            [{"embedding": [0.1]}, {"embedding": [0.2]}],
            {"embedding": [0.1]},
        ],
    )
    @patch("mindlog.ai_client.requests.post")
    def test_malformed_items(self, post, data):
        post.return_value = response({"data": data})
        with pytest.raises(AIMalformedResponse):
            EmbeddingClient(SETTINGS, LOG).embed_batch(["a"])

    @patch("mindlog.ai_client.requests.post")
    def test_malformed_items_fail_only_that_document(self, post, repo, memory_root, log):
        post.return_value = response({"data": ["x"]})
        (memory_root / "a.md").write_text("content", encoding="utf-8")
        manager = IndexManager(repo, memory_root, Chunker(ChunkSettings()), log, EmbeddingClient(SETTINGS, LOG))

        stats = manager.sync()

        assert (stats.total, stats.failed) == (1, 1)
        assert repo.indexed_paths() == []


def test_disabled_without_base_url():
    assert create_embedding_client(EmbeddingSettings(), LOG) is None
    assert isinstance(create_embedding_client(SETTINGS, LOG), EmbeddingClient)
