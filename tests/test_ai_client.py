from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest
import requests

from mindlog.ai_client import AICell, create_ai_client, decode_json, post_json, raise_for_status
from mindlog.claude_client import VIDEO_FALLBACK_PREFIX, VIDEO_FRAMES_PREFIX, ClaudeClient
from mindlog.config import AISettings
from mindlog.errors import (
    AIMalformedResponse,
    AIRateLimited,
    AIServerError,
    AITimeout,
    AIUnauthorized,
    AIUnreachable,
    AnalysisError,
    FrameExtractionError,
)
from mindlog.openai_client import OpenAICompatibleClient

LOG = logging.getLogger("mindlog.tests.ai")


def response(status=200, payload=None, text=""):
    res = MagicMock()
    res.status_code = status
    res.text = text
    if isinstance(payload, Exception):
        res.json.side_effect = payload
    else:
        res.json.return_value = payload
    return res


def chat_payload(content):
    return {"choices": [{"message": {"content": content}}]}


class TestTransportErrors:
    @patch("mindlog.ai_client.requests.post", side_effect=requests.Timeout("read timeout"))
    def test_timeout(self, _post):
        with pytest.raises(AITimeout):
            post_json("http://x", headers={}, payload={}, timeout=1, provider="test")

    @patch("mindlog.ai_client.requests.post", side_effect=requests.ConnectionError("refused"))
    def test_connection_error(self, _post):
        with pytest.raises(AIUnreachable):
            post_json("http://x", headers={}, payload={}, timeout=1, provider="test")

    @pytest.mark.parametrize(
        "status,error",
        [(401, AIUnauthorized), (403, AIUnauthorized), (429, AIRateLimited), (500, AIServerError),
         (503, AIServerError), (404, AIMalformedResponse)],
    )
    def test_status_mapping(self, status, error):
        with pytest.raises(error):
            raise_for_status(response(status), "test")

    def test_success_passes(self):
        raise_for_status(response(200), "test")

    def test_non_json_body(self):
        with pytest.raises(AIMalformedResponse):
            decode_json(response(200, ValueError("no json"), text="<html>"), "test")


class TestAnalysisErrorKinds:
    @pytest.mark.parametrize(
        "error,kind",
        [
            (AITimeout("t"), "timeout"),
            (AIRateLimited("r"), "rate_limited"),
            (AIMalformedResponse("m"), "malformed_response"),
            (AIUnreachable("u"), "unreachable"),
            (AIUnauthorized("a"), "unreachable"),
            (AIServerError("s"), "unreachable"),
        ],
    )
    def test_from_ai_error(self, error, kind):
        assert AnalysisError.from_ai_error(error).kind == kind

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            AnalysisError("exploded", "analysis failed")


class TestAICell:
    def test_get_set(self):
        cell = AICell()
        assert not cell.is_connected()
        client = MagicMock()
        cell.set(client)
        assert cell.get() is client
        assert cell.is_connected()

    def test_snapshot_survives_swap(self):
        first, second = MagicMock(), MagicMock()
        cell = AICell(first)
        snapshot = cell.get()
        cell.set(second)
        assert snapshot is first
        assert cell.get() is second


class TestFactory:
    def test_openai(self):
        client = create_ai_client(AISettings(provider="openai", model="qwen2-vl"), LOG)
        assert isinstance(client, OpenAICompatibleClient)

    def test_claude(self):
        client = create_ai_client(AISettings(provider="claude", api_key="k", model="claude-model"), LOG)
        assert isinstance(client, ClaudeClient)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_ai_client(AISettings(provider="watson"), LOG)


class TestOpenAICompatibleClient:
    @pytest.fixture
    def client(self):
        return OpenAICompatibleClient(AISettings(model="qwen2-vl", api_key="secret"), LOG)

    @patch("mindlog.ai_client.requests.post")
    def test_send_text(self, post, client):
        post.return_value = response(200, chat_payload("pong"))
        assert client.send_text("ping") == "pong"
        url = post.call_args.args[0]
        kwargs = post.call_args.kwargs
        assert url == "http://localhost:1234/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert "response_format" not in kwargs["json"]

    @patch("mindlog.ai_client.requests.post")
    def test_image_requests_json_format(self, post, client):
        post.return_value = response(200, chat_payload("{}"))
        client.analyze_image("aGVsbG8=", "describe")
        content = post.call_args.kwargs["json"]["messages"][0]["content"]
        assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,aGVsbG8="
        assert post.call_args.kwargs["json"]["response_format"] == {"type": "json_object"}

    @patch("mindlog.ai_client.requests.post")
    def test_rejected_response_format_is_retried_plain(self, post, client):
        post.side_effect = [response(400, text="unsupported"), response(200, chat_payload("{}"))]
        assert client.analyze_image("aGVsbG8=", "describe") == "{}"
        assert post.call_count == 2
        assert "response_format" not in post.call_args.kwargs["json"]

    @patch("mindlog.ai_client.requests.post")
    def test_structured_content_is_joined(self, post, client):
        post.return_value = response(200, chat_payload([{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]))
        assert client.send_text("x") == "a\nb"

    @patch("mindlog.ai_client.requests.post")
    def test_missing_choices(self, post, client):
        post.return_value = response(200, {"choices": []})
        with pytest.raises(AIMalformedResponse):
            client.send_text("x")

    @patch("mindlog.openai_client.requests.get")
    def test_model_autodetect(self, get):
        get.return_value = response(200, {"data": [{"id": "llava-1.6"}]})
        client = OpenAICompatibleClient(AISettings(model="local-model"), LOG)
        assert client._model == "llava-1.6"


class TestClaudeClient:
    @patch("mindlog.ai_client.requests.post")
    def test_text(self, post):
        post.return_value = response(200, {"content": [{"type": "text", "text": "你好"}]})
        client = ClaudeClient(AISettings(provider="claude", api_key="k", model="claude-model"), LOG)
        assert client.send_text("hi") == "你好"
        assert post.call_args.args[0] == "https://api.anthropic.com/v1/messages"
        assert post.call_args.kwargs["headers"]["x-api-key"] == "k"

    @patch("mindlog.ai_client.requests.post")
    @patch("mindlog.claude_client.extract_frames", return_value=["RjE=", "RjI=", "RjM="])
    def test_video_is_sent_as_key_frames(self, _extract, post):
        post.return_value = response(200, {"content": [{"type": "text", "text": "{}"}]})
        client = ClaudeClient(AISettings(provider="claude", api_key="k"), LOG)

        assert client.analyze_video("AAAA", "describe") == "{}"

        content = post.call_args.kwargs["json"]["messages"][0]["content"]
        assert [block["type"] for block in content] == ["image", "image", "image", "text"]
        assert content[0]["source"]["data"] == "RjE="
        assert content[-1]["text"].startswith(VIDEO_FRAMES_PREFIX)
        assert content[-1]["text"].endswith("describe")

    @patch("mindlog.ai_client.requests.post")
    @patch("mindlog.claude_client.extract_frames", side_effect=FrameExtractionError("ffmpeg not found on PATH"))
    def test_video_falls_back_to_text(self, _extract, post):
        post.return_value = response(200, {"content": [{"type": "text", "text": "ok"}]})
        client = ClaudeClient(AISettings(provider="claude", api_key="k"), LOG)

        assert client.analyze_video("AAAA", "describe") == "ok"

        content = post.call_args.kwargs["json"]["messages"][0]["content"]
        assert len(content) == 1
        assert content[0]["type"] == "text"
        assert content[0]["text"].startswith(VIDEO_FALLBACK_PREFIX)
