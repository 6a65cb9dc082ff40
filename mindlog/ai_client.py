from __future__ import annotations

import threading
from typing import Any, Optional

import requests

from .config import AISettings
from .errors import (
    AIMalformedResponse,
    AIRateLimited,
    AIServerError,
    AITimeout,
    AIUnauthorized,
    AIUnreachable,
)


class AIClient:
    """Text/image/video capability shared by every pipeline stage.

    Variants wrap one vendor API each and raise the ``AIError`` family on failure.
    Media arguments are base64 strings without a data-URL prefix.
    """

    provider_name = "unknown"

    def send_text(self, prompt: str) -> str:
        raise NotImplementedError

    def analyze_image(self, image_base64: str, prompt: str) -> str:
        raise NotImplementedError

    def analyze_video(self, video_base64: str, prompt: str) -> str:
        raise NotImplementedError


class AICell:
    """Holds the optional current client; replaced at runtime without stopping readers.

    ``get`` hands out the reference under the lock, so a caller that is mid-request keeps
    using the client it started with while ``set`` installs a new one.
    """

    def __init__(self, client: Optional[AIClient] = None):
        self._lock = threading.Lock()
        self._client = client

    def get(self) -> Optional[AIClient]:
        with self._lock:
            return self._client

    def set(self, client: Optional[AIClient]) -> None:
        with self._lock:
            self._client = client

    def is_connected(self) -> bool:
        return self.get() is not None


def post_json(
    url: str,
    *,
    headers: dict[str, str],
    payload: dict[str, Any],
    timeout: float,
    provider: str,
) -> requests.Response:
    """POST and translate transport failures into the AI error taxonomy."""
    try:
        res = requests.post(url, headers=headers, json=payload, timeout=timeout)
    except requests.Timeout as exc:
        raise AITimeout(f"{provider} request timed out: {exc}") from exc
    except requests.RequestException as exc:
        raise AIUnreachable(f"{provider} request failed: {exc}") from exc
    return res


def raise_for_status(res: requests.Response, provider: str) -> None:
    status = res.status_code
    if status < 400:
        return
    body = (res.text or "")[:500]
    if status in {401, 403}:
        raise AIUnauthorized(f"{provider} HTTP {status}: {body}")
    if status == 429:
        raise AIRateLimited(f"{provider} HTTP {status}: {body}")
    if status >= 500:
        raise AIServerError(f"{provider} HTTP {status}: {body}")
    raise AIMalformedResponse(f"{provider} HTTP {status}: {body}")


def decode_json(res: requests.Response, provider: str) -> dict[str, Any]:
    try:
        data = res.json()
    except ValueError as exc:
        raise AIMalformedResponse(f"{provider} returned non-JSON body: {res.text[:200]}") from exc
    if not isinstance(data, dict):
        raise AIMalformedResponse(f"{provider} returned unexpected payload type {type(data).__name__}")
    return data


def create_ai_client(settings: AISettings, log) -> AIClient:
    provider = settings.provider
    if provider == "openai":
        from .openai_client import OpenAICompatibleClient

        return OpenAICompatibleClient(settings, log)
    if provider == "claude":
        from .claude_client import ClaudeClient

        return ClaudeClient(settings, log)
    if provider == "gemini":
        from .gemini_client import GeminiClient

        return GeminiClient(settings, log)
    raise ValueError(f"Unsupported AI_PROVIDER '{provider}' (expected openai, claude or gemini)")
