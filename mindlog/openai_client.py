from __future__ import annotations

from typing import Any

import requests

from .ai_client import AIClient, decode_json, post_json, raise_for_status
from .config import AISettings
from .errors import AIMalformedResponse


class OpenAICompatibleClient(AIClient):
    """Client for OpenAI-compatible HTTP APIs (OpenAI, LM Studio, vLLM, ...).

    Expected base URL: http://localhost:1234/v1
    Endpoint used:     POST {base_url}/chat/completions
    """

    provider_name = "openai"

    def __init__(self, settings: AISettings, log):
        self._settings = settings
        self._logger = log
        self._model = self._resolve_model(settings)

    def send_text(self, prompt: str) -> str:
        messages = [{"role": "user", "content": prompt}]
        return self._chat(messages, json_mode=False)

    def analyze_image(self, image_base64: str, prompt: str) -> str:
        return self._chat(self._media_messages(prompt, f"data:image/jpeg;base64,{image_base64}"), json_mode=True)

    def analyze_video(self, video_base64: str, prompt: str) -> str:
        return self._chat(self._media_messages(prompt, f"data:video/mp4;base64,{video_base64}"), json_mode=True)

    def _media_messages(self, prompt: str, data_url: str) -> list[dict[str, Any]]:
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }
        ]

    def _chat(self, messages: list[dict[str, Any]], *, json_mode: bool) -> str:
        url = f"{self._settings.base_url.rstrip('/')}/chat/completions"
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"

        payload: dict[str, Any] = {
            "model": self._model,
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
            "stream": False,
            "messages": messages,
        }

        if json_mode:
            # Ask for strict JSON where supported; servers that reject the field get one plain retry.
            payload_with_format = dict(payload)
            payload_with_format["response_format"] = {"type": "json_object"}
            res = self._post(url, headers, payload_with_format)
            if res.status_code in {400, 422}:
                self._logger.debug("response_format rejected (HTTP %s); retrying without it", res.status_code)
                res = self._post(url, headers, payload)
        else:
            res = self._post(url, headers, payload)

        raise_for_status(res, self.provider_name)
        data = decode_json(res, self.provider_name)
        return _extract_text(data)

    def _post(self, url: str, headers: dict[str, str], payload: dict[str, Any]) -> requests.Response:
        return post_json(
            url, headers=headers, payload=payload, timeout=self._settings.timeout_seconds, provider=self.provider_name
        )

    def _resolve_model(self, settings: AISettings) -> str:
        configured = (settings.model or "").strip()
        if configured and configured.lower() not in {"local-model", "auto"}:
            return configured

        # Auto-detect via the models endpoint of local servers.
        try:
            url = f"{settings.base_url.rstrip('/')}/models"
            res = requests.get(url, timeout=min(10.0, settings.timeout_seconds))
            if res.status_code >= 400:
                self._logger.warning("Model discovery failed (HTTP %s)", res.status_code)
                return configured or "local-model"
            models = res.json().get("data")
            if isinstance(models, list) and models:
                first = models[0]
                if isinstance(first, dict) and first.get("id"):
                    model_id = str(first["id"])
                    self._logger.info("Auto-selected AI_MODEL=%s", model_id)
                    return model_id
        except (requests.RequestException, ValueError) as exc:
            self._logger.warning("Model discovery failed: %s", exc)

        return configured or "local-model"


def _extract_text(data: dict[str, Any]) -> str:
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise AIMalformedResponse("Response has no choices")
    content = (choices[0].get("message") or {}).get("content")

    if isinstance(content, list):
        # Some servers return structured content; join the text parts.
        parts = [
            str(item.get("text") or "")
            for item in content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        content = "\n".join(part for part in parts if part)

    if not isinstance(content, str):
        raise AIMalformedResponse("Response message has no text content")
    return content
