from __future__ import annotations

from typing import Any

from .ai_client import AIClient, decode_json, post_json, raise_for_status
from .config import AISettings
from .errors import AIMalformedResponse, FrameExtractionError
from .frame_extractor import extract_frames

DEFAULT_BASE_URL = "https://api.anthropic.com"
API_VERSION = "2023-06-01"
VIDEO_FRAMES_PREFIX = "以下是从视频录屏中均匀提取的关键帧。请综合所有帧分析视频内容："
VIDEO_FALLBACK_PREFIX = "用户提供了一段视频录屏，但当前无法处理视频。请根据以下分析提示尽量提供帮助："


class ClaudeClient(AIClient):
    """Anthropic messages API over plain HTTP.

    The messages API has no video input: ``analyze_video`` sends evenly sampled key frames as
    several images, and falls back to a text-only prompt when ffmpeg cannot extract any.
    """

    provider_name = "claude"

    def __init__(self, settings: AISettings, log):
        self._settings = settings
        self._logger = log
        base_url = settings.base_url
        if not base_url or "localhost" in base_url:
            base_url = DEFAULT_BASE_URL
        self._url = f"{base_url.rstrip('/')}/v1/messages"

    def send_text(self, prompt: str) -> str:
        return self._messages([{"type": "text", "text": prompt}])

    def analyze_image(self, image_base64: str, prompt: str) -> str:
        return self._messages(
            [
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": "image/jpeg", "data": image_base64},
                },
                {"type": "text", "text": prompt},
            ]
        )

    def analyze_video(self, video_base64: str, prompt: str) -> str:
        try:
            frames = extract_frames(video_base64, self._logger)
        except FrameExtractionError as exc:
            self._logger.warning("Frame extraction failed (%s); falling back to a text prompt", exc)
            return self.send_text(f"{VIDEO_FALLBACK_PREFIX}\n\n{prompt}")

        content: list[dict[str, Any]] = [
            {"type": "image", "source": {"type": "base64", "media_type": "image/jpeg", "data": frame}}
            for frame in frames
        ]
        content.append({"type": "text", "text": f"{VIDEO_FRAMES_PREFIX}\n\n{prompt}"})
        return self._messages(content)

    def _messages(self, content: list[dict[str, Any]]) -> str:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self._settings.api_key or "",
            "anthropic-version": API_VERSION,
        }
        payload = {
            "model": self._settings.model,
            "max_tokens": self._settings.max_tokens,
            "temperature": self._settings.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        res = post_json(
            self._url, headers=headers, payload=payload, timeout=self._settings.timeout_seconds, provider="claude"
        )
        raise_for_status(res, self.provider_name)
        data = decode_json(res, self.provider_name)

        parts = [
            str(block.get("text") or "")
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        if not parts:
            raise AIMalformedResponse("Claude response has no text blocks")
        return "".join(parts)
