from __future__ import annotations

import base64
import binascii
import io
from typing import Any

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from PIL import Image, UnidentifiedImageError

from .ai_client import AIClient
from .config import AISettings
from .errors import (
    AIError,
    AIMalformedResponse,
    AIRateLimited,
    AIServerError,
    AITimeout,
    AIUnauthorized,
    AIUnreachable,
)


class GeminiClient(AIClient):
    provider_name = "gemini"

    def __init__(self, settings: AISettings, log):
        self._settings = settings
        self._logger = log
        genai.configure(api_key=settings.api_key)
        model = settings.model if settings.model and settings.model != "local-model" else "gemini-1.5-flash"
        self._model = genai.GenerativeModel(model)
        self._generation_config = {
            "max_output_tokens": settings.max_tokens,
            "temperature": settings.temperature,
        }

    def send_text(self, prompt: str) -> str:
        return self._generate([prompt])

    def analyze_image(self, image_base64: str, prompt: str) -> str:
        raw = _decode(image_base64)
        try:
            with Image.open(io.BytesIO(raw)) as image:
                image.load()
                return self._generate([prompt, image])
        except UnidentifiedImageError as exc:
            raise AIMalformedResponse(f"Image payload could not be decoded: {exc}") from exc

    def analyze_video(self, video_base64: str, prompt: str) -> str:
        raw = _decode(video_base64)
        return self._generate([prompt, {"mime_type": "video/mp4", "data": raw}])

    def _generate(self, parts: list[Any]) -> str:
        try:
            response = self._model.generate_content(
                parts,
                generation_config=self._generation_config,
                request_options={"timeout": self._settings.timeout_seconds},
            )
        except AIError:
            raise
        except Exception as exc:
            raise self._translate(exc) from exc

        try:
            text = response.text
        except ValueError as exc:
            # Raised when the candidate was blocked or carries no text part.
            raise AIMalformedResponse(f"Gemini returned no text: {exc}") from exc
        return text or ""

    def _translate(self, exc: Exception) -> AIError:
        if self._is_rate_limited(exc):
            return AIRateLimited(str(exc))
        if isinstance(exc, (google_exceptions.DeadlineExceeded, TimeoutError)):
            return AITimeout(str(exc))
        if isinstance(exc, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
            return AIUnauthorized(str(exc))
        if isinstance(exc, google_exceptions.ServerError):
            return AIServerError(str(exc))
        if isinstance(exc, google_exceptions.InvalidArgument):
            return AIMalformedResponse(str(exc))
        self._logger.debug("Unclassified Gemini failure: %r", exc)
        return AIUnreachable(str(exc))

    def _is_rate_limited(self, exc: Exception) -> bool:
        # google.api_core.exceptions.ResourceExhausted maps to 429 in this context.
        if isinstance(exc, google_exceptions.ResourceExhausted):
            return True
        message = str(exc)
        return "429" in message or "Quota exceeded" in message or "rate limit" in message.lower()


def _decode(payload: str) -> bytes:
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AIMalformedResponse(f"Invalid base64 payload: {exc}") from exc
