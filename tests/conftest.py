"""Shared test fixtures for mindlog."""

from __future__ import annotations

import itertools
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from mindlog.ai_client import AIClient
from mindlog.models import ActivitySession, ActivityType, Analysis, AnalyzedCapture, Category
from mindlog.storage import MemoryRepository

BASE_TIME = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


class FakeAIClient(AIClient):
    """Scripted AI client: pops queued responses, raising any queued exception."""

    provider_name = "fake"

    def __init__(self, responses=None, default: str = "{}"):
        self.responses = list(responses or [])
        self.default = default
        self.calls: list[tuple[str, str]] = []

    def _next(self, kind: str, prompt: str) -> str:
        self.calls.append((kind, prompt))
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, Exception):
            raise item
        return item

    def send_text(self, prompt: str) -> str:
        return self._next("text", prompt)

    def analyze_image(self, image_base64: str, prompt: str) -> str:
        return self._next("image", prompt)

    def analyze_video(self, video_base64: str, prompt: str) -> str:
        return self._next("video", prompt)


@pytest.fixture
def fake_ai():
    return FakeAIClient


@pytest.fixture
def log():
    logger = logging.getLogger("mindlog.tests")
    logger.setLevel(logging.DEBUG)
    return logger


@pytest.fixture
def tz():
    return timezone.utc


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def repo(tmp_path):
    """Fresh database per test."""
    return MemoryRepository(tmp_path / "data" / "mindlog.db")


@pytest.fixture
def memory_root(tmp_path):
    root = tmp_path / "memory"
    root.mkdir()
    return root


@pytest.fixture
def make_analysis():
    """Build an Analysis with sensible defaults."""

    def _make(capture_id: int = 1, application: str = "VSCode", description: str = "编写代码", **overrides):
        fields = dict(
            capture_id=capture_id,
            application=application,
            activity_type=ActivityType.WORK,
            description=description,
            category=Category.WORK,
            context_tags=["编程"],
            summary=description,
        )
        fields.update(overrides)
        return Analysis(**fields)

    return _make


@pytest.fixture
def make_analyzed(make_analysis):
    """In-memory AnalyzedCapture ``seconds`` after BASE_TIME."""

    def _make(capture_id: int, seconds: float, application: str = "VSCode", description: str = "编写代码", **overrides):
        return AnalyzedCapture(
            capture_id=capture_id,
            path=Path(f"/captures/{capture_id}.png"),
            captured_at=BASE_TIME + timedelta(seconds=seconds),
            analysis=make_analysis(capture_id, application, description, **overrides),
        )

    return _make


@pytest.fixture
def seed_analysis(repo, tmp_path, make_analysis):
    """Register a capture file in the store and save its analysis; returns the capture id."""

    def _seed(seconds: float, application: str = "VSCode", description: str = "编写代码", **overrides) -> int:
        captured_at = BASE_TIME + timedelta(seconds=seconds)
        path = tmp_path / "captures" / f"{int(seconds)}.png"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"png")
        capture_id = repo.add_capture(path, captured_at)
        repo.save_analysis(make_analysis(capture_id, application, description, **overrides))
        return capture_id

    return _seed


@pytest.fixture
def save_session(repo):
    """Persist an activity session without captures; returns it."""
    counter = itertools.count(1)

    def _save(application: str, start: datetime, minutes: float = 10, **overrides) -> ActivitySession:
        index = next(counter)
        date = start.strftime("%Y-%m-%d")
        fields = dict(
            id=f"activity-test-{index:04d}",
            title=f"{application}中工作",
            date=date,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            application=application,
            category=Category.WORK,
            capture_ids=[],
            tags=[application],
            markdown_path=f"activities/{date}/activity-test-{index:04d}.md",
        )
        fields.update(overrides)
        session = ActivitySession(**fields)
        repo.save_activity(session)
        return session

    return _save
