from __future__ import annotations

import base64
import json
import re
import sqlite3
import time
from typing import Any, Callable, List, Optional

from .ai_client import AIClient
from .config import AnalyzerSettings
from .errors import AIError, AnalysisError
from .models import ActivityType, Analysis, BatchStats, Capture, Category
from .storage import MemoryRepository
from .utils import utc_now

ANALYSIS_PROMPT = """
分析这段屏幕内容（截图或录制视频），提取以下信息。严格按JSON格式返回，不要包含其他文字：

{
  "application": "主要使用的应用名称",
  "activity_type": "work|entertainment|communication|learning|other",
  "activity_description": "用户在这段时间内做了什么（一句话，要具体）",
  "activity_category": "work|entertainment|communication|other",
  "activity_summary": "这段时间的活动概述（供时间线展示）",
  "key_elements": ["窗口标题", "文件名"],
  "ocr_text": "屏幕上的重要文本（简要提取）",
  "context_tags": ["标签1", "标签2"],
  "productivity_score": 5,
  "project_name": "项目名称或null",
  "accomplishments": ["完成了XX"]
}

要求：
1. activity_type 只能是 work/entertainment/communication/learning/other 之一
2. activity_category 只能是 work/entertainment/communication/other 之一
3. context_tags 给出2-5个描述当前上下文的标签
4. productivity_score: 1=纯娱乐 5=一般 10=深度工作
5. project_name: 能识别出用户在做的项目时填写项目名，否则返回null
6. accomplishments: 这段时间的成果要点（1-3条），没有明显成果则返回空数组

只返回JSON，不要其他内容。
""".strip()

DEFAULT_APPLICATION = "Unknown"
DEFAULT_PRODUCTIVITY = 5
# Failures worth waiting out; the rest fail the same way on every attempt.
RETRYABLE_KINDS = {"unreachable", "timeout", "rate_limited"}
_FENCE_JSON = re.compile(r"```json\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_FENCE_ANY = re.compile(r"```[^\n`]*\n?(.*?)```", re.DOTALL)
_NULL_WORDS = {"", "null", "none", "n/a", "无", "未知"}


def extract_json_payload(text: str) -> Optional[dict[str, Any]]:
    """Best-effort recovery of a JSON object from free-form model output.

    Tries, in order: the whole text, a ```json fenced block, any fenced block, and the
    first balanced ``{...}`` span. Returns None when every layer fails.
    """
    candidates: List[str] = [text.strip()]
    match = _FENCE_JSON.search(text)
    if match:
        candidates.append(match.group(1).strip())
    match = _FENCE_ANY.search(text)
    if match:
        candidates.append(match.group(1).strip())
    span = first_balanced_object(text)
    if span:
        candidates.append(span)

    for candidate in candidates:
        if not candidate:
            continue
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def first_balanced_object(text: str) -> Optional[str]:
    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        ch = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def parse_analysis(capture_id: int, text: str) -> Analysis:
    """Normalize model output into an Analysis, defaulting every missing field."""
    payload = extract_json_payload(text)
    if payload is None:
        payload = {}
        description = text.strip()[:200]
    else:
        description = _as_text(payload.get("activity_description") or payload.get("description"))

    application = _as_text(payload.get("application")) or DEFAULT_APPLICATION
    activity_type = ActivityType.parse(payload.get("activity_type", "other"))
    summary = _as_text(payload.get("activity_summary")) or description

    return Analysis(
        capture_id=capture_id,
        application=application,
        activity_type=activity_type,
        description=description,
        category=Category.parse(payload.get("activity_category", "other")),
        key_elements=_as_list(payload.get("key_elements")),
        ocr_text=_optional_text(payload.get("ocr_text")),
        context_tags=_unique(_as_list(payload.get("context_tags"))),
        productivity_score=_as_score(payload.get("productivity_score")),
        project_name=_optional_text(payload.get("project_name")),
        accomplishments=_as_list(payload.get("accomplishments")),
        summary=summary,
        raw_response=text,
        analyzed_at=utc_now(),
    )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    text = _as_text(value)
    if text.lower() in _NULL_WORDS:
        return None
    return text


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _unique(items: List[str]) -> List[str]:
    seen: List[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def _as_score(value: Any) -> int:
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        return DEFAULT_PRODUCTIVITY
    return max(1, min(10, score))


class CaptureAnalyzer:
    def __init__(
        self,
        client: AIClient,
        repository: MemoryRepository,
        settings: AnalyzerSettings,
        log,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client
        self._repo = repository
        self._settings = settings
        self._logger = log
        self._sleep = sleep

    def analyze(self, capture: Capture) -> Analysis:
        if not capture.path.exists():
            raise FileNotFoundError(capture.path)

        encoded = base64.b64encode(capture.path.read_bytes()).decode("ascii")
        try:
            if capture.is_video:
                text = self._client.analyze_video(encoded, ANALYSIS_PROMPT)
            else:
                text = self._client.analyze_image(encoded, ANALYSIS_PROMPT)
        except AIError as exc:
            raise AnalysisError.from_ai_error(exc) from exc

        analysis = parse_analysis(capture.id or -1, text or "")
        if not analysis.description:
            self._logger.warning("Capture %s: model output had no description", capture.id)
        return analysis

    def analyze_with_retry(self, capture: Capture) -> Analysis:
        attempts = self._settings.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self.analyze(capture)
            except AnalysisError as exc:
                if attempt >= attempts or exc.kind not in RETRYABLE_KINDS:
                    raise
                self._logger.warning(
                    "Analysis of capture %s failed (%s, attempt %s/%s): %s. Retrying in %.1fs",
                    capture.id,
                    exc.kind,
                    attempt,
                    attempts,
                    exc,
                    self._settings.retry_sleep_seconds,
                )
                self._sleep(self._settings.retry_sleep_seconds)
        raise AnalysisError("unreachable", f"Capture {capture.id} was never attempted")

    def run_batch(self, limit: int | None = None) -> BatchStats:
        stats = BatchStats()
        pending = self._repo.pending_captures(limit=limit or self._settings.batch_size)
        if not pending:
            self._logger.debug("No pending captures to analyze")
            return stats

        self._logger.info("Analyzing %s pending captures", len(pending))
        for index, capture in enumerate(pending, start=1):
            try:
                analysis = self.analyze_with_retry(capture)
            except FileNotFoundError:
                self._logger.warning("Capture file missing, skipping: %s", capture.path)
                self._repo.mark_analyzed(capture.id)
                stats.skipped += 1
                continue
            except AnalysisError as exc:
                self._logger.error(
                    "Capture %s/%s (id=%s) failed (%s): %s", index, len(pending), capture.id, exc.kind, exc
                )
                self._fail(capture, stats)
                continue
            except OSError as exc:
                self._logger.error("Capture %s could not be read: %s", capture.path, exc)
                self._fail(capture, stats)
                continue

            try:
                self._repo.save_analysis(analysis)
            except sqlite3.Error as exc:
                self._logger.error("Analysis of capture %s was not saved: %s", capture.id, exc)
                stats.failed += 1
                continue
            stats.analyzed += 1
            self._logger.info(
                "Capture %s/%s analyzed (id=%s) -> %s / %s",
                index,
                len(pending),
                capture.id,
                analysis.application,
                analysis.description,
            )
        return stats

    def _fail(self, capture: Capture, stats: BatchStats) -> None:
        stats.failed += 1
        try:
            self._repo.record_failure(capture.id)
        except sqlite3.Error as exc:
            self._logger.error("Could not record failure of capture %s: %s", capture.id, exc)
