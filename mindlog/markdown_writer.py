from __future__ import annotations

from datetime import tzinfo
from pathlib import Path
from typing import Any

import yaml

from .ai_client import AICell
from .errors import AIError
from .models import ActivitySession
from .utils import write_document


def render_frontmatter(data: dict[str, Any]) -> str:
    body = yaml.safe_dump(data, allow_unicode=True, sort_keys=False, default_flow_style=False)
    return f"---\n{body.strip()}\n---"


class MarkdownWriter:
    """Writes the human-readable document for each activity session."""

    def __init__(self, memory_root: Path, ai_cell: AICell, timezone: tzinfo, log, enable_ai: bool = True):
        self._root = memory_root
        self._ai_cell = ai_cell
        self._timezone = timezone
        self._logger = log
        self._enable_ai = enable_ai

    def write_activity(self, session: ActivitySession) -> str:
        """Render and write the session document; returns the summary paragraph used."""
        summary = self._summarize(session)
        content = "\n\n".join(
            [
                self._frontmatter(session),
                f"# {session.title}",
                "## 📋 活动总结",
                summary,
                self._timeline(session),
            ]
        )
        path = write_document(self._root, session.markdown_path, content + "\n")
        self._logger.debug("Activity document written: %s", path)
        return summary

    def _frontmatter(self, session: ActivitySession) -> str:
        return render_frontmatter(
            {
                "id": session.id,
                "title": session.title,
                "start_time": self._local(session.start_time).isoformat(),
                "end_time": self._local(session.end_time).isoformat(),
                "duration_minutes": session.duration_minutes,
                "application": session.application,
                "category": session.category.value,
                "tags": list(session.tags),
                "captures": [
                    {
                        "id": entry.capture_id,
                        "timestamp": self._local(entry.captured_at).isoformat(),
                        "path": str(entry.path),
                        "analysis": entry.analysis.summary or entry.analysis.description,
                    }
                    for entry in session.entries
                ],
            }
        )

    def _summarize(self, session: ActivitySession) -> str:
        client = self._ai_cell.get() if self._enable_ai else None
        if client is not None:
            try:
                text = client.send_text(self._summary_prompt(session)).strip()
                if text:
                    return text
            except AIError as exc:
                self._logger.warning("AI summary failed for %s, using template: %s", session.id, exc)
        return template_activity_summary(session)

    def _summary_prompt(self, session: ActivitySession) -> str:
        lines = [
            f"- {self._local(entry.captured_at):%H:%M}: {entry.analysis.summary or entry.analysis.description}"
            for entry in session.entries
        ]
        return (
            "活动信息：\n"
            f"标题: {session.title}\n"
            f"应用: {session.application}\n"
            f"时长: {session.duration_minutes}分钟\n\n"
            "录制分析：\n"
            + "\n".join(lines)
            + "\n\n请用2-3句话总结这次活动的主要内容和目的。"
        )

    def _timeline(self, session: ActivitySession) -> str:
        if not session.entries:
            return "无录制记录。"
        parts = ["## 🎬 录制时间线"]
        for entry in session.entries:
            parts.append(f"### {self._local(entry.captured_at):%H:%M:%S}")
            parts.append(f"**分析**: {entry.analysis.summary or entry.analysis.description}")
            parts.append(f"**路径**: `{entry.path}`")
            parts.append("---")
        return "\n\n".join(parts)

    def _local(self, value):
        return value.astimezone(self._timezone)


def template_activity_summary(session: ActivitySession) -> str:
    return (
        f"在{session.application}中花费了{session.duration_minutes}分钟。"
        f"期间共{len(session.capture_ids)}个录制分段，主要活动包括：{session.title}。"
    )
