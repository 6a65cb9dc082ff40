from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, tzinfo
from pathlib import Path
from typing import Dict, List, Optional

from .ai_client import AICell
from .errors import AIError, NoActivityError
from .markdown_writer import render_frontmatter
from .models import ActivitySession, Summary, SummaryType
from .storage import MemoryRepository
from .utils import utc_now, write_document

PERIOD_NAMES = {SummaryType.WEEKLY: "周", SummaryType.MONTHLY: "月"}


def summary_document_path(summary_type: SummaryType, key: str) -> str:
    return f"summaries/{summary_type.value}_summary/{key}.md"


class SummaryGenerator:
    """Builds period summaries from stored activity sessions.

    The AI capability is optional; without it (or when it fails) the content is a
    deterministic template of time per application and the chronological activity list.
    """

    def __init__(
        self,
        repository: MemoryRepository,
        memory_root: Path,
        ai_cell: AICell,
        timezone: tzinfo,
        log,
        enable_ai: bool = True,
    ):
        self._repo = repository
        self._root = memory_root
        self._ai_cell = ai_cell
        self._timezone = timezone
        self._logger = log
        self._enable_ai = enable_ai

    def generate_daily(self, day: str) -> Summary:
        activities = self._repo.activities_on(day)
        if not activities:
            raise NoActivityError(f"No activities recorded on {day}")

        accomplishments = self._repo.accomplishments_for_activities([a.id for a in activities])
        content = self._ai_content(self._daily_prompt(activities, accomplishments))
        if content is None:
            content = self.template_daily(activities, day)

        summary = Summary(
            id=f"summary-daily-{day}",
            summary_type=SummaryType.DAILY,
            date_start=day,
            date_end=day,
            content=content,
            activity_ids=[a.id for a in activities],
            project_ids=_distinct_projects(activities),
            markdown_path=summary_document_path(SummaryType.DAILY, day),
            created_at=utc_now(),
        )
        self._persist(summary, activities)
        return summary

    def generate_weekly(self, week_start: str) -> Summary:
        start = date.fromisoformat(week_start)
        return self.generate_range(SummaryType.WEEKLY, start, start + timedelta(days=6), key=week_start)

    def generate_monthly(self, year: int, month: int) -> Summary:
        last_day = calendar.monthrange(year, month)[1]
        return self.generate_range(
            SummaryType.MONTHLY, date(year, month, 1), date(year, month, last_day), key=f"{year:04d}-{month:02d}"
        )

    def generate_range(self, summary_type: SummaryType, start: date, end: date, key: str) -> Summary:
        activities = self._repo.activities_between_dates(start.isoformat(), end.isoformat())
        if not activities:
            raise NoActivityError(f"No activities recorded between {start} and {end}")

        daily: List[Summary] = []
        cursor = start
        while cursor <= end:
            existing = self._repo.get_summary(SummaryType.DAILY, cursor.isoformat())
            if existing is not None:
                daily.append(existing)
            cursor += timedelta(days=1)

        content = None
        if daily:
            content = self._ai_content(self._range_prompt(activities, daily, PERIOD_NAMES.get(summary_type, "")))
        if content is None:
            content = self.template_range(activities, start, end)

        summary = Summary(
            id=f"summary-{summary_type.value}-{start.isoformat()}",
            summary_type=summary_type,
            date_start=start.isoformat(),
            date_end=end.isoformat(),
            content=content,
            activity_ids=[a.id for a in activities],
            project_ids=_distinct_projects(activities),
            markdown_path=summary_document_path(summary_type, key),
            created_at=utc_now(),
        )
        self._persist(summary, activities)
        return summary

    def template_daily(self, activities: List[ActivitySession], day: str) -> str:
        total = sum(a.duration_minutes for a in activities)
        lines = [
            f"日期: {day}",
            f"总活动时间: {total}分钟",
            f"活动数: {len(activities)}",
            "",
            "### 应用使用",
            *self._app_breakdown(activities),
            "",
            "### 活动列表",
            *[
                f"- {self._clock(a.start_time)}-{self._clock(a.end_time)}: {a.title} ({a.application})"
                for a in activities
            ],
        ]
        return "\n".join(lines)

    def template_range(self, activities: List[ActivitySession], start: date, end: date) -> str:
        total = sum(a.duration_minutes for a in activities)
        per_day: Dict[str, int] = {}
        for activity in activities:
            per_day[activity.date] = per_day.get(activity.date, 0) + activity.duration_minutes
        lines = [
            f"时间范围: {start.isoformat()} ~ {end.isoformat()}",
            f"总活动时间: {total}分钟",
            f"活动数: {len(activities)}",
            f"活跃天数: {len(per_day)}",
            "",
            "### 应用使用",
            *self._app_breakdown(activities),
            "",
            "### 每日时长",
            *[f"- {day}: {minutes}分钟" for day, minutes in sorted(per_day.items())],
        ]
        return "\n".join(lines)

    def _app_breakdown(self, activities: List[ActivitySession]) -> List[str]:
        per_app: Dict[str, int] = {}
        for activity in activities:
            per_app[activity.application] = per_app.get(activity.application, 0) + activity.duration_minutes
        ranked = sorted(per_app.items(), key=lambda item: (-item[1], item[0]))
        return [f"- {app}: {minutes}分钟" for app, minutes in ranked]

    def _daily_prompt(self, activities: List[ActivitySession], accomplishments: List[str]) -> str:
        total = sum(a.duration_minutes for a in activities)
        listing = "\n".join(
            f"- {a.application} ({self._clock(a.start_time)}-{self._clock(a.end_time)}): "
            f"{a.title} ({a.duration_minutes}分钟, 类别:{a.category.value})"
            for a in activities
        )
        prompt = f"基于今天的活动记录生成日总结。\n\n## 今日活动（共{len(activities)}个，总计{total}分钟）\n{listing}\n"
        if accomplishments:
            prompt += "\n## 今日成果\n" + "\n".join(f"- {item}" for item in accomplishments) + "\n"
        prompt += (
            "\n请生成简洁的日总结，包含：\n"
            "1. 时间分配概览（各类活动占比）\n"
            "2. 主要完成事项（3-5条）\n"
            "3. 效率评估\n"
            "4. 明日建议\n\n"
            "要求简洁专业，数据驱动。直接输出总结内容，不要包含标题。"
        )
        return prompt

    def _range_prompt(self, activities: List[ActivitySession], daily: List[Summary], period: str) -> str:
        summaries = "\n\n".join(f"### {item.date_start}\n{item.content}" for item in daily)
        return (
            f"基于以下日总结，生成{period}总结。\n\n{summaries}\n\n"
            f"共{len(activities)}个活动。请生成：\n"
            f"1. 本{period}重点事项\n2. 时间分配趋势\n3. 效率变化\n4. 改进建议\n\n"
            "简洁专业，直接输出内容。"
        )

    def _ai_content(self, prompt: str) -> Optional[str]:
        client = self._ai_cell.get() if self._enable_ai else None
        if client is None:
            return None
        try:
            text = client.send_text(prompt).strip()
        except AIError as exc:
            self._logger.warning("AI summary failed, using template: %s", exc)
            return None
        return text or None

    def _persist(self, summary: Summary, activities: List[ActivitySession]) -> None:
        self._repo.save_summary(summary)
        frontmatter = render_frontmatter(
            {
                "id": summary.id,
                "type": summary.summary_type.value,
                "date_start": summary.date_start,
                "date_end": summary.date_end,
                "activity_count": len(activities),
                "total_minutes": sum(a.duration_minutes for a in activities),
                "project_ids": summary.project_ids or [],
            }
        )
        title = f"{summary.date_start} 总结" if summary.date_start == summary.date_end else (
            f"{summary.date_start} ~ {summary.date_end} 总结"
        )
        write_document(self._root, summary.markdown_path, f"{frontmatter}\n\n# {title}\n\n{summary.content}\n")
        self._logger.info("Summary %s saved to %s", summary.id, summary.markdown_path)

    def _clock(self, value: datetime) -> str:
        return value.astimezone(self._timezone).strftime("%H:%M")


def _distinct_projects(activities: List[ActivitySession]) -> List[str]:
    seen: List[str] = []
    for activity in activities:
        if activity.project_id and activity.project_id not in seen:
            seen.append(activity.project_id)
    return seen
