from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Dict, List, Optional

from .config import GroupingSettings
from .models import ActivitySession, AnalyzedCapture
from .storage import MemoryRepository
from .utils import hash_text, utc_now

RELATED_VERBS = ("编写", "查看", "浏览", "阅读", "编辑", "调试", "运行", "测试")


def activities_related(a: str, b: str) -> bool:
    if a.startswith(b) or b.startswith(a):
        return True
    return any(verb in a and verb in b for verb in RELATED_VERBS)


@dataclass
class _OpenGroup:
    items: List[AnalyzedCapture] = field(default_factory=list)

    @property
    def first(self) -> AnalyzedCapture:
        return self.items[0]

    @property
    def last(self) -> AnalyzedCapture:
        return self.items[-1]

    def duration_seconds(self) -> float:
        return (self.last.captured_at - self.first.captured_at).total_seconds()


class ActivityGrouper:
    """Clusters time-ordered analyses into activity sessions.

    A capture joins the open group when it is close in time to the group's last member,
    comes from the same application, describes the same or a related activity and keeps
    the group within the maximum duration. Groups that close below the minimum capture
    count or duration are dropped.
    """

    def __init__(
        self,
        settings: GroupingSettings,
        timezone: tzinfo,
        log,
        repository: Optional[MemoryRepository] = None,
    ):
        self._settings = settings
        self._timezone = timezone
        self._logger = log
        self._repo = repository

    def group(self, analyses: List[AnalyzedCapture]) -> List[ActivitySession]:
        sessions: List[ActivitySession] = []
        counters: Dict[str, int] = {}
        current: Optional[_OpenGroup] = None

        for item in analyses:
            if current is not None and self._can_merge(current, item):
                current.items.append(item)
                continue
            if current is not None:
                self._close(current, counters, sessions)
            current = _OpenGroup(items=[item])

        if current is not None:
            self._close(current, counters, sessions)
        return sessions

    def group_pending(self, writer=None) -> List[ActivitySession]:
        """Group every analyzed, ungrouped capture in the store and persist the sessions."""
        if self._repo is None:
            raise RuntimeError("group_pending requires a repository")

        pending = self._repo.ungrouped_analyses()
        if not pending:
            self._logger.debug("No ungrouped analyses")
            return []

        sessions = self.group(pending)
        saved: List[ActivitySession] = []
        for session in sessions:
            try:
                self._repo.save_activity(session)
            except sqlite3.IntegrityError as exc:
                self._logger.error("Activity %s was not saved: %s", session.id, exc)
                continue
            # The row must exist before the document does, or an index sync in between
            # would store the document's chunks without their activity.
            if writer is not None:
                try:
                    session.summary = writer.write_activity(session)
                except OSError as exc:
                    self._logger.error("Document for activity %s was not written: %s", session.id, exc)
                else:
                    self._repo.update_activity_summary(session.id, session.summary)
            saved.append(session)
            self._logger.info(
                "Activity saved: %s (%s captures, %s min) -> %s",
                session.title,
                len(session.capture_ids),
                session.duration_minutes,
                session.markdown_path,
            )
        self._logger.info("Grouped %s analyses into %s activities", len(pending), len(saved))
        return saved

    def _can_merge(self, group: _OpenGroup, item: AnalyzedCapture) -> bool:
        gap = (item.captured_at - group.last.captured_at).total_seconds()
        if gap > self._settings.max_gap_seconds:
            return False
        if item.analysis.application != group.first.analysis.application:
            return False
        current_label = group.first.analysis.description
        next_label = item.analysis.description
        if next_label != current_label and not activities_related(current_label, next_label):
            return False
        elapsed = (item.captured_at - group.first.captured_at).total_seconds()
        return elapsed <= self._settings.max_duration_seconds

    def _close(self, group: _OpenGroup, counters: Dict[str, int], sessions: List[ActivitySession]) -> None:
        if len(group.items) < self._settings.min_screenshots:
            self._logger.debug("Dropping group of %s captures (below minimum count)", len(group.items))
            return
        if group.duration_seconds() < self._settings.min_duration_seconds:
            self._logger.debug("Dropping group lasting %.0fs (below minimum duration)", group.duration_seconds())
            return

        date = group.first.captured_at.astimezone(self._timezone).strftime("%Y-%m-%d")
        if date not in counters:
            counters[date] = self._repo.count_activities_on(date) if self._repo is not None else 0
        counters[date] += 1
        sessions.append(self._finalize(group, date, counters[date]))

    def _finalize(self, group: _OpenGroup, date: str, sequence: int) -> ActivitySession:
        first = group.first.analysis
        capture_ids = [item.capture_id for item in group.items]
        tags: List[str] = []
        for tag in [first.application, first.description]:
            if tag and tag not in tags:
                tags.append(tag)
        for item in group.items:
            for tag in item.analysis.context_tags:
                if tag not in tags:
                    tags.append(tag)

        fingerprint = hash_text(",".join(str(capture_id) for capture_id in capture_ids))[:8]
        return ActivitySession(
            id=f"activity-{date}-{fingerprint}",
            title=f"{first.application}中{first.description}",
            date=date,
            start_time=group.first.captured_at,
            end_time=group.last.captured_at,
            application=first.application,
            category=first.category,
            capture_ids=capture_ids,
            tags=tags,
            markdown_path=f"activities/{date}/activity-{sequence:03d}.md",
            entries=list(group.items),
            created_at=utc_now(),
        )
