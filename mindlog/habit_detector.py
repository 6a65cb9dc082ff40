from __future__ import annotations

import math
import sqlite3
from collections import Counter
from datetime import datetime, timedelta, tzinfo
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .config import HabitSettings
from .markdown_writer import render_frontmatter
from .models import ActivitySession, DetectionStats, Habit, HabitPatternType
from .storage import MemoryRepository
from .utils import sanitize_slug, utc_now, write_document

TRIGGER_MAX_GAP_SECONDS = 300
SEQUENCE_MAX_SPAN_SECONDS = 1800
REMOVAL_RATIO = 0.3


def time_confidence(hours: List[float], lookback_days: int) -> float:
    """0.6 * occurrence frequency + 0.4 * stability of the hour-of-day, capped at 1."""
    if len(hours) < 2:
        return 0.0
    frequency = len(hours) / lookback_days
    mean = sum(hours) / len(hours)
    std_dev = math.sqrt(sum((hour - mean) ** 2 for hour in hours) / len(hours))
    stability = max(0.0, 1.0 - std_dev / 12.0)
    return min(1.0, frequency * 0.6 + stability * 0.4)


class HabitDetector:
    def __init__(
        self,
        repository: MemoryRepository,
        memory_root: Path,
        settings: HabitSettings,
        timezone: tzinfo,
        log,
    ):
        self._repo = repository
        self._root = memory_root
        self._settings = settings
        self._timezone = timezone
        self._logger = log

    def detect_all(self, now: Optional[datetime] = None) -> DetectionStats:
        now = now or utc_now()
        since = now - timedelta(days=self._settings.lookback_days)
        activities = self._repo.activities_since(since)
        stats = DetectionStats()

        candidates: List[Habit] = []
        if activities:
            self._logger.info("Mining habits from %s activities", len(activities))
            candidates.extend(self.detect_time_patterns(activities))
            candidates.extend(self.detect_trigger_patterns(activities))
            candidates.extend(self.detect_sequence_patterns(activities))

        detected_ids: Set[str] = set()
        for habit in candidates:
            detected_ids.add(habit.id)
            try:
                is_new = self._upsert(habit, now)
            except (sqlite3.Error, OSError) as exc:
                self._logger.warning("Failed to save habit %s: %s", habit.pattern_name, exc)
                stats.failed += 1
                continue
            if is_new:
                stats.new += 1
            else:
                stats.updated += 1
        stats.detected = len(candidates)

        stats.decayed, stats.removed = self.decay_stale(detected_ids, now)
        self._logger.info(
            "Habit detection: detected=%s new=%s updated=%s decayed=%s removed=%s",
            stats.detected,
            stats.new,
            stats.updated,
            stats.decayed,
            stats.removed,
        )
        return stats

    def detect_time_patterns(self, activities: List[ActivitySession]) -> List[Habit]:
        buckets: Dict[Tuple[str, int], List[datetime]] = {}
        for activity in activities:
            local = activity.start_time.astimezone(self._timezone)
            buckets.setdefault((activity.application, local.hour), []).append(local)

        habits = []
        for (app, hour), starts in buckets.items():
            if len(starts) < self._settings.min_occurrences:
                continue
            hours = [value.hour + value.minute / 60.0 for value in starts]
            confidence = time_confidence(hours, self._settings.lookback_days)
            if confidence < self._settings.min_confidence:
                continue
            slug = sanitize_slug(f"time-{app}-{hour:02d}")
            habits.append(
                Habit(
                    id=f"habit-{slug}",
                    pattern_name=f"每天 {hour:02d}:00 使用 {app}",
                    pattern_type=HabitPatternType.TIME_BASED,
                    confidence=confidence,
                    frequency="daily",
                    typical_time=f"{hour:02d}:00",
                    last_occurrence=max(starts),
                    occurrence_count=len(starts),
                    markdown_path=f"habits/{slug}.md",
                )
            )
        return habits

    def detect_trigger_patterns(self, activities: List[ActivitySession]) -> List[Habit]:
        transitions: Counter = Counter()
        from_counts: Counter = Counter()
        last_seen: Dict[Tuple[str, str], datetime] = {}
        for before, after in zip(activities, activities[1:]):
            gap = (after.start_time - before.end_time).total_seconds()
            if 0 <= gap <= TRIGGER_MAX_GAP_SECONDS and before.application != after.application:
                key = (before.application, after.application)
                transitions[key] += 1
                from_counts[before.application] += 1
                last_seen[key] = after.start_time

        habits = []
        for (source, target), count in transitions.items():
            if count < self._settings.min_occurrences:
                continue
            confidence = count / from_counts[source]
            if confidence < self._settings.min_confidence:
                continue
            slug = sanitize_slug(f"trigger-{source}-{target}")
            habits.append(
                Habit(
                    id=f"habit-{slug}",
                    pattern_name=f"使用{source}后通常会使用{target}",
                    pattern_type=HabitPatternType.TRIGGER_BASED,
                    confidence=confidence,
                    frequency="per-occurrence",
                    trigger_conditions={"from_app": source, "to_app": target, "transition_count": count},
                    last_occurrence=last_seen[(source, target)],
                    occurrence_count=count,
                    markdown_path=f"habits/{slug}.md",
                )
            )
        return habits

    def detect_sequence_patterns(self, activities: List[ActivitySession]) -> List[Habit]:
        sequences: Counter = Counter()
        last_seen: Dict[Tuple[str, str, str], datetime] = {}
        for a, b, c in zip(activities, activities[1:], activities[2:]):
            span = (c.end_time - a.start_time).total_seconds()
            apps = (a.application, b.application, c.application)
            if span <= SEQUENCE_MAX_SPAN_SECONDS and len(set(apps)) == 3:
                sequences[apps] += 1
                last_seen[apps] = c.start_time

        habits = []
        for apps, count in sequences.items():
            if count < self._settings.min_occurrences:
                continue
            confidence = min(1.0, count / self._settings.lookback_days)
            if confidence < self._settings.min_confidence:
                continue
            slug = sanitize_slug("seq-" + "-".join(apps))
            habits.append(
                Habit(
                    id=f"habit-{slug}",
                    pattern_name="→".join(apps),
                    pattern_type=HabitPatternType.SEQUENCE_BASED,
                    confidence=confidence,
                    frequency="daily",
                    trigger_conditions={"sequence": list(apps), "count": count},
                    last_occurrence=last_seen[apps],
                    occurrence_count=count,
                    markdown_path=f"habits/{slug}.md",
                )
            )
        return habits

    def decay_stale(self, detected_ids: Set[str], now: datetime) -> Tuple[int, int]:
        """Lower the confidence of habits not seen for twice the lookback window."""
        threshold = timedelta(days=self._settings.lookback_days * 2)
        floor = self._settings.min_confidence * REMOVAL_RATIO
        decayed = removed = 0

        for habit in self._repo.list_habits():
            if habit.id in detected_ids:
                continue
            last_seen = habit.last_occurrence or habit.updated_at or now
            if now - last_seen < threshold:
                continue

            confidence = habit.confidence * self._settings.decay_factor
            if confidence < floor:
                self._repo.delete_habit(habit.id)
                (self._root / habit.markdown_path).unlink(missing_ok=True)
                removed += 1
                self._logger.info("Habit removed (confidence %.0f%%): %s", confidence * 100, habit.pattern_name)
            else:
                self._repo.update_habit_confidence(habit.id, confidence, now)
                decayed += 1
                self._logger.info(
                    "Habit decayed: %s %.0f%% -> %.0f%%",
                    habit.pattern_name,
                    habit.confidence * 100,
                    confidence * 100,
                )
        return decayed, removed

    def _upsert(self, habit: Habit, now: datetime) -> bool:
        if self._repo.get_habit(habit.id) is not None:
            self._repo.update_habit_detection(habit, now)
            return False
        habit.created_at = habit.updated_at = now
        self._repo.insert_habit(habit)
        write_document(self._root, habit.markdown_path, render_habit(habit))
        return True


def render_habit(habit: Habit) -> str:
    frontmatter = render_frontmatter(
        {
            "id": habit.id,
            "pattern_name": habit.pattern_name,
            "pattern_type": habit.pattern_type.value,
            "confidence": round(habit.confidence, 2),
            "frequency": habit.frequency,
        }
    )
    percent = f"{habit.confidence * 100:.0f}%"
    if habit.pattern_type is HabitPatternType.TIME_BASED:
        description = (
            f"在每天 {habit.typical_time or '未知'} 时段，你通常会执行此操作。\n\n"
            f"检测到 {habit.occurrence_count} 次出现，置信度 {percent}。"
        )
    elif habit.pattern_type is HabitPatternType.TRIGGER_BASED:
        conditions = habit.trigger_conditions or {}
        description = (
            "当触发条件满足时，你通常会执行此操作。\n\n"
            f"检测到 {habit.occurrence_count} 次出现，置信度 {percent}。\n\n"
            f"触发条件: {conditions.get('from_app', '无')} → {conditions.get('to_app', '无')}"
        )
    else:
        sequence = (habit.trigger_conditions or {}).get("sequence") or []
        description = (
            "你倾向于按固定顺序使用这些应用。\n\n"
            f"检测到 {habit.occurrence_count} 次出现，置信度 {percent}。\n\n"
            f"序列: {' → '.join(sequence) or '无'}"
        )
    return f"{frontmatter}\n\n# {habit.pattern_name}\n\n## 模式描述\n\n{description}\n"
