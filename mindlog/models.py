from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

VIDEO_SUFFIXES = {".mp4", ".mov", ".webm", ".mkv"}


class ActivityType(str, Enum):
    WORK = "work"
    ENTERTAINMENT = "entertainment"
    COMMUNICATION = "communication"
    LEARNING = "learning"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: Any) -> "ActivityType":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.OTHER


class Category(str, Enum):
    WORK = "work"
    ENTERTAINMENT = "entertainment"
    COMMUNICATION = "communication"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: Any) -> "Category":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.OTHER


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class HabitPatternType(str, Enum):
    TIME_BASED = "time_based"
    TRIGGER_BASED = "trigger_based"
    SEQUENCE_BASED = "sequence_based"


class SummaryType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class Capture:
    path: Path
    captured_at: datetime
    analyzed: bool = False
    id: Optional[int] = None

    @property
    def is_video(self) -> bool:
        return self.path.suffix.lower() in VIDEO_SUFFIXES


@dataclass
class Analysis:
    capture_id: int
    application: str
    activity_type: ActivityType
    description: str
    category: Category = Category.OTHER
    key_elements: List[str] = field(default_factory=list)
    ocr_text: Optional[str] = None
    context_tags: List[str] = field(default_factory=list)
    productivity_score: int = 5
    project_name: Optional[str] = None
    accomplishments: List[str] = field(default_factory=list)
    summary: str = ""
    raw_response: str = ""
    analyzed_at: Optional[datetime] = None


@dataclass
class AnalyzedCapture:
    """A capture together with its analysis, the unit the grouper works on."""

    capture_id: int
    path: Path
    captured_at: datetime
    analysis: Analysis


@dataclass
class ActivitySession:
    id: str
    title: str
    date: str
    start_time: datetime
    end_time: datetime
    application: str
    category: Category
    capture_ids: List[int]
    tags: List[str]
    markdown_path: str
    entries: List[AnalyzedCapture] = field(default_factory=list)
    summary: Optional[str] = None
    indexed: bool = False
    project_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> int:
        return int((self.end_time - self.start_time).total_seconds())

    @property
    def duration_minutes(self) -> int:
        return max(1, self.duration_seconds // 60)


@dataclass
class Project:
    id: str
    title: str
    description: str
    start_date: str
    last_activity_date: str
    markdown_path: str
    activity_count: int = 1
    tags: List[str] = field(default_factory=list)
    status: ProjectStatus = ProjectStatus.ACTIVE
    created_at: Optional[datetime] = None


@dataclass
class Habit:
    id: str
    pattern_name: str
    pattern_type: HabitPatternType
    confidence: float
    frequency: str
    occurrence_count: int
    markdown_path: str
    trigger_conditions: Optional[dict[str, Any]] = None
    typical_time: Optional[str] = None
    last_occurrence: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MemoryChunk:
    """A passage produced by the chunker; line numbers are 1-based and inclusive."""

    start_line: int
    end_line: int
    text: str
    hash: str


@dataclass
class TextChunk:
    id: str
    file_path: str
    start_line: int
    end_line: int
    hash: str
    text: str
    embedding: Optional[List[float]] = None
    activity_id: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass
class Summary:
    id: str
    summary_type: SummaryType
    date_start: str
    date_end: str
    content: str
    activity_ids: List[str]
    markdown_path: str
    project_ids: Optional[List[str]] = None
    created_at: Optional[datetime] = None


@dataclass
class SearchResult:
    chunk_id: str
    file_path: str
    text: str
    start_line: int
    end_line: int
    score: float
    vector_score: float
    keyword_score: float
    activity_id: Optional[str] = None


@dataclass
class BatchStats:
    analyzed: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class SyncStats:
    total: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    new_chunks: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class DetectionStats:
    detected: int = 0
    new: int = 0
    updated: int = 0
    decayed: int = 0
    removed: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class LinkStats:
    total: int = 0
    linked: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)
