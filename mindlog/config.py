from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv


@dataclass(frozen=True)
class AISettings:
    provider: str = "openai"
    api_key: str | None = None
    base_url: str = "http://localhost:1234/v1"
    model: str = "local-model"
    max_tokens: int = 2048
    temperature: float = 0.3
    timeout_seconds: float = 120.0

    @property
    def configured(self) -> bool:
        # Local OpenAI-compatible servers run without a key.
        return bool(self.api_key) or self.provider == "openai"


@dataclass(frozen=True)
class EmbeddingSettings:
    base_url: str | None = None
    api_key: str | None = None
    model: str = "text-embedding-3-small"
    timeout_seconds: float = 60.0

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)


@dataclass(frozen=True)
class AnalyzerSettings:
    max_retries: int = 2
    retry_sleep_seconds: float = 3.0
    batch_size: int = 10


@dataclass(frozen=True)
class GroupingSettings:
    max_gap_seconds: int = 300
    min_screenshots: int = 2
    max_duration_seconds: int = 7200
    min_duration_seconds: int = 60


@dataclass(frozen=True)
class ChunkSettings:
    target_tokens: int = 400
    overlap_tokens: int = 80
    min_tokens: int = 100


@dataclass(frozen=True)
class SearchSettings:
    max_results: int = 20
    min_similarity: float = 0.3
    vector_weight: float = 0.7
    keyword_weight: float = 0.3


@dataclass(frozen=True)
class HabitSettings:
    lookback_days: int = 30
    min_occurrences: int = 5
    min_confidence: float = 0.5
    decay_factor: float = 0.7


@dataclass(frozen=True)
class ProjectSettings:
    similarity_threshold: float = 0.6
    batch_limit: int = 50


@dataclass(frozen=True)
class SummarySettings:
    enable_ai: bool = True
    daily_hour: int = 23


@dataclass(frozen=True)
class SchedulerSettings:
    analysis_interval_seconds: float = 90
    grouping_interval_seconds: float = 1800
    index_interval_seconds: float = 600
    habit_interval_seconds: float = 86400
    summary_check_interval_seconds: float = 600


@dataclass(frozen=True)
class StorageSettings:
    database_path: Path
    memory_root: Path


@dataclass(frozen=True)
class LoggingSettings:
    directory: Path
    level: str = "INFO"


@dataclass(frozen=True)
class AppSettings:
    timezone: ZoneInfo
    storage: StorageSettings
    logging: LoggingSettings
    ai: AISettings = field(default_factory=AISettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    analyzer: AnalyzerSettings = field(default_factory=AnalyzerSettings)
    grouping: GroupingSettings = field(default_factory=GroupingSettings)
    chunking: ChunkSettings = field(default_factory=ChunkSettings)
    search: SearchSettings = field(default_factory=SearchSettings)
    habits: HabitSettings = field(default_factory=HabitSettings)
    projects: ProjectSettings = field(default_factory=ProjectSettings)
    summary: SummarySettings = field(default_factory=SummarySettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    dotenv_path = Path(__file__).resolve().parents[1] / ".env"
    load_dotenv(dotenv_path=dotenv_path, override=False, encoding="utf-8-sig")

    timezone = ZoneInfo(os.getenv("TIMEZONE", "Asia/Shanghai"))

    ai = AISettings(
        provider=os.getenv("AI_PROVIDER", "openai").strip().lower(),
        api_key=os.getenv("AI_API_KEY") or None,
        base_url=os.getenv("AI_BASE_URL", "http://localhost:1234/v1").rstrip("/"),
        model=os.getenv("AI_MODEL", "local-model"),
        max_tokens=int(os.getenv("AI_MAX_TOKENS", "2048")),
        temperature=float(os.getenv("AI_TEMPERATURE", "0.3")),
        timeout_seconds=float(os.getenv("AI_TIMEOUT_SECONDS", "120")),
    )

    embedding = EmbeddingSettings(
        base_url=(os.getenv("EMBEDDING_BASE_URL") or "").rstrip("/") or None,
        api_key=os.getenv("EMBEDDING_API_KEY") or None,
        model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        timeout_seconds=float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "60")),
    )

    analyzer = AnalyzerSettings(
        max_retries=int(os.getenv("ANALYSIS_MAX_RETRIES", "2")),
        retry_sleep_seconds=float(os.getenv("ANALYSIS_RETRY_SLEEP_SECONDS", "3")),
        batch_size=int(os.getenv("ANALYSIS_BATCH_SIZE", "10")),
    )

    grouping = GroupingSettings(
        max_gap_seconds=int(os.getenv("GROUP_MAX_GAP_SECONDS", "300")),
        min_screenshots=int(os.getenv("GROUP_MIN_SCREENSHOTS", "2")),
        max_duration_seconds=int(os.getenv("GROUP_MAX_DURATION_SECONDS", "7200")),
        min_duration_seconds=int(os.getenv("GROUP_MIN_DURATION_SECONDS", "60")),
    )

    chunking = ChunkSettings(
        target_tokens=int(os.getenv("CHUNK_TARGET_TOKENS", "400")),
        overlap_tokens=int(os.getenv("CHUNK_OVERLAP_TOKENS", "80")),
        min_tokens=int(os.getenv("CHUNK_MIN_TOKENS", "100")),
    )

    search = SearchSettings(
        max_results=int(os.getenv("SEARCH_MAX_RESULTS", "20")),
        min_similarity=float(os.getenv("SEARCH_MIN_SIMILARITY", "0.3")),
        vector_weight=float(os.getenv("SEARCH_VECTOR_WEIGHT", "0.7")),
        keyword_weight=float(os.getenv("SEARCH_KEYWORD_WEIGHT", "0.3")),
    )

    habits = HabitSettings(
        lookback_days=int(os.getenv("HABIT_LOOKBACK_DAYS", "30")),
        min_occurrences=int(os.getenv("HABIT_MIN_OCCURRENCES", "5")),
        min_confidence=float(os.getenv("HABIT_MIN_CONFIDENCE", "0.5")),
        decay_factor=float(os.getenv("HABIT_DECAY_FACTOR", "0.7")),
    )

    projects = ProjectSettings(
        similarity_threshold=float(os.getenv("PROJECT_SIMILARITY_THRESHOLD", "0.6")),
        batch_limit=int(os.getenv("PROJECT_BATCH_LIMIT", "50")),
    )

    summary = SummarySettings(
        enable_ai=_as_bool(os.getenv("ENABLE_AI_SUMMARY"), default=True),
        daily_hour=int(os.getenv("DAILY_SUMMARY_HOUR", "23")),
    )

    scheduler = SchedulerSettings(
        analysis_interval_seconds=float(os.getenv("ANALYSIS_INTERVAL_SECONDS", "90")),
        grouping_interval_seconds=float(os.getenv("GROUPING_INTERVAL_SECONDS", "1800")),
        index_interval_seconds=float(os.getenv("INDEX_INTERVAL_SECONDS", "600")),
        habit_interval_seconds=float(os.getenv("HABIT_INTERVAL_SECONDS", "86400")),
        summary_check_interval_seconds=float(os.getenv("SUMMARY_CHECK_INTERVAL_SECONDS", "600")),
    )

    storage = StorageSettings(
        database_path=Path(os.getenv("DATABASE_PATH", "data/mindlog.db")).resolve(),
        memory_root=Path(os.getenv("MEMORY_ROOT", "data/memory")).resolve(),
    )

    logging_settings = LoggingSettings(
        directory=Path(os.getenv("LOG_DIR", "logs")).resolve(),
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

    return AppSettings(
        timezone=timezone,
        storage=storage,
        logging=logging_settings,
        ai=ai,
        embedding=embedding,
        analyzer=analyzer,
        grouping=grouping,
        chunking=chunking,
        search=search,
        habits=habits,
        projects=projects,
        summary=summary,
        scheduler=scheduler,
    )


def _as_bool(raw: str | None, default: bool | None = None) -> bool:
    if raw is None:
        if default is None:
            return False
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}
