from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Dict, List, Optional

from .hybrid_search import HybridSearch
from .models import ActivitySession, Habit, Project, SearchResult, Summary, SummaryType
from .storage import MemoryRepository
from .summary_generator import SummaryGenerator
from .utils import utc_now


class MemoryQueries:
    """Read-side surface for a presentation layer (tray menu, CLI, web view)."""

    def __init__(
        self,
        repository: MemoryRepository,
        search: HybridSearch,
        summaries: SummaryGenerator,
        timezone: tzinfo,
    ):
        self._repo = repository
        self._search = search
        self._summaries = summaries
        self._timezone = timezone

    def today(self, now: Optional[datetime] = None) -> str:
        return (now or utc_now()).astimezone(self._timezone).strftime("%Y-%m-%d")

    def list_activities(self, date: Optional[str] = None) -> List[ActivitySession]:
        return self._repo.activities_on(date or self.today())

    def get_activity_detail(self, activity_id: str) -> Optional[ActivitySession]:
        return self._repo.get_activity(activity_id, with_entries=True)

    def list_projects(self) -> List[Project]:
        return self._repo.list_projects()

    def list_habits(self) -> List[Habit]:
        return self._repo.list_habits()

    def get_daily_summary(self, date: Optional[str] = None) -> Optional[Summary]:
        return self._repo.get_summary(SummaryType.DAILY, date or self.today())

    def trigger_daily_summary(self, date: Optional[str] = None) -> Summary:
        # Raises NoActivityError when the day has no sessions.
        return self._summaries.generate_daily(date or self.today())

    def keyword_search(self, query: str, limit: int = 20) -> List[SearchResult]:
        return self._search.keyword_search(query, limit)

    def stats(self) -> Dict[str, int]:
        return self._repo.stats()
