from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mindlog.ai_client import AICell
from mindlog.chunker import Chunker
from mindlog.config import ChunkSettings, SearchSettings
from mindlog.errors import NoActivityError
from mindlog.hybrid_search import HybridSearch
from mindlog.index_manager import IndexManager
from mindlog.queries import MemoryQueries
from mindlog.summary_generator import SummaryGenerator
from mindlog.utils import write_document


@pytest.fixture
def queries(repo, memory_root, tz, log):
    search = HybridSearch(repo, SearchSettings(), log)
    summaries = SummaryGenerator(repo, memory_root, AICell(), tz, log)
    return MemoryQueries(repo, search, summaries, tz)


class TestQueries:
    def test_today_uses_configured_timezone(self, repo, memory_root, tz, log):
        shanghai = timezone(timedelta(hours=8))
        queries = MemoryQueries(
            repo,
            HybridSearch(repo, SearchSettings(), log),
            SummaryGenerator(repo, memory_root, AICell(), shanghai, log),
            shanghai,
        )
        assert queries.today(datetime(2024, 3, 15, 20, 0, tzinfo=timezone.utc)) == "2024-03-16"

    def test_list_and_detail(self, queries, save_session, base_time):
        session = save_session("VSCode", base_time)
        save_session("Chrome", base_time + timedelta(days=1))

        assert [a.id for a in queries.list_activities("2024-03-15")] == [session.id]
        assert queries.get_activity_detail(session.id).entries == []
        assert queries.get_activity_detail("activity-missing") is None

    def test_daily_summary_lifecycle(self, queries, save_session, base_time):
        save_session("VSCode", base_time, minutes=30)
        assert queries.get_daily_summary("2024-03-15") is None

        generated = queries.trigger_daily_summary("2024-03-15")

        assert queries.get_daily_summary("2024-03-15").content == generated.content

    def test_trigger_on_empty_day(self, queries):
        with pytest.raises(NoActivityError):
            queries.trigger_daily_summary("2024-03-14")

    def test_keyword_search_over_index(self, queries, repo, memory_root, log):
        write_document(memory_root, "activities/2024-03-15/activity-001.md", "# VSCode中编写索引同步\n")
        IndexManager(repo, memory_root, Chunker(ChunkSettings()), log).sync()

        results = queries.keyword_search("索引同步")

        assert results
        assert results[0].file_path == "activities/2024-03-15/activity-001.md"

    def test_stats_and_lists(self, queries):
        assert queries.stats()["activities"] == 0
        assert queries.list_projects() == []
        assert queries.list_habits() == []
