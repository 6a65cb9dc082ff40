from __future__ import annotations

from datetime import timedelta

import pytest

from mindlog.activity_grouper import ActivityGrouper
from mindlog.ai_client import AICell
from mindlog.config import GroupingSettings
from mindlog.errors import AIServerError, NoActivityError
from mindlog.models import SummaryType
from mindlog.summary_generator import SummaryGenerator, summary_document_path


@pytest.fixture
def cell():
    return AICell()


@pytest.fixture
def generator(repo, memory_root, cell, tz, log):
    return SummaryGenerator(repo, memory_root, cell, tz, log)


@pytest.fixture
def busy_day(save_session, base_time):
    save_session("VSCode", base_time, minutes=40)
    save_session("Chrome", base_time + timedelta(hours=1), minutes=15)
    save_session("VSCode", base_time + timedelta(hours=2), minutes=20)


def test_document_path():
    assert summary_document_path(SummaryType.DAILY, "2024-03-15") == "summaries/daily_summary/2024-03-15.md"


class TestDaily:
    def test_no_activity_fails_without_writing(self, generator, repo, memory_root):
        with pytest.raises(NoActivityError):
            generator.generate_daily("2024-03-15")
        assert repo.count_summaries() == 0
        assert not (memory_root / "summaries").exists()

    def test_template_without_ai(self, generator, repo, memory_root, busy_day):
        summary = generator.generate_daily("2024-03-15")

        assert summary.id == "summary-daily-2024-03-15"
        assert "活动数: 3" in summary.content
        assert "总活动时间: 75分钟" in summary.content
        breakdown = summary.content.split("### 应用使用")[1].split("###")[0]
        assert breakdown.index("VSCode: 60分钟") < breakdown.index("Chrome: 15分钟")
        assert "09:00-09:40" in summary.content
        assert len(summary.activity_ids) == 3

        stored = repo.get_summary(SummaryType.DAILY, "2024-03-15")
        assert stored.content == summary.content
        document = memory_root / "summaries" / "daily_summary" / "2024-03-15.md"
        assert summary.content in document.read_text(encoding="utf-8")

    def test_ai_content(self, generator, cell, fake_ai, busy_day):
        client = fake_ai(["今天主要在编写代码。"])
        cell.set(client)

        summary = generator.generate_daily("2024-03-15")

        assert summary.content == "今天主要在编写代码。"
        kind, prompt = client.calls[0]
        assert kind == "text"
        assert "共3个" in prompt

    def test_prompt_includes_accomplishments(self, repo, memory_root, cell, tz, log, fake_ai, seed_analysis):
        seed_analysis(0, accomplishments=["完成了索引同步"])
        seed_analysis(120, accomplishments=["完成了索引同步", "修复了分组bug"])
        ActivityGrouper(GroupingSettings(), tz, log, repo).group_pending()
        client = fake_ai(["总结"])
        cell.set(client)

        SummaryGenerator(repo, memory_root, cell, tz, log).generate_daily("2024-03-15")

        prompt = client.calls[0][1]
        assert "## 今日成果" in prompt
        assert prompt.count("完成了索引同步") == 1
        assert "修复了分组bug" in prompt

    def test_ai_failure_falls_back_to_template(self, generator, cell, fake_ai, busy_day):
        cell.set(fake_ai([AIServerError("HTTP 503")]))
        assert "活动数: 3" in generator.generate_daily("2024-03-15").content

    def test_ai_disabled(self, repo, memory_root, cell, tz, log, fake_ai, busy_day):
        client = fake_ai(["unused"])
        cell.set(client)
        summary = SummaryGenerator(repo, memory_root, cell, tz, log, enable_ai=False).generate_daily("2024-03-15")
        assert client.calls == []
        assert "活动数: 3" in summary.content

    def test_regeneration_replaces_previous(self, generator, repo, busy_day):
        generator.generate_daily("2024-03-15")
        generator.generate_daily("2024-03-15")
        assert repo.count_summaries() == 1


class TestRanges:
    def test_weekly_template(self, generator, memory_root, save_session, base_time, busy_day):
        save_session("Slack", base_time + timedelta(days=2), minutes=30)

        summary = generator.generate_weekly("2024-03-11")

        assert summary.summary_type is SummaryType.WEEKLY
        assert (summary.date_start, summary.date_end) == ("2024-03-11", "2024-03-17")
        assert "活跃天数: 2" in summary.content
        assert (memory_root / "summaries" / "weekly_summary" / "2024-03-11.md").exists()

    def test_weekly_uses_daily_summaries_with_ai(self, generator, cell, fake_ai, busy_day):
        generator.generate_daily("2024-03-15")
        client = fake_ai(["本周总结"])
        cell.set(client)

        summary = generator.generate_weekly("2024-03-11")

        assert summary.content == "本周总结"
        assert "### 2024-03-15" in client.calls[0][1]

    def test_monthly(self, generator, busy_day):
        summary = generator.generate_monthly(2024, 3)
        assert (summary.date_start, summary.date_end) == ("2024-03-01", "2024-03-31")
        assert summary.markdown_path == "summaries/monthly_summary/2024-03.md"

    def test_empty_range(self, generator):
        with pytest.raises(NoActivityError):
            generator.generate_monthly(2024, 2)
