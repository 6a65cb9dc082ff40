from __future__ import annotations

from datetime import datetime, timedelta, timezone

from mindlog.utils import (
    from_db_time,
    hash_file,
    hash_text,
    sanitize_filename,
    sanitize_slug,
    to_db_time,
    write_document,
)


class TestHashing:
    def test_hash_text_is_short_and_stable(self):
        assert len(hash_text("hello")) == 16
        assert hash_text("hello") == hash_text("hello")
        assert hash_text("hello") != hash_text("hello ")

    def test_hash_file_matches_text(self, tmp_path):
        path = tmp_path / "doc.md"
        path.write_text("内容", encoding="utf-8")
        assert hash_file(path) == hash_text("内容")


class TestNames:
    def test_slug_keeps_chinese(self):
        assert sanitize_slug("vision-jarvis项目") == "vision-jarvis项目"

    def test_slug_replaces_ascii_punctuation(self):
        assert sanitize_slug("my app/v2!") == "my-app-v2"

    def test_filename(self):
        assert sanitize_filename("Visual Studio Code") == "Visual_Studio_Code"
        assert sanitize_filename("my-tool_1") == "my-tool_1"
        assert sanitize_filename("微信") == "微信"


class TestDbTime:
    def test_local_time_is_stored_as_utc(self):
        local = datetime(2024, 3, 15, 17, 0, tzinfo=timezone(timedelta(hours=8)))
        assert to_db_time(local) == "2024-03-15T09:00:00+00:00"

    def test_naive_is_treated_as_utc(self):
        assert from_db_time(to_db_time(datetime(2024, 3, 15, 9, 0))) == datetime(
            2024, 3, 15, 9, 0, tzinfo=timezone.utc
        )

    def test_empty(self):
        assert from_db_time(None) is None
        assert from_db_time("") is None


def test_write_document_creates_parents(tmp_path):
    path = write_document(tmp_path, "activities/2024-03-15/activity-001.md", "# 标题\n")
    assert path.read_text(encoding="utf-8") == "# 标题\n"
