from __future__ import annotations

import json
import sqlite3
import struct
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .models import (
    ActivitySession,
    ActivityType,
    Analysis,
    AnalyzedCapture,
    Capture,
    Category,
    Habit,
    HabitPatternType,
    Project,
    ProjectStatus,
    Summary,
    SummaryType,
    TextChunk,
)
from .utils import ensure_directory, from_db_time, to_db_time, utc_now

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS captures (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT NOT NULL,
        captured_at TEXT NOT NULL,
        analyzed INTEGER NOT NULL DEFAULT 0,
        activity_id TEXT,
        failed_attempts INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_captures_pending ON captures (analyzed, captured_at)",
    """
    CREATE TABLE IF NOT EXISTS analyses (
        capture_id INTEGER PRIMARY KEY,
        application TEXT NOT NULL,
        activity_type TEXT NOT NULL,
        description TEXT NOT NULL,
        category TEXT NOT NULL,
        key_elements TEXT NOT NULL,
        ocr_text TEXT,
        context_tags TEXT NOT NULL,
        productivity_score INTEGER NOT NULL,
        project_name TEXT,
        accomplishments TEXT NOT NULL,
        summary TEXT,
        raw_response TEXT,
        analyzed_at TEXT NOT NULL,
        FOREIGN KEY (capture_id) REFERENCES captures(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS activities (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        date TEXT NOT NULL,
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        duration_minutes INTEGER NOT NULL,
        application TEXT NOT NULL,
        category TEXT NOT NULL,
        capture_ids TEXT NOT NULL,
        tags TEXT NOT NULL,
        markdown_path TEXT NOT NULL,
        summary TEXT,
        indexed INTEGER NOT NULL DEFAULT 0,
        project_id TEXT,
        created_at TEXT NOT NULL,
        project_checked INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_activities_date ON activities (date, start_time)",
    """
    CREATE TABLE IF NOT EXISTS projects (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT,
        start_date TEXT NOT NULL,
        last_activity_date TEXT NOT NULL,
        activity_count INTEGER NOT NULL DEFAULT 0,
        tags TEXT NOT NULL,
        status TEXT NOT NULL,
        markdown_path TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS habits (
        id TEXT PRIMARY KEY,
        pattern_name TEXT NOT NULL,
        pattern_type TEXT NOT NULL,
        confidence REAL NOT NULL,
        frequency TEXT NOT NULL,
        trigger_conditions TEXT,
        typical_time TEXT,
        last_occurrence TEXT,
        occurrence_count INTEGER NOT NULL,
        markdown_path TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_files (
        path TEXT PRIMARY KEY,
        hash TEXT NOT NULL,
        mtime REAL NOT NULL,
        size INTEGER NOT NULL,
        indexed_at TEXT NOT NULL,
        embedding_model TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_chunks (
        id TEXT PRIMARY KEY,
        file_path TEXT NOT NULL,
        start_line INTEGER NOT NULL,
        end_line INTEGER NOT NULL,
        hash TEXT NOT NULL,
        text TEXT NOT NULL,
        embedding BLOB,
        activity_id TEXT,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chunks_file ON memory_chunks (file_path)",
    """
    CREATE TABLE IF NOT EXISTS embedding_cache (
        hash TEXT NOT NULL,
        model TEXT NOT NULL,
        embedding BLOB NOT NULL,
        PRIMARY KEY (hash, model)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS summaries (
        id TEXT PRIMARY KEY,
        summary_type TEXT NOT NULL,
        date_start TEXT NOT NULL,
        date_end TEXT NOT NULL,
        content TEXT NOT NULL,
        activity_ids TEXT NOT NULL,
        project_ids TEXT,
        markdown_path TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
]

# Columns added after the first release; older databases get them on open.
ADDED_COLUMNS = [
    ("captures", "failed_attempts", "INTEGER NOT NULL DEFAULT 0"),
    ("activities", "project_checked", "INTEGER NOT NULL DEFAULT 0"),
    ("memory_files", "embedding_model", "TEXT"),
]

ACTIVITY_COLUMNS = (
    "id, title, date, start_time, end_time, application, category, capture_ids, tags, "
    "markdown_path, summary, indexed, project_id, created_at"
)
PROJECT_COLUMNS = (
    "id, title, description, start_date, last_activity_date, activity_count, tags, status, "
    "markdown_path, created_at"
)
HABIT_COLUMNS = (
    "id, pattern_name, pattern_type, confidence, frequency, trigger_conditions, typical_time, "
    "last_occurrence, occurrence_count, markdown_path, created_at, updated_at"
)
ANALYZED_CAPTURE_QUERY = """
    SELECT c.id, c.path, c.captured_at,
           a.application, a.activity_type, a.description, a.category, a.key_elements, a.ocr_text,
           a.context_tags, a.productivity_score, a.project_name, a.accomplishments, a.summary,
           a.raw_response, a.analyzed_at
    FROM captures c
    JOIN analyses a ON a.capture_id = c.id
"""


def pack_embedding(vector: Iterable[float]) -> bytes:
    values = list(vector)
    return struct.pack(f"<{len(values)}f", *values)


def unpack_embedding(blob: bytes | None) -> Optional[List[float]]:
    if not blob:
        return None
    if len(blob) % 4:
        raise ValueError(f"Invalid embedding blob length: {len(blob)}")
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


class MemoryRepository:
    """SQLite store shared by every pipeline stage.

    Each public method runs in its own short transaction. Multi-step updates that must
    stay consistent (session save, chunk replacement, project linking) are done inside one
    connection so they commit or roll back together.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        ensure_directory(db_path.parent)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=30)

    def _initialize(self) -> None:
        with self._connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
            for table, column, ddl in ADDED_COLUMNS:
                existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
                if column not in existing:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
            conn.commit()

    # captures ---------------------------------------------------------------

    def add_capture(self, path: Path, captured_at: datetime) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO captures (path, captured_at, analyzed) VALUES (?, ?, 0)",
                (str(path), to_db_time(captured_at)),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def pending_captures(self, limit: int = 10) -> List[Capture]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, path, captured_at, analyzed
                FROM captures
                WHERE analyzed = 0
                ORDER BY failed_attempts ASC, captured_at ASC, id ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            Capture(id=row[0], path=Path(row[1]), captured_at=from_db_time(row[2]), analyzed=bool(row[3]))
            for row in rows
        ]

    def pending_count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM captures WHERE analyzed = 0").fetchone()
        return int((row or [0])[0])

    def mark_analyzed(self, capture_id: int) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE captures SET analyzed = 1 WHERE id = ?", (capture_id,))
            conn.commit()

    def record_failure(self, capture_id: int) -> None:
        """Count a failed analysis; captures that keep failing queue behind fresh ones."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE captures SET failed_attempts = failed_attempts + 1 WHERE id = ?", (capture_id,)
            )
            conn.commit()

    def failed_attempts(self, capture_id: int) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT failed_attempts FROM captures WHERE id = ?", (capture_id,)).fetchone()
        return int(row[0]) if row else 0

    # analyses ---------------------------------------------------------------

    def save_analysis(self, analysis: Analysis) -> None:
        """Upsert the analysis and flag its capture analyzed in one transaction."""
        analyzed_at = analysis.analyzed_at or utc_now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO analyses (
                    capture_id, application, activity_type, description, category, key_elements,
                    ocr_text, context_tags, productivity_score, project_name, accomplishments,
                    summary, raw_response, analyzed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    analysis.capture_id,
                    analysis.application,
                    analysis.activity_type.value,
                    analysis.description,
                    analysis.category.value,
                    json.dumps(analysis.key_elements, ensure_ascii=False),
                    analysis.ocr_text,
                    json.dumps(analysis.context_tags, ensure_ascii=False),
                    analysis.productivity_score,
                    analysis.project_name,
                    json.dumps(analysis.accomplishments, ensure_ascii=False),
                    analysis.summary,
                    analysis.raw_response,
                    to_db_time(analyzed_at),
                ),
            )
            conn.execute("UPDATE captures SET analyzed = 1 WHERE id = ?", (analysis.capture_id,))
            conn.commit()

    def get_analysis(self, capture_id: int) -> Optional[AnalyzedCapture]:
        with self._connect() as conn:
            row = conn.execute(ANALYZED_CAPTURE_QUERY + " WHERE c.id = ?", (capture_id,)).fetchone()
        return _row_to_analyzed_capture(row) if row else None

    def ungrouped_analyses(self) -> List[AnalyzedCapture]:
        with self._connect() as conn:
            rows = conn.execute(
                ANALYZED_CAPTURE_QUERY
                + " WHERE c.analyzed = 1 AND c.activity_id IS NULL ORDER BY c.captured_at ASC, c.id ASC"
            ).fetchall()
        return [_row_to_analyzed_capture(row) for row in rows]

    def analyses_for_activity(self, activity_id: str) -> List[AnalyzedCapture]:
        with self._connect() as conn:
            rows = conn.execute(
                ANALYZED_CAPTURE_QUERY + " WHERE c.activity_id = ? ORDER BY c.captured_at ASC, c.id ASC",
                (activity_id,),
            ).fetchall()
        return [_row_to_analyzed_capture(row) for row in rows]

    def majority_project_name(self, activity_id: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT a.project_name, COUNT(*) AS cnt, MIN(c.captured_at) AS first_seen
                FROM analyses a
                JOIN captures c ON c.id = a.capture_id
                WHERE c.activity_id = ? AND a.project_name IS NOT NULL AND TRIM(a.project_name) != ''
                GROUP BY a.project_name
                ORDER BY cnt DESC, first_seen ASC
                LIMIT 1
                """,
                (activity_id,),
            ).fetchone()
        return row[0] if row else None

    def accomplishments_for_activities(self, activity_ids: List[str]) -> List[str]:
        if not activity_ids:
            return []
        placeholders = ",".join("?" for _ in activity_ids)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT a.accomplishments
                FROM analyses a
                JOIN captures c ON c.id = a.capture_id
                WHERE c.activity_id IN ({placeholders})
                ORDER BY c.captured_at ASC
                """,
                activity_ids,
            ).fetchall()
        seen: List[str] = []
        for (raw,) in rows:
            for item in _load_list(raw):
                if item and item not in seen:
                    seen.append(item)
        return seen

    # activities -------------------------------------------------------------

    def count_activities_on(self, date: str) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM activities WHERE date = ?", (date,)).fetchone()
        return int((row or [0])[0])

    def save_activity(self, session: ActivitySession) -> None:
        """Insert the session and back-link its captures; both commit or neither does."""
        created_at = session.created_at or utc_now()
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO activities ({ACTIVITY_COLUMNS}, duration_minutes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.id,
                    session.title,
                    session.date,
                    to_db_time(session.start_time),
                    to_db_time(session.end_time),
                    session.application,
                    session.category.value,
                    json.dumps(session.capture_ids),
                    json.dumps(session.tags, ensure_ascii=False),
                    session.markdown_path,
                    session.summary,
                    int(session.indexed),
                    session.project_id,
                    to_db_time(created_at),
                    session.duration_minutes,
                ),
            )
            for capture_id in session.capture_ids:
                cursor = conn.execute(
                    "UPDATE captures SET activity_id = ? WHERE id = ? AND activity_id IS NULL",
                    (session.id, capture_id),
                )
                if cursor.rowcount != 1:
                    raise sqlite3.IntegrityError(
                        f"Capture {capture_id} is missing or already belongs to another activity"
                    )
            conn.commit()

    def get_activity(self, activity_id: str, with_entries: bool = True) -> Optional[ActivitySession]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {ACTIVITY_COLUMNS} FROM activities WHERE id = ?", (activity_id,)
            ).fetchone()
        if not row:
            return None
        session = _row_to_activity(row)
        if with_entries:
            session.entries = self.analyses_for_activity(activity_id)
        return session

    def activities_on(self, date: str) -> List[ActivitySession]:
        return self.activities_between_dates(date, date)

    def activities_between_dates(self, date_start: str, date_end: str) -> List[ActivitySession]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {ACTIVITY_COLUMNS} FROM activities
                WHERE date >= ? AND date <= ?
                ORDER BY start_time ASC
                """,
                (date_start, date_end),
            ).fetchall()
        return [_row_to_activity(row) for row in rows]

    def activities_since(self, since: datetime) -> List[ActivitySession]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {ACTIVITY_COLUMNS} FROM activities WHERE start_time >= ? ORDER BY start_time ASC",
                (to_db_time(since),),
            ).fetchall()
        return [_row_to_activity(row) for row in rows]

    def unlinked_activities(self, limit: int = 50) -> List[ActivitySession]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {ACTIVITY_COLUMNS} FROM activities
                WHERE project_id IS NULL AND project_checked = 0
                ORDER BY start_time DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [_row_to_activity(row) for row in rows]

    def activities_for_project(self, project_id: str) -> List[ActivitySession]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {ACTIVITY_COLUMNS} FROM activities WHERE project_id = ? ORDER BY start_time ASC",
                (project_id,),
            ).fetchall()
        return [_row_to_activity(row) for row in rows]

    def activity_id_for_document(self, markdown_path: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id FROM activities WHERE markdown_path = ?", (markdown_path,)
            ).fetchone()
        return row[0] if row else None

    def mark_activity_indexed(self, activity_id: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE activities SET indexed = 1 WHERE id = ?", (activity_id,))
            conn.commit()

    def update_activity_summary(self, activity_id: str, summary: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE activities SET summary = ? WHERE id = ?", (summary, activity_id))
            conn.commit()

    def mark_project_checked(self, activity_id: str) -> None:
        """Flag a session whose project name could not be resolved so later batches move on."""
        with self._connect() as conn:
            conn.execute("UPDATE activities SET project_checked = 1 WHERE id = ?", (activity_id,))
            conn.commit()

    # projects ---------------------------------------------------------------

    def active_projects(self) -> List[Project]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {PROJECT_COLUMNS} FROM projects WHERE status = ? ORDER BY created_at ASC",
                (ProjectStatus.ACTIVE.value,),
            ).fetchall()
        return [_row_to_project(row) for row in rows]

    def list_projects(self) -> List[Project]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {PROJECT_COLUMNS} FROM projects ORDER BY last_activity_date DESC, created_at DESC"
            ).fetchall()
        return [_row_to_project(row) for row in rows]

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {PROJECT_COLUMNS} FROM projects WHERE id = ?", (project_id,)).fetchone()
        return _row_to_project(row) if row else None

    def create_project(self, project: Project, activity_id: str) -> None:
        """Insert a project whose first member is ``activity_id``."""
        created_at = project.created_at or utc_now()
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO projects ({PROJECT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    project.id,
                    project.title,
                    project.description,
                    project.start_date,
                    project.last_activity_date,
                    project.activity_count,
                    json.dumps(project.tags, ensure_ascii=False),
                    project.status.value,
                    project.markdown_path,
                    to_db_time(created_at),
                ),
            )
            conn.execute("UPDATE activities SET project_id = ? WHERE id = ?", (project.id, activity_id))
            conn.commit()

    def link_activity(self, activity_id: str, project_id: str, activity_date: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE activities SET project_id = ? WHERE id = ?", (project_id, activity_id))
            conn.execute(
                """
                UPDATE projects
                SET last_activity_date = MAX(last_activity_date, ?),
                    activity_count = activity_count + 1
                WHERE id = ?
                """,
                (activity_date, project_id),
            )
            conn.commit()

    # habits -----------------------------------------------------------------

    def get_habit(self, habit_id: str) -> Optional[Habit]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {HABIT_COLUMNS} FROM habits WHERE id = ?", (habit_id,)).fetchone()
        return _row_to_habit(row) if row else None

    def list_habits(self) -> List[Habit]:
        with self._connect() as conn:
            rows = conn.execute(f"SELECT {HABIT_COLUMNS} FROM habits ORDER BY confidence DESC, id ASC").fetchall()
        return [_row_to_habit(row) for row in rows]

    def insert_habit(self, habit: Habit) -> None:
        now = utc_now()
        with self._connect() as conn:
            conn.execute(
                f"INSERT INTO habits ({HABIT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    habit.id,
                    habit.pattern_name,
                    habit.pattern_type.value,
                    habit.confidence,
                    habit.frequency,
                    json.dumps(habit.trigger_conditions, ensure_ascii=False) if habit.trigger_conditions else None,
                    habit.typical_time,
                    to_db_time(habit.last_occurrence) if habit.last_occurrence else None,
                    habit.occurrence_count,
                    habit.markdown_path,
                    to_db_time(habit.created_at or now),
                    to_db_time(habit.updated_at or now),
                ),
            )
            conn.commit()

    def update_habit_detection(self, habit: Habit, updated_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE habits
                SET confidence = ?, occurrence_count = ?, last_occurrence = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    habit.confidence,
                    habit.occurrence_count,
                    to_db_time(habit.last_occurrence) if habit.last_occurrence else None,
                    to_db_time(updated_at),
                    habit.id,
                ),
            )
            conn.commit()

    def update_habit_confidence(self, habit_id: str, confidence: float, updated_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE habits SET confidence = ?, updated_at = ? WHERE id = ?",
                (confidence, to_db_time(updated_at), habit_id),
            )
            conn.commit()

    def delete_habit(self, habit_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM habits WHERE id = ?", (habit_id,))
            conn.commit()

    # memory index -----------------------------------------------------------

    def get_file_state(self, path: str) -> Optional[Tuple[str, Optional[str]]]:
        """``(content hash, embedding model)`` of an indexed file; the model is None without embeddings."""
        with self._connect() as conn:
            row = conn.execute("SELECT hash, embedding_model FROM memory_files WHERE path = ?", (path,)).fetchone()
        return (row[0], row[1]) if row else None

    def link_document_chunks(self, path: str, activity_id: str) -> int:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE memory_chunks SET activity_id = ? WHERE file_path = ? AND activity_id IS NULL",
                (activity_id, path),
            )
            conn.commit()
            return cursor.rowcount

    def indexed_paths(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT path FROM memory_files ORDER BY path").fetchall()
        return [row[0] for row in rows]

    def replace_file_chunks(
        self,
        path: str,
        file_hash: str,
        mtime: float,
        size: int,
        chunks: List[TextChunk],
        embedding_model: Optional[str] = None,
    ) -> None:
        """Purge the stale chunks of ``path`` and write the new version in one transaction."""
        now = to_db_time(utc_now())
        with self._connect() as conn:
            conn.execute("DELETE FROM memory_chunks WHERE file_path = ?", (path,))
            conn.executemany(
                """
                INSERT INTO memory_chunks (id, file_path, start_line, end_line, hash, text, embedding, activity_id, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        chunk.id,
                        path,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.hash,
                        chunk.text,
                        pack_embedding(chunk.embedding) if chunk.embedding else None,
                        chunk.activity_id,
                        now,
                    )
                    for chunk in chunks
                ],
            )
            conn.execute(
                """
                INSERT OR REPLACE INTO memory_files (path, hash, mtime, size, indexed_at, embedding_model)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (path, file_hash, mtime, size, now, embedding_model),
            )
            conn.commit()

    def remove_file(self, path: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM memory_chunks WHERE file_path = ?", (path,))
            conn.execute("DELETE FROM memory_files WHERE path = ?", (path,))
            conn.commit()

    def all_chunks(self) -> List[TextChunk]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, file_path, start_line, end_line, hash, text, embedding, activity_id, updated_at
                FROM memory_chunks
                ORDER BY file_path ASC, start_line ASC
                """
            ).fetchall()
        return [
            TextChunk(
                id=row[0],
                file_path=row[1],
                start_line=row[2],
                end_line=row[3],
                hash=row[4],
                text=row[5],
                embedding=unpack_embedding(row[6]),
                activity_id=row[7],
                updated_at=from_db_time(row[8]),
            )
            for row in rows
        ]

    def chunks_for_file(self, path: str) -> List[TextChunk]:
        return [chunk for chunk in self.all_chunks() if chunk.file_path == path]

    def get_cached_embedding(self, text_hash: str, model: str) -> Optional[List[float]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT embedding FROM embedding_cache WHERE hash = ? AND model = ?", (text_hash, model)
            ).fetchone()
        return unpack_embedding(row[0]) if row else None

    def cache_embedding(self, text_hash: str, model: str, vector: List[float]) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO embedding_cache (hash, model, embedding) VALUES (?, ?, ?)",
                (text_hash, model, pack_embedding(vector)),
            )
            conn.commit()

    # summaries --------------------------------------------------------------

    def save_summary(self, summary: Summary) -> None:
        created_at = summary.created_at or utc_now()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO summaries (
                    id, summary_type, date_start, date_end, content, activity_ids, project_ids,
                    markdown_path, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    summary.id,
                    summary.summary_type.value,
                    summary.date_start,
                    summary.date_end,
                    summary.content,
                    json.dumps(summary.activity_ids),
                    json.dumps(summary.project_ids) if summary.project_ids is not None else None,
                    summary.markdown_path,
                    to_db_time(created_at),
                ),
            )
            conn.commit()

    def get_summary(self, summary_type: SummaryType, date_start: str) -> Optional[Summary]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, summary_type, date_start, date_end, content, activity_ids, project_ids,
                       markdown_path, created_at
                FROM summaries
                WHERE summary_type = ? AND date_start = ?
                """,
                (summary_type.value, date_start),
            ).fetchone()
        if not row:
            return None
        return Summary(
            id=row[0],
            summary_type=SummaryType(row[1]),
            date_start=row[2],
            date_end=row[3],
            content=row[4],
            activity_ids=_load_list(row[5]),
            project_ids=_load_list(row[6]) if row[6] is not None else None,
            markdown_path=row[7],
            created_at=from_db_time(row[8]),
        )

    def count_summaries(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) FROM summaries").fetchone()
        return int((row or [0])[0])

    # stats ------------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        with self._connect() as conn:
            counts = {
                "captures": conn.execute("SELECT COUNT(*) FROM captures").fetchone()[0],
                "analyzed": conn.execute("SELECT COUNT(*) FROM captures WHERE analyzed = 1").fetchone()[0],
                "pending": conn.execute("SELECT COUNT(*) FROM captures WHERE analyzed = 0").fetchone()[0],
                "activities": conn.execute("SELECT COUNT(*) FROM activities").fetchone()[0],
                "projects": conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0],
                "habits": conn.execute("SELECT COUNT(*) FROM habits").fetchone()[0],
                "chunks": conn.execute("SELECT COUNT(*) FROM memory_chunks").fetchone()[0],
                "summaries": conn.execute("SELECT COUNT(*) FROM summaries").fetchone()[0],
            }
        return {key: int(value) for key, value in counts.items()}


def _load_list(raw: str | None) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return value if isinstance(value, list) else []


def _row_to_analyzed_capture(row: tuple) -> AnalyzedCapture:
    analysis = Analysis(
        capture_id=row[0],
        application=row[3],
        activity_type=ActivityType.parse(row[4]),
        description=row[5],
        category=Category.parse(row[6]),
        key_elements=_load_list(row[7]),
        ocr_text=row[8],
        context_tags=_load_list(row[9]),
        productivity_score=int(row[10]),
        project_name=row[11],
        accomplishments=_load_list(row[12]),
        summary=row[13] or "",
        raw_response=row[14] or "",
        analyzed_at=from_db_time(row[15]),
    )
    return AnalyzedCapture(capture_id=row[0], path=Path(row[1]), captured_at=from_db_time(row[2]), analysis=analysis)


def _row_to_activity(row: tuple) -> ActivitySession:
    return ActivitySession(
        id=row[0],
        title=row[1],
        date=row[2],
        start_time=from_db_time(row[3]),
        end_time=from_db_time(row[4]),
        application=row[5],
        category=Category.parse(row[6]),
        capture_ids=[int(value) for value in _load_list(row[7])],
        tags=_load_list(row[8]),
        markdown_path=row[9],
        summary=row[10],
        indexed=bool(row[11]),
        project_id=row[12],
        created_at=from_db_time(row[13]),
    )


def _row_to_project(row: tuple) -> Project:
    return Project(
        id=row[0],
        title=row[1],
        description=row[2] or "",
        start_date=row[3],
        last_activity_date=row[4],
        activity_count=int(row[5]),
        tags=_load_list(row[6]),
        status=ProjectStatus(row[7]),
        markdown_path=row[8],
        created_at=from_db_time(row[9]),
    )


def _row_to_habit(row: tuple) -> Habit:
    return Habit(
        id=row[0],
        pattern_name=row[1],
        pattern_type=HabitPatternType(row[2]),
        confidence=float(row[3]),
        frequency=row[4],
        trigger_conditions=json.loads(row[5]) if row[5] else None,
        typical_time=row[6],
        last_occurrence=from_db_time(row[7]),
        occurrence_count=int(row[8]),
        markdown_path=row[9],
        created_at=from_db_time(row[10]),
        updated_at=from_db_time(row[11]),
    )
