from __future__ import annotations

import argparse
import sqlite3
from pathlib import Path


def pending_count(db_path: Path) -> int | None:
    if not db_path.exists():
        return None

    try:
        with sqlite3.connect(str(db_path)) as conn:
            row = conn.execute("SELECT COUNT(*) FROM captures WHERE analyzed = 0").fetchone()
        return int((row or [0])[0])
    except sqlite3.Error:
        return None


def ungrouped_count(db_path: Path) -> int | None:
    if not db_path.exists():
        return None

    try:
        with sqlite3.connect(str(db_path)) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM captures WHERE analyzed = 1 AND activity_id IS NULL"
            ).fetchone()
        return int((row or [0])[0])
    except sqlite3.Error:
        return None


def main() -> None:
    parser = argparse.ArgumentParser(description="mindlog: print pending (unanalyzed) capture count from SQLite")
    parser.add_argument("--db", required=True, help="Path to mindlog.db")
    parser.add_argument("--ungrouped", action="store_true", help="Also print analyzed captures not yet grouped")
    args = parser.parse_args()

    db_path = Path(args.db)
    count = pending_count(db_path)
    print("NA" if count is None else count)
    if args.ungrouped:
        ungrouped = ungrouped_count(db_path)
        print("NA" if ungrouped is None else ungrouped)


if __name__ == "__main__":
    main()
