from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from pathlib import Path

HASH_LENGTH = 16


def ensure_directory(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def hash_text(text: str) -> str:
    """Short content fingerprint used for chunk and file identity."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def hash_file(path: Path) -> str:
    sha = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(8192), b""):
            sha.update(chunk)
    return sha.hexdigest()[:HASH_LENGTH]


def short_uuid() -> str:
    return uuid.uuid4().hex[:8]


def sanitize_slug(value: str) -> str:
    # Keeps non-ASCII characters so Chinese application names stay readable.
    chars = []
    for ch in value:
        if (ch.isascii() and ch.isalnum()) or ch in "-_" or not ch.isascii():
            chars.append(ch)
        else:
            chars.append("-")
    return "".join(chars).strip("-")


def sanitize_filename(value: str) -> str:
    chars = []
    for ch in value:
        if ch.isascii() and not ch.isalnum() and ch not in "-_":
            chars.append("_")
        else:
            chars.append(ch)
    return "".join(chars).strip("_")


def to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_db_time(raw: str | None) -> datetime | None:
    if not raw:
        return None
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def write_document(root: Path, relative_path: str, content: str) -> Path:
    full_path = root / relative_path
    ensure_directory(full_path.parent)
    full_path.write_text(content, encoding="utf-8")
    return full_path
