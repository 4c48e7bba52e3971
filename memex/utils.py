"""Shared utility functions for memex."""

import os
import re
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim.

    Examples:
        "  hello\\n\\n world " -> "hello world"
    """
    return _WHITESPACE.sub(" ", text).strip()


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """Generate an opaque unique id: <prefix>_<epoch-ms>_<8 hex>."""
    return f"{prefix}_{now_ms()}_{uuid.uuid4().hex[:8]}"


def backup_filename(when: datetime | None = None) -> str:
    """Backup file name for the UTC day of `when`: memex-backup-YYYY-MM-DD.json"""
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return f"memex-backup-{when.date().isoformat()}.json"


def ms_to_iso(ms: int) -> str:
    """Render epoch milliseconds as a local ISO timestamp (seconds precision)."""
    return datetime.fromtimestamp(ms / 1000).isoformat(timespec="seconds")


def get_api_key() -> str:
    """Get Google API key from environment or secrets file."""
    key = os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY")
    if key:
        return key
    secrets_path = Path.home() / ".secrets" / "GOOGLE_API_KEY"
    if secrets_path.exists():
        return secrets_path.read_text().strip()
    raise ValueError(
        "GOOGLE_API_KEY not found. Set environment variable or create ~/.secrets/GOOGLE_API_KEY"
    )
