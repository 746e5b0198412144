"""
Runtime utility helpers.

Design principles:
- Centralized path management
- Pure functional utilities
- Predictable IO boundaries
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Final, Optional
from urllib.parse import urlparse


# ===========================
# Path System
# ===========================

@dataclass(frozen=True, slots=True)
class RuntimePaths:
    """
    Centralized runtime path manager.

    Everything the bridge persists lives under a single base directory:

        <root>/hook-rules.json      routing configuration (read-only)
        <root>/auth/                transport session state (owned by the sidecar)
        <root>/events/incoming.jsonl
        <root>/logs/<chat>.jsonl    per-monitor trails
        <root>/monitors.json
    """

    root: Path

    def ensure(self) -> "RuntimePaths":
        self.root.mkdir(parents=True, exist_ok=True)
        self.auth.mkdir(parents=True, exist_ok=True)
        self.events.mkdir(parents=True, exist_ok=True)
        self.logs.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def hook_rules(self) -> Path:
        return self.root / "hook-rules.json"

    @property
    def auth(self) -> Path:
        return self.root / "auth"

    @property
    def events(self) -> Path:
        return self.root / "events"

    @property
    def logs(self) -> Path:
        return self.root / "logs"

    @property
    def monitors(self) -> Path:
        return self.root / "monitors.json"


# ===========================
# Clock Utilities
# ===========================

def now_iso() -> str:
    """Return current UTC timestamp in ISO-8601 format (millisecond precision)."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


# ===========================
# Chat identifiers
# ===========================

USER_SUFFIX: Final[str] = "@c.us"
GROUP_SUFFIX: Final[str] = "@g.us"
STATUS_BROADCAST: Final[str] = "status@broadcast"


def normalise_chat_id(chat_id: Any, group: bool = False) -> Optional[str]:
    """
    Normalise a chat identifier.

    Bare numbers get ``@g.us`` when ``group`` is set, ``@c.us`` otherwise.
    Anything already carrying an ``@`` is returned untouched (idempotent).
    Empty input is returned as-is.
    """
    if chat_id is None or chat_id == "":
        return chat_id
    value = str(chat_id).strip()
    if "@" in value:
        return value
    return f"{value}{GROUP_SUFFIX if group else USER_SUFFIX}"


def strip_chat_suffix(chat_id: str) -> str:
    """Return the number portion of an identifier, for display only."""
    return chat_id.replace(USER_SUFFIX, "").replace(GROUP_SUFFIX, "")


# ===========================
# String Utilities
# ===========================

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def sanitise_filename(name: str) -> str:
    """Replace every non-alphanumeric character with ``_``."""
    return _NON_ALNUM.sub("_", name)


def truncate_bytes(s: str, max_bytes: int) -> str:
    """Cut a string to at most ``max_bytes`` of UTF-8 without splitting a character."""
    raw = s.encode("utf-8")
    if len(raw) <= max_bytes:
        return s
    return raw[:max_bytes].decode("utf-8", errors="ignore")


def clamp_limit(raw: Any, default: int = 20, maximum: int = 100) -> int:
    """
    Parse a ``limit`` query value.

    Unparseable or non-positive values fall back to ``default``;
    everything is capped at ``maximum``.
    """
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return default
    if value <= 0:
        return default
    return min(value, maximum)


# ===========================
# URL validation
# ===========================

def validate_url(url: str) -> tuple[bool, str]:
    """Validate URL format and scheme."""
    try:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            return False, "Only http/https URLs are allowed"
        if not parsed.netloc:
            return False, "URL missing domain"
        return True, ""
    except Exception as exc:
        return False, str(exc)


# ===========================
# Directory Helpers
# ===========================

def ensure_dir(path: Path) -> Path:
    """Ensure directory exists."""
    path.mkdir(parents=True, exist_ok=True)
    return path
