"""
Per-contact monitor registry.

Design principles:
- MonitorSpec = pure data object
- Registry = IO + lifecycle orchestration
- Whole-file write-through on every mutation
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from wabridge.utils.helpers import now_iso, normalise_chat_id


# ===========================
# Monitor Objects
# ===========================

@dataclass(slots=True)
class MonitorScript:
    """Keyword auto-reply script. Keyword order is significant."""

    keywords: Optional[dict[str, str]] = None

    def to_dict(self) -> dict[str, Any]:
        return {"keywords": self.keywords}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["MonitorScript"]:
        if not isinstance(data, dict):
            return None
        keywords = data.get("keywords")
        if isinstance(keywords, dict):
            keywords = {str(k): str(v) for k, v in keywords.items()}
        else:
            keywords = None
        return cls(keywords=keywords)


@dataclass(slots=True)
class MonitorSpec:
    script: Optional[MonitorScript] = None
    webhook: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "script": self.script.to_dict() if self.script else None,
            "webhook": self.webhook,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MonitorSpec":
        return cls(
            script=MonitorScript.from_dict(data.get("script")),
            webhook=data.get("webhook") or None,
            created_at=data.get("createdAt") or now_iso(),
        )


def match_keyword(keywords: Optional[dict[str, str]], body: str) -> Optional[str]:
    """
    Return the reply of the first keyword contained in ``body``.

    Case-insensitive substring match, insertion order, at most one hit.
    """
    if not keywords or not body:
        return None
    lower = body.lower()
    for keyword, reply in keywords.items():
        if keyword.lower() in lower:
            return reply
    return None


# ===========================
# Registry
# ===========================

class MonitorRegistry:
    """
    Persistent ``chat id -> MonitorSpec`` mapping.

    Keys are always stored normalised; every lookup normalises first.
    Mutations are serialised by the event loop, so no file locking.
    """

    def __init__(self, path: Path):
        self.path = path
        self._monitors: dict[str, MonitorSpec] = self._load()

    # ---------- core APIs ----------

    def list(self) -> list[tuple[str, MonitorSpec]]:
        return list(self._monitors.items())

    def get(self, chat_id: str) -> Optional[MonitorSpec]:
        key = normalise_chat_id(chat_id)
        if not key:
            return None
        return self._monitors.get(key)

    def add(self, chat_id: str, spec: MonitorSpec) -> str:
        """Insert or overwrite. Returns the normalised key."""
        key = normalise_chat_id(chat_id)
        if not key:
            raise ValueError("contact id must not be empty")
        self._monitors[key] = spec
        self._save()
        logger.info("Monitor added | contact={} webhook={}", key, bool(spec.webhook))
        return key

    def remove(self, chat_id: str) -> bool:
        key = normalise_chat_id(chat_id)
        if not key or key not in self._monitors:
            return False
        del self._monitors[key]
        self._save()
        logger.info("Monitor removed | contact={}", key)
        return True

    # ---------- persistence ----------

    def _save(self) -> None:
        """Replace the whole file. Errors propagate to the caller."""
        data = {key: spec.to_dict() for key, spec in self._monitors.items()}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        tmp.replace(self.path)

    def _load(self) -> dict[str, MonitorSpec]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except Exception as e:
            logger.warning("Ignoring unreadable monitor store | path={} err={}", self.path, e)
            return {}

        if not isinstance(raw, dict):
            logger.warning("Ignoring malformed monitor store | path={}", self.path)
            return {}

        monitors: dict[str, MonitorSpec] = {}
        for chat_id, data in raw.items():
            key = normalise_chat_id(chat_id)
            if not key or not isinstance(data, dict):
                continue
            monitors[key] = MonitorSpec.from_dict(data)

        logger.info("Loaded monitors | count={}", len(monitors))
        return monitors
