"""
Durable pull queue for inbound events.

Layout:
    events/incoming.jsonl                  live append target
    events/incoming.jsonl.draining-<n>     rotated by an in-progress drain

One JSON object per line. Lines that do not decode to an object are
treated as absent.
"""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any, Mapping

from loguru import logger

from wabridge.utils.helpers import ensure_dir


QUEUE_FILENAME = "incoming.jsonl"
DRAIN_MARKER = ".draining-"


class EventQueue:
    """
    Append-only JSONL queue with peek / flush semantics.

    Ordering is FIFO by insertion; no deduplication.

    ``flush`` rotates the live file away with an atomic rename before
    reading it, so an append that races a drain lands in a fresh file
    instead of being truncated. A rotated file left behind by a crash is
    picked up by the next read, which makes draining at-least-once.
    """

    def __init__(self, directory: Path):
        self.dir = ensure_dir(directory)
        self.file = self.dir / QUEUE_FILENAME
        self._rotations = 0

    # ---------- write ----------

    def push(self, event: Mapping[str, Any]) -> None:
        """Append one event. I/O errors propagate."""
        line = json.dumps(dict(event), ensure_ascii=False)
        with open(self.file, "a", encoding="utf-8") as f:
            f.write(line + "\n")
            f.flush()

    # ---------- read ----------

    def peek(self) -> list[dict[str, Any]]:
        """Return every pending event without consuming it."""
        events: list[dict[str, Any]] = []
        for path in self._pending_rotations() + [self.file]:
            events.extend(self._read(path))
        return events

    def flush(self) -> list[dict[str, Any]]:
        """Return every pending event and remove them from the queue."""
        rotated = self._pending_rotations()

        current = self._rotate()
        if current is not None:
            rotated.append(current)

        events: list[dict[str, Any]] = []
        for path in rotated:
            events.extend(self._read(path))

        for path in rotated:
            path.unlink(missing_ok=True)

        if events:
            logger.debug("Event queue drained | count={}", len(events))
        return events

    def clear(self) -> None:
        """Unconditionally drop every pending event."""
        for path in self._pending_rotations():
            path.unlink(missing_ok=True)
        if self.file.exists():
            self.file.write_text("", encoding="utf-8")

    def __len__(self) -> int:
        return len(self.peek())

    # ---------- internals ----------

    def _rotate(self) -> Path | None:
        if not self.file.exists():
            return None

        self._rotations += 1
        target = self.file.with_name(
            f"{QUEUE_FILENAME}{DRAIN_MARKER}{time.time_ns()}-{os.getpid()}-{self._rotations}"
        )
        try:
            os.replace(self.file, target)
        except FileNotFoundError:
            return None
        return target

    def _pending_rotations(self) -> list[Path]:
        paths = self.dir.glob(f"{QUEUE_FILENAME}{DRAIN_MARKER}*")
        return sorted(paths, key=_rotation_order)

    @staticmethod
    def _read(path: Path) -> list[dict[str, Any]]:
        try:
            raw = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return []

        events: list[dict[str, Any]] = []
        for line in raw.splitlines():
            if not line.strip():
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                events.append(data)
        return events


def _rotation_order(path: Path) -> tuple[int, str]:
    suffix = path.name.split(DRAIN_MARKER, 1)[-1]
    head = suffix.split("-", 1)[0]
    return (int(head) if head.isdigit() else 0, path.name)
