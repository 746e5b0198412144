"""
Event types flowing through the bridge.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from wabridge.utils.helpers import now_iso


# ---------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------

@dataclass(slots=True)
class EventRecord:
    """
    Canonical inbound-message record.

    Persisted to the pull queue, tee'd to monitors and summarised for
    the hook sink. ``timestamp`` is ingestion time, not wire time.
    """

    from_: str                    # chat id; for groups the chat, not the participant
    body: str = ""
    type: str = "chat"
    has_media: bool = False
    is_group: bool = False

    push_name: Optional[str] = None
    chat_name: Optional[str] = None
    author: Optional[str] = None  # participant id when from_ is a group

    timestamp: str = field(default_factory=now_iso)

    # -----------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Wire / disk representation."""
        return {
            "timestamp": self.timestamp,
            "from": self.from_,
            "pushName": self.push_name,
            "chatName": self.chat_name,
            "author": self.author,
            "body": self.body,
            "type": self.type,
            "hasMedia": self.has_media,
            "isGroup": self.is_group,
        }


# ---------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------

@dataclass(slots=True)
class WebhookDelivery:
    """
    One fire-and-forget JSON POST.

    ``label`` only shows up in logs (``hook``, ``monitor:<id>``).
    """

    url: str
    payload: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    label: str = "webhook"
