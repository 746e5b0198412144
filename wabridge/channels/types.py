"""
Transport domain model.

Thin typed wrappers around what the chat client hands back. Only the
fields the bridge actually projects are modelled. Objects that support
follow-up calls (replying, fetching history, downloading media) keep a
reference to the transport that produced them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from wabridge.channels.base import ChatTransport


def serialized_id(value: Any) -> str:
    """Accept both ``"123@c.us"`` and ``{"_serialized": "123@c.us"}``."""
    if isinstance(value, dict):
        return str(value.get("_serialized") or "")
    return "" if value is None else str(value)


class TransportUnboundError(RuntimeError):
    """Raised when a DTO is asked to call back into a missing transport."""


# ============================================================
# Session
# ============================================================

@dataclass(slots=True)
class ClientInfo:
    pushname: Optional[str] = None
    wid: Optional[str] = None
    platform: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"pushname": self.pushname, "wid": self.wid, "platform": self.platform}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientInfo":
        return cls(
            pushname=data.get("pushname"),
            wid=serialized_id(data.get("wid")) or None,
            platform=data.get("platform"),
        )


# ============================================================
# Contacts & groups
# ============================================================

@dataclass(slots=True)
class Contact:
    id: str
    name: Optional[str] = None
    pushname: Optional[str] = None
    number: Optional[str] = None
    is_my_contact: bool = False
    is_group: bool = False

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.pushname or None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Contact":
        return cls(
            id=serialized_id(data.get("id")),
            name=data.get("name"),
            pushname=data.get("pushname"),
            number=data.get("number"),
            is_my_contact=bool(data.get("isMyContact", False)),
            is_group=bool(data.get("isGroup", False)),
        )


@dataclass(slots=True)
class GroupParticipant:
    id: str
    is_admin: bool = False
    is_super_admin: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GroupParticipant":
        return cls(
            id=serialized_id(data.get("id")),
            is_admin=bool(data.get("isAdmin", False)),
            is_super_admin=bool(data.get("isSuperAdmin", False)),
        )


@dataclass(slots=True)
class GroupMetadata:
    description: Optional[str] = None
    creation: Optional[int] = None
    participants: list[GroupParticipant] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GroupMetadata":
        return cls(
            description=data.get("desc"),
            creation=data.get("creation"),
            participants=[
                GroupParticipant.from_dict(p) for p in data.get("participants") or []
            ],
        )


# ============================================================
# Messages
# ============================================================

@dataclass(slots=True)
class MediaPayload:
    mimetype: str
    data: str                       # base64
    filename: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MediaPayload":
        return cls(
            mimetype=data.get("mimetype") or "application/octet-stream",
            data=data.get("data") or "",
            filename=data.get("filename"),
        )


@dataclass(slots=True)
class LastMessage:
    body: str = ""
    from_me: bool = False


@dataclass(slots=True)
class Message:
    """
    A single chat message.

    ``id`` is the serialized form ``<fromMe>_<chatId>_<msgId>``.
    """

    id: str
    from_: str
    body: str = ""
    type: str = "chat"
    timestamp: Optional[int] = None
    from_me: bool = False
    has_media: bool = False
    author: Optional[str] = None
    notify_name: Optional[str] = None
    chat_name: Optional[str] = None

    transport: Optional["ChatTransport"] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], transport: Optional["ChatTransport"] = None
    ) -> "Message":
        chat = data.get("chat")
        return cls(
            id=serialized_id(data.get("id")),
            from_=data.get("from") or "",
            body=data.get("body") or "",
            type=data.get("type") or "chat",
            timestamp=data.get("timestamp"),
            from_me=bool(data.get("fromMe", False)),
            has_media=bool(data.get("hasMedia", False)),
            author=data.get("author") or None,
            notify_name=data.get("notifyName") or (data.get("_data") or {}).get("notifyName"),
            chat_name=data.get("chatName") or (chat.get("name") if isinstance(chat, dict) else None),
            transport=transport,
        )

    def _bound(self) -> "ChatTransport":
        if self.transport is None:
            raise TransportUnboundError(f"message {self.id} is not bound to a transport")
        return self.transport

    async def get_chat(self) -> "Chat":
        return await self._bound().get_chat_by_id(self.from_)

    async def get_contact(self) -> Contact:
        return await self._bound().get_contact_by_id(self.author or self.from_)

    async def reply(self, text: str) -> "Message":
        return await self._bound().send_message(self.from_, text, quoted_message_id=self.id)


# ============================================================
# Chats
# ============================================================

@dataclass(slots=True)
class Chat:
    id: str
    name: str = ""
    is_group: bool = False
    unread_count: int = 0
    timestamp: Optional[int] = None
    last_message: Optional[LastMessage] = None
    group_metadata: Optional[GroupMetadata] = None

    transport: Optional["ChatTransport"] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], transport: Optional["ChatTransport"] = None
    ) -> "Chat":
        last = data.get("lastMessage")
        meta = data.get("groupMetadata")
        return cls(
            id=serialized_id(data.get("id")),
            name=data.get("name") or "",
            is_group=bool(data.get("isGroup", False)),
            unread_count=int(data.get("unreadCount") or 0),
            timestamp=data.get("timestamp"),
            last_message=(
                LastMessage(body=last.get("body") or "", from_me=bool(last.get("fromMe", False)))
                if isinstance(last, dict)
                else None
            ),
            group_metadata=GroupMetadata.from_dict(meta) if isinstance(meta, dict) else None,
            transport=transport,
        )
