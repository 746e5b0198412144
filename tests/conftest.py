from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import pytest

from wabridge.bus.queue import EventQueue
from wabridge.channels.adapter import TransportAdapter
from wabridge.channels.base import ChatTransport, TransportError
from wabridge.channels.types import (
    Chat,
    ClientInfo,
    Contact,
    GroupMetadata,
    GroupParticipant,
    LastMessage,
    MediaPayload,
    Message,
)
from wabridge.config.schema import HookRules
from wabridge.monitors.registry import MonitorRegistry


SAMPLE_RULES: dict[str, Any] = {
    "openclaw": {"hookUrl": "http://127.0.0.1:18789/hooks/agent", "hookToken": "secret"},
    "ignoreIds": ["bridge@c.us"],
    "contacts": {
        "categories": {
            "family": {
                "ids": ["111@c.us", "222@c.us"],
                "action": "reply-and-notify",
                "style": "casual",
                "context": "Family members",
            },
            "work": {
                "ids": [],
                "matchName": "Boss",
                "action": "notify-only",
                "context": "Work contacts",
            },
        },
        "defaults": {
            "groups": {"action": "ignore"},
            "unknown": {"action": "notify-only"},
        },
    },
    "telegram": {"chatId": "12345"},
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def sample_rules() -> HookRules:
    return HookRules.model_validate(SAMPLE_RULES)


class FakeTransport(ChatTransport):
    """In-memory ChatTransport with canned data and recorded sends."""

    name = "fake"

    def __init__(self) -> None:
        super().__init__()
        self._info: Optional[ClientInfo] = ClientInfo(pushname="Bridge", wid="999@c.us", platform="android")
        self.initialize_calls = 0
        self.destroy_calls = 0
        self.fail_initialize = False
        self.fail_destroy = False
        self.fail_queries = False
        self.sent: list[tuple[str, str, Optional[str]]] = []

        self.chats: dict[str, Chat] = {}
        self.contacts: dict[str, Contact] = {}
        self.history: dict[str, list[Message]] = {}
        self.media: dict[str, MediaPayload] = {}

        self.add_chat(
            Chat(
                id="111@c.us",
                name="Alice",
                unread_count=2,
                timestamp=1700000000,
                last_message=LastMessage(body="x" * 150, from_me=False),
            )
        )
        self.add_chat(
            Chat(
                id="120363@g.us",
                name="Family Group",
                is_group=True,
                timestamp=1700000100,
                group_metadata=GroupMetadata(
                    description="Weekend plans",
                    creation=1600000000,
                    participants=[
                        GroupParticipant(id="111@c.us", is_admin=True),
                        GroupParticipant(id="222@c.us"),
                    ],
                ),
            )
        )
        self.contacts["111@c.us"] = Contact(
            id="111@c.us", name="Alice", pushname="Ali", number="111", is_my_contact=True
        )
        self.contacts["222@c.us"] = Contact(
            id="222@c.us", name=None, pushname="Bob", number="222", is_my_contact=False
        )
        self.history["111@c.us"] = [
            Message(id="false_111@c.us_AAA", from_="111@c.us", body="Hi", timestamp=1700000000, transport=self),
            Message(
                id="false_111@c.us_BBB",
                from_="111@c.us",
                body="",
                type="image",
                has_media=True,
                timestamp=1700000001,
                transport=self,
            ),
        ]
        self.media["false_111@c.us_BBB"] = MediaPayload(mimetype="image/jpeg", data="aGVsbG8=", filename="pic.jpg")

    def add_chat(self, chat: Chat) -> None:
        chat.transport = self
        self.chats[chat.id] = chat

    def _check(self) -> None:
        if self.fail_queries:
            raise TransportError("transport exploded")

    @property
    def info(self) -> Optional[ClientInfo]:
        return self._info

    async def initialize(self) -> None:
        self.initialize_calls += 1
        if self.fail_initialize:
            raise TransportError("cannot initialize")

    async def destroy(self) -> None:
        self.destroy_calls += 1
        if self.fail_destroy:
            raise TransportError("cannot destroy")

    async def get_chats(self) -> list[Chat]:
        self._check()
        return list(self.chats.values())

    async def get_chat_by_id(self, chat_id: str) -> Chat:
        self._check()
        if chat_id not in self.chats:
            raise TransportError(f"chat not found: {chat_id}")
        return self.chats[chat_id]

    async def get_contacts(self) -> list[Contact]:
        self._check()
        return list(self.contacts.values())

    async def get_contact_by_id(self, contact_id: str) -> Contact:
        self._check()
        if contact_id not in self.contacts:
            raise TransportError(f"contact not found: {contact_id}")
        return self.contacts[contact_id]

    async def search_messages(self, query: str, limit: int = 20, chat_id: Optional[str] = None) -> list[Message]:
        self._check()
        hits = []
        for cid, msgs in self.history.items():
            if chat_id and cid != chat_id:
                continue
            hits.extend(m for m in msgs if query.lower() in m.body.lower())
        return hits[:limit]

    async def fetch_messages(self, chat: Chat, limit: int) -> list[Message]:
        self._check()
        return self.history.get(chat.id, [])[-limit:]

    async def download_media(self, message: Message) -> MediaPayload:
        self._check()
        return self.media[message.id]

    async def send_message(self, chat_id: str, text: str, quoted_message_id: Optional[str] = None) -> Message:
        self._check()
        self.sent.append((chat_id, text, quoted_message_id))
        return Message(id=f"true_{chat_id}_SENT{len(self.sent)}", from_=chat_id, body=text, from_me=True)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def adapter(transport: FakeTransport) -> TransportAdapter:
    return TransportAdapter(transport, reconnect_delay=0.01, qr_renderer=None)


@pytest.fixture
def connected_adapter(adapter: TransportAdapter, transport: FakeTransport) -> TransportAdapter:
    transport.emit("ready")
    return adapter


@pytest.fixture
def event_queue(tmp_path: Path) -> EventQueue:
    return EventQueue(tmp_path / "events")


@pytest.fixture
def monitors(tmp_path: Path) -> MonitorRegistry:
    return MonitorRegistry(tmp_path / "monitors.json")
