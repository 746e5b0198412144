"""Chat transport capability interface."""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Optional

from loguru import logger

from wabridge.channels.types import Chat, ClientInfo, Contact, MediaPayload, Message


EventHandler = Callable[..., Any]

#: Lifecycle and data events a transport may emit.
TRANSPORT_EVENTS = (
    "qr",
    "ready",
    "authenticated",
    "auth_failure",
    "disconnected",
    "message",
)


class TransportError(Exception):
    """Any failure reported by, or while talking to, the chat client."""


class ChatTransport(ABC):
    """
    Abstraction over the external chat client.

    The real client drives a headless browser; tests plug in a
    deterministic fake. Everything except event registration is async
    and may fail with ``TransportError`` (or whatever the client raises).

    Events:
        qr(str), ready(), authenticated(), auth_failure(str),
        disconnected(str), message(Message)
    """

    #: Transport unique identifier
    name: str = "base"

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, list[EventHandler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    # =============================
    # Lifecycle
    # =============================

    @abstractmethod
    async def initialize(self) -> None:
        """Start (or restart) the session. Pairing/ready arrive as events."""
        ...

    @abstractmethod
    async def destroy(self) -> None:
        """Tear the session down and release resources."""
        ...

    @property
    @abstractmethod
    def info(self) -> Optional[ClientInfo]:
        """Identity of the paired account, once ready."""
        ...

    # =============================
    # Queries
    # =============================

    @abstractmethod
    async def get_chats(self) -> list[Chat]:
        ...

    @abstractmethod
    async def get_chat_by_id(self, chat_id: str) -> Chat:
        ...

    @abstractmethod
    async def get_contacts(self) -> list[Contact]:
        ...

    @abstractmethod
    async def get_contact_by_id(self, contact_id: str) -> Contact:
        ...

    @abstractmethod
    async def search_messages(
        self,
        query: str,
        limit: int = 20,
        chat_id: Optional[str] = None,
    ) -> list[Message]:
        ...

    @abstractmethod
    async def fetch_messages(self, chat: Chat, limit: int) -> list[Message]:
        ...

    @abstractmethod
    async def download_media(self, message: Message) -> MediaPayload:
        ...

    # =============================
    # Outbound
    # =============================

    @abstractmethod
    async def send_message(
        self,
        chat_id: str,
        text: str,
        quoted_message_id: Optional[str] = None,
    ) -> Message:
        ...

    # =============================
    # Events
    # =============================

    def on(self, event: str, handler: EventHandler) -> None:
        """Register a sync or async handler for ``event``."""
        if event not in TRANSPORT_EVENTS:
            raise ValueError(f"unknown transport event: {event}")
        self._handlers[event].append(handler)

    def emit(self, event: str, *args: Any) -> None:
        """
        Dispatch an event to every handler, in registration order.

        Sync handlers run inline. Coroutines are scheduled on the running
        loop. One failing handler never prevents the next from running.
        """
        for handler in list(self._handlers.get(event, ())):
            try:
                result = handler(*args)
            except Exception:
                logger.exception("Transport handler failed | event={}", event)
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Async transport handler failed")
