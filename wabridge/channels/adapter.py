"""
Transport adapter: session state, lifecycle handlers and reconnect.

Everything above this layer (HTTP surface, ingestion pipeline) talks to
the chat client exclusively through ``TransportAdapter``.
"""

from __future__ import annotations

import asyncio
import base64
import io
import sys
from dataclasses import dataclass
from typing import Callable, Optional, TextIO

import qrcode
from loguru import logger

from wabridge.channels.base import ChatTransport
from wabridge.channels.types import Chat, ClientInfo, Contact, MediaPayload, Message


DEFAULT_RECONNECT_DELAY_S = 5.0


# =============================
# Session state
# =============================

@dataclass(slots=True)
class SessionState:
    """
    Process-wide session record.

    Invariants:
        ready => qr is None and info is not None
        not ready and not shutting_down and qr is None => reconnecting
        shutting_down never goes back to False
    """

    ready: bool = False
    qr: Optional[str] = None
    info: Optional[ClientInfo] = None
    shutting_down: bool = False

    @property
    def status(self) -> str:
        if self.ready:
            return "connected"
        if self.qr:
            return "waiting_for_qr"
        return "disconnected"

    def mark_shutting_down(self) -> bool:
        """Set the flag. Returns False when it was already set."""
        if self.shutting_down:
            return False
        self.shutting_down = True
        return True


def render_qr(data: str, out: Optional[TextIO] = None) -> None:
    """Print a compact ASCII QR for the operator."""
    qr = qrcode.QRCode(border=1)
    qr.add_data(data)
    qr.make(fit=True)
    qr.print_ascii(out=out or sys.stdout, invert=True)


def qr_to_data_url(data: str) -> str:
    """Encode a pairing string as a ``data:image/png;base64,...`` URL."""
    img = qrcode.make(data)
    buf = io.BytesIO()
    img.save(buf)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


# =============================
# Adapter
# =============================

class TransportAdapter:
    """
    Facade over a ``ChatTransport``.

    Responsibilities:
        - Own the ``SessionState``
        - React to qr / ready / authenticated / auth_failure / disconnected
        - One-shot fixed-delay reconnect after every disconnect
        - Delegate queries and sends to the client
    """

    def __init__(
        self,
        client: ChatTransport,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_S,
        qr_renderer: Optional[Callable[[str], None]] = render_qr,
    ):
        self.client = client
        self.state = SessionState()
        self.reconnect_delay = reconnect_delay

        self._qr_renderer = qr_renderer
        self._reconnect_task: Optional[asyncio.Task] = None

        client.on("qr", self._on_qr)
        client.on("ready", self._on_ready)
        client.on("authenticated", self._on_authenticated)
        client.on("auth_failure", self._on_auth_failure)
        client.on("disconnected", self._on_disconnected)

    # =============================
    # Lifecycle
    # =============================

    async def start(self) -> None:
        """Kick off the first session. Failures are logged, not raised."""
        logger.info("WhatsApp client initializing ...")
        await self._initialize()

    async def shutdown(self) -> None:
        """
        Stop for good: no more reconnects, destroy the client.

        Destroy errors are logged and swallowed.
        """
        self.state.mark_shutting_down()

        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

        try:
            await self.client.destroy()
        except Exception as e:
            logger.warning("WhatsApp client destroy failed | {}", e)

        self.state.ready = False
        logger.info("WhatsApp client shut down")

    @property
    def ready(self) -> bool:
        return self.state.ready

    def on_message(self, handler: Callable[[Message], object]) -> None:
        self.client.on("message", handler)

    # =============================
    # Event handlers
    # =============================

    def _on_qr(self, qr: str) -> None:
        self.state.qr = qr
        logger.info("QR code received, scan with WhatsApp")
        if self._qr_renderer is not None:
            try:
                self._qr_renderer(qr)
            except Exception as e:
                logger.warning("QR render failed | {}", e)

    def _on_ready(self) -> None:
        self.state.ready = True
        self.state.qr = None
        self.state.info = self.client.info or ClientInfo()
        logger.success("WhatsApp client ready | {}", self.state.info.pushname or "unknown")

    def _on_authenticated(self) -> None:
        self.state.qr = None
        logger.info("WhatsApp authenticated")

    def _on_auth_failure(self, message: str) -> None:
        logger.error("WhatsApp auth failure | {}", message)

    def _on_disconnected(self, reason: str) -> None:
        self.state.ready = False
        self.state.info = None
        logger.warning("WhatsApp disconnected | {}", reason)

        if self.state.shutting_down:
            return

        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        logger.info("Reconnecting in {}s ...", self.reconnect_delay)
        self._reconnect_task = asyncio.ensure_future(self._reconnect_later())

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        if self.state.shutting_down:
            return
        # the next disconnected emission schedules the next attempt
        self._reconnect_task = None
        await self._initialize()

    async def _initialize(self) -> None:
        try:
            await self.client.initialize()
        except Exception as e:
            logger.error("WhatsApp client initialize failed | {}", e)

    # =============================
    # Delegated operations
    # =============================

    async def get_chats(self) -> list[Chat]:
        return await self.client.get_chats()

    async def get_chat_by_id(self, chat_id: str) -> Chat:
        return await self.client.get_chat_by_id(chat_id)

    async def get_contacts(self) -> list[Contact]:
        return await self.client.get_contacts()

    async def search_messages(
        self,
        query: str,
        limit: int = 20,
        chat_id: Optional[str] = None,
    ) -> list[Message]:
        return await self.client.search_messages(query, limit=limit, chat_id=chat_id)

    async def send_message(self, chat_id: str, text: str) -> Message:
        return await self.client.send_message(chat_id, text)

    async def fetch_messages(self, chat: Chat, limit: int) -> list[Message]:
        return await self.client.fetch_messages(chat, limit)

    async def download_media(self, message: Message) -> MediaPayload:
        return await self.client.download_media(message)

