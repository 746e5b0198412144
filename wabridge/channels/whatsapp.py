"""
WhatsApp transport backed by a browser-automation sidecar.

The sidecar (a Node.js process driving WhatsApp Web in a headless
browser) owns pairing, the wire protocol and media decryption. This
module speaks to it over a single WebSocket.

Architecture:
    WhatsApp Web
          ↓
    Node.js sidecar (WebSocket)
          ↓
    WhatsAppBridgeClient (Python)
          ↓
    TransportAdapter / IngestionPipeline

Frames (JSON text):
    -> {"type": "request",  "id": 7, "method": "getChats", "params": {}}
    <- {"type": "response", "id": 7, "result": [...]}
    <- {"type": "response", "id": 7, "error": {"message": "..."}}
    <- {"type": "event", "event": "message", "data": {...}}
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import websockets
from loguru import logger

from wabridge.channels.base import ChatTransport, TransportError
from wabridge.channels.types import Chat, ClientInfo, Contact, MediaPayload, Message


Connector = Callable[[str], Awaitable[Any]]


class WhatsAppBridgeClient(ChatTransport):
    """
    ``ChatTransport`` over the sidecar WebSocket.

    Responsibilities:
        - Maintain the WebSocket connection (lazily, on ``initialize``)
        - Correlate request / response frames
        - Translate sidecar events into transport events
        - Surface a lost socket as ``disconnected`` so reconnect applies
    """

    name = "whatsapp"

    def __init__(
        self,
        bridge_url: str,
        auth_path: Optional[Path] = None,
        request_timeout: Optional[float] = None,
        connector: Optional[Connector] = None,
    ):
        super().__init__()

        self.bridge_url = bridge_url
        self.auth_path = auth_path
        self.request_timeout = request_timeout

        self._connect: Connector = connector or websockets.connect
        self._ws: Optional[Any] = None
        self._reader: Optional[asyncio.Task] = None
        self._requests: dict[int, asyncio.Future] = {}
        self._next_id = 0
        self._info: Optional[ClientInfo] = None
        self._closing = False

    # =============================
    # Lifecycle
    # =============================

    @property
    def info(self) -> Optional[ClientInfo]:
        return self._info

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def initialize(self) -> None:
        self._closing = False
        await self._ensure_connected()

        params: dict[str, Any] = {}
        if self.auth_path is not None:
            params["authPath"] = str(self.auth_path)
        await self._call("initialize", params)

    async def destroy(self) -> None:
        self._closing = True
        try:
            if self._ws is not None:
                await self._call("destroy")
        finally:
            await self._close_socket()
            self._info = None

    # =============================
    # Queries
    # =============================

    async def get_chats(self) -> list[Chat]:
        result = await self._call("getChats")
        return [Chat.from_dict(c, self) for c in _expect_list(result)]

    async def get_chat_by_id(self, chat_id: str) -> Chat:
        result = await self._call("getChatById", {"chatId": chat_id})
        return Chat.from_dict(_expect_dict(result, f"Chat not found: {chat_id}"), self)

    async def get_contacts(self) -> list[Contact]:
        result = await self._call("getContacts")
        return [Contact.from_dict(c) for c in _expect_list(result)]

    async def get_contact_by_id(self, contact_id: str) -> Contact:
        result = await self._call("getContactById", {"contactId": contact_id})
        return Contact.from_dict(_expect_dict(result, f"Contact not found: {contact_id}"))

    async def search_messages(
        self,
        query: str,
        limit: int = 20,
        chat_id: Optional[str] = None,
    ) -> list[Message]:
        params: dict[str, Any] = {"query": query, "limit": limit}
        if chat_id:
            params["chatId"] = chat_id
        result = await self._call("searchMessages", params)
        return [Message.from_dict(m, self) for m in _expect_list(result)]

    async def fetch_messages(self, chat: Chat, limit: int) -> list[Message]:
        result = await self._call("fetchMessages", {"chatId": chat.id, "limit": limit})
        return [Message.from_dict(m, self) for m in _expect_list(result)]

    async def download_media(self, message: Message) -> MediaPayload:
        result = await self._call("downloadMedia", {"messageId": message.id})
        return MediaPayload.from_dict(_expect_dict(result, "Media download failed"))

    # =============================
    # Outbound
    # =============================

    async def send_message(
        self,
        chat_id: str,
        text: str,
        quoted_message_id: Optional[str] = None,
    ) -> Message:
        params: dict[str, Any] = {"chatId": chat_id, "content": text}
        if quoted_message_id:
            params["quotedMessageId"] = quoted_message_id

        result = await self._call("sendMessage", params)
        logger.debug("WhatsApp outbound sent | chat={} len={}", chat_id, len(text))
        return Message.from_dict(_expect_dict(result, "Send failed"), self)

    # =============================
    # Connection
    # =============================

    async def _ensure_connected(self) -> None:
        if self._ws is not None:
            return

        logger.info("Connecting to WhatsApp sidecar | url={}", self.bridge_url)
        try:
            ws = await self._connect(self.bridge_url)
        except Exception as e:
            reason = f"bridge unreachable: {e}"
            logger.error("WhatsApp sidecar connect failed | {}", e)
            self.emit("disconnected", reason)
            raise TransportError(reason) from e

        self._ws = ws
        self._reader = asyncio.create_task(self._read_loop(ws), name="whatsapp-sidecar-reader")
        logger.info("WhatsApp sidecar connected")

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None

        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug("WhatsApp sidecar close error | {}", e)

        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except (asyncio.CancelledError, Exception):
                pass

        self._fail_pending("WhatsApp bridge connection closed")

    async def _read_loop(self, ws: Any) -> None:
        reason = "bridge connection lost"
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"bridge connection lost: {e}"
            logger.error("WhatsApp sidecar error | {}", e)

        if self._ws is not ws:
            return

        self._ws = None
        self._reader = None
        self._fail_pending(reason)

        if not self._closing:
            self._info = None
            logger.warning("WhatsApp sidecar socket closed | {}", reason)
            self.emit("disconnected", reason)

    def _fail_pending(self, reason: str) -> None:
        pending, self._requests = self._requests, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(TransportError(reason))

    # =============================
    # RPC
    # =============================

    async def _call(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        ws = self._ws
        if ws is None:
            raise TransportError("WhatsApp bridge not connected")

        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._requests[request_id] = future

        frame = {"type": "request", "id": request_id, "method": method, "params": params or {}}
        try:
            await ws.send(json.dumps(frame))
        except Exception as e:
            self._requests.pop(request_id, None)
            raise TransportError(f"{method} failed: {e}") from e

        if self.request_timeout is None:
            return await future

        try:
            return await asyncio.wait_for(future, self.request_timeout)
        except asyncio.TimeoutError as e:
            self._requests.pop(request_id, None)
            raise TransportError(f"{method} timed out after {self.request_timeout}s") from e

    # =============================
    # Frame handling
    # =============================

    def _handle_frame(self, raw: Any) -> None:
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Invalid JSON from WhatsApp sidecar: {}", str(raw)[:200])
            return

        if not isinstance(data, dict):
            return

        kind = data.get("type")
        if kind == "response":
            self._resolve(data)
        elif kind == "event":
            self._dispatch_event(data.get("event"), data.get("data"))
        else:
            logger.debug("Unknown WhatsApp sidecar frame: {}", data)

    def _resolve(self, data: dict[str, Any]) -> None:
        future = self._requests.pop(data.get("id"), None)
        if future is None or future.done():
            return

        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            future.set_exception(TransportError(message or "unknown transport error"))
        else:
            future.set_result(data.get("result"))

    def _dispatch_event(self, event: Any, payload: Any) -> None:
        if event == "qr":
            self.emit("qr", str(payload or ""))

        elif event == "ready":
            if isinstance(payload, dict):
                self._info = ClientInfo.from_dict(payload)
            self.emit("ready")

        elif event == "authenticated":
            self.emit("authenticated")

        elif event == "auth_failure":
            self.emit("auth_failure", str(payload or ""))

        elif event == "disconnected":
            self._info = None
            self.emit("disconnected", str(payload or ""))

        elif event == "message":
            if isinstance(payload, dict):
                self.emit("message", Message.from_dict(payload, self))

        else:
            logger.debug("Unknown WhatsApp sidecar event: {}", event)


def _expect_list(result: Any) -> list[dict[str, Any]]:
    if not isinstance(result, list):
        return []
    return [item for item in result if isinstance(item, dict)]


def _expect_dict(result: Any, error: str) -> dict[str, Any]:
    if not isinstance(result, dict):
        raise TransportError(error)
    return result
