from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Optional

import pytest

from wabridge.channels.base import TransportError
from wabridge.channels.types import Message
from wabridge.channels.whatsapp import WhatsAppBridgeClient


_CLOSED = object()


class FakeSocket:
    """Scriptable sidecar socket. ``responder(frame)`` returns a result or raises."""

    def __init__(self, responder: Optional[Callable[[dict], Any]] = None):
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()
        self._responder = responder

    async def send(self, raw: str) -> None:
        frame = json.loads(raw)
        self.sent.append(frame)
        if self._responder is None:
            return
        try:
            result = self._responder(frame)
            reply = {"type": "response", "id": frame["id"], "result": result}
        except Exception as e:
            reply = {"type": "response", "id": frame["id"], "error": {"message": str(e)}}
        self.push(reply)

    def push(self, frame: Any) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self) -> None:
        self._incoming.put_nowait(_CLOSED)

    async def close(self) -> None:
        self.closed = True
        self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


def _client(socket: FakeSocket, **kwargs) -> WhatsAppBridgeClient:
    async def connect(url: str):
        return socket

    return WhatsAppBridgeClient("ws://sidecar.test", connector=connect, **kwargs)


def _responder(frame: dict) -> Any:
    method = frame["method"]
    if method == "getChats":
        return [
            {"id": {"_serialized": "111@c.us"}, "name": "Alice", "unreadCount": 1,
             "lastMessage": {"body": "yo", "fromMe": True}},
            {"id": "120363@g.us", "name": "Group", "isGroup": True,
             "groupMetadata": {"desc": "d", "creation": 1, "participants": [{"id": "1@c.us", "isAdmin": True}]}},
            "junk",
        ]
    if method == "getChatById":
        if frame["params"]["chatId"] == "missing@c.us":
            raise RuntimeError("chat not found")
        return {"id": frame["params"]["chatId"], "name": "Alice"}
    if method == "sendMessage":
        return {"id": {"_serialized": "true_111@c.us_OUT"}, "from": "me@c.us", "body": frame["params"]["content"], "fromMe": True}
    return {}


@pytest.mark.anyio
async def test_initialize_sends_auth_path(tmp_path):
    socket = FakeSocket(_responder)
    client = _client(socket, auth_path=tmp_path / "auth")

    await client.initialize()

    assert client.connected
    assert socket.sent[0]["type"] == "request"
    assert socket.sent[0]["method"] == "initialize"
    assert socket.sent[0]["params"] == {"authPath": str(tmp_path / "auth")}
    await client.destroy()


@pytest.mark.anyio
async def test_queries_map_to_dtos():
    socket = FakeSocket(_responder)
    client = _client(socket)
    await client.initialize()

    chats = await client.get_chats()
    assert [c.id for c in chats] == ["111@c.us", "120363@g.us"]
    assert chats[0].last_message.from_me is True
    assert chats[1].group_metadata.participants[0].is_admin is True

    chat = await client.get_chat_by_id("111@c.us")
    assert chat.transport is client

    sent = await client.send_message("111@c.us", "hello", quoted_message_id="false_111@c.us_Q")
    assert sent.id == "true_111@c.us_OUT"
    assert socket.sent[-1]["params"] == {
        "chatId": "111@c.us",
        "content": "hello",
        "quotedMessageId": "false_111@c.us_Q",
    }
    await client.destroy()


@pytest.mark.anyio
async def test_error_response_raises_transport_error():
    client = _client(FakeSocket(_responder))
    await client.initialize()

    with pytest.raises(TransportError, match="chat not found"):
        await client.get_chat_by_id("missing@c.us")
    await client.destroy()


@pytest.mark.anyio
async def test_events_are_translated():
    socket = FakeSocket(_responder)
    client = _client(socket)
    seen: list[tuple] = []
    for name in ("qr", "ready", "authenticated", "message"):
        client.on(name, lambda *args, _n=name: seen.append((_n, *args)))
    await client.initialize()

    socket.push({"type": "event", "event": "qr", "data": "code-1"})
    socket.push({"type": "event", "event": "authenticated"})
    socket.push({"type": "event", "event": "ready",
                 "data": {"pushname": "Me", "wid": {"_serialized": "999@c.us"}, "platform": "web"}})
    socket.push("not json at all")
    socket.push({"type": "event", "event": "message",
                 "data": {"id": "false_111@c.us_M", "from": "111@c.us", "body": "hi",
                          "_data": {"notifyName": "Ali"}}})
    await asyncio.sleep(0.05)

    assert [s[0] for s in seen] == ["qr", "authenticated", "ready", "message"]
    assert seen[0][1] == "code-1"
    assert client.info.wid == "999@c.us"
    msg = seen[3][1]
    assert isinstance(msg, Message)
    assert msg.notify_name == "Ali"
    assert msg.transport is client
    await client.destroy()


@pytest.mark.anyio
async def test_lost_socket_fails_pending_and_emits_disconnected():
    socket = FakeSocket()
    client = _client(socket)
    reasons: list[str] = []
    client.on("disconnected", reasons.append)

    socket.push({"type": "response", "id": 1, "result": None})
    await client.initialize()

    pending = asyncio.ensure_future(client.get_chats())
    await asyncio.sleep(0.01)
    socket.drop()

    with pytest.raises(TransportError):
        await pending
    assert reasons == ["bridge connection lost"]
    assert not client.connected


@pytest.mark.anyio
async def test_unreachable_sidecar_emits_disconnected():
    async def refuse(url: str):
        raise OSError("connection refused")

    client = WhatsAppBridgeClient("ws://sidecar.test", connector=refuse)
    reasons: list[str] = []
    client.on("disconnected", reasons.append)

    with pytest.raises(TransportError):
        await client.initialize()
    assert reasons and reasons[0].startswith("bridge unreachable")


@pytest.mark.anyio
async def test_destroy_does_not_emit_disconnected():
    socket = FakeSocket(_responder)
    client = _client(socket)
    reasons: list[str] = []
    client.on("disconnected", reasons.append)

    await client.initialize()
    await client.destroy()
    await asyncio.sleep(0.01)

    assert socket.closed
    assert reasons == []
    assert socket.sent[-1]["method"] == "destroy"


@pytest.mark.anyio
async def test_request_timeout():
    client = _client(FakeSocket(), request_timeout=0.05)
    with pytest.raises(TransportError, match="timed out"):
        await client.initialize()
    with pytest.raises(TransportError):
        await client.destroy()
    assert not client.connected


def test_unknown_event_registration_rejected():
    client = WhatsAppBridgeClient("ws://sidecar.test")
    with pytest.raises(ValueError):
        client.on("typing", lambda: None)
