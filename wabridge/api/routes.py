"""
Control surface endpoints.

Endpoints that call into the transport are gated on the session being
ready (503 otherwise). Queue, monitor, status and QR endpoints are not.
Transport failures are reported as 500 with the raw error message.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from loguru import logger

from wabridge.api.app import BridgeContext
from wabridge.api.schemas import MonitorRequest, SendGroupRequest, SendRequest
from wabridge.channels.adapter import TransportAdapter, qr_to_data_url
from wabridge.channels.types import Chat, Contact, Message
from wabridge.monitors.registry import MonitorScript, MonitorSpec
from wabridge.utils.helpers import clamp_limit, normalise_chat_id, validate_url


NOT_CONNECTED = "WhatsApp client is not connected"
LAST_MESSAGE_PREVIEW = 100
MEDIA_LOOKUP_LIMIT = 50

router = APIRouter()


# =============================================================================
# Dependencies
# =============================================================================

def get_bridge(request: Request) -> BridgeContext:
    return request.app.state.bridge


def require_connected(bridge: BridgeContext = Depends(get_bridge)) -> TransportAdapter:
    if not bridge.adapter.ready:
        raise HTTPException(status_code=503, detail=NOT_CONNECTED)
    return bridge.adapter


def transport_failure(exc: Exception) -> HTTPException:
    logger.error("Transport call failed | {}", exc)
    return HTTPException(status_code=500, detail=str(exc))


def _require_query(q: Optional[str]) -> str:
    if not q:
        raise HTTPException(status_code=400, detail="Missing query parameter q")
    return q


# =============================================================================
# Projections
# =============================================================================

def project_chat(chat: Chat) -> dict[str, Any]:
    last = chat.last_message
    return {
        "id": chat.id,
        "name": chat.name,
        "isGroup": chat.is_group,
        "unreadCount": chat.unread_count,
        "timestamp": chat.timestamp,
        "lastMessage": (
            {"body": (last.body or "")[:LAST_MESSAGE_PREVIEW], "fromMe": last.from_me}
            if last
            else None
        ),
    }


def project_message(msg: Message) -> dict[str, Any]:
    return {
        "id": msg.id,
        "from": msg.from_,
        "author": msg.author or None,
        "body": msg.body,
        "timestamp": msg.timestamp,
        "fromMe": msg.from_me,
        "hasMedia": msg.has_media,
        "type": msg.type,
    }


def project_search_hit(msg: Message) -> dict[str, Any]:
    return {
        "id": msg.id,
        "from": msg.from_,
        "author": msg.author or None,
        "body": msg.body,
        "timestamp": msg.timestamp,
        "chatName": msg.chat_name or None,
    }


def project_contact(contact: Contact) -> dict[str, Any]:
    return {
        "id": contact.id,
        "name": contact.display_name,
        "number": contact.number,
        "isMyContact": contact.is_my_contact,
        "isGroup": contact.is_group,
    }


# =============================================================================
# Connection
# =============================================================================

@router.get("/status")
async def status(bridge: BridgeContext = Depends(get_bridge)) -> dict[str, Any]:
    state = bridge.adapter.state
    return {
        "status": state.status,
        "info": state.info.to_dict() if state.info else None,
    }


@router.get("/qr")
async def qr(bridge: BridgeContext = Depends(get_bridge)) -> dict[str, Any]:
    state = bridge.adapter.state
    if not state.qr:
        message = "Already authenticated" if state.ready else "No QR available yet"
        return {"qr": None, "message": message}

    try:
        data_url = qr_to_data_url(state.qr)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"qr": state.qr, "base64": data_url}


# =============================================================================
# Events
# =============================================================================

@router.get("/events")
async def drain_events(bridge: BridgeContext = Depends(get_bridge)) -> list[dict[str, Any]]:
    try:
        return bridge.queue.flush()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


@router.get("/events/peek")
async def peek_events(bridge: BridgeContext = Depends(get_bridge)) -> list[dict[str, Any]]:
    try:
        return bridge.queue.peek()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e)) from e


# =============================================================================
# Chats
# =============================================================================

@router.get("/chats")
async def list_chats(
    limit: Optional[str] = None,
    adapter: TransportAdapter = Depends(require_connected),
) -> list[dict[str, Any]]:
    try:
        chats = await adapter.get_chats()
    except Exception as e:
        raise transport_failure(e) from e

    projected = [project_chat(c) for c in chats]
    if limit:
        projected = projected[: clamp_limit(limit)]
    return projected


@router.get("/chats/{chat_id}/messages")
async def chat_messages(
    chat_id: str,
    limit: Optional[str] = None,
    adapter: TransportAdapter = Depends(require_connected),
) -> list[dict[str, Any]]:
    cid = normalise_chat_id(chat_id, "g.us" in chat_id)
    try:
        chat = await adapter.get_chat_by_id(cid)
        messages = await adapter.fetch_messages(chat, clamp_limit(limit))
    except Exception as e:
        raise transport_failure(e) from e
    return [project_message(m) for m in messages]


# =============================================================================
# Contacts
# =============================================================================

@router.get("/contacts")
async def list_contacts(adapter: TransportAdapter = Depends(require_connected)) -> list[dict[str, Any]]:
    try:
        contacts = await adapter.get_contacts()
    except Exception as e:
        raise transport_failure(e) from e
    return [project_contact(c) for c in contacts]


@router.get("/contacts/search")
async def search_contacts(
    q: Optional[str] = None,
    adapter: TransportAdapter = Depends(require_connected),
) -> list[dict[str, Any]]:
    needle = _require_query(q).lower()
    try:
        contacts = await adapter.get_contacts()
    except Exception as e:
        raise transport_failure(e) from e

    return [
        {
            "id": c.id,
            "name": c.display_name,
            "number": c.number,
            "isMyContact": c.is_my_contact,
        }
        for c in contacts
        if needle in (c.display_name or "").lower()
    ]


# =============================================================================
# Groups
# =============================================================================

@router.get("/groups")
async def list_groups(adapter: TransportAdapter = Depends(require_connected)) -> list[dict[str, Any]]:
    try:
        chats = await adapter.get_chats()
    except Exception as e:
        raise transport_failure(e) from e

    return [
        {
            "id": c.id,
            "name": c.name,
            "participants": (
                len(c.group_metadata.participants)
                if c.group_metadata and c.group_metadata.participants
                else None
            ),
        }
        for c in chats
        if c.is_group
    ]


@router.get("/groups/search")
async def search_groups(
    q: Optional[str] = None,
    adapter: TransportAdapter = Depends(require_connected),
) -> list[dict[str, Any]]:
    needle = _require_query(q).lower()
    try:
        chats = await adapter.get_chats()
    except Exception as e:
        raise transport_failure(e) from e

    return [
        {"id": c.id, "name": c.name}
        for c in chats
        if c.is_group and needle in (c.name or "").lower()
    ]


@router.get("/groups/{group_id}/info")
async def group_info(
    group_id: str,
    adapter: TransportAdapter = Depends(require_connected),
) -> dict[str, Any]:
    gid = normalise_chat_id(group_id, True)
    try:
        chat = await adapter.get_chat_by_id(gid)
    except Exception as e:
        raise transport_failure(e) from e

    if not chat.is_group:
        raise HTTPException(status_code=400, detail="Not a group chat")

    meta = chat.group_metadata
    return {
        "id": chat.id,
        "name": chat.name,
        "description": meta.description if meta else None,
        "participants": [
            {"id": p.id, "isAdmin": p.is_admin, "isSuperAdmin": p.is_super_admin}
            for p in (meta.participants if meta else [])
        ],
        "createdAt": meta.creation if meta else None,
    }


# =============================================================================
# Messaging
# =============================================================================

@router.post("/send")
async def send(
    payload: Optional[SendRequest] = Body(None),
    adapter: TransportAdapter = Depends(require_connected),
) -> dict[str, Any]:
    if payload is None or not payload.to or not payload.message:
        raise HTTPException(status_code=400, detail="Missing required fields: to, message")

    chat_id = normalise_chat_id(payload.to)
    try:
        sent = await adapter.send_message(chat_id, payload.message)
    except Exception as e:
        raise transport_failure(e) from e
    return {"success": True, "messageId": sent.id, "to": chat_id}


@router.post("/send-group")
async def send_group(
    payload: Optional[SendGroupRequest] = Body(None),
    adapter: TransportAdapter = Depends(require_connected),
) -> dict[str, Any]:
    if payload is None or not payload.group_id or not payload.message:
        raise HTTPException(status_code=400, detail="Missing required fields: groupId, message")

    gid = normalise_chat_id(payload.group_id, True)
    try:
        sent = await adapter.send_message(gid, payload.message)
    except Exception as e:
        raise transport_failure(e) from e
    return {"success": True, "messageId": sent.id, "to": gid}


# =============================================================================
# Search & media
# =============================================================================

@router.get("/search")
async def search_messages(
    q: Optional[str] = None,
    chat_id: Optional[str] = Query(None, alias="chatId"),
    limit: Optional[str] = None,
    adapter: TransportAdapter = Depends(require_connected),
) -> list[dict[str, Any]]:
    query = _require_query(q)
    scoped = normalise_chat_id(chat_id, "g.us" in chat_id) if chat_id else None
    try:
        messages = await adapter.search_messages(query, limit=clamp_limit(limit), chat_id=scoped)
    except Exception as e:
        raise transport_failure(e) from e
    return [project_search_hit(m) for m in messages]


@router.get("/messages/{message_id}/media")
async def message_media(
    message_id: str,
    adapter: TransportAdapter = Depends(require_connected),
) -> dict[str, Any]:
    # <fromMe>_<chatId>_<msgId>
    parts = message_id.split("_")
    if len(parts) < 3:
        raise HTTPException(status_code=400, detail="Invalid messageId format")

    try:
        chat = await adapter.get_chat_by_id(parts[1])
        recent = await adapter.fetch_messages(chat, MEDIA_LOOKUP_LIMIT)
    except Exception as e:
        raise transport_failure(e) from e

    msg = next((m for m in recent if m.id == message_id), None)
    if msg is None:
        raise HTTPException(status_code=404, detail="Message not found in recent messages")
    if not msg.has_media:
        raise HTTPException(status_code=400, detail="Message has no media")

    try:
        media = await adapter.download_media(msg)
    except Exception as e:
        raise transport_failure(e) from e
    return {"mimetype": media.mimetype, "data": media.data, "filename": media.filename or None}


# =============================================================================
# Monitors
# =============================================================================

@router.get("/monitor")
async def list_monitors(bridge: BridgeContext = Depends(get_bridge)) -> list[dict[str, Any]]:
    return [{"contactId": chat_id, **spec.to_dict()} for chat_id, spec in bridge.monitors.list()]


@router.post("/monitor")
async def add_monitor(
    payload: Optional[MonitorRequest] = Body(None),
    bridge: BridgeContext = Depends(get_bridge),
) -> dict[str, Any]:
    if payload is None or not payload.contact_id or not payload.contact_id.strip():
        raise HTTPException(status_code=400, detail="Missing required field: contactId")

    if payload.webhook:
        ok, reason = validate_url(payload.webhook)
        if not ok:
            raise HTTPException(status_code=400, detail=f"Invalid webhook URL: {reason}")

    spec = MonitorSpec(
        script=MonitorScript(keywords=payload.script.keywords) if payload.script else None,
        webhook=payload.webhook or None,
    )
    try:
        contact_id = bridge.monitors.add(payload.contact_id, spec)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"success": True, "contactId": contact_id}


@router.delete("/monitor/{contact_id}")
async def remove_monitor(
    contact_id: str,
    bridge: BridgeContext = Depends(get_bridge),
) -> dict[str, Any]:
    nid = normalise_chat_id(contact_id)
    try:
        removed = bridge.monitors.remove(nid)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    if not removed:
        raise HTTPException(status_code=404, detail="Monitor not found")
    return {"success": True, "removed": nid}
