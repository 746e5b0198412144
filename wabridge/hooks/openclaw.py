"""
Hook-sink payload composition and delivery.

The hook sink is an agent that decides what to do with each inbound
message. The bridge hands it a self-contained text brief: who wrote,
what they wrote, the contact directory, the routing rules, and how to
act (notify on Telegram, reply via this bridge).

Everything except ``HookNotifier`` is pure.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from loguru import logger

from wabridge.bus.dispatcher import WebhookDispatcher
from wabridge.bus.events import EventRecord, WebhookDelivery
from wabridge.config.schema import ContactCategory, ContactDefaults, HookRules
from wabridge.utils.helpers import strip_chat_suffix, truncate_bytes


MAX_BODY_BYTES = 1000
MEDIA_PLACEHOLDER = "[mídia]"
HOOK_TIMEOUT_SECONDS = 120
DEFAULT_BRIDGE_PORT = 3100


# =============================================================================
# Sections
# =============================================================================

def build_contact_directory(categories: Mapping[str, ContactCategory]) -> str:
    """One block per category: NAME:, member ids, name hint, context."""
    lines: list[str] = []
    for name, cat in categories.items():
        lines.append(f"{name.upper()}:")
        for chat_id in cat.ids:
            lines.append(f"  - {chat_id}")
        if cat.match_name:
            lines.append(f"  - (match contact name: {cat.match_name})")
        if cat.context:
            lines.append(f"  Context: {cat.context}")
    return "\n".join(lines)


def describe_action(cat: ContactCategory) -> str:
    if cat.action == "reply-and-notify":
        return (
            f"Reply on WhatsApp (style: {cat.style or 'default'}). "
            "ALWAYS notify on Telegram after."
        )
    if cat.action == "notify-only":
        return "Do NOT reply on WhatsApp. Notify on Telegram with a brief summary."
    return f"Action: {cat.action}"


def build_routing_rules(
    categories: Mapping[str, ContactCategory],
    defaults: ContactDefaults,
    telegram_chat_id: str,
) -> str:
    """Numbered rules per category, default rules, then the Telegram how-to."""
    lines: list[str] = []
    i = 1
    for name, cat in categories.items():
        lines.append(f"{i}. {name.upper()}: {describe_action(cat)}")
        i += 1

    if defaults.groups.action == "ignore":
        lines.append(f"{i}. GROUPS (isGroup=true): Do NOT reply. Do NOT notify. Reply NO_REPLY.")
        i += 1

    if defaults.unknown.action == "notify-only":
        lines.append(
            f"{i}. SPAM / UNKNOWN / PROMOTIONAL: Do NOT reply on WhatsApp. "
            "Notify on Telegram with a brief summary."
        )

    lines.append("")
    lines.append("== HOW TO NOTIFY ON TELEGRAM ==")
    lines.append(
        "Use the message tool: action=send, channel=telegram, "
        f"target={telegram_chat_id}, message=your summary"
    )
    return "\n".join(lines)


def match_category(
    chat_id: str,
    push_name: Optional[str],
    categories: Mapping[str, ContactCategory],
) -> Optional[str]:
    """
    Name of the first category the sender belongs to, in insertion order.

    A sender matches by explicit id, or by ``match_name`` being a
    case-insensitive substring of its display name.
    """
    for name, cat in categories.items():
        if chat_id in cat.ids:
            return name
        if cat.match_name and push_name and cat.match_name.lower() in push_name.lower():
            return name
    return None


# =============================================================================
# Message
# =============================================================================

def build_hook_message(event: EventRecord, rules: HookRules, bridge_port: int = DEFAULT_BRIDGE_PORT) -> str:
    """Assemble the full brief for one event. Pure and deterministic."""
    sender = event.push_name or strip_chat_suffix(event.from_)
    group = f" (grupo: {event.chat_name or '?'})" if event.is_group else ""
    body = truncate_bytes(event.body or MEDIA_PLACEHOLDER, MAX_BODY_BYTES)
    wa_id = event.from_
    port = bridge_port or DEFAULT_BRIDGE_PORT

    lines: list[Optional[str]] = [
        "📱 WhatsApp message received:",
        f"From: {sender}{group}",
        f"WA ID: {wa_id}",
        f"Type: {event.type or 'chat'}",
        "Has media: yes" if event.has_media else None,
        "",
        f"Message: {body}",
        "",
        "== CONTACT DIRECTORY ==",
        build_contact_directory(rules.contacts.categories),
        "",
        "== ROUTING RULES ==",
        build_routing_rules(rules.contacts.categories, rules.contacts.defaults, rules.telegram.chat_id),
        "",
        "== HOW TO REPLY ON WHATSAPP ==",
        (
            f"curl -s -X POST http://127.0.0.1:{port}/send "
            "-H 'Content-Type: application/json' "
            f"-d '{{\"to\":\"{wa_id}\",\"message\":\"YOUR_REPLY\"}}'"
        ),
    ]
    return "\n".join(line for line in lines if line is not None)


def build_hook_payload(event: EventRecord, rules: HookRules, bridge_port: int = DEFAULT_BRIDGE_PORT) -> dict[str, Any]:
    return {
        "message": build_hook_message(event, rules, bridge_port),
        "name": "WhatsApp",
        "sessionKey": f"hook:wa:{event.from_}",
        "wakeMode": "now",
        "deliver": False,
        "timeoutSeconds": HOOK_TIMEOUT_SECONDS,
    }


# =============================================================================
# Delivery
# =============================================================================

class HookNotifier:
    """Formats events for the hook sink and hands them to the dispatcher."""

    def __init__(self, rules: HookRules, dispatcher: WebhookDispatcher, bridge_port: int = DEFAULT_BRIDGE_PORT):
        self.rules = rules
        self.dispatcher = dispatcher
        self.bridge_port = bridge_port

    @property
    def enabled(self) -> bool:
        return bool(self.rules.openclaw.hook_url)

    def notify(self, event: EventRecord) -> bool:
        """Queue a hook delivery. Returns False when no hook URL is configured."""
        if not self.enabled:
            logger.debug("Hook URL not configured, skip | from={}", event.from_)
            return False

        self.dispatcher.submit(
            WebhookDelivery(
                url=self.rules.openclaw.hook_url,
                payload=build_hook_payload(event, self.rules, self.bridge_port),
                headers={"Authorization": f"Bearer {self.rules.openclaw.hook_token}"},
                label="hook",
            )
        )

        logger.info(
            "Hook queued | sender={} preview=\"{}\"",
            event.push_name or event.from_,
            (event.body or "")[:60],
        )
        return True
