"""
Ingestion pipeline.

Flow, per inbound message, strictly one at a time:

    filter -> enrich -> persist -> hook sink -> monitor fan-out

Only the persist step touches the pull queue. Every later step is
best-effort: failures are logged and never reach the transport.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

from loguru import logger

from wabridge.bus.dispatcher import WebhookDispatcher
from wabridge.bus.events import EventRecord, WebhookDelivery
from wabridge.bus.queue import EventQueue
from wabridge.channels.types import Chat, Contact, Message
from wabridge.config.schema import HookRules
from wabridge.hooks.openclaw import HookNotifier, match_category
from wabridge.monitors.registry import MonitorRegistry, MonitorSpec, match_keyword
from wabridge.utils.helpers import STATUS_BROADCAST, ensure_dir, sanitise_filename


class IngestionPipeline:
    """
    Consumes transport ``message`` events.

    Messages are buffered in an in-memory inbox and processed by a single
    consumer task, so the pull queue always reflects delivery order.
    """

    def __init__(
        self,
        queue: EventQueue,
        monitors: MonitorRegistry,
        rules: HookRules,
        dispatcher: WebhookDispatcher,
        logs_dir: Path,
        bridge_port: int = 3100,
    ):
        self.queue = queue
        self.monitors = monitors
        self.rules = rules
        self.dispatcher = dispatcher
        self.logs_dir = ensure_dir(logs_dir)
        self.hook = HookNotifier(rules, dispatcher, bridge_port)

        self._inbox: asyncio.Queue[Message] = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

    # =============================
    # Lifecycle
    # =============================

    def submit(self, msg: Optional[Message]) -> None:
        """Transport ``message`` handler. Never blocks."""
        if msg is None:
            return
        self._inbox.put_nowait(msg)

    async def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(self.run(), name="ingestion-pipeline")

    async def stop(self) -> None:
        if self._consumer is None:
            return
        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None

    async def run(self) -> None:
        logger.info("Ingestion pipeline started")
        while True:
            msg = await self._inbox.get()
            try:
                await self.process(msg)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Ingestion failed | from={}", getattr(msg, "from_", None))
            finally:
                self._inbox.task_done()

    async def join(self) -> None:
        """Wait until every submitted message has been processed."""
        await self._inbox.join()

    # =============================
    # Stages
    # =============================

    def accepts(self, msg: Optional[Message]) -> bool:
        """Filter stage. Dropped messages have no side effects at all."""
        if msg is None or not msg.from_:
            return False
        if msg.from_ == STATUS_BROADCAST:
            return False
        if msg.from_me:
            return False
        if self.rules.is_ignored(msg.from_):
            return False
        return True

    async def process(self, msg: Message) -> Optional[EventRecord]:
        if not self.accepts(msg):
            return None

        event = await self.materialise(msg)

        try:
            self.queue.push(event.to_dict())
        except Exception as e:
            logger.error("Event queue append failed | from={} err={}", event.from_, e)

        category = match_category(event.from_, event.push_name, self.rules.contacts.categories)
        logger.info(
            "Event | {} [{}]: {}",
            event.push_name or event.from_,
            category or "uncategorised",
            (event.body or "")[:80],
        )

        try:
            self.hook.notify(event)
        except Exception as e:
            logger.error("Hook dispatch failed | from={} err={}", event.from_, e)

        monitor = self.monitors.get(event.from_)
        if monitor is not None:
            await self._fan_out(event, monitor, msg)

        return event

    async def materialise(self, msg: Message) -> EventRecord:
        """Enrichment stage. Either lookup may fail; missing fields become null."""
        chat: Optional[Chat] = None
        contact: Optional[Contact] = None

        try:
            chat = await msg.get_chat()
        except Exception as e:
            logger.debug("Chat lookup failed | from={} err={}", msg.from_, e)

        try:
            contact = await msg.get_contact()
        except Exception as e:
            logger.debug("Contact lookup failed | from={} err={}", msg.from_, e)

        return EventRecord(
            from_=msg.from_,
            push_name=(contact.pushname if contact else None) or msg.notify_name or None,
            chat_name=(chat.name if chat else None) or None,
            author=msg.author or None,
            body=msg.body,
            type=msg.type,
            has_media=msg.has_media,
            is_group=bool(chat.is_group) if chat else False,
        )

    # =============================
    # Monitor fan-out
    # =============================

    def contact_log_path(self, chat_id: str) -> Path:
        return self.logs_dir / f"{sanitise_filename(chat_id)}.jsonl"

    async def _fan_out(self, event: EventRecord, monitor: MonitorSpec, msg: Message) -> None:
        record = event.to_dict()

        try:
            with open(self.contact_log_path(event.from_), "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        except Exception as e:
            logger.error("Monitor log append failed | contact={} err={}", event.from_, e)

        if monitor.webhook:
            try:
                self.dispatcher.submit(
                    WebhookDelivery(url=monitor.webhook, payload=record, label=f"monitor:{event.from_}")
                )
            except Exception as e:
                logger.error("Monitor webhook error | contact={} err={}", event.from_, e)

        keywords = monitor.script.keywords if monitor.script else None
        reply = match_keyword(keywords, msg.body)
        if reply is None:
            return

        try:
            await msg.reply(reply)
            logger.info("Auto-reply sent | contact={} reply=\"{}\"", event.from_, reply[:60])
        except Exception as e:
            logger.error("Auto-reply error | contact={} err={}", event.from_, e)
