"""
Bridge runtime service.

Responsible for:
    - Wiring config, queue, registry, dispatcher, pipeline and transport
    - Serving the control surface on loopback
    - Graceful shutdown on SIGINT / SIGTERM with a forced-exit deadline
"""

from __future__ import annotations

import asyncio
import os
import signal
from typing import Optional

import uvicorn
from loguru import logger

from wabridge.api.app import create_app
from wabridge.bus.dispatcher import WebhookDispatcher
from wabridge.bus.queue import EventQueue
from wabridge.channels.adapter import TransportAdapter
from wabridge.channels.base import ChatTransport
from wabridge.channels.whatsapp import WhatsAppBridgeClient
from wabridge.config.schema import BridgeSettings, HookRules
from wabridge.monitors.registry import MonitorRegistry
from wabridge.pipeline.ingest import IngestionPipeline


# ============================================================
# Constants
# ============================================================

LOOPBACK_HOST = "127.0.0.1"
SHUTDOWN_GRACE_S = 5.0
FORCED_EXIT_CODE = 1


def _force_exit() -> None:
    logger.error("Shutdown stalled for {}s, forcing exit", SHUTDOWN_GRACE_S)
    os._exit(FORCED_EXIT_CODE)


# ============================================================
# HTTP server
# ============================================================

class _ControlServer(uvicorn.Server):
    """uvicorn server whose signal handling is delegated to the bridge."""

    def __init__(self, config: uvicorn.Config, service: "BridgeService"):
        super().__init__(config)
        self._service = service

    def handle_exit(self, sig: int, frame) -> None:
        self._service.request_shutdown(sig)


# ============================================================
# Bridge Service
# ============================================================

class BridgeService:
    """
    Process-level orchestrator.

    Startup order:
        dirs -> queue/registry -> dispatcher -> pipeline -> HTTP -> transport
    """

    def __init__(
        self,
        settings: BridgeSettings,
        rules: HookRules,
        client: Optional[ChatTransport] = None,
        force_exit=_force_exit,
    ):
        self.settings = settings
        self.rules = rules
        self.paths = settings.paths.ensure()

        self.client = client or WhatsAppBridgeClient(
            settings.transport_url,
            auth_path=self.paths.auth,
        )
        self.adapter = TransportAdapter(self.client, reconnect_delay=settings.reconnect_delay)
        self.queue = EventQueue(self.paths.events)
        self.monitors = MonitorRegistry(self.paths.monitors)
        self.dispatcher = WebhookDispatcher()
        self.pipeline = IngestionPipeline(
            queue=self.queue,
            monitors=self.monitors,
            rules=rules,
            dispatcher=self.dispatcher,
            logs_dir=self.paths.logs,
            bridge_port=settings.port,
        )
        self.adapter.on_message(self.pipeline.submit)

        self.app = create_app(
            self.adapter,
            self.queue,
            self.monitors,
            api_token=settings.api_token,
        )

        self._force_exit = force_exit
        self._server: Optional[_ControlServer] = None
        self._shutdown_task: Optional[asyncio.Task] = None
        self._deadline: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------
    # Lifecycle API
    # ------------------------------------------------------------

    async def run(self) -> int:
        """Serve until shutdown. Returns the process exit code."""
        config = uvicorn.Config(
            self.app,
            host=LOOPBACK_HOST,
            port=self.settings.port,
            log_config=None,
            access_log=False,
            lifespan="off",
        )
        self._server = _ControlServer(config, self)

        await self.dispatcher.start()
        await self.pipeline.start()

        serving = asyncio.create_task(self._server.serve(), name="control-surface")
        while not self._server.started and not serving.done():
            await asyncio.sleep(0.05)

        if serving.done():
            logger.error("Control surface failed to start | port={}", self.settings.port)
            await self._stop_workers()
            serving.result()
            return FORCED_EXIT_CODE

        logger.info("WhatsApp bridge API listening on http://{}:{}", LOOPBACK_HOST, self.settings.port)
        if not self.settings.api_token:
            logger.warning("WA_API_TOKEN not set, control surface is unauthenticated")

        await self.adapter.start()
        await serving

        if self._shutdown_task is not None:
            await self._shutdown_task
        if self._deadline is not None:
            self._deadline.cancel()

        logger.info("Bridge stopped")
        return 0

    def request_shutdown(self, sig: Optional[int] = None) -> None:
        """Signal entry point. Safe to call repeatedly."""
        if not self.adapter.state.mark_shutting_down():
            return

        name = signal.Signals(sig).name if sig is not None else "request"
        logger.info("Received {}, shutting down ...", name)

        loop = asyncio.get_running_loop()
        self._deadline = loop.call_later(SHUTDOWN_GRACE_S, self._force_exit)
        self._shutdown_task = loop.create_task(self.shutdown(), name="bridge-shutdown")

    async def shutdown(self) -> None:
        self.adapter.state.mark_shutting_down()
        await self.adapter.shutdown()
        await self._stop_workers()
        if self._server is not None:
            self._server.should_exit = True

    async def _stop_workers(self) -> None:
        await self.pipeline.stop()
        await self.dispatcher.stop()
