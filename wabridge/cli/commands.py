"""
wabridge CLI

- `serve` runs the bridge process
- every other command is a thin client over the control surface
- output is pretty JSON; failures print {"error": ...} and exit 1
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Final, List, Optional

import typer
from loguru import logger
from rich.console import Console

from wabridge import __version__, __logo__
from wabridge.cli.client import DEFAULT_BRIDGE_URL, BridgeAPIClient, BridgeClientError


# ============================================================================
# CLI App
# ============================================================================

APP_NAME: Final[str] = "wabridge"

app = typer.Typer(
    name=APP_NAME,
    help=f"{__logo__} wabridge - WhatsApp bridge for local agents",
    no_args_is_help=True,
)

monitor_app = typer.Typer(help="Manage per-contact monitors", no_args_is_help=False)
app.add_typer(monitor_app, name="monitor")

console = Console()


# ============================================================================
# Output helpers
# ============================================================================

_BRIDGE = {"url": DEFAULT_BRIDGE_URL, "token": ""}


def _print(data: Any) -> None:
    console.print_json(data=data, indent=2)


def _fail(message: str) -> None:
    console.print_json(data={"error": message}, indent=None)
    raise typer.Exit(1)


def _call(fn: Callable[[BridgeAPIClient], Any]) -> None:
    try:
        with BridgeAPIClient(_BRIDGE["url"], _BRIDGE["token"]) as client:
            data = fn(client)
    except BridgeClientError as e:
        _fail(str(e))
        return
    _print(data)


# ============================================================================
# Version & root options
# ============================================================================

def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} wabridge v{__version__}")
        raise typer.Exit()


@app.callback()

def main(
    url: str = typer.Option(DEFAULT_BRIDGE_URL, "--url", envvar="WA_BRIDGE_URL", help="Bridge base URL"),
    token: str = typer.Option("", "--token", envvar="WA_BRIDGE_TOKEN", help="Bearer token"),
    version: bool = typer.Option(
        None, "--version", callback=version_callback, is_eager=True
    ),
):
    """wabridge - WhatsApp bridge for local agents."""
    _BRIDGE["url"] = url
    _BRIDGE["token"] = token


# ============================================================================
# Serve
# ============================================================================

def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


@app.command()

def serve(
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Override PORT"),
    bridge_dir: Optional[Path] = typer.Option(None, "--dir", "-d", help="Override WA_BRIDGE_DIR"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Start the WhatsApp bridge."""
    from wabridge.config.loader import ConfigError, load_hook_rules, load_settings
    from wabridge.service.bridge import BridgeService

    _configure_logging(verbose)

    settings = load_settings(port=port, bridge_dir=bridge_dir)
    paths = settings.paths

    try:
        rules = load_hook_rules(paths.hook_rules)
    except ConfigError as e:
        logger.error("{}", e)
        console.print(
            f"[red]Cannot start:[/red] {e}\n"
            f"Copy [cyan]hook-rules.json.example[/cyan] to [cyan]{paths.hook_rules}[/cyan] and edit it."
        )
        raise typer.Exit(1)

    console.print(f"{__logo__} Starting WhatsApp bridge on port {settings.port}...")

    service = BridgeService(settings, rules)
    code = asyncio.run(service.run())
    raise typer.Exit(code)


# ============================================================================
# Connection & events
# ============================================================================

@app.command()

def status():
    """Connection status."""
    _call(lambda c: c.status())


@app.command()

def events(peek: bool = typer.Option(False, "--peek", help="Read without draining")):
    """Get the event queue (drains unless --peek)."""
    _call(lambda c: c.events(peek=peek))


# ============================================================================
# Messaging
# ============================================================================

@app.command()

def send(
    to: str = typer.Argument(..., help="Phone number or chat id"),
    message: List[str] = typer.Argument(..., help="Message text"),
):
    """Send a message to a number."""
    _call(lambda c: c.send(to, " ".join(message)))


@app.command("send-group")

def send_group(
    group_id: str = typer.Argument(..., help="Group id"),
    message: List[str] = typer.Argument(..., help="Message text"),
):
    """Send a message to a group."""
    _call(lambda c: c.send_group(group_id, " ".join(message)))


# ============================================================================
# Queries
# ============================================================================

@app.command()

def chats(limit: Optional[int] = typer.Option(None, "--limit", "-n")):
    """List chats."""
    _call(lambda c: c.chats(limit))


@app.command()

def contacts(search: Optional[str] = typer.Option(None, "--search", "-s")):
    """List or search contacts."""
    _call(lambda c: c.contacts(search))


@app.command()

def groups(search: Optional[str] = typer.Option(None, "--search", "-s")):
    """List or search groups."""
    _call(lambda c: c.groups(search))


@app.command()

def messages(
    chat_id: str = typer.Argument(..., help="Chat id"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
):
    """Get recent messages from a chat."""
    _call(lambda c: c.messages(chat_id, limit))


@app.command()

def search(
    query: str = typer.Argument(...),
    chat: Optional[str] = typer.Option(None, "--chat", "-c", help="Restrict to one chat"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
):
    """Search messages."""
    _call(lambda c: c.search(query, chat, limit))


# ============================================================================
# Monitors
# ============================================================================

def _parse_keywords(pairs: List[str]) -> dict[str, str]:
    keywords: dict[str, str] = {}
    for pair in pairs:
        key, sep, reply = pair.partition("=")
        if not sep or not key:
            _fail(f"Invalid keyword '{pair}', expected key=reply")
        keywords[key] = reply
    return keywords


@monitor_app.callback(invoke_without_command=True)

def monitor_default(ctx: typer.Context):
    """List monitors when no subcommand is given."""
    if ctx.invoked_subcommand is None:
        _call(lambda c: c.monitor_list())


@monitor_app.command("list")

def monitor_list():
    """List monitors."""
    _call(lambda c: c.monitor_list())


@monitor_app.command("add")

def monitor_add(
    contact_id: str = typer.Argument(..., help="Contact or chat id"),
    webhook: Optional[str] = typer.Option(None, "--webhook", "-w", help="POST every event here"),
    keyword: List[str] = typer.Option([], "--keyword", "-k", help="Auto-reply rule, key=reply"),
):
    """Add (or replace) a monitor."""
    keywords = _parse_keywords(keyword)
    _call(lambda c: c.monitor_add(contact_id, webhook=webhook, keywords=keywords or None))


@monitor_app.command("remove")

def monitor_remove(contact_id: str = typer.Argument(..., help="Contact or chat id")):
    """Remove a monitor."""
    _call(lambda c: c.monitor_remove(contact_id))


if __name__ == "__main__":
    app()
