"""
Configuration loading utilities.

Design goals:
    - Fail fast on a missing or malformed hook-rules.json
    - Load once, hand out immutable values
    - Observability-first logging
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from wabridge.config.schema import BridgeSettings, HookRules


HOOK_RULES_FILENAME = "hook-rules.json"


class ConfigError(Exception):
    """Raised when the routing configuration cannot be used. Fatal at startup."""


# =============================
# Load
# =============================

def load_hook_rules(path: Path) -> HookRules:
    """
    Load routing rules from disk.

    Flow:
        1. Read raw JSON
        2. Pydantic validation (camelCase aliases)

    Raises:
        ConfigError: file missing, unreadable, not JSON, or wrong shape.
    """
    try:
        with path.open("r", encoding="utf-8") as f:
            raw: Any = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Cannot load {path.name}: file not found ({path})") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Cannot load {path.name}: invalid JSON ({e})") from e
    except OSError as e:
        raise ConfigError(f"Cannot load {path.name}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Cannot load {path.name}: top-level value must be an object")

    try:
        rules = HookRules.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Cannot load {path.name}: {e}") from e

    logger.info(
        "Loaded {} | categories={} ignored={}",
        path.name,
        len(rules.contacts.categories),
        len(rules.ignore_ids),
    )
    return rules


def load_settings(**overrides: Any) -> BridgeSettings:
    """Build process settings from env, with explicit overrides on top."""
    return BridgeSettings(**{k: v for k, v in overrides.items() if v is not None})
