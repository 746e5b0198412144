"""
Configuration schema definitions.

Two sources feed the bridge:
    - hook-rules.json   routing rules for the hook sink (camelCase on disk)
    - environment       process settings (port, token, base directory, ...)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Dict

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from wabridge.utils.helpers import RuntimePaths


class _RulesModel(BaseModel):
    """camelCase on disk, snake_case in memory. Mapping keys are left alone."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
        coerce_numbers_to_str=True,
    )

    @model_validator(mode="before")
    @classmethod
    def _null_means_absent(cls, data: Any) -> Any:
        # explicit null falls back to the field default
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


# =============================
# Hook sink
# =============================

class OpenClawConfig(_RulesModel):
    """Agent hook endpoint receiving the decision-support payload."""
    hook_url: str = ""
    hook_token: str = ""


class TelegramConfig(_RulesModel):
    """Telegram target the hook sink notifies. The bridge only embeds it."""
    chat_id: str = ""


# =============================
# Contact routing
# =============================

class ContactCategory(_RulesModel):
    ids: list[str] = Field(default_factory=list)
    match_name: Optional[str] = None
    action: Optional[str] = None
    style: Optional[str] = None
    context: Optional[str] = None


class DefaultAction(_RulesModel):
    action: Optional[str] = None


class ContactDefaults(_RulesModel):
    groups: DefaultAction = Field(default_factory=DefaultAction)
    unknown: DefaultAction = Field(default_factory=DefaultAction)


class ContactsConfig(_RulesModel):
    # insertion order is significant: first match wins
    categories: Dict[str, ContactCategory] = Field(default_factory=dict)
    defaults: ContactDefaults = Field(default_factory=ContactDefaults)

    @field_validator("categories", mode="before")
    @classmethod
    def _empty_categories(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {name: {} if cat is None else cat for name, cat in value.items()}
        return value


class HookRules(_RulesModel):
    """
    Root of hook-rules.json.

    Loaded once at startup and passed around as an immutable value.
    """

    openclaw: OpenClawConfig = Field(default_factory=OpenClawConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    ignore_ids: list[str] = Field(default_factory=list)
    contacts: ContactsConfig = Field(default_factory=ContactsConfig)

    def is_ignored(self, chat_id: str) -> bool:
        return chat_id in self.ignore_ids


# =============================
# Process settings
# =============================

class BridgeSettings(BaseSettings):
    """
    Process-level settings.

    Priority:
        explicit kwargs > env > .env > defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    port: int = Field(3100, validation_alias=AliasChoices("port", "PORT"))
    api_token: str = Field("", validation_alias=AliasChoices("api_token", "WA_API_TOKEN"))
    bridge_dir: Path = Field(
        default_factory=Path.cwd,
        validation_alias=AliasChoices("bridge_dir", "WA_BRIDGE_DIR"),
    )
    transport_url: str = Field(
        "ws://127.0.0.1:3101",
        validation_alias=AliasChoices("transport_url", "WA_TRANSPORT_URL"),
    )
    reconnect_delay: float = Field(
        5.0,
        validation_alias=AliasChoices("reconnect_delay", "WA_RECONNECT_DELAY"),
    )

    # Reserved: Telegram delivery is performed by the hook sink.
    tg_bot_token: str = Field("", validation_alias=AliasChoices("tg_bot_token", "TG_BOT_TOKEN"))
    tg_chat_id: str = Field("", validation_alias=AliasChoices("tg_chat_id", "TG_CHAT_ID"))

    @property
    def paths(self) -> RuntimePaths:
        return RuntimePaths(root=Path(self.bridge_dir).expanduser())
