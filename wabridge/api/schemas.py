"""Request bodies for the control surface. Required fields are checked in the routes."""

from __future__ import annotations

from typing import Optional, Dict

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )


class SendRequest(_Body):
    to: Optional[str] = None
    message: Optional[str] = None


class SendGroupRequest(_Body):
    group_id: Optional[str] = Field(None, alias="groupId")
    message: Optional[str] = None


class MonitorScriptBody(_Body):
    keywords: Optional[Dict[str, str]] = None


class MonitorRequest(_Body):
    contact_id: Optional[str] = Field(None, alias="contactId")
    script: Optional[MonitorScriptBody] = None
    webhook: Optional[str] = None
