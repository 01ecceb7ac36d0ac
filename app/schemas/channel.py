"""Pydantic schemas for channels."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.constants.channels import ChannelStatus, ChannelType


class ChannelCreate(BaseModel):
    """Request schema for creating a channel."""

    workspace_id: str = Field(..., min_length=1, max_length=64)
    type: ChannelType
    name: str = Field(..., min_length=1, max_length=256)
    config: dict[str, Any] = Field(default_factory=dict)


class ChannelUpdate(BaseModel):
    """Request schema for updating a channel. The type cannot be changed."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=256)
    config: Optional[dict[str, Any]] = None
    status: Optional[ChannelStatus] = None


class ChannelRead(BaseModel):
    """Response schema for a channel. Secret config values are masked."""

    id: UUID
    workspace_id: str
    type: str
    name: str
    config: dict[str, Any]
    status: str
    last_sync_at: Optional[datetime] = None
    webhook_url: Optional[str] = None
    external_channel_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ChannelTypeInfo(BaseModel):
    type: str
    name: str
    description: str
    icon: str
    available: bool


class ChannelStatusRead(BaseModel):
    channel_id: UUID
    connected: bool
    last_sync: Optional[datetime] = None
    error: Optional[str] = None
