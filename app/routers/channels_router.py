"""Channels API: types, CRUD and status."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.core.registry import ConnectorRegistry
from app.routers.utils.dependencies import get_channel_service, get_connector_registry
from app.schemas.channel import (
    ChannelCreate,
    ChannelRead,
    ChannelStatusRead,
    ChannelTypeInfo,
    ChannelUpdate,
)
from app.services.channel_service import ChannelService

channels_router = APIRouter(prefix="/api/channels", tags=["Channel"])


@channels_router.get("/types", response_model=list[ChannelTypeInfo])
def list_channel_types(
    registry: ConnectorRegistry = Depends(get_connector_registry),
) -> list[ChannelTypeInfo]:
    """All channel types; `available` is false for types without a connector yet."""
    return [ChannelTypeInfo(**info) for info in registry.available_types()]


@channels_router.get("", response_model=list[ChannelRead])
def list_channels(
    workspace_id: str = Query(..., min_length=1),
    service: ChannelService = Depends(get_channel_service),
) -> list[ChannelRead]:
    return [service.to_read(c) for c in service.get_workspace_channels(workspace_id)]


@channels_router.post("", response_model=ChannelRead, status_code=status.HTTP_201_CREATED)
async def create_channel(
    body: ChannelCreate,
    service: ChannelService = Depends(get_channel_service),
) -> ChannelRead:
    """Create a channel: validate config, persist, connect."""
    channel = await service.create_channel(body)
    return service.to_read(channel)


@channels_router.get("/{channel_id}", response_model=ChannelRead)
def get_channel(
    channel_id: UUID,
    workspace_id: Optional[str] = Query(None),
    service: ChannelService = Depends(get_channel_service),
) -> ChannelRead:
    return service.to_read(service.get_channel(channel_id, workspace_id))


@channels_router.patch("/{channel_id}", response_model=ChannelRead)
async def update_channel(
    channel_id: UUID,
    body: ChannelUpdate,
    workspace_id: Optional[str] = Query(None),
    service: ChannelService = Depends(get_channel_service),
) -> ChannelRead:
    channel = await service.update_channel(channel_id, body, workspace_id)
    return service.to_read(channel)


@channels_router.delete("/{channel_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_channel(
    channel_id: UUID,
    workspace_id: Optional[str] = Query(None),
    service: ChannelService = Depends(get_channel_service),
) -> None:
    """Disconnect and delete a channel together with its conversations."""
    await service.delete_channel(channel_id, workspace_id)


@channels_router.get("/{channel_id}/status", response_model=ChannelStatusRead)
async def get_channel_status(
    channel_id: UUID,
    workspace_id: Optional[str] = Query(None),
    service: ChannelService = Depends(get_channel_service),
) -> ChannelStatusRead:
    report = await service.get_channel_status(channel_id, workspace_id)
    return ChannelStatusRead(channel_id=channel_id, **report.model_dump(exclude={"quota"}))
