"""
Webhook routes for inbound channel events.

Providers POST raw events here; the command verifies, normalizes, persists
and answers 200. Redeliveries are acknowledged without side effects.
"""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.commands.webhooks import ChannelWebhookCommand
from app.constants.channels import ChannelType
from app.core.registry import ConnectorRegistry
from app.db import get_db
from app.routers.utils.dependencies import get_channel_service, get_connector_registry
from app.services.channel_service import ChannelService

router = APIRouter(prefix="/api", tags=["webhooks"])


@router.post("/channels/{channel_type}/{channel_id}/webhook")
async def channel_webhook(
    channel_type: str,
    channel_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    registry: ConnectorRegistry = Depends(get_connector_registry),
) -> dict[str, Any]:
    command = ChannelWebhookCommand(db, registry)
    return await command.execute(request, channel_id, channel_type=channel_type)


@router.post("/widget/chat/{channel_id}")
async def chat_widget_webhook(
    channel_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    registry: ConnectorRegistry = Depends(get_connector_registry),
) -> dict[str, Any]:
    command = ChannelWebhookCommand(db, registry)
    return await command.execute(
        request, channel_id, channel_type=ChannelType.CHAT_WIDGET.value
    )


@router.get("/channels/whatsapp/{channel_id}/webhook", response_class=PlainTextResponse)
def whatsapp_subscription(
    channel_id: UUID,
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    service: ChannelService = Depends(get_channel_service),
) -> str:
    """Meta's subscription handshake for WhatsApp webhooks."""
    channel = service.get_channel(channel_id)
    if channel.type != ChannelType.WHATSAPP.value:
        raise HTTPException(status_code=404, detail="Channel not found")
    connector = service.registry.require(channel.type)
    answer = connector.verify_subscription(channel, mode, token, challenge)
    if answer is None:
        raise HTTPException(status_code=403, detail="Verification failed")
    return answer
