"""
Command to handle inbound webhook deliveries for any channel type.

Reads the raw body, checks the channel's signature, wraps the body in a
WebhookPayload and hands it to ChannelService for normalization and storage.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from app.constants.channels import ChannelType
from app.core.exceptions import WebhookSignatureError
from app.core.registry import ConnectorRegistry
from app.schemas.channel_messages import WebhookPayload
from app.services.channel_service import ChannelService

DEFAULT_EVENT_TYPE = "message"
FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class ChannelWebhookCommand:
    """
    Command to process one webhook delivery.
    Verifies the signature before the payload is trusted; redelivery of an
    already stored message is acknowledged with duplicate=True.
    """

    def __init__(self, db: Session, registry: ConnectorRegistry) -> None:
        self.db = db
        self.registry = registry
        self.channel_service = ChannelService(db, registry)
        self.logger = logging.getLogger(__name__)

    async def execute(
        self,
        request: Request,
        channel_id: UUID,
        channel_type: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Execute the webhook for a channel.

        Args:
            request: The incoming webhook request (raw body and headers).
            channel_id: Target channel.
            channel_type: Type segment of the URL, if the route carries one.

        Returns:
            dict: {"success": True, "conversation_id", "message_id", "duplicate"}
                for message events, {"success": True, "message": "Event processed"}
                otherwise.

        Raises:
            HTTPException: 404 if the URL type does not match the channel,
                400 on an unreadable body.
            WebhookSignatureError: 403 on a bad signature.
        """
        channel = self.channel_service.get_channel(channel_id)
        if channel_type is not None and channel_type != channel.type:
            raise HTTPException(status_code=404, detail="Channel not found")
        connector = self.registry.require(channel.type)

        raw_body = await request.body()
        if not connector.verify_webhook(channel, raw_body, request.headers):
            self.logger.warning("Rejected webhook for channel %s: bad signature", channel.id)
            raise WebhookSignatureError()

        body = await self._parse_body(request, raw_body)
        payload = WebhookPayload(
            channel_type=ChannelType(channel.type),
            channel_id=channel.id,
            workspace_id=channel.workspace_id,
            event_type=str(body.get("event") or body.get("eventType") or DEFAULT_EVENT_TYPE),
            payload=body,
            signature=request.headers.get(connector.signature_header),
        )

        result = self.channel_service.handle_webhook(channel.id, payload)
        if result is None:
            return {"success": True, "message": "Event processed"}
        return {
            "success": True,
            "conversation_id": str(result.conversation.id),
            "message_id": str(result.message.id),
            "duplicate": result.duplicate,
        }

    async def _parse_body(self, request: Request, raw_body: bytes) -> dict[str, Any]:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(FORM_CONTENT_TYPES):
            form = await request.form()
            return {key: value for key, value in form.items() if isinstance(value, str)}
        if not raw_body:
            return {}
        try:
            body = json.loads(raw_body)
        except ValueError as e:
            self.logger.warning("Webhook invalid JSON: %s", e)
            raise HTTPException(status_code=400, detail="Invalid JSON body") from e
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")
        return body
