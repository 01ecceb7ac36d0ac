"""Conversations API: inbox listing, messages, assign, resolve and replies."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi_pagination import Page, Params
from fastapi_pagination.ext.sqlalchemy import paginate
from sqlalchemy.orm import Session

from app.commands.outbound import SendMessageCommand
from app.constants.channels import ConversationStatus
from app.core.registry import ConnectorRegistry
from app.db import get_db
from app.routers.utils.dependencies import get_channel_service, get_connector_registry
from app.schemas.conversation import (
    AssignRequest,
    ConversationRead,
    ConversationWithMessages,
    MessageRead,
    MessageStatusUpdate,
    ParticipantRead,
    SendMessageRequest,
)
from app.services.channel_service import ChannelService

conversations_router = APIRouter(prefix="/api/conversations", tags=["Conversation"])


@conversations_router.get("", response_model=Page[ConversationRead])
def list_conversations(
    workspace_id: str = Query(..., min_length=1),
    status_filter: Optional[ConversationStatus] = Query(None, alias="status"),
    channel_id: Optional[UUID] = Query(None),
    assigned_agent_id: Optional[str] = Query(None),
    params: Params = Depends(),
    service: ChannelService = Depends(get_channel_service),
) -> Page[ConversationRead]:
    """List a workspace's conversations, most recent activity first."""
    query = service.conversations.workspace_conversations_query(
        workspace_id,
        status=status_filter.value if status_filter else None,
        channel_id=channel_id,
        assigned_agent_id=assigned_agent_id,
    )
    return paginate(
        query,
        params=params,
        transformer=lambda items: [ConversationRead.model_validate(c) for c in items],
    )


@conversations_router.get("/{conversation_id}", response_model=ConversationWithMessages)
def get_conversation(
    conversation_id: UUID,
    workspace_id: Optional[str] = Query(None),
    service: ChannelService = Depends(get_channel_service),
) -> ConversationWithMessages:
    conversation, messages = service.get_conversation_with_messages(
        conversation_id, workspace_id
    )
    read = ConversationRead.model_validate(conversation)
    return ConversationWithMessages(
        **read.model_dump(),
        messages=[MessageRead.model_validate(m) for m in messages],
        participants=[ParticipantRead.model_validate(p) for p in conversation.participants],
    )


@conversations_router.get("/{conversation_id}/messages", response_model=Page[MessageRead])
def list_conversation_messages(
    conversation_id: UUID,
    workspace_id: Optional[str] = Query(None),
    params: Params = Depends(),
    service: ChannelService = Depends(get_channel_service),
) -> Page[MessageRead]:
    conversation = service.get_conversation(conversation_id, workspace_id)
    query = service.conversations.message_service.messages_query(conversation.id)
    return paginate(
        query,
        params=params,
        transformer=lambda items: [MessageRead.model_validate(m) for m in items],
    )


@conversations_router.post("/{conversation_id}/assign", response_model=ConversationRead)
def assign_conversation(
    conversation_id: UUID,
    body: AssignRequest,
    workspace_id: Optional[str] = Query(None),
    service: ChannelService = Depends(get_channel_service),
) -> ConversationRead:
    conversation = service.assign_conversation(conversation_id, body.agent_id, workspace_id)
    return ConversationRead.model_validate(conversation)


@conversations_router.post("/{conversation_id}/resolve", response_model=ConversationRead)
def resolve_conversation(
    conversation_id: UUID,
    workspace_id: Optional[str] = Query(None),
    service: ChannelService = Depends(get_channel_service),
) -> ConversationRead:
    conversation = service.resolve_conversation(conversation_id, workspace_id)
    return ConversationRead.model_validate(conversation)


@conversations_router.post(
    "/{conversation_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_conversation_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    workspace_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    registry: ConnectorRegistry = Depends(get_connector_registry),
) -> MessageRead:
    """Deliver a reply through the conversation's channel, then record it."""
    command = SendMessageCommand(db, registry)
    message = await command.execute(conversation_id, body, workspace_id)
    return MessageRead.model_validate(message)


@conversations_router.patch(
    "/{conversation_id}/messages/{message_id}", response_model=MessageRead
)
def update_message_status(
    conversation_id: UUID,
    message_id: UUID,
    body: MessageStatusUpdate,
    service: ChannelService = Depends(get_channel_service),
) -> MessageRead:
    """Record a delivery receipt; status is the only mutable message field."""
    service.get_conversation(conversation_id)
    message = service.update_message_status(message_id, body.status)
    return MessageRead.model_validate(message)
