"""
Conversation persistence: atomic find-or-create, message append and
bookkeeping.

Every inbound message for a channel lands here. The live conversation of a
contact is the row whose `thread_key` equals the contact key; the unique
(channel_id, thread_key) constraint serializes concurrent creates, and the
unique (channel_id, external_message_id) constraint on messages makes webhook
redelivery a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from app.config import Settings, get_settings
from app.constants.channels import ConversationStatus, MessageStatus, SenderType
from app.core.exceptions import ConversationStateError
from app.infra.logging_config import get_logger
from app.models.conversation import Conversation
from app.models.conversation_message import ConversationMessage
from app.models.conversation_participant import ConversationParticipant
from app.models.mixins import utcnow
from app.schemas.channel_messages import IncomingMessage
from app.services.conversation_message_service import ConversationMessageService

logger = get_logger("conversations")

MAX_CREATE_ATTEMPTS = 3

# Inbound metadata keys copied onto a new conversation
_CONVERSATION_METADATA_KEYS = ("subject", "session_id", "chat_id")


@dataclass
class IncomingResult:
    conversation: Conversation
    message: ConversationMessage
    duplicate: bool = False
    conversation_created: bool = False


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ConversationService:
    def __init__(self, db: Session, settings: Optional[Settings] = None) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self.message_service = ConversationMessageService(db)

    # --- inbound ---------------------------------------------------------

    def record_incoming(
        self, message: IncomingMessage, contact_key: str
    ) -> IncomingResult:
        """
        Materialize an inbound message: find or create the contact's live
        conversation, append the message and bump the counters in one
        transaction.

        Redelivery of a message whose external id is already stored returns
        the stored message with ``duplicate=True`` and writes nothing.
        """
        if message.external_id:
            existing = self.message_service.get_by_external_id(
                message.channel_id, message.external_id
            )
            if existing is not None:
                return self._duplicate(existing)

        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            try:
                conversation, created = self._find_or_create_live(message, contact_key)
                if not created:
                    self._merge_contact(conversation, message)
                stored = self.message_service.add_message(
                    conversation,
                    sender_type=SenderType.USER,
                    sender_name=message.contact_name,
                    content=message.content,
                    content_type=message.content_type.value,
                    rich_content=message.rich_content,
                    attachments=[a.model_dump(mode="json") for a in message.attachments],
                    external_message_id=message.external_id,
                    status=MessageStatus.RECEIVED,
                    metadata=message.metadata,
                )
                self._bump_counters(conversation.id, stored.created_at, outbound=False)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                if message.external_id:
                    existing = self.message_service.get_by_external_id(
                        message.channel_id, message.external_id
                    )
                    if existing is not None:
                        return self._duplicate(existing)
                if attempt == MAX_CREATE_ATTEMPTS:
                    raise
                logger.info(
                    "Concurrent conversation create on channel %s, retrying (attempt %s)",
                    message.channel_id,
                    attempt,
                )
                continue

            self.db.refresh(conversation)
            self.db.refresh(stored)
            logger.info(
                "Recorded inbound message %s in conversation %s",
                stored.id,
                conversation.id,
            )
            return IncomingResult(
                conversation=conversation,
                message=stored,
                conversation_created=created,
            )

    def _duplicate(self, existing: ConversationMessage) -> IncomingResult:
        logger.info(
            "Duplicate delivery of external message %s ignored",
            existing.external_message_id,
        )
        return IncomingResult(
            conversation=existing.conversation, message=existing, duplicate=True
        )

    def _find_or_create_live(
        self, message: IncomingMessage, contact_key: str
    ) -> Tuple[Conversation, bool]:
        conversation = (
            self.db.query(Conversation)
            .filter(
                Conversation.channel_id == message.channel_id,
                Conversation.thread_key == contact_key,
            )
            .with_for_update()
            .first()
        )
        if conversation is not None and self._is_stale(conversation):
            logger.info("Releasing idle conversation %s", conversation.id)
            conversation.thread_key = None
            self.db.flush()
            conversation = None

        if conversation is not None:
            return conversation, False

        now = utcnow()
        extra = {
            key: message.metadata[key]
            for key in _CONVERSATION_METADATA_KEYS
            if message.metadata.get(key) is not None
        }
        conversation = Conversation(
            workspace_id=message.workspace_id,
            channel_id=message.channel_id,
            status=ConversationStatus.NEW.value,
            is_handled_by_bot=True,
            message_count=0,
            last_message_at=now,
            contact_key=contact_key,
            thread_key=contact_key,
            contact_name=message.contact_name,
            contact_email=message.contact_email,
            contact_phone=message.contact_phone,
            extra=extra,
        )
        self.db.add(conversation)
        # Raises IntegrityError when another request created the live row first
        self.db.flush()
        self.db.add(
            ConversationParticipant(
                conversation_id=conversation.id,
                workspace_id=message.workspace_id,
                participant_type="customer",
                external_id=contact_key,
                name=message.contact_name,
                email=message.contact_email,
                phone=message.contact_phone,
                avatar_url=message.contact_avatar,
            )
        )
        self.db.flush()
        return conversation, True

    def _is_stale(self, conversation: Conversation) -> bool:
        idle_minutes = self.settings.conversation_idle_minutes
        if not idle_minutes or conversation.last_message_at is None:
            return False
        cutoff = utcnow() - timedelta(minutes=idle_minutes)
        return _as_utc(conversation.last_message_at) < cutoff

    def _merge_contact(self, conversation: Conversation, message: IncomingMessage) -> None:
        """Fill blank identity fields from a later message; never overwrite."""
        for attr, value in (
            ("contact_name", message.contact_name),
            ("contact_email", message.contact_email),
            ("contact_phone", message.contact_phone),
        ):
            if value and not getattr(conversation, attr):
                setattr(conversation, attr, value)

        participant = (
            self.db.query(ConversationParticipant)
            .filter(ConversationParticipant.conversation_id == conversation.id)
            .first()
        )
        if participant is None:
            return
        for attr, value in (
            ("name", message.contact_name),
            ("email", message.contact_email),
            ("phone", message.contact_phone),
            ("avatar_url", message.contact_avatar),
        ):
            if value and not getattr(participant, attr):
                setattr(participant, attr, value)

    # --- outbound --------------------------------------------------------

    def record_outgoing(
        self,
        conversation: Conversation,
        *,
        content: str,
        content_type: str,
        is_ai_generated: bool,
        sender_name: Optional[str] = None,
        rich_content: Optional[dict[str, Any]] = None,
        attachments: Optional[list[dict[str, Any]]] = None,
        external_message_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ConversationMessage:
        """Append a delivered reply and stamp `first_response_at` if still unset."""
        stored = self.message_service.add_message(
            conversation,
            sender_type=SenderType.BOT if is_ai_generated else SenderType.AGENT,
            sender_name=sender_name,
            content=content,
            content_type=content_type,
            rich_content=rich_content,
            attachments=attachments,
            is_ai_generated=is_ai_generated,
            external_message_id=external_message_id,
            status=MessageStatus.SENT,
            metadata=metadata,
        )
        self._bump_counters(conversation.id, stored.created_at, outbound=True)
        self.db.commit()
        self.db.refresh(stored)
        return stored

    def _bump_counters(
        self, conversation_id: UUID, at: datetime, outbound: bool
    ) -> None:
        values = {
            Conversation.message_count: Conversation.message_count + 1,
            Conversation.last_message_at: at,
            Conversation.updated_at: at,
        }
        if outbound:
            values[Conversation.first_response_at] = func.coalesce(
                Conversation.first_response_at, at
            )
        (
            self.db.query(Conversation)
            .filter(Conversation.id == conversation_id)
            .update(values, synchronize_session=False)
        )

    # --- reads -----------------------------------------------------------

    def get_conversation(
        self, conversation_id: UUID, workspace_id: Optional[str] = None
    ) -> Optional[Conversation]:
        query = self.db.query(Conversation).filter(Conversation.id == conversation_id)
        if workspace_id is not None:
            query = query.filter(Conversation.workspace_id == workspace_id)
        return query.first()

    def workspace_conversations_query(
        self,
        workspace_id: str,
        status: Optional[str] = None,
        channel_id: Optional[UUID] = None,
        assigned_agent_id: Optional[str] = None,
    ) -> Query:
        query = self.db.query(Conversation).filter(
            Conversation.workspace_id == workspace_id
        )
        if status is not None:
            query = query.filter(Conversation.status == status)
        if channel_id is not None:
            query = query.filter(Conversation.channel_id == channel_id)
        if assigned_agent_id is not None:
            query = query.filter(Conversation.assigned_agent_id == assigned_agent_id)
        return query.order_by(Conversation.last_message_at.desc())

    def get_workspace_conversations(
        self,
        workspace_id: str,
        status: Optional[str] = None,
        channel_id: Optional[UUID] = None,
        assigned_agent_id: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Conversation], int]:
        query = self.workspace_conversations_query(
            workspace_id, status, channel_id, assigned_agent_id
        )
        total = query.count()
        return query.offset(offset).limit(limit).all(), total

    # --- status ----------------------------------------------------------

    def assign(
        self, conversation: Conversation, agent_id: Optional[str]
    ) -> Conversation:
        """Hand the conversation to a human agent, or back to the bot when agent_id is None."""
        if conversation.status == ConversationStatus.RESOLVED.value:
            raise ConversationStateError(
                f"Conversation {conversation.id} is resolved and cannot be assigned"
            )
        conversation.assigned_agent_id = agent_id
        conversation.is_handled_by_bot = agent_id is None
        conversation.status = (
            ConversationStatus.BOT_HANDLED.value
            if agent_id is None
            else ConversationStatus.ASSIGNED.value
        )
        self.db.commit()
        self.db.refresh(conversation)
        return conversation

    def resolve(self, conversation: Conversation) -> Conversation:
        if conversation.status == ConversationStatus.RESOLVED.value:
            return conversation
        conversation.status = ConversationStatus.RESOLVED.value
        conversation.resolved_at = utcnow()
        conversation.thread_key = None
        self.db.commit()
        self.db.refresh(conversation)
        return conversation
