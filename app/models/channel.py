"""Channel model: one configured integration point for a workspace."""

from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, Index, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.constants.channels import ChannelStatus
from app.db import Base
from app.models.mixins import TimestampMixin

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Channel(Base, TimestampMixin):
    """
    A workspace's connection to one external surface.

    `type` never changes after creation. `config` is owned by the connector for
    that type; secret fields are stored sealed (see app.core.secrets).
    """

    __tablename__ = "channels"

    __table_args__ = (
        Index("ix_channels_workspace_type", "workspace_id", "type"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id = Column(String(64), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    name = Column(String(256), nullable=False)
    config = Column(JSONType, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default=ChannelStatus.ACTIVE.value)
    last_sync_at = Column(DateTime, nullable=True)
    webhook_url = Column(String(512), nullable=True)
    external_channel_id = Column(String(256), nullable=True)

    conversations = relationship(
        "Conversation",
        back_populates="channel",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
