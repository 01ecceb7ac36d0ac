from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class ChatWidgetConfig(BaseModel):
    """Website widget settings. Nothing is required; the widget polls for replies."""

    model_config = ConfigDict(extra="forbid")

    bot_id: Optional[str] = None
    allowed_origins: list[str] = Field(default_factory=list)
    welcome_message: Optional[str] = None
    webhook_secret: Optional[SecretStr] = None
