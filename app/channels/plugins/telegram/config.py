from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class TelegramConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bot_token: SecretStr = Field(...)
    # Sent back by Telegram in X-Telegram-Bot-Api-Secret-Token
    webhook_secret: Optional[SecretStr] = None
