from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class SmsConfig(BaseModel):
    """Twilio account settings."""

    model_config = ConfigDict(extra="forbid")

    account_sid: str = Field(..., pattern=r"^AC[0-9a-fA-F]{32}$")
    auth_token: SecretStr = Field(...)
    from_number: str = Field(..., pattern=r"^\+[1-9]\d{6,14}$")
    webhook_secret: Optional[SecretStr] = None
