from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class WhatsAppConfig(BaseModel):
    """WhatsApp Business Cloud API credentials."""

    model_config = ConfigDict(extra="forbid")

    phone_number_id: str = Field(..., min_length=1)
    business_account_id: Optional[str] = None
    access_token: SecretStr = Field(...)
    # Signs webhook bodies (X-Hub-Signature-256)
    app_secret: Optional[SecretStr] = None
    # Echoed back during Meta's GET subscription handshake
    verify_token: Optional[str] = None
    api_version: str = "v19.0"
