from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class EmailConfig(BaseModel):
    """Inbound address settings plus an optional per-channel SMTP transport."""

    model_config = ConfigDict(extra="forbid")

    email_from: str = Field(..., min_length=3)
    email_from_name: Optional[str] = None
    email_domain: str = Field(..., min_length=1)

    # Falls back to the SMTP_* settings when smtp_host is not set here
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = Field(default=None, gt=0, lt=65536)
    smtp_username: Optional[str] = None
    smtp_password: Optional[SecretStr] = None
    smtp_use_tls: Optional[bool] = None

    webhook_secret: Optional[SecretStr] = None
