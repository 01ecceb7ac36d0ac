from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.core.registry import ConnectorRegistry
from app.db import get_db
from app.services.channel_service import ChannelService


def get_connector_registry(request: Request) -> ConnectorRegistry:
    """FastAPI dependency returning the registry built at startup."""
    return request.app.state.connector_registry


def get_channel_service(
    db: Session = Depends(get_db),
    registry: ConnectorRegistry = Depends(get_connector_registry),
) -> ChannelService:
    return ChannelService(db, registry)
