from .connector import TelegramConnector

__all__ = ["TelegramConnector"]
