from .connector import ChatWidgetConnector

__all__ = ["ChatWidgetConnector"]
