from .connector import WhatsAppConnector

__all__ = ["WhatsAppConnector"]
