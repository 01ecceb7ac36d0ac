from .connector import SmsConnector

__all__ = ["SmsConnector"]
