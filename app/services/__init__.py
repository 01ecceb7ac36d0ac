from app.services.conversation_message_service import ConversationMessageService
from app.services.conversation_service import ConversationService, IncomingResult

__all__ = [
    "ConversationMessageService",
    "ConversationService",
    "IncomingResult",
]
