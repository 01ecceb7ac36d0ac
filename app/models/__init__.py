from app.models.channel import Channel
from app.models.conversation import Conversation
from app.models.conversation_message import ConversationMessage
from app.models.conversation_participant import ConversationParticipant

__all__ = [
    "Channel",
    "Conversation",
    "ConversationMessage",
    "ConversationParticipant",
]
