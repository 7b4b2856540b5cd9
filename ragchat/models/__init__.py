from ragchat.models.chat import ChatLog, ChatMessage

__all__ = [
    "ChatMessage",
    "ChatLog",
]
