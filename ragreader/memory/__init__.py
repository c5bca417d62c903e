"""Conversation memory."""
from ragreader.memory.manager import ConversationManager

__all__ = ["ConversationManager"]
