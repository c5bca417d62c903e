"""Conversation memory for multi-turn document chat.

Sessions live in process memory. A user turn is recorded before the answer is
generated, so a failed generation keeps what the user already said.
"""
import uuid
from typing import Dict, List, Optional
import structlog

from ragreader.models import ChatAnswer, ChatMessage
from ragreader.rag.chat import ChatPipeline

logger = structlog.get_logger()


class ConversationManager:
    """Manages chat sessions and conversation history."""

    def __init__(self, pipeline: ChatPipeline, context_window_size: int = 6):
        """Initialize the conversation manager.

        Args:
            pipeline: Chat pipeline used to answer questions
            context_window_size: Number of recent messages sent as history
        """
        self.pipeline = pipeline
        self.context_window_size = context_window_size
        self._sessions: Dict[str, List[ChatMessage]] = {}

    def create_session(self) -> str:
        """Create a new chat session and return its id."""
        session_id = str(uuid.uuid4())
        self._sessions[session_id] = []
        logger.info("conversation_session_created", session_id=session_id)
        return session_id

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_messages(self, session_id: str) -> List[ChatMessage]:
        """All messages of a session in chronological order.

        Raises:
            KeyError: If the session doesn't exist
        """
        return list(self._sessions[session_id])

    def get_recent_messages(self, session_id: str) -> List[ChatMessage]:
        if self.context_window_size <= 0:
            return []
        return self.get_messages(session_id)[-self.context_window_size:]

    def add_message(self, session_id: str, role: str, content: str) -> None:
        self._sessions[session_id].append(ChatMessage(role=role, content=content))
        logger.debug("conversation_message_added", session_id=session_id, role=role)

    def delete_session(self, session_id: str) -> bool:
        deleted = self._sessions.pop(session_id, None) is not None
        if deleted:
            logger.info("conversation_session_deleted", session_id=session_id)
        return deleted

    def list_sessions(self) -> List[str]:
        return list(self._sessions)

    async def ask(
        self,
        session_id: str,
        query: str,
        use_rag: bool = True,
    ) -> ChatAnswer:
        """Ask a question within a session and record both turns.

        Raises:
            KeyError: If the session doesn't exist
            GenerationError: If generation fails; the user turn stays recorded
        """
        history = self.get_recent_messages(session_id)
        self.add_message(session_id, "user", query)

        answer = await self.pipeline.ask(query, history=history, use_rag=use_rag)

        self.add_message(session_id, "assistant", answer.content)
        logger.info(
            "conversation_turn_completed",
            session_id=session_id,
            response_length=len(answer.content),
            num_sources=len(answer.sources),
        )
        return answer
