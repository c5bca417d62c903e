"""Question answering over retrieved document context."""
from typing import List, Optional
import structlog

from ragreader.llm_client import GenerationClient
from ragreader.models import ChatAnswer, ChatMessage
from ragreader.rag.retriever import Retriever, build_context

logger = structlog.get_logger()

RAG_SYSTEM_PROMPT = """You are a helpful AI assistant that answers questions based on the provided document context.

Instructions:
- Answer the user's question using ONLY the information provided in the context below
- If the context doesn't contain enough information to answer the question, say so clearly
- Be concise but thorough in your response
- Cite specific parts of the documents when relevant
- If multiple documents contain relevant information, synthesize the information appropriately

Context from documents:
{context}"""

SIMPLE_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Answer the user's questions clearly and concisely."
)


def build_messages(
    system_prompt: str,
    query: str,
    history: Optional[List[ChatMessage]] = None,
) -> List[ChatMessage]:
    """System message, then prior turns, then the new user message."""
    messages = [ChatMessage(role="system", content=system_prompt)]
    for turn in history or []:
        if turn.role in ("user", "assistant"):
            messages.append(ChatMessage(role=turn.role, content=turn.content))
    messages.append(ChatMessage(role="user", content=query))
    return messages


class ChatPipeline:
    """Retrieves context for a question and asks the LLM to answer it."""

    def __init__(
        self,
        retriever: Retriever,
        generator: GenerationClient,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
    ):
        self.retriever = retriever
        self.generator = generator
        self.top_k = top_k
        self.threshold = threshold

    async def ask(
        self,
        query: str,
        history: Optional[List[ChatMessage]] = None,
        use_rag: bool = True,
    ) -> ChatAnswer:
        """Answer a question, grounded in retrieved chunks unless use_rag is False.

        Args:
            query: The user's question
            history: Prior user/assistant turns, oldest first
            use_rag: Retrieve document context before generating

        Returns:
            ChatAnswer with the completion, sources and context used

        Raises:
            GenerationError: If the chat-completion call fails
        """
        sources = []
        context = None

        if use_rag:
            sources = await self.retriever.search(query, k=self.top_k, threshold=self.threshold)
            context = build_context(sources)
            system_prompt = RAG_SYSTEM_PROMPT.format(context=context)
        else:
            system_prompt = SIMPLE_SYSTEM_PROMPT

        messages = build_messages(system_prompt, query, history)

        logger.info(
            "chat_prompt_built",
            use_rag=use_rag,
            num_sources=len(sources),
            history_turns=len(messages) - 2,
        )

        content = await self.generator.chat(messages)
        return ChatAnswer(content=content, sources=sources, context=context)
