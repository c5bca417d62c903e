"""Chat-completion client for OpenAI-compatible providers (Groq, OpenRouter)."""
from typing import Dict, List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from ragreader import config
from ragreader.config import GenerationSettings
from ragreader.errors import GenerationError
from ragreader.models import ChatMessage

logger = structlog.get_logger()


class ChatCompletionRequest(BaseModel):
    model: str
    messages: List[Dict[str, str]]
    temperature: float
    max_tokens: int
    stream: Optional[bool] = None


class CompletionMessage(BaseModel):
    role: str = "assistant"
    content: str


class CompletionChoice(BaseModel):
    message: CompletionMessage


class ChatCompletionResponse(BaseModel):
    choices: List[CompletionChoice] = Field(min_length=1)


class ProviderEndpoint(BaseModel):
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    # Groq documents an explicit stream flag, OpenRouter doesn't need one
    send_stream_flag: bool = False


ENDPOINTS = {
    "groq": ProviderEndpoint(url=config.GROQ_CHAT_URL, send_stream_flag=True),
    "openrouter": ProviderEndpoint(
        url=config.OPENROUTER_CHAT_URL,
        headers={
            "HTTP-Referer": "https://github.com/ragreader/ragreader",
            "X-Title": "RAG Reader",
        },
    ),
}


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return response.text[:200] or "Unknown error"


class GenerationClient:
    """Async client for chat-completion APIs."""

    def __init__(
        self,
        settings: Optional[GenerationSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the generation client.

        Args:
            settings: Provider configuration (read from the environment if not provided)
            transport: Optional httpx transport, used to stub the network in tests
        """
        self.settings = settings or GenerationSettings.from_env()
        self._transport = transport

    def reload(self, settings: GenerationSettings) -> None:
        """Replace the provider configuration."""
        self.settings = settings
        logger.info(
            "generation_client_reloaded",
            provider=settings.provider,
            model=settings.model,
        )

    @property
    def is_api_configured(self) -> bool:
        return self.settings.is_api_configured

    @property
    def current_config(self) -> Dict[str, str]:
        return {
            "provider": self.settings.provider,
            "model": self.settings.model,
            "has_api_key": str(self.is_api_configured).lower(),
        }

    def available_models(self) -> List[str]:
        """Known models for the current provider."""
        return list(config.GENERATION_MODELS.get(self.settings.provider, []))

    async def chat(self, messages: List[ChatMessage]) -> str:
        """Send a chat completion request.

        Args:
            messages: Role-tagged conversation, system message first

        Returns:
            Completion text, stripped

        Raises:
            GenerationError: If no API key is configured, the provider is unknown,
                the request fails, or the response is malformed
        """
        settings = self.settings
        if not settings.is_api_configured:
            raise GenerationError(
                "API key not configured. Set LLM_API_KEY or reload the settings."
            )

        endpoint = ENDPOINTS.get(settings.provider)
        if endpoint is None:
            raise GenerationError(f"Unsupported API provider: {settings.provider}")

        request = ChatCompletionRequest(
            model=settings.model,
            messages=[m.to_dict() for m in messages],
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            stream=False if endpoint.send_stream_flag else None,
        )

        try:
            async with httpx.AsyncClient(
                timeout=settings.timeout, transport=self._transport
            ) as client:
                logger.info(
                    "chat_request",
                    provider=settings.provider,
                    model=settings.model,
                    message_count=len(messages),
                )

                response = await client.post(
                    endpoint.url,
                    headers={"Authorization": f"Bearer {settings.api_key}", **endpoint.headers},
                    json=request.model_dump(exclude_none=True),
                )

        except httpx.HTTPError as e:
            logger.error("chat_connection_error", provider=settings.provider, error=str(e))
            raise GenerationError(f"LLM request failed: {e}") from e

        if response.status_code != 200:
            message = _error_message(response)
            logger.error(
                "chat_http_error",
                provider=settings.provider,
                status_code=response.status_code,
                error=message,
            )
            raise GenerationError(f"LLM API Error ({response.status_code}): {message}")

        try:
            body = ChatCompletionResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            logger.error("chat_malformed_response", provider=settings.provider, error=str(e))
            raise GenerationError(f"Malformed LLM response: {e}") from e

        content = body.choices[0].message.content.strip()
        logger.info("chat_response", provider=settings.provider, response_length=len(content))
        return content

    async def test_connection(self) -> bool:
        """Check that the configured provider answers a trivial request."""
        if not self.is_api_configured:
            return False
        try:
            await self.chat([ChatMessage(role="user", content="Hello, this is a test message.")])
            return True
        except GenerationError as e:
            logger.warning("api_connection_test_failed", error=str(e))
            return False
