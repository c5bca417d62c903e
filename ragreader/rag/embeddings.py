"""Embedding provider with external APIs and a deterministic local fallback.

Embedding generation never fails outward: when no API key is configured the
local generator is used, and when a configured provider fails (transport
error, non-2xx status, malformed payload) the local generator is used instead.
The local vectors are reproducible but carry no semantic meaning, so rankings
over them are only internally consistent.
"""
import asyncio
import hashlib
import re
from typing import Callable, ClassVar, List, Optional, Union

import httpx
import numpy as np
import structlog
from pydantic import BaseModel, Field, TypeAdapter

from ragreader import config
from ragreader.config import EmbeddingSettings
from ragreader.errors import ProviderError

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int], None]

_NON_WORD = re.compile(r"[^\w\s]")


class OpenAIEmbeddingRequest(BaseModel):
    provider: ClassVar[str] = "openai"

    input: str
    model: str


class OpenAIEmbeddingData(BaseModel):
    embedding: List[float]


class OpenAIEmbeddingResponse(BaseModel):
    data: List[OpenAIEmbeddingData] = Field(min_length=1)


class HuggingFaceEmbeddingRequest(BaseModel):
    provider: ClassVar[str] = "huggingface"

    inputs: str


# Feature extraction returns either a nested [[...]] batch or a flat vector
HuggingFaceEmbeddingResponse = TypeAdapter(Union[List[List[float]], List[float]])


def local_embedding(text: str, dimension: int) -> List[float]:
    """Generate a deterministic pseudo-embedding from the text alone.

    Args:
        text: Text to embed
        dimension: Length of the output vector

    Returns:
        L2-normalized vector (the zero vector for empty text)
    """
    if not text:
        return [0.0] * dimension

    words = _NON_WORD.sub("", text.lower()).split()
    digest = hashlib.sha256(text.encode("utf-8", "surrogatepass")).digest()
    seed = int.from_bytes(digest[:8], "big")
    rng = np.random.default_rng(seed)

    codes = np.fromiter((ord(c) for c in text), dtype=np.float64, count=len(text))
    positions = np.arange(dimension) % len(text)

    values = (
        len(words) * 0.001
        + len(text) * 0.0001
        + (rng.random(dimension) - 0.5) * 0.1
        + codes[positions] * 0.0001
    )

    norm = np.linalg.norm(values)
    if norm > 0:
        values = values / norm

    return values.tolist()


class EmbeddingProvider:
    """Maps text to fixed-length vectors using the configured provider."""

    def __init__(
        self,
        settings: Optional[EmbeddingSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the embedding provider.

        Args:
            settings: Provider configuration (read from the environment if not provided)
            transport: Optional httpx transport, used to stub the network in tests
        """
        self.settings = settings or EmbeddingSettings.from_env()
        self._transport = transport
        self.stats = {
            "api_embeddings": 0,
            "local_embeddings": 0,
            "fallbacks": 0,
        }

        logger.info(
            "embedding_provider_initialized",
            provider=self.provider,
            model=self.settings.resolved_model,
            dimension=self.dimension,
            fallback_on_error=self.settings.fallback_on_error,
        )

    def reload(self, settings: EmbeddingSettings) -> None:
        """Replace the provider configuration."""
        self.settings = settings
        logger.info(
            "embedding_provider_reloaded",
            provider=self.provider,
            dimension=self.dimension,
        )

    @property
    def provider(self) -> str:
        return self.settings.resolved_provider

    @property
    def dimension(self) -> int:
        return self.settings.resolved_dimension

    @property
    def is_api_configured(self) -> bool:
        return self.settings.is_api_configured

    async def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Provider failures are absorbed by the local fallback unless
        ``fallback_on_error`` is disabled.

        Args:
            text: Text to embed

        Returns:
            Embedding vector of length ``self.dimension``

        Raises:
            ProviderError: Only when the fallback is disabled and the provider fails
        """
        if not text:
            return [0.0] * self.dimension

        provider = self.provider
        if provider == "local":
            return self._local(text)

        try:
            embedding = await self._embed_remote(provider, text)
        except ProviderError as e:
            if not self.settings.fallback_on_error:
                raise
            self.stats["fallbacks"] += 1
            logger.warning(
                "embedding_provider_failed_using_fallback",
                provider=provider,
                error=str(e),
            )
            return self._local(text)

        self.stats["api_embeddings"] += 1
        return embedding

    async def embed_batch(
        self,
        texts: List[str],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[List[float]]:
        """Embed texts one after another with a fixed delay between calls.

        Args:
            texts: Texts to embed
            progress_callback: Optional callback(current, total) after each item

        Returns:
            Embeddings in input order
        """
        embeddings = []
        total = len(texts)

        for index, text in enumerate(texts, 1):
            embeddings.append(await self.embed(text))

            if progress_callback:
                progress_callback(index, total)

            if index < total:
                await asyncio.sleep(self.settings.batch_delay)

        logger.debug("embeddings_batch_generated", count=total, provider=self.provider)
        return embeddings

    def _local(self, text: str) -> List[float]:
        self.stats["local_embeddings"] += 1
        return local_embedding(text, self.dimension)

    async def _embed_remote(self, provider: str, text: str) -> List[float]:
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.timeout, transport=self._transport
            ) as client:
                if provider == "openai":
                    embedding = await self._openai_embedding(client, text)
                else:
                    embedding = await self._huggingface_embedding(client, text)
        except httpx.HTTPError as e:
            raise ProviderError(f"{provider} embedding request failed: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderError(f"Malformed {provider} embedding response: {e}") from e

        if len(embedding) != self.dimension:
            raise ProviderError(
                f"{provider} returned {len(embedding)} dimensions, expected {self.dimension}"
            )

        return embedding

    async def _openai_embedding(self, client: httpx.AsyncClient, text: str) -> List[float]:
        request = OpenAIEmbeddingRequest(input=text, model=self.settings.resolved_model)

        logger.debug("openai_embedding_request", model=request.model, text_length=len(text))

        response = await client.post(
            config.OPENAI_EMBEDDINGS_URL,
            headers={"Authorization": f"Bearer {self.settings.api_key}"},
            json=request.model_dump(),
        )
        response.raise_for_status()

        body = OpenAIEmbeddingResponse.model_validate(response.json())
        return body.data[0].embedding

    async def _huggingface_embedding(self, client: httpx.AsyncClient, text: str) -> List[float]:
        request = HuggingFaceEmbeddingRequest(inputs=text)
        model = self.settings.resolved_model

        logger.debug("huggingface_embedding_request", model=model, text_length=len(text))

        response = await client.post(
            f"{config.HUGGINGFACE_EMBEDDINGS_URL}/{model}",
            headers={"Authorization": f"Bearer {self.settings.api_key}"},
            json=request.model_dump(),
        )
        response.raise_for_status()

        body = HuggingFaceEmbeddingResponse.validate_python(response.json())
        if body and isinstance(body[0], list):
            return body[0]
        if not body:
            raise ValueError("Empty embedding returned")
        return body
