"""Tests for the embedding provider and its local fallback."""
import json

import httpx
import numpy as np
import pytest

from ragreader import config
from ragreader.config import EmbeddingSettings
from ragreader.errors import ProviderError
from ragreader.rag.embeddings import EmbeddingProvider, local_embedding


def openai_settings(**overrides):
    values = dict(provider="openai", api_key="sk-test", dimension=4, batch_delay=0.0)
    values.update(overrides)
    return EmbeddingSettings(**values)


def transport_returning(status_code=200, payload=None, requests=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


def failing_transport():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


def unexpected_transport():
    def handler(request: httpx.Request) -> httpx.Response:
        pytest.fail(f"Unexpected HTTP request to {request.url}")

    return httpx.MockTransport(handler)


class TestLocalEmbedding:
    def test_deterministic(self):
        assert local_embedding("hello world", 64) == local_embedding("hello world", 64)

    def test_different_texts_differ(self):
        assert local_embedding("hello world", 64) != local_embedding("goodbye world", 64)

    def test_requested_dimension_and_unit_norm(self):
        vector = local_embedding("The quick brown fox", 384)

        assert len(vector) == 384
        assert np.linalg.norm(vector) == pytest.approx(1.0)

    def test_empty_text_is_zero_vector(self):
        assert local_embedding("", 8) == [0.0] * 8

    def test_lone_surrogate_text(self):
        vector = local_embedding("broken \ud800 text", 16)

        assert len(vector) == 16
        assert vector == local_embedding("broken \ud800 text", 16)
        assert np.linalg.norm(vector) == pytest.approx(1.0)


class TestEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_no_api_key_uses_local_without_network(self):
        settings = EmbeddingSettings(provider="openai", api_key=None, batch_delay=0.0)
        provider = EmbeddingProvider(settings, transport=unexpected_transport())

        vector = await provider.embed("some text")

        assert provider.provider == "local"
        assert vector == local_embedding("some text", 1536)
        assert provider.stats["local_embeddings"] == 1

    @pytest.mark.asyncio
    async def test_unknown_provider_uses_local(self):
        settings = EmbeddingSettings(provider="mystery", api_key="k", batch_delay=0.0)
        provider = EmbeddingProvider(settings, transport=unexpected_transport())

        assert provider.provider == "local"
        assert len(await provider.embed("some text")) == provider.dimension

    @pytest.mark.asyncio
    async def test_empty_text_returns_zero_vector(self, embedder):
        assert await embedder.embed("") == [0.0] * embedder.dimension

    @pytest.mark.asyncio
    async def test_openai_success(self):
        requests = []
        payload = {"data": [{"embedding": [0.1, 0.2, 0.3, 0.4]}]}
        provider = EmbeddingProvider(
            openai_settings(), transport=transport_returning(200, payload, requests)
        )

        vector = await provider.embed("hello")

        assert vector == [0.1, 0.2, 0.3, 0.4]
        assert provider.stats["api_embeddings"] == 1
        assert provider.stats["fallbacks"] == 0

        request = requests[0]
        assert str(request.url) == config.OPENAI_EMBEDDINGS_URL
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert json.loads(request.content) == {
            "input": "hello",
            "model": "text-embedding-3-small",
        }

    @pytest.mark.asyncio
    async def test_huggingface_nested_response(self):
        requests = []
        settings = EmbeddingSettings(
            provider="huggingface", api_key="hf-test", dimension=3, batch_delay=0.0
        )
        provider = EmbeddingProvider(
            settings, transport=transport_returning(200, [[0.5, 0.5, 0.5]], requests)
        )

        assert await provider.embed("hello") == [0.5, 0.5, 0.5]
        assert str(requests[0].url).endswith("/sentence-transformers/all-MiniLM-L6-v2")
        assert json.loads(requests[0].content) == {"inputs": "hello"}

    @pytest.mark.asyncio
    async def test_huggingface_flat_response(self):
        settings = EmbeddingSettings(
            provider="huggingface", api_key="hf-test", dimension=3, batch_delay=0.0
        )
        provider = EmbeddingProvider(settings, transport=transport_returning(200, [1.0, 0.0, 0.0]))

        assert await provider.embed("hello") == [1.0, 0.0, 0.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "transport",
        [
            transport_returning(500, {"error": "server error"}),
            transport_returning(200, {"unexpected": True}),
            transport_returning(200, {"data": []}),
            transport_returning(200, {"data": [{"embedding": [0.1, 0.2]}]}),
            failing_transport(),
        ],
        ids=["http-500", "malformed", "empty-data", "wrong-dimension", "connection-error"],
    )
    async def test_provider_failure_falls_back_to_local(self, transport):
        provider = EmbeddingProvider(openai_settings(), transport=transport)

        vector = await provider.embed("hello")

        assert vector == local_embedding("hello", 4)
        assert provider.stats["fallbacks"] == 1
        assert provider.stats["api_embeddings"] == 0

    @pytest.mark.asyncio
    async def test_lone_surrogate_never_raises_locally(self, embedder):
        vector = await embedder.embed("broken \ud800 text")

        assert vector == local_embedding("broken \ud800 text", embedder.dimension)

    @pytest.mark.asyncio
    async def test_lone_surrogate_never_raises_with_provider(self):
        payload = {"data": [{"embedding": [0.1, 0.2, 0.3, 0.4]}]}
        provider = EmbeddingProvider(openai_settings(), transport=transport_returning(200, payload))

        vector = await provider.embed("broken \ud800 text")

        assert vector in ([0.1, 0.2, 0.3, 0.4], local_embedding("broken \ud800 text", 4))

    @pytest.mark.asyncio
    async def test_fallback_disabled_raises(self):
        provider = EmbeddingProvider(
            openai_settings(fallback_on_error=False),
            transport=transport_returning(500, {"error": "server error"}),
        )

        with pytest.raises(ProviderError):
            await provider.embed("hello")

    @pytest.mark.asyncio
    async def test_embed_batch_reports_progress_in_order(self, embedder):
        progress = []
        texts = ["first text here", "second text here", "third text here"]

        vectors = await embedder.embed_batch(texts, progress_callback=lambda c, t: progress.append((c, t)))

        assert progress == [(1, 3), (2, 3), (3, 3)]
        assert vectors == [local_embedding(t, embedder.dimension) for t in texts]

    @pytest.mark.asyncio
    async def test_embed_batch_empty(self, embedder):
        assert await embedder.embed_batch([]) == []

    def test_reload_switches_provider(self, embedder):
        assert embedder.provider == "local"

        embedder.reload(openai_settings())

        assert embedder.provider == "openai"
        assert embedder.dimension == 4
        assert embedder.is_api_configured
