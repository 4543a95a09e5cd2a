"""Tests for embedding providers and the resilient gateway."""

import json
import logging
from typing import List

import httpx
import pytest

from bridge.common.config import EmbeddingConfig, ResilienceConfig
from bridge.common.embedding_service import EmbeddingGateway, build_executor
from bridge.common.errors import CircuitOpenError, ProviderError, ValidationError
from bridge.common.providers import (
    PROVIDERS,
    EmbeddingProvider,
    NoneProvider,
    VoyageProvider,
    create_provider,
    register_provider,
    resolve_provider_name,
    validate_text,
)


class CountingProvider(EmbeddingProvider):
    name = "counting"

    def __init__(self, fail: bool = False, vector: List[float] = None):
        self.fail = fail
        self.vector = vector if vector is not None else [0.6, 0.8]
        self.calls = 0

    async def generate_embedding(self, text: str) -> List[float]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("backend down")
        return list(self.vector)

    def get_dimensions(self) -> int:
        return len(self.vector)


class BrokenInitProvider(CountingProvider):
    name = "broken"

    async def initialize(self) -> None:
        raise ProviderError("model download failed", self.name)


async def _no_sleep(_delay):
    return None


def _gateway(provider, threshold=5, attempts=1, cache_size=100):
    resilience = ResilienceConfig(max_attempts=attempts, failure_threshold=threshold)
    executor = build_executor(resilience, provider.name, sleep=_no_sleep)
    return EmbeddingGateway(provider, executor=executor, cache_size=cache_size)


class TestValidateText:
    def test_accepts_text(self):
        assert validate_text("hello") == "hello"

    @pytest.mark.parametrize("bad", ["", "   ", None, 42])
    def test_rejects_blank_and_non_string(self, bad):
        with pytest.raises(ValidationError):
            validate_text(bad)

    def test_rejects_oversized(self):
        with pytest.raises(ValidationError):
            validate_text("x" * 1_000_001)


class TestProviderFactory:
    def test_explicit_provider(self):
        provider = create_provider(EmbeddingConfig(provider="none"))
        assert isinstance(provider, NoneProvider)

    def test_femb_alias(self):
        assert PROVIDERS["femb"] is PROVIDERS["fastembed"]

    def test_unknown_provider(self):
        with pytest.raises(ValidationError):
            create_provider(EmbeddingConfig(provider="does-not-exist"))

    def test_auto_prefers_openai_key(self):
        config = EmbeddingConfig(provider="auto", openai_api_key="sk-test", voyage_api_key="pa-test")
        assert resolve_provider_name(config) == "openai"

    def test_auto_falls_back_to_voyage(self):
        config = EmbeddingConfig(provider="auto", voyage_api_key="pa-test")
        assert resolve_provider_name(config) == "voyage"

    def test_register_provider(self):
        register_provider("Counting", CountingProvider)
        try:
            provider = create_provider(EmbeddingConfig(provider="counting"))
            assert isinstance(provider, CountingProvider)
        finally:
            PROVIDERS.pop("counting", None)


class TestVoyageProvider:
    @pytest.mark.asyncio
    async def test_posts_and_parses_embedding(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2]}]})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        provider = VoyageProvider(api_key="pa-test", client=client)
        await provider.initialize()

        assert await provider.generate_embedding("quiet morning") == [0.1, 0.2]
        assert seen["auth"] == "Bearer pa-test"
        assert seen["body"] == {"input": ["quiet morning"], "model": "voyage-3-lite"}
        await provider.close()

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(429, text="rate limited"))
        )
        provider = VoyageProvider(api_key="pa-test", client=client)
        with pytest.raises(ProviderError) as exc_info:
            await provider.generate_embedding("text")
        assert "429" in str(exc_info.value)
        await provider.close()

    @pytest.mark.asyncio
    async def test_missing_key(self):
        with pytest.raises(ProviderError):
            await VoyageProvider().initialize()


class TestEmbeddingGateway:
    @pytest.mark.asyncio
    async def test_generates_and_caches(self):
        provider = CountingProvider()
        gateway = _gateway(provider)

        assert await gateway.generate_embedding("a walk") == [0.6, 0.8]
        assert await gateway.generate_embedding("a walk") == [0.6, 0.8]
        assert provider.calls == 1

        gateway.clear_cache()
        await gateway.generate_embedding("a walk")
        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_validation_happens_before_backend(self):
        provider = CountingProvider()
        gateway = _gateway(provider)

        with pytest.raises(ValidationError):
            await gateway.generate_embedding("   ")
        assert provider.calls == 0
        assert gateway.breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_backend_failures_open_circuit(self):
        provider = CountingProvider(fail=True)
        gateway = _gateway(provider, threshold=2, attempts=1)

        for text in ("one", "two"):
            with pytest.raises(ProviderError):
                await gateway.generate_embedding(text)
        with pytest.raises(CircuitOpenError):
            await gateway.generate_embedding("three")
        assert provider.calls == 2
        assert gateway.status()["circuit"]["state"] == "open"

    @pytest.mark.asyncio
    async def test_empty_vector_is_provider_error(self):
        gateway = _gateway(CountingProvider(vector=[]))
        with pytest.raises(ProviderError):
            await gateway.generate_embedding("text")

    @pytest.mark.asyncio
    async def test_failed_initialize_falls_back_to_none(self, caplog):
        gateway = _gateway(BrokenInitProvider())
        with caplog.at_level(logging.WARNING, logger="bridge.common.embedding"):
            await gateway.initialize()

        assert gateway.provider.name == "none"
        assert gateway.status()["init_error"] == "model download failed"
        assert "falling back" in caplog.text
        assert await gateway.generate_embedding("text") == [0.0]

    @pytest.mark.asyncio
    async def test_is_available(self):
        assert await _gateway(CountingProvider()).is_available() is True

    @pytest.mark.asyncio
    async def test_close_releases_http_client(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": [{"embedding": [1.0]}]}))
        )
        gateway = _gateway(VoyageProvider(api_key="pa-test", client=client))
        await gateway.generate_embedding("text")

        await gateway.close()

        assert client.is_closed
        assert gateway.provider._client is None
