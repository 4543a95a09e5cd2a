"""
Embedding Gateway

Turns text into vectors through one configured backend, with every backend
call wrapped in a timeout race, retry with backoff and a circuit breaker.
Input is validated before the backend is ever touched.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .config import BridgeConfig, ResilienceConfig
from .errors import BridgeError, ProviderError
from .providers import EmbeddingProvider, NoneProvider, create_provider, validate_text
from .resilience import (
    CircuitBreaker,
    ResilientExecutor,
    RetryPolicy,
    with_timeout,
)

logger = logging.getLogger("bridge.common.embedding")


def build_executor(
    resilience: ResilienceConfig,
    provider_name: str = "unknown",
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ResilientExecutor:
    """Create the resilience stack from configuration"""
    return ResilientExecutor(
        breaker=CircuitBreaker(
            name=f"embedding:{provider_name}",
            failure_threshold=resilience.failure_threshold,
            reset_timeout=resilience.reset_timeout,
            clock=clock,
        ),
        retry=RetryPolicy(
            max_attempts=resilience.max_attempts,
            base_delay=resilience.base_delay,
            max_delay=resilience.max_delay,
        ),
        timeouts={"embedding_generation": resilience.embedding_timeout},
        sleep=sleep,
        provider_name=provider_name,
    )


class EmbeddingGateway:
    """
    Resilient front door to an embedding backend.

    Features:
    - Validation before any backend call (never retried, never a breaker failure)
    - Timeout, retry and circuit breaker on every generation
    - Small LRU cache of recent text -> vector results
    - Falls back to the "none" backend if the configured one cannot start
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        executor: Optional[ResilientExecutor] = None,
        cache_size: int = 1000,
    ):
        """
        Initialize the gateway.

        Args:
            provider: Backend strategy
            executor: Resilience stack (default: library defaults)
            cache_size: Cached vectors to keep (0 disables caching)
        """
        self._provider = provider
        self._executor = executor or ResilientExecutor(provider_name=provider.name)
        self._cache_size = cache_size
        self._cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._initialized = False
        self._init_error: Optional[str] = None

    @classmethod
    def from_config(cls, config: BridgeConfig) -> "EmbeddingGateway":
        provider = create_provider(config.embedding)
        executor = build_executor(config.resilience, provider.name)
        return cls(provider, executor=executor, cache_size=config.embedding.cache_size)

    @property
    def provider(self) -> EmbeddingProvider:
        return self._provider

    @property
    def breaker(self) -> CircuitBreaker:
        return self._executor.breaker

    async def initialize(self) -> None:
        """Start the backend; degrade to the none backend on failure"""
        if self._initialized:
            return
        try:
            await with_timeout(
                self._provider.initialize(),
                self._executor.timeouts.get("provider_init"),
                "provider_init",
            )
        except Exception as e:
            self._init_error = str(e)
            logger.warning(
                "Embedding provider '%s' failed to initialize (%s); falling back to 'none'",
                self._provider.name, e,
            )
            self._provider = NoneProvider()
        self._initialized = True

    async def generate_embedding(self, text: str) -> List[float]:
        """
        Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            ValidationError: bad input, raised before any backend call
            CircuitOpenError: breaker open, no backend call made
            EmbeddingTimeoutError, ProviderError: after retries are exhausted
        """
        validate_text(text)

        if self._cache_size and text in self._cache:
            self._cache.move_to_end(text)
            return list(self._cache[text])

        if not self._initialized:
            await self.initialize()

        vector = await self._executor.run(
            "embedding_generation",
            lambda: self._provider.generate_embedding(text),
        )
        if not vector:
            raise ProviderError("Backend returned an empty vector", self._provider.name)

        if self._cache_size:
            self._cache[text] = list(vector)
            if len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return vector

    def get_dimensions(self) -> int:
        return self._provider.get_dimensions()

    async def is_available(self) -> bool:
        """Ask the backend, bounded by the provider-check deadline"""
        try:
            return bool(await with_timeout(
                self._provider.is_available(),
                self._executor.timeouts.get("provider_check"),
                "provider_check",
            ))
        except BridgeError as e:
            logger.warning("Availability check failed: %s", e)
            return False

    def clear_cache(self) -> None:
        self._cache.clear()

    async def close(self) -> None:
        """Release the backend's network clients"""
        await self._provider.close()

    def status(self) -> Dict[str, Any]:
        return {
            "provider": self._provider.name,
            "dimensions": self.get_dimensions(),
            "initialized": self._initialized,
            "init_error": self._init_error,
            "cached": len(self._cache),
            "circuit": self.breaker.status(),
        }

