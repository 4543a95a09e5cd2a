"""
Embedding Providers

Interchangeable embedding backends behind one contract, selected by a
factory keyed on EmbeddingConfig.provider:

- none: always available, returns a one-dimensional zero vector
- openai: remote API via the openai SDK
- voyage: remote API over plain HTTP (httpx)
- fastembed / femb: on-device model, runs off the event loop

Backends do not retry or time out on their own; EmbeddingGateway wraps
every call with the resilience stack.
"""

import asyncio
import importlib.util
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

import httpx

from .config import EmbeddingConfig
from .errors import ProviderError, ValidationError

logger = logging.getLogger("bridge.common.providers")

MAX_TEXT_LENGTH = 1_000_000


def validate_text(text: object) -> str:
    """
    Reject text that no backend should ever see.

    Raises:
        ValidationError: for non-string, blank, or oversized input
    """
    if not isinstance(text, str):
        raise ValidationError(f"Embedding input must be a string, got {type(text).__name__}")
    if not text.strip():
        raise ValidationError("Cannot embed empty text")
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(
            f"Text too long for embedding ({len(text)} chars, max {MAX_TEXT_LENGTH})"
        )
    return text


class EmbeddingProvider(ABC):
    """Contract every embedding backend implements"""

    name: str = "base"

    async def initialize(self) -> None:
        """Prepare clients or load models. Default: nothing to do."""

    async def close(self) -> None:
        """Release clients. Default: nothing to release."""

    @abstractmethod
    async def generate_embedding(self, text: str) -> List[float]:
        """Embed a single validated text"""

    @abstractmethod
    def get_dimensions(self) -> int:
        """Width of the vectors this backend produces"""

    async def is_available(self) -> bool:
        return True

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "EmbeddingProvider":
        return cls()


class NoneProvider(EmbeddingProvider):
    """
    Degenerate backend used when nothing is configured.

    Returns [0.0] for every input so the pipeline keeps running; cosine
    similarity against a zero vector is 0, so semantic search contributes
    nothing.
    """

    name = "none"

    async def generate_embedding(self, text: str) -> List[float]:
        return [0.0]

    def get_dimensions(self) -> int:
        return 1


class OpenAIProvider(EmbeddingProvider):
    """OpenAI embeddings API"""

    name = "openai"

    DEFAULT_MODEL = "text-embedding-3-small"
    MODEL_DIMENSIONS = {
        "text-embedding-3-large": 3072,
        "text-embedding-3-small": 1536,
        "text-embedding-ada-002": 1536,
    }

    def __init__(self, api_key: str = "", model: str = "", dimensions: int = 0):
        self._api_key = api_key
        self._model = model or self.DEFAULT_MODEL
        self._dimensions = dimensions
        self._client = None

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "OpenAIProvider":
        return cls(
            api_key=config.openai_api_key,
            model=config.model,
            dimensions=config.dimensions,
        )

    async def initialize(self) -> None:
        if self._client is not None:
            return
        if not self._api_key:
            raise ProviderError("OpenAI API key not configured", self.name)
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise ProviderError("openai package not installed", self.name) from e
        self._client = AsyncOpenAI(api_key=self._api_key)
        logger.info("OpenAI embeddings initialized (model=%s)", self._model)

    async def generate_embedding(self, text: str) -> List[float]:
        if self._client is None:
            await self.initialize()
        kwargs = {"model": self._model, "input": text}
        if self._dimensions:
            kwargs["dimensions"] = self._dimensions
        response = await self._client.embeddings.create(**kwargs)
        return [float(x) for x in response.data[0].embedding]

    def get_dimensions(self) -> int:
        if self._dimensions:
            return self._dimensions
        return self.MODEL_DIMENSIONS.get(self._model, 1536)

    async def is_available(self) -> bool:
        return bool(self._api_key) and importlib.util.find_spec("openai") is not None


class VoyageProvider(EmbeddingProvider):
    """Voyage AI embeddings over HTTP"""

    name = "voyage"

    API_URL = "https://api.voyageai.com/v1/embeddings"
    DEFAULT_MODEL = "voyage-3-lite"
    MODEL_DIMENSIONS = {
        "voyage-3-lite": 512,
        "voyage-3": 1024,
        "voyage-3-large": 1024,
        "voyage-code-3": 1024,
    }

    def __init__(
        self,
        api_key: str = "",
        model: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self._model = model or self.DEFAULT_MODEL
        self._client = client

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "VoyageProvider":
        return cls(api_key=config.voyage_api_key, model=config.model)

    async def initialize(self) -> None:
        if not self._api_key:
            raise ProviderError("Voyage API key not configured", self.name)
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    async def generate_embedding(self, text: str) -> List[float]:
        if self._client is None:
            await self.initialize()
        response = await self._client.post(
            self.API_URL,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={"input": [text], "model": self._model},
        )
        if response.status_code != 200:
            raise ProviderError(
                f"Voyage API returned {response.status_code}: {response.text[:200]}",
                self.name,
            )
        data = response.json()
        try:
            return [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected Voyage response format: {e}", self.name) from e

    def get_dimensions(self) -> int:
        return self.MODEL_DIMENSIONS.get(self._model, 1024)

    async def is_available(self) -> bool:
        return bool(self._api_key)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class FastEmbedProvider(EmbeddingProvider):
    """
    On-device embeddings using fastembed.

    Keeps data local; model download happens on first initialize().
    """

    name = "fastembed"

    DEFAULT_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
    MODEL_DIMENSIONS = {
        "sentence-transformers/all-MiniLM-L6-v2": 384,
        "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2": 384,
        "BAAI/bge-small-en-v1.5": 384,
        "BAAI/bge-base-en-v1.5": 768,
    }

    def __init__(self, model: str = ""):
        self._model_name = model or self.DEFAULT_MODEL
        self._model = None
        self._dimensions: Optional[int] = None

    @classmethod
    def from_config(cls, config: EmbeddingConfig) -> "FastEmbedProvider":
        return cls(model=config.model)

    async def initialize(self) -> None:
        if self._model is not None:
            return
        try:
            from fastembed import TextEmbedding
        except ImportError as e:
            raise ProviderError("fastembed package not installed", self.name) from e
        self._model = await asyncio.to_thread(TextEmbedding, model_name=self._model_name)
        logger.info("fastembed model loaded: %s", self._model_name)

    def _embed_sync(self, text: str) -> List[float]:
        vector = next(iter(self._model.embed([text])))
        return [float(x) for x in vector]

    async def generate_embedding(self, text: str) -> List[float]:
        if self._model is None:
            await self.initialize()
        vector = await asyncio.to_thread(self._embed_sync, text)
        self._dimensions = len(vector)
        return vector

    def get_dimensions(self) -> int:
        if self._dimensions:
            return self._dimensions
        return self.MODEL_DIMENSIONS.get(self._model_name, 384)

    async def is_available(self) -> bool:
        return importlib.util.find_spec("fastembed") is not None


# ---------- Factory ---------- #

PROVIDERS: Dict[str, Type[EmbeddingProvider]] = {
    "none": NoneProvider,
    "openai": OpenAIProvider,
    "voyage": VoyageProvider,
    "fastembed": FastEmbedProvider,
    "femb": FastEmbedProvider,
}


def register_provider(name: str, provider_cls: Type[EmbeddingProvider]) -> None:
    """Register an additional backend under a config name"""
    PROVIDERS[name.lower()] = provider_cls


def resolve_provider_name(config: EmbeddingConfig) -> str:
    """
    Resolve "auto" to a concrete backend.

    Order: OpenAI key, Voyage key, installed fastembed, none.
    """
    name = (config.provider or "auto").lower()
    if name != "auto":
        return name
    if config.openai_api_key:
        return "openai"
    if config.voyage_api_key:
        return "voyage"
    if importlib.util.find_spec("fastembed") is not None:
        return "fastembed"
    return "none"


def create_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """
    Build the backend named by the configuration.

    Raises:
        ValidationError: for an unknown provider name
    """
    name = resolve_provider_name(config)
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        raise ValidationError(
            f"Unknown embedding provider '{name}'. Available: {', '.join(sorted(PROVIDERS))}"
        )
    logger.info("Using embedding provider: %s", name)
    return provider_cls.from_config(config)
