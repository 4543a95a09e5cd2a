"""
Bridge Common Module

Shared infrastructure for retrieval and pattern discovery.
"""

from .config import BridgeConfig, load_config
from .embedding_service import EmbeddingGateway
from .errors import (
    BridgeError,
    CircuitOpenError,
    EmbeddingTimeoutError,
    ProviderError,
    ValidationError,
)
from .store import JsonRecordStore, RecordStore

__all__ = [
    "BridgeConfig",
    "load_config",
    "EmbeddingGateway",
    "BridgeError",
    "CircuitOpenError",
    "EmbeddingTimeoutError",
    "ProviderError",
    "ValidationError",
    "JsonRecordStore",
    "RecordStore",
]
