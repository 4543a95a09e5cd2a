"""
Bridge Error Types

Exceptions shared by the embedding gateway, retrieval and pattern engine.

- ValidationError: malformed input, rejected before any work starts, never retried
- ProviderError: an embedding backend reported a failure (retried)
- EmbeddingTimeoutError: a backend call missed its deadline (counted by the breaker)
- CircuitOpenError: the breaker is open, no backend call was made
"""


class BridgeError(Exception):
    """Base class for all bridge errors"""


class ValidationError(BridgeError, ValueError):
    """Raised for malformed text, filters or requests"""


class ProviderError(BridgeError):
    """Raised when an embedding backend fails"""

    def __init__(self, message: str, provider: str = "unknown"):
        super().__init__(message)
        self.provider = provider


class EmbeddingTimeoutError(BridgeError, TimeoutError):
    """Raised when a backend call exceeds its deadline"""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"Operation '{operation}' timed out after {timeout:.1f}s")
        self.operation = operation
        self.timeout = timeout


class CircuitOpenError(BridgeError):
    """Raised while the circuit breaker is open"""

    def __init__(self, name: str, retry_after: float = 0.0):
        super().__init__(
            f"Circuit '{name}' is open; retry in {max(retry_after, 0.0):.1f}s"
        )
        self.name = name
        self.retry_after = retry_after
