"""
Bridge Patterns

Theme tree and quality clusters over experiences.

- PatternDiscovery: full batch rediscovery
- PatternEngine: incremental assignment and drift detection
- PatternManager: persisted, lock-serialized snapshot
"""

from .discovery import DiscoveryResult, PatternDiscovery
from .engine import PatternEngine
from .manager import PatternManager
from .models import (
    NavigablePattern,
    PatternTree,
    PatternUpdate,
    QualityPattern,
    UpdateResult,
    UpdateStats,
    UpdateType,
)

__all__ = [
    "DiscoveryResult",
    "PatternDiscovery",
    "PatternEngine",
    "PatternManager",
    "NavigablePattern",
    "PatternTree",
    "PatternUpdate",
    "QualityPattern",
    "UpdateResult",
    "UpdateStats",
    "UpdateType",
]
