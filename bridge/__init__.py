"""
Bridge

Shared experiential memory for an agent and a human: experiences are
captured as text plus quality evidence, then recalled by meaning, metadata
or discovered pattern.

Philosophy:
- The text is the source of truth; vectors are derived and rebuildable
- Missing embeddings degrade search, they never break it
- Pattern structure changes only through full rediscovery

Usage:
    from bridge.common import load_config, EmbeddingGateway, JsonRecordStore
    from bridge.retriever import RecallService, SimilarityIndex, QualityFilter
    from bridge.patterns import PatternEngine, PatternDiscovery, PatternManager
"""

__version__ = "0.1.0"
