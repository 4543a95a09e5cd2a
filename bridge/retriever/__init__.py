"""
Bridge Retriever

Finds experiences by meaning, metadata and quality evidence.

Pipeline:
1. QueryProcessor: normalize query text into terms and phrases
2. SimilarityIndex: cosine ranking over stored embeddings
3. QualityFilter: predicate over quality evidence
4. UnifiedScorer: blend signals into one relevance value
5. RecallService: filter, score, paginate and group
"""

from .quality_filter import QualityFilter
from .query_processor import ParsedQuery, QueryProcessor
from .recall import RecallService
from .scoring import ScoreResult, ScoringWeights, UnifiedScorer
from .similarity import SimilarityIndex, SimilarityResult

__all__ = [
    "QualityFilter",
    "ParsedQuery",
    "QueryProcessor",
    "RecallService",
    "ScoreResult",
    "ScoringWeights",
    "UnifiedScorer",
    "SimilarityIndex",
    "SimilarityResult",
]
