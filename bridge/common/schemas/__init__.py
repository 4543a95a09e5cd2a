"""
Bridge Schemas

Experience records and the recall request/response contract.
"""

from .experience import (
    ALL_DIMENSIONS,
    EmbeddingRecord,
    ExperienceRecord,
    QualityDimension,
    QualityEvidence,
)
from .recall import (
    GroupBy,
    RecallCluster,
    RecallDebug,
    RecallRequest,
    RecallResponse,
    RecallResult,
    SortOrder,
    parse_created_filter,
)

__all__ = [
    "ALL_DIMENSIONS",
    "EmbeddingRecord",
    "ExperienceRecord",
    "QualityDimension",
    "QualityEvidence",
    "GroupBy",
    "RecallCluster",
    "RecallDebug",
    "RecallRequest",
    "RecallResponse",
    "RecallResult",
    "SortOrder",
    "parse_created_filter",
]
