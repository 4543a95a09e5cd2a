"""
Experience Record Schema

An experience is a short captured text plus structured evidence of how it
showed up across a fixed set of phenomenological quality dimensions.
The text is the source of truth; embeddings are derived from it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Enums
# ============================================================================

class QualityDimension(str, Enum):
    """Quality dimensions an experience can be described along"""
    EMBODIED = "embodied"
    ATTENTIONAL = "attentional"
    AFFECTIVE = "affective"
    PURPOSIVE = "purposive"
    SPATIAL = "spatial"
    TEMPORAL = "temporal"
    INTERSUBJECTIVE = "intersubjective"


ALL_DIMENSIONS: List[str] = [d.value for d in QualityDimension]


# ============================================================================
# Sub-models
# ============================================================================

class QualityEvidence(BaseModel):
    """One dimension's strength and justification for a single record"""
    dimension: QualityDimension
    prominence: float = Field(ge=0.0, le=1.0, description="Strength along the dimension")
    manifestation: str = Field(default="", description="How the quality showed up")


class EmbeddingRecord(BaseModel):
    """A stored vector, referring back to its experience by id"""
    source_id: str
    vector: List[float]
    generated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# Main Schema
# ============================================================================

class ExperienceRecord(BaseModel):
    """
    Experience Record

    ``id`` and ``created`` are assigned once and never change.
    """
    id: str = Field(..., description="Unique record id")
    text: str = Field(..., description="Captured content")
    created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    occurred: Optional[datetime] = None

    who: Union[str, List[str]] = Field(default="", description="Experiencer(s)")
    perspective: str = Field(default="", description="e.g. I, we, you, they")
    processing: str = Field(default="", description="e.g. during, right-after, long-after")
    crafted: bool = False
    emoji: Optional[str] = None

    qualities: List[QualityEvidence] = Field(default_factory=list)
    embedding: Optional[List[float]] = None

    @field_validator("created", "occurred")
    @classmethod
    def _ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def experiencers(self) -> List[str]:
        """``who`` as a list"""
        if isinstance(self.who, list):
            return list(self.who)
        return [self.who] if self.who else []

    @property
    def timestamp(self) -> datetime:
        """When it happened if known, otherwise when it was recorded"""
        return self.occurred or self.created

    def prominence(self, dimension: Union[str, QualityDimension]) -> float:
        """Highest prominence recorded for a dimension (0.0 if absent)"""
        key = QualityDimension(dimension)
        values = [q.prominence for q in self.qualities if q.dimension == key]
        return max(values) if values else 0.0

    def evidence_for(self, dimension: Union[str, QualityDimension]) -> List[QualityEvidence]:
        key = QualityDimension(dimension)
        return [q for q in self.qualities if q.dimension == key]

    def dominant_dimension(self) -> Optional[QualityDimension]:
        """Dimension with the highest prominence, if any"""
        if not self.qualities:
            return None
        return max(self.qualities, key=lambda q: q.prominence).dimension
