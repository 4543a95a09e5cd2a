"""
Unified Scorer

Blends independent relevance signals into one value in [0, 1]:

- semantic: similarity from the vector search
- quality: graded quality-filter satisfaction (or prominence of dimensions
  the query names when no filter is given)
- exact: text overlap between query and record
- recency: exp(-age_days / 90)
- density: how concentrated query terms are in the record text

Only the signals a request activates take part, and their weights are
renormalized over that set. When every active evidence signal (all but
recency) is zero the score is exactly 0 and the record is dropped; recency
alone never rescues an irrelevant record. A request without any criteria
ranks purely by recency.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from ..common.config import ScoringConfig
from ..common.schemas import ExperienceRecord
from .quality_filter import QualityFilter
from .query_processor import ParsedQuery, QueryProcessor, stem_variants

SIGNALS = ("semantic", "quality", "exact", "recency", "density")
EVIDENCE_SIGNALS = ("semantic", "quality", "exact", "density")

# One query-term occurrence per this many tokens saturates density at 1.0
DENSITY_SATURATION_TOKENS = 10


@dataclass
class ScoringWeights:
    """Blend weights; must sum to 1"""
    semantic: float = 0.5
    quality: float = 0.3
    exact: float = 0.1
    recency: float = 0.05
    density: float = 0.05

    @classmethod
    def from_config(cls, config: ScoringConfig) -> "ScoringWeights":
        config.validate()
        return cls(
            semantic=config.semantic,
            quality=config.quality,
            exact=config.exact,
            recency=config.recency,
            density=config.density,
        )

    def validate(self) -> None:
        ScoringConfig(**asdict(self)).validate()

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class ScoreResult:
    """Blended value plus the per-signal explanation"""
    value: float
    breakdown: Dict[str, Any] = field(default_factory=dict)


def recency_score(created: datetime, now: datetime, decay_days: float = 90.0) -> float:
    """exp(-age/τ) bounded to [0, 1]; future timestamps count as brand new"""
    age_days = (now - created).total_seconds() / 86400.0
    if age_days <= 0:
        return 1.0
    return max(0.0, min(1.0, math.exp(-age_days / decay_days)))


class UnifiedScorer:
    """
    Multi-signal relevance scorer.

    Usage:
        scorer = UnifiedScorer()
        result = scorer.score(record, "lunch with Sam", quality_filter, 0.82,
                              semantic_searched=True)
        result.value, result.breakdown
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        processor: Optional[QueryProcessor] = None,
        recency_decay_days: float = 90.0,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the scorer.

        Args:
            weights: Blend weights (validated; default blend if omitted)
            processor: Query processor used for term extraction
            recency_decay_days: τ in exp(-age/τ)
            now: Clock returning an aware datetime
        """
        self.weights = weights or ScoringWeights()
        self.weights.validate()
        self._processor = processor or QueryProcessor()
        self._decay_days = recency_decay_days
        self._now = now or (lambda: datetime.now(timezone.utc))

    def parse_query(self, query: Union[str, ParsedQuery, None]) -> Optional[ParsedQuery]:
        if query is None:
            return None
        if isinstance(query, ParsedQuery):
            return query if not query.is_empty else None
        parsed = self._processor.parse(query)
        return parsed if not parsed.is_empty else None

    # ---------- Signals ---------- #

    def exact_score(self, record: ExperienceRecord, parsed: ParsedQuery) -> float:
        """
        Text overlap between query and record.

        Each query item (quoted phrases, or the whole cleaned query) scores
        1.0 for a verbatim match, 0.8 for a stem match, otherwise the share
        of its content terms found in the text. The signal is the mean.
        """
        text = record.text.lower()
        items = parsed.phrases or [parsed.cleaned]
        items = [i for i in items if i not in parsed.dimensions or len(items) == 1]

        scores: List[float] = []
        for item in items:
            if item in text:
                scores.append(1.0)
                continue
            if " " not in item and any(stem in text for stem in stem_variants(item)):
                scores.append(0.8)
                continue
            words = [w for w in self._processor.tokenize(item) if len(w) > 2 and w not in self._processor.STOP_WORDS]
            if not words:
                scores.append(0.0)
                continue
            hits = 0.0
            for word in words:
                if word in text:
                    hits += 1.0
                elif any(stem in text for stem in stem_variants(word)):
                    hits += 0.8
            scores.append(hits / len(words))
        return sum(scores) / len(scores) if scores else 0.0

    def density_score(self, record: ExperienceRecord, parsed: ParsedQuery) -> float:
        """
        Query-term occurrences per record token, scaled so one occurrence
        every DENSITY_SATURATION_TOKENS tokens reaches 1.0.
        """
        tokens = self._processor.tokenize(record.text)
        if not tokens or not parsed.terms:
            return 0.0
        terms = set(parsed.terms)
        stems = {s for t in parsed.terms for s in stem_variants(t)}
        occurrences = sum(
            1 for tok in tokens
            if tok in terms or any(tok.startswith(s) for s in stems)
        )
        return min(1.0, occurrences / len(tokens) * DENSITY_SATURATION_TOKENS)

    def quality_score(
        self,
        record: ExperienceRecord,
        quality_filter: Optional[QualityFilter],
        parsed: Optional[ParsedQuery],
    ) -> Optional[float]:
        """Filter strength, or mean prominence of dimensions named in the query"""
        if quality_filter is not None and not quality_filter.is_empty():
            return quality_filter.strength(record)
        if parsed is not None and parsed.dimensions:
            return sum(record.prominence(d) for d in parsed.dimensions) / len(parsed.dimensions)
        return None

    # ---------- Blend ---------- #

    def score(
        self,
        record: ExperienceRecord,
        query: Union[str, ParsedQuery, None] = None,
        quality_filter: Optional[QualityFilter] = None,
        semantic_similarity: Optional[float] = None,
        semantic_searched: Optional[bool] = None,
    ) -> ScoreResult:
        """
        Score one record.

        Args:
            record: Record to score
            query: Query text (or a parsed query); activates exact and density
            quality_filter: Compiled filter; activates quality
            semantic_similarity: Similarity from the vector search, None if the
                record has no comparable embedding
            semantic_searched: Whether a semantic search ran (default: a
                similarity was supplied)

        Returns:
            ScoreResult with value in [0, 1] and a breakdown
        """
        parsed = self.parse_query(query)
        if semantic_searched is None:
            semantic_searched = semantic_similarity is not None

        values: Dict[str, float] = {s: 0.0 for s in SIGNALS}
        active: List[str] = []

        # A record without a comparable embedding is scored on the other signals
        if semantic_searched and semantic_similarity is not None:
            values["semantic"] = max(0.0, min(1.0, float(semantic_similarity)))
            active.append("semantic")

        quality = self.quality_score(record, quality_filter, parsed)
        if quality is not None:
            values["quality"] = quality
            active.append("quality")

        if parsed is not None:
            values["exact"] = self.exact_score(record, parsed)
            values["density"] = self.density_score(record, parsed)
            active.extend(["exact", "density"])

        values["recency"] = recency_score(record.created, self._now(), self._decay_days)
        active.append("recency")

        evidence_active = [s for s in active if s in EVIDENCE_SIGNALS]
        weights = self.weights.as_dict()

        if not evidence_active:
            mode = "recency"
            effective = {"recency": 1.0}
            value = values["recency"]
        elif all(values[s] == 0.0 for s in evidence_active):
            mode = "no_match"
            effective = self._normalize(weights, active)
            value = 0.0
        else:
            mode = "blend"
            effective = self._normalize(weights, active)
            value = sum(values[s] * effective[s] for s in active)

        value = max(0.0, min(1.0, value))
        breakdown: Dict[str, Any] = {s: round(values[s], 4) for s in SIGNALS}
        breakdown["weights"] = {s: round(w, 4) for s, w in effective.items()}
        breakdown["active"] = active
        breakdown["mode"] = mode
        return ScoreResult(value=value, breakdown=breakdown)

    @staticmethod
    def _normalize(weights: Dict[str, float], active: List[str]) -> Dict[str, float]:
        total = sum(weights[s] for s in active)
        if total <= 0:
            return {s: 1.0 / len(active) for s in active}
        return {s: weights[s] / total for s in active}
