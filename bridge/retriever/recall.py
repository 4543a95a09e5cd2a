"""
Recall Service

Orchestrates one retrieval request:

1. Validate the request and compile the quality filter (errors propagate)
2. Apply exact-match, date and quality filters
3. Embed the semantic query and rank candidates by cosine similarity
4. Score every candidate, drop zero scores, sort and paginate
5. Optionally group the page

Everything after validation is recovered locally: failures are logged
into ``debug.errors`` and a well-formed (possibly empty) response is
still returned.
"""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from ..common.config import RecallConfig
from ..common.embedding_service import EmbeddingGateway
from ..common.errors import BridgeError, ValidationError
from ..common.schemas import (
    ExperienceRecord,
    GroupBy,
    RecallDebug,
    RecallRequest,
    RecallResponse,
    RecallResult,
    SortOrder,
)
from ..common.store import RecordStore
from .grouping import group_by_dimension, group_by_similarity
from .quality_filter import QualityFilter
from .scoring import ScoreResult, UnifiedScorer
from .similarity import SimilarityIndex

logger = logging.getLogger("bridge.retriever.recall")

SNIPPET_LENGTH = 200


def _format_validation_error(error: PydanticValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "request"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)


def make_snippet(text: str, terms: List[str], length: int = SNIPPET_LENGTH) -> str:
    """Window of ``text`` around the first query term, or its beginning"""
    flat = re.sub(r"\s+", " ", text).strip()
    if len(flat) <= length:
        return flat

    lower = flat.lower()
    hits = [lower.find(t) for t in terms if lower.find(t) >= 0]
    start = max(0, min(hits) - length // 4) if hits else 0
    end = min(len(flat), start + length)
    start = max(0, end - length)

    snippet = flat[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(flat):
        snippet = snippet + "..."
    return snippet


class RecallService:
    """
    Retrieval over the record store.

    Features:
    - who / perspective / processing / crafted / created / id filters
    - Quality filter predicate language
    - Semantic search through the embedding gateway
    - Multi-signal scoring with per-result breakdowns
    - Pagination with a pre-pagination total
    - Grouping by similarity or dominant dimension
    """

    def __init__(
        self,
        store: RecordStore,
        gateway: Optional[EmbeddingGateway] = None,
        scorer: Optional[UnifiedScorer] = None,
        config: Optional[RecallConfig] = None,
    ):
        """
        Initialize the recall service.

        Args:
            store: Record store to read from
            gateway: Embedding gateway (None disables semantic search)
            scorer: Relevance scorer (default weights if omitted)
            config: Recall defaults
        """
        self._store = store
        self._gateway = gateway
        self._scorer = scorer or UnifiedScorer()
        self._config = config or RecallConfig()

    def validate(self, request: Union[RecallRequest, Dict[str, Any]]) -> Tuple[RecallRequest, QualityFilter]:
        """
        Validate a request before any work is done.

        Raises:
            ValidationError: for malformed fields or an invalid quality filter
        """
        if isinstance(request, RecallRequest):
            parsed = request
        else:
            request = dict(request or {})
            request.setdefault("limit", self._config.default_limit)
            try:
                parsed = RecallRequest.model_validate(request)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid recall request: {_format_validation_error(e)}") from e

        if parsed.limit > self._config.max_limit:
            raise ValidationError(f"limit must be at most {self._config.max_limit}")
        quality_filter = QualityFilter.parse(parsed.qualities)
        return parsed, quality_filter

    async def recall(self, request: Union[RecallRequest, Dict[str, Any]]) -> RecallResponse:
        """
        Run a recall request.

        Args:
            request: RecallRequest or its dict form

        Returns:
            RecallResponse; never raises after validation

        Raises:
            ValidationError: if the request itself is malformed
        """
        req, quality_filter = self.validate(request)
        debug = RecallDebug()
        response = RecallResponse(filters_echoed=req.echo())

        try:
            records = self._store.get_all_records()
            debug.records_scanned = len(records)

            window = req.created_window()
            candidates = [r for r in records if self._passes_filters(r, req, quality_filter, window)]
            debug.records_filtered = len(candidates)

            parsed_query = self._scorer.parse_query(req.query)
            similarities, searched = await self._semantic_similarities(req, candidates, debug)

            scored: List[Tuple[ExperienceRecord, ScoreResult]] = []
            for record in candidates:
                try:
                    result = self._scorer.score(
                        record,
                        parsed_query,
                        quality_filter,
                        similarities.get(record.id),
                        semantic_searched=searched,
                    )
                except Exception as e:
                    logger.warning("Scoring failed for %s: %s", record.id, e)
                    debug.errors.append(f"scoring {record.id}: {e}")
                    continue
                if result.value > 0:
                    scored.append((record, result))
                if not debug.scoring_mode:
                    debug.scoring_mode = result.breakdown.get("mode", "")

            self._sort(scored, req.sort)
            response.total = len(scored)

            page = scored[req.offset:req.offset + req.limit]
            terms = parsed_query.terms if parsed_query else []
            response.results = [self._to_result(r, s, terms) for r, s in page]

            if req.group_by != GroupBy.NONE and page:
                response.clusters = self._group([r for r, _ in page], req.group_by)
        except Exception as e:
            logger.warning("Recall failed: %s", e)
            debug.errors.append(f"recall: {e}")

        if req.include_debug or debug.errors:
            response.debug = debug
        return response

    # ---------- Filtering ---------- #

    @staticmethod
    def _same(a: Optional[str], b: str) -> bool:
        return (a or "").strip().lower() == (b or "").strip().lower()

    def _passes_filters(
        self,
        record: ExperienceRecord,
        req: RecallRequest,
        quality_filter: QualityFilter,
        window: Optional[Tuple[datetime, datetime]] = None,
    ) -> bool:
        if req.id is not None and record.id != req.id:
            return False
        if req.who is not None and not any(self._same(req.who, w) for w in record.experiencers):
            return False
        if req.perspective is not None and not self._same(req.perspective, record.perspective):
            return False
        if req.processing is not None and not self._same(req.processing, record.processing):
            return False
        if req.crafted is not None and record.crafted != req.crafted:
            return False

        if window is not None and not (window[0] <= record.created <= window[1]):
            return False

        return quality_filter.evaluate(record)

    # ---------- Semantic search ---------- #

    async def _semantic_similarities(
        self,
        req: RecallRequest,
        candidates: List[ExperienceRecord],
        debug: RecallDebug,
    ) -> Tuple[Dict[str, float], bool]:
        """
        Similarity of each comparable candidate to the semantic query.

        Candidates below the threshold get 0.0; candidates with no
        comparable embedding are absent from the map.
        """
        text = req.semantic_query or req.query
        if not text or not text.strip():
            return {}, False
        if self._gateway is None:
            if req.semantic_query:
                debug.errors.append("semantic search unavailable: no embedding gateway")
            return {}, False
        if self._gateway.provider.name == "none":
            logger.info("No embedding provider configured; skipping semantic search")
            return {}, False

        try:
            query_vector = await self._gateway.generate_embedding(text)
        except BridgeError as e:
            logger.warning("Semantic search failed: %s", e)
            debug.errors.append(f"semantic search failed: {e}")
            return {}, False

        threshold = req.semantic_threshold
        if threshold is None:
            threshold = self._config.semantic_threshold

        index = SimilarityIndex.from_records(candidates)
        raw = index.similarities(query_vector)
        similarities = {rid: (sim if sim >= threshold else 0.0) for rid, sim in raw.items()}

        debug.semantic_search = True
        debug.semantic_matches = sum(1 for sim in raw.values() if sim >= threshold)
        return similarities, True

    # ---------- Ordering and output ---------- #

    @staticmethod
    def _sort(scored: List[Tuple[ExperienceRecord, ScoreResult]], order: SortOrder) -> None:
        if order == SortOrder.RELEVANCE:
            scored.sort(key=lambda item: (item[1].value, item[0].created), reverse=True)
        else:
            scored.sort(key=lambda item: (item[0].created, item[1].value), reverse=True)

    def _group(self, records: List[ExperienceRecord], group_by: GroupBy):
        if group_by == GroupBy.DIMENSION:
            return group_by_dimension(records)
        return group_by_similarity(records, self._config.group_similarity_threshold)

    @staticmethod
    def _to_result(record: ExperienceRecord, score: ScoreResult, terms: List[str]) -> RecallResult:
        metadata = {
            "created": record.created.isoformat(),
            "occurred": record.occurred.isoformat() if record.occurred else None,
            "who": record.who,
            "perspective": record.perspective,
            "processing": record.processing,
            "crafted": record.crafted,
            "emoji": record.emoji,
            "qualities": {q.dimension.value: record.prominence(q.dimension) for q in record.qualities},
            "has_embedding": bool(record.embedding),
        }
        return RecallResult(
            id=record.id,
            content=record.text,
            snippet=make_snippet(record.text, terms),
            metadata=metadata,
            relevance_score=score.value,
            relevance_breakdown=score.breakdown,
        )
