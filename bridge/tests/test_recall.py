"""Tests for the recall pipeline -- filters, semantic search, scoring, paging, grouping."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from bridge.common.config import RecallConfig, ResilienceConfig
from bridge.common.embedding_service import EmbeddingGateway, build_executor
from bridge.common.errors import ValidationError
from bridge.common.providers import EmbeddingProvider
from bridge.common.schemas import EmbeddingRecord, ExperienceRecord, QualityEvidence
from bridge.retriever.recall import RecallService, make_snippet
from bridge.retriever.scoring import UnifiedScorer

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryStore:
    def __init__(self, records: List[ExperienceRecord]):
        self._records: Dict[str, ExperienceRecord] = {r.id: r for r in records}

    def get_all_records(self) -> List[ExperienceRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]

    def get_record(self, record_id: str) -> Optional[ExperienceRecord]:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def save_record(self, record: ExperienceRecord) -> None:
        self._records[record.id] = record

    def save_embedding(self, embedding: EmbeddingRecord) -> None:
        record = self._records[embedding.source_id]
        self._records[record.id] = record.model_copy(update={"embedding": embedding.vector})

    def delete_record(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None


class KeywordProvider(EmbeddingProvider):
    """Maps a few keywords onto fixed axes"""

    name = "keyword"
    AXES = ("water", "work", "food")

    def __init__(self, fail: bool = False):
        self.fail = fail

    async def generate_embedding(self, text: str) -> List[float]:
        if self.fail:
            raise RuntimeError("backend offline")
        lower = text.lower()
        return [1.0 if axis in lower else 0.0 for axis in self.AXES]

    def get_dimensions(self) -> int:
        return len(self.AXES)


async def _no_sleep(_delay):
    return None


def _gateway(fail=False):
    provider = KeywordProvider(fail=fail)
    executor = build_executor(ResilienceConfig(max_attempts=1), provider.name, sleep=_no_sleep)
    return EmbeddingGateway(provider, executor=executor)


def _record(record_id, text, days_ago, embedding=None, **kwargs):
    return ExperienceRecord(
        id=record_id,
        text=text,
        created=NOW - timedelta(days=days_ago),
        embedding=embedding,
        **kwargs,
    )


@pytest.fixture
def records():
    return [
        _record("lake", "Sat by the water at dawn, calm", 1, [1.0, 0.0, 0.0], who="Alex",
                perspective="I", processing="during",
                qualities=[QualityEvidence(dimension="affective", prominence=0.8, manifestation="calm")]),
        _record("standup", "Tense standup at work about the deadline", 2, [0.0, 1.0, 0.0], who=["Alex", "Sam"],
                perspective="we", processing="right-after", crafted=True,
                qualities=[QualityEvidence(dimension="affective", prominence=0.7, manifestation="tense"),
                           QualityEvidence(dimension="intersubjective", prominence=0.6)]),
        _record("lunch", "Shared food with Sam after work", 3, [0.0, 0.6, 0.8], who="Sam",
                perspective="we", processing="long-after",
                qualities=[QualityEvidence(dimension="intersubjective", prominence=0.9)]),
        _record("river", "Walked along the water again", 10, [0.9, 0.1, 0.0], who="Alex",
                perspective="I", processing="during",
                qualities=[QualityEvidence(dimension="embodied", prominence=0.6)]),
        _record("old", "Unembedded note about the garden", 40, None, who="Alex", perspective="I"),
    ]


@pytest.fixture
def service(records):
    return RecallService(
        InMemoryStore(records),
        gateway=_gateway(),
        scorer=UnifiedScorer(now=lambda: NOW),
    )


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("request_dict", [
        {"limit": 0},
        {"limit": 101},
        {"offset": -1},
        {"created": "not-a-date"},
        {"created": {"start": 5}},
        {"qualities": {"moody": {"min": 0.5}}},
        {"sort": "alphabetical"},
    ])
    async def test_rejected_before_work(self, service, request_dict):
        with pytest.raises(ValidationError):
            await service.recall(request_dict)

    @pytest.mark.asyncio
    async def test_config_max_limit(self, records):
        service = RecallService(InMemoryStore(records), config=RecallConfig(max_limit=5))
        with pytest.raises(ValidationError):
            await service.recall({"limit": 6})

    @pytest.mark.asyncio
    async def test_config_default_limit(self, records):
        service = RecallService(InMemoryStore(records), config=RecallConfig(default_limit=2))
        response = await service.recall({})
        assert len(response.results) == 2
        assert response.total == 5
        assert response.filters_echoed["limit"] == 2


class TestBrowse:
    @pytest.mark.asyncio
    async def test_no_criteria_returns_newest_first(self, service):
        response = await service.recall({})
        assert [r.id for r in response.results] == ["lake", "standup", "lunch", "river", "old"]
        assert response.total == 5
        assert response.debug.scoring_mode == "recency"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit, offset", [(2, 0), (2, 4), (3, 3), (10, 6)])
    async def test_pagination(self, service, limit, offset):
        response = await service.recall({"limit": limit, "offset": offset})
        assert response.total == 5
        assert len(response.results) == max(0, min(limit, response.total - offset))


class TestFilters:
    @pytest.mark.asyncio
    async def test_who_matches_any_experiencer_case_insensitive(self, service):
        response = await service.recall({"who": "sam"})
        assert {r.id for r in response.results} == {"standup", "lunch"}

    @pytest.mark.asyncio
    async def test_perspective_processing_crafted(self, service):
        assert {r.id for r in (await service.recall({"perspective": "WE"})).results} == {"standup", "lunch"}
        assert {r.id for r in (await service.recall({"processing": "during"})).results} == {"lake", "river"}
        assert [r.id for r in (await service.recall({"crafted": True})).results] == ["standup"]

    @pytest.mark.asyncio
    async def test_created_day_and_range(self, service):
        day = (NOW - timedelta(days=3)).date().isoformat()
        assert [r.id for r in (await service.recall({"created": day})).results] == ["lunch"]

        start = (NOW - timedelta(days=10)).date().isoformat()
        end = (NOW - timedelta(days=2)).date().isoformat()
        response = await service.recall({"created": {"start": start, "end": end}})
        assert {r.id for r in response.results} == {"standup", "lunch", "river"}

    @pytest.mark.asyncio
    async def test_id_filter(self, service):
        response = await service.recall({"id": "river"})
        assert [r.id for r in response.results] == ["river"]

    @pytest.mark.asyncio
    async def test_quality_filter(self, service):
        response = await service.recall({"qualities": {"affective": {"manifestation": "tense|anxious"}}})
        assert [r.id for r in response.results] == ["standup"]
        assert response.results[0].relevance_breakdown["quality"] == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_max_filter_keeps_zero_prominence_match(self):
        faint = _record("faint", "Hardly felt anything", 1,
                        qualities=[QualityEvidence(dimension="affective", prominence=0.0)])
        service = RecallService(InMemoryStore([faint]), scorer=UnifiedScorer(now=lambda: NOW))

        response = await service.recall({"qualities": {"affective": {"max": 0.2}}})

        assert [r.id for r in response.results] == ["faint"]
        assert response.total == 1
        assert response.results[0].relevance_score > 0


class TestScoring:
    @pytest.mark.asyncio
    async def test_semantic_search_ranks_by_meaning(self, service):
        response = await service.recall({"semantic_query": "water", "sort": "relevance"})

        ids = [r.id for r in response.results]
        assert ids[:2] == ["lake", "river"]
        assert "standup" not in ids
        assert response.debug.semantic_search is True
        assert response.debug.semantic_matches == 2

    @pytest.mark.asyncio
    async def test_zero_scores_excluded(self, service):
        response = await service.recall({"query": "garden"})
        assert [r.id for r in response.results] == ["old"]
        assert all(r.relevance_score > 0 for r in response.results)
        assert response.total == 1

    @pytest.mark.asyncio
    async def test_relevance_sorted_descending(self, service):
        response = await service.recall({"query": "work", "sort": "relevance"})
        scores = [r.relevance_score for r in response.results]
        assert scores == sorted(scores, reverse=True)
        assert {"standup", "lunch"} <= {r.id for r in response.results}

    @pytest.mark.asyncio
    async def test_threshold_override(self, service):
        response = await service.recall({"semantic_query": "water", "semantic_threshold": 0.995})
        assert response.debug.semantic_matches == 1

    @pytest.mark.asyncio
    async def test_backend_failure_degrades_to_text_scoring(self, records):
        service = RecallService(
            InMemoryStore(records),
            gateway=_gateway(fail=True),
            scorer=UnifiedScorer(now=lambda: NOW),
        )
        response = await service.recall({"query": "water"})

        assert {r.id for r in response.results} == {"lake", "river"}
        assert response.debug.semantic_search is False
        assert any("semantic search failed" in e for e in response.debug.errors)

    @pytest.mark.asyncio
    async def test_no_gateway_reports_semantic_query(self, records):
        service = RecallService(InMemoryStore(records), scorer=UnifiedScorer(now=lambda: NOW))
        response = await service.recall({"semantic_query": "water"})
        assert "semantic search unavailable: no embedding gateway" in response.debug.errors


class TestOutput:
    @pytest.mark.asyncio
    async def test_result_shape(self, service):
        response = await service.recall({"query": "standup"})
        result = response.results[0]

        assert result.content == "Tense standup at work about the deadline"
        assert result.metadata["who"] == ["Alex", "Sam"]
        assert result.metadata["qualities"] == {"affective": 0.7, "intersubjective": 0.6}
        assert result.metadata["has_embedding"] is True
        assert set(result.relevance_breakdown) >= {"semantic", "quality", "exact", "recency", "density", "mode"}
        assert response.filters_echoed["query"] == "standup"

    @pytest.mark.asyncio
    async def test_debug_omitted_on_request(self, service):
        response = await service.recall({"include_debug": False})
        assert response.debug is None

    def test_snippet_centers_on_term(self):
        text = "filler " * 60 + "the lighthouse at dusk " + "filler " * 60
        snippet = make_snippet(text, ["lighthouse"], length=80)
        assert "lighthouse" in snippet
        assert snippet.startswith("...") and snippet.endswith("...")


class TestGrouping:
    @pytest.mark.asyncio
    async def test_group_by_dimension(self, service):
        response = await service.recall({"group_by": "dimension"})
        by_id = {c.id: c for c in response.clusters}

        assert by_id["dimension-affective"].experience_ids == ["lake", "standup"]
        assert by_id["dimension-no-qualities"].dimension is None
        assert sum(c.size for c in response.clusters) == len(response.results)

    @pytest.mark.asyncio
    async def test_group_by_similarity(self, service):
        response = await service.recall({"group_by": "similarity"})
        groups = [set(c.experience_ids) for c in response.clusters]

        assert {"lake", "river"} in groups
        assert response.clusters[-1].id == "unclustered"
        assert response.clusters[-1].experience_ids == ["old"]

    @pytest.mark.asyncio
    async def test_no_grouping_by_default(self, service):
        assert (await service.recall({})).clusters is None
