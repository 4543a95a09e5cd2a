"""Tests for multi-signal relevance scoring."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from bridge.common.errors import ValidationError
from bridge.common.schemas import ExperienceRecord, QualityEvidence
from bridge.retriever.quality_filter import QualityFilter
from bridge.retriever.query_processor import QueryProcessor, stem_variants
from bridge.retriever.scoring import ScoringWeights, UnifiedScorer, recency_score

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def scorer():
    return UnifiedScorer(now=lambda: NOW)


def _record(text="Evening walk by the river", age_days=0, qualities=()):
    return ExperienceRecord(
        id="exp",
        text=text,
        created=NOW - timedelta(days=age_days),
        qualities=[QualityEvidence(dimension=d, prominence=p) for d, p in qualities],
    )


class TestQueryProcessor:
    def test_terms_phrases_dimensions(self):
        parsed = QueryProcessor().parse('Affective moments at "the lake".')
        assert parsed.cleaned == 'affective moments at "the lake"'
        assert "moments" in parsed.terms
        assert "at" not in parsed.terms
        assert parsed.phrases == ["the lake"]
        assert parsed.dimensions == ["affective"]

    def test_apostrophes_are_not_quotes(self):
        assert QueryProcessor().parse("don't panic it's fine").phrases == []
        assert QueryProcessor().parse("felt 'quiet joy' today, didn't I").phrases == ["quiet joy"]

    def test_blank_query_is_empty(self):
        assert QueryProcessor().parse("   ").is_empty

    def test_stem_variants(self):
        assert "anxious" in stem_variants("anxiety")
        assert all(len(v) > 3 for v in stem_variants("walks"))


class TestRecency:
    def test_now_is_one(self):
        assert recency_score(NOW, NOW) == 1.0

    def test_decay(self):
        assert recency_score(NOW - timedelta(days=90), NOW) == pytest.approx(math.exp(-1))

    def test_future_counts_as_new(self):
        assert recency_score(NOW + timedelta(days=3), NOW) == 1.0


class TestExactAndDensity:
    def test_verbatim_match(self, scorer):
        parsed = scorer.parse_query("walk")
        assert scorer.exact_score(_record(), parsed) == 1.0

    def test_stem_match(self, scorer):
        parsed = scorer.parse_query("anxiety")
        assert scorer.exact_score(_record(text="I was anxious all day"), parsed) == 0.8

    def test_partial_overlap(self, scorer):
        parsed = scorer.parse_query("river sunset")
        assert scorer.exact_score(_record(text="walk by the river"), parsed) == pytest.approx(0.5)

    def test_density_saturates(self, scorer):
        parsed = scorer.parse_query("walk")
        assert scorer.density_score(_record(text="walk walk walk walk"), parsed) == 1.0

    def test_density_scaled(self, scorer):
        parsed = scorer.parse_query("river")
        text = "river " + " ".join(["quiet"] * 19)
        assert scorer.density_score(_record(text=text), parsed) == pytest.approx(0.5)


class TestBlend:
    def test_no_criteria_ranks_by_recency(self, scorer):
        result = scorer.score(_record(age_days=90))
        assert result.breakdown["mode"] == "recency"
        assert result.value == pytest.approx(math.exp(-1))

    def test_zero_evidence_scores_zero(self, scorer):
        result = scorer.score(_record(text="cooking dinner"), query="mountain")
        assert result.value == 0.0
        assert result.breakdown["mode"] == "no_match"

    def test_weights_renormalized_over_active_signals(self, scorer):
        result = scorer.score(_record(), semantic_similarity=0.8, semantic_searched=True)

        assert result.breakdown["active"] == ["semantic", "recency"]
        assert result.breakdown["weights"]["semantic"] == pytest.approx(0.5 / 0.55, abs=1e-4)
        assert result.value == pytest.approx((0.8 * 0.5 + 1.0 * 0.05) / 0.55)

    def test_missing_embedding_does_not_exclude(self, scorer):
        result = scorer.score(_record(), query="walk", semantic_similarity=None, semantic_searched=True)
        assert "semantic" not in result.breakdown["active"]
        assert result.value > 0.0

    def test_quality_filter_signal(self, scorer):
        qf = QualityFilter.parse({"affective": {"min": 0.5}})
        strong = scorer.score(_record(qualities=[("affective", 0.9)]), quality_filter=qf)
        missing = scorer.score(_record(qualities=[("spatial", 0.9)]), quality_filter=qf)

        assert strong.breakdown["quality"] == pytest.approx(0.9)
        assert strong.value > 0.0
        assert missing.value == 0.0

    def test_query_named_dimension_activates_quality(self, scorer):
        result = scorer.score(_record(qualities=[("affective", 0.6)]), query="affective")
        assert "quality" in result.breakdown["active"]
        assert result.breakdown["quality"] == pytest.approx(0.6)

    def test_value_bounded(self, scorer):
        result = scorer.score(_record(text="walk"), query="walk", semantic_similarity=1.0, semantic_searched=True)
        assert 0.0 <= result.value <= 1.0


class TestWeights:
    def test_invalid_weights_rejected(self):
        with pytest.raises(ValidationError):
            UnifiedScorer(weights=ScoringWeights(semantic=0.9))

    def test_custom_weights(self):
        weights = ScoringWeights(semantic=0.0, quality=0.0, exact=1.0, recency=0.0, density=0.0)
        scorer = UnifiedScorer(weights=weights, now=lambda: NOW)
        result = scorer.score(_record(age_days=400), query="walk")
        assert result.value == pytest.approx(1.0)
