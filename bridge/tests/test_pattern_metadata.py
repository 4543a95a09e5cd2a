"""Tests for pattern models and metadata maintenance."""

from datetime import datetime, timedelta, timezone

import pytest

from bridge.common.schemas import ExperienceRecord, QualityEvidence
from bridge.patterns.metadata import (
    MetadataCalculator,
    average_qualities,
    extract_themes,
    members_coherence,
    merge_emojis,
    recency_bucket,
)
from bridge.patterns.models import NavigablePattern, PatternTree, QualityPattern, Recency

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


def _tree():
    tree = PatternTree()
    tree.add(NavigablePattern(id="L1-1", experience_ids=["a", "b"]))
    tree.add(NavigablePattern(id="L1-1.1", level=1, parent_id="L1-1", experience_ids=["a"]))
    tree.add(NavigablePattern(id="L1-1.1.1", level=2, parent_id="L1-1.1", experience_ids=["a"]))
    tree.add(NavigablePattern(id="L1-2", experience_ids=["c"]))
    return tree


class TestRecencyBucket:
    @pytest.mark.parametrize("age_days, expected", [
        (0, Recency.ACTIVE),
        (6.99, Recency.ACTIVE),
        (7, Recency.RECENT),
        (29.99, Recency.RECENT),
        (30, Recency.PAST),
        (89.99, Recency.PAST),
        (90, Recency.DORMANT),
        (400, Recency.DORMANT),
    ])
    def test_boundaries(self, age_days, expected):
        assert recency_bucket(NOW - timedelta(days=age_days), NOW) == expected

    def test_no_members_is_dormant(self):
        assert recency_bucket(None, NOW) == Recency.DORMANT


class TestHelpers:
    def test_themes_need_repetition_and_length(self):
        texts = ["morning coffee ritual", "morning light, coffee again", "quiet morning"]
        assert extract_themes(texts) == ["morning", "coffee"]

    def test_themes_limit(self):
        texts = ["alpha bravo charlie delta echoes"] * 2
        assert len(extract_themes(texts, max_themes=2)) == 2

    def test_merge_emojis_keeps_earliest(self):
        records = [
            ExperienceRecord(id="1", text="t", emoji="🌊"),
            ExperienceRecord(id="2", text="t", emoji="☀️"),
            ExperienceRecord(id="3", text="t", emoji="🌊"),
        ]
        assert merge_emojis(["🍵"], records, limit=2) == ["🍵", "🌊"]

    def test_average_qualities_counts_absence_as_zero(self):
        records = [
            ExperienceRecord(id="1", text="t", qualities=[QualityEvidence(dimension="affective", prominence=0.8)]),
            ExperienceRecord(id="2", text="t"),
        ]
        averages = average_qualities(records)
        assert averages["affective"] == 0.4
        assert averages["spatial"] == 0.0
        assert len(averages) == 7


class TestPatternTree:
    def test_links_children(self):
        tree = _tree()
        assert tree.root_ids == ["L1-1", "L1-2"]
        assert tree.get("L1-1").child_ids == ["L1-1.1"]
        assert [p.id for p in tree.children("L1-1.1")] == ["L1-1.1.1"]

    def test_ancestors_and_depth(self):
        tree = _tree()
        assert [p.id for p in tree.ancestors("L1-1.1.1")] == ["L1-1.1", "L1-1"]
        assert tree.depth("L1-1.1.1") == 2
        assert tree.depth("L1-2") == 0

    def test_walk_is_preorder(self):
        assert [p.id for p in _tree().walk()] == ["L1-1", "L1-1.1", "L1-1.1.1", "L1-2"]

    def test_sibling_groups(self):
        groups = [[p.id for p in g] for g in _tree().siblings_groups()]
        assert groups[0] == ["L1-1", "L1-2"]
        assert ["L1-1.1"] in groups

    def test_serialization(self):
        tree = _tree()
        restored = PatternTree.from_dict(tree.to_dict())
        assert restored.root_ids == tree.root_ids
        assert restored.get("L1-1.1").parent_id == "L1-1"
        assert len(restored) == 4

    def test_membership_is_a_set(self):
        pattern = NavigablePattern(id="p", experience_ids=["a"])
        assert pattern.add_member("a") is False
        assert pattern.add_member("b") is True
        assert pattern.experience_ids == ["a", "b"]

    def test_quality_pattern_size_tracks_members(self):
        cluster = QualityPattern(dimension="affective", cluster_name="affective_1", experiences=["a"], size=1)
        assert cluster.add_member("b") is True
        assert cluster.add_member("b") is False
        assert cluster.size == 2
        assert cluster.pattern_id == "affective-affective_1"


class TestMetadataCalculator:
    def test_refresh_pattern(self):
        records = {
            "a": ExperienceRecord(id="a", text="river walk", created=NOW - timedelta(days=2),
                                  qualities=[QualityEvidence(dimension="embodied", prominence=0.6)]),
            "b": ExperienceRecord(id="b", text="river swim", created=NOW - timedelta(days=50)),
        }
        embeddings = {"a": [1.0, 0.0], "b": [0.0, 1.0]}
        pattern = NavigablePattern(id="p", experience_ids=["a", "b"])

        MetadataCalculator(now=lambda: NOW).refresh_pattern(pattern, records, embeddings)

        assert pattern.coherence == pytest.approx(0.0)
        assert pattern.metadata.recency == Recency.ACTIVE
        assert pattern.metadata.qualities["embodied"] == 0.3
        assert pattern.metadata.themes == ["river"]

    def test_coherence_never_negative(self):
        records = {rid: ExperienceRecord(id=rid, text="t", created=NOW) for rid in ("a", "b", "c")}
        embeddings = {"a": [1.0, 0.0], "b": [-1.0, 0.01], "c": [0.0, 1.0]}
        pattern = NavigablePattern(id="p", experience_ids=["a", "b", "c"])
        cluster = QualityPattern(dimension="affective", cluster_name="affective_1",
                                 experiences=["a", "b"], size=2)

        calculator = MetadataCalculator(now=lambda: NOW)
        calculator.refresh_pattern(pattern, records, embeddings)
        calculator.refresh_cluster(cluster, embeddings)

        assert pattern.coherence == 0.0
        assert cluster.coherence == 0.0
        assert members_coherence(["a", "b"], embeddings) == 0.0
