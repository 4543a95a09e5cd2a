"""
Batch Pattern Discovery

Full rediscovery of the theme tree and quality clusters from scratch.
This is the only place patterns are created, split or merged; the
incremental engine defers here when it detects drift.

Clustering is hard (each record joins at most one cluster per level) and
strict: a candidate joins only if it is at least ``threshold`` similar to
every current member.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from ..common.config import PatternConfig
from ..common.schemas import ALL_DIMENSIONS, ExperienceRecord
from ..common.vectors import cosine_similarity, usable_embeddings
from .metadata import MetadataCalculator, extract_themes, members_coherence, merge_emojis
from .models import NavigablePattern, PatternTree, QualityPattern

logger = logging.getLogger("bridge.patterns.discovery")

LEVEL_DESCRIPTIONS = [
    "Broad experiential themes",
    "Specific pattern clusters",
    "Detailed sub-patterns",
    "Fine-grained variations",
]

QUALITY_MEANINGS = {
    "embodied": ["Physical states", "Bodily sensations", "Energy levels", "Movement patterns"],
    "attentional": ["Focus patterns", "Mental models", "Awareness styles", "Cognitive approaches"],
    "affective": ["Emotional states", "Feeling patterns", "Mood clusters", "Emotional responses"],
    "purposive": ["Goal orientations", "Intention patterns", "Purpose clusters", "Motivation types"],
    "spatial": ["Environmental contexts", "Location patterns", "Spatial relationships", "Place associations"],
    "temporal": ["Time patterns", "Temporal rhythms", "Timing clusters", "Chronological contexts"],
    "intersubjective": ["Relationship patterns", "Social contexts", "Interpersonal dynamics", "Collaborative modes"],
}

KEYWORD_MEANINGS = [
    ({"morning", "afternoon", "evening"}, "Time-of-day patterns"),
    ({"work", "office", "meeting"}, "Work context patterns"),
    ({"learning", "discovery", "insight"}, "Learning experience patterns"),
    ({"focus", "attention", "concentrate"}, "Attention management patterns"),
]


@dataclass
class DiscoveryResult:
    tree: PatternTree
    clusters: List[QualityPattern]
    outliers: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)


class PatternDiscovery:
    """
    Builds a pattern tree and quality clusters from a whole corpus.

    Features:
    - Hierarchical hard clustering, threshold +0.05 per level, max depth 3
    - Per-dimension quality clusters over records with prominence > 0.4
    - Outlier list of embedded records that joined no top-level pattern
    """

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        hierarchy_threshold: float = 0.6,
        level_step: float = 0.05,
        max_depth: int = 3,
        max_clusters: int = 8,
        max_cluster_size: int = 20,
        quality_threshold: float = 0.5,
        quality_prominence: float = 0.4,
        max_quality_clusters: int = 5,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or PatternConfig()
        self.hierarchy_threshold = hierarchy_threshold
        self.level_step = level_step
        self.max_depth = max_depth
        self.max_clusters = max_clusters
        self.max_cluster_size = max_cluster_size
        self.quality_threshold = quality_threshold
        self.quality_prominence = quality_prominence
        self.max_quality_clusters = max_quality_clusters
        self._metadata = MetadataCalculator(max_themes=self.config.max_themes, now=now)

    def discover(self, records: Sequence[ExperienceRecord]) -> DiscoveryResult:
        """
        Run a full discovery pass.

        Args:
            records: Whole corpus; records without a usable embedding are ignored

        Returns:
            DiscoveryResult with a fresh tree, clusters, outliers and stats
        """
        started = time.perf_counter()
        embedded = self._embedded_records(records)
        embeddings = {r.id: r.embedding for r in records}
        records_by_id = {r.id: r for r in records}

        tree = PatternTree()
        min_size = self.config.min_pattern_size
        if len(embedded) >= min_size:
            self._build_level(embedded, tree, None, 0, self.hierarchy_threshold, min_size, embeddings, records_by_id)

        clustered = {i for p in tree.roots() for i in p.experience_ids}
        outliers = [r.id for r in embedded if r.id not in clustered]

        clusters = self._quality_clusters(embedded, embeddings)

        all_patterns = list(tree.patterns.values())
        stats = {
            "total_records": len(records),
            "embedded_records": len(embedded),
            "patterns_found": len(all_patterns),
            "root_patterns": len(tree.root_ids),
            "max_depth": max((p.level + 1 for p in all_patterns), default=0),
            "quality_clusters": len(clusters),
            "outliers": len(outliers),
            "average_coherence": (
                round(sum(p.coherence for p in all_patterns) / len(all_patterns), 4)
                if all_patterns else 0.0
            ),
            "time_ms": (time.perf_counter() - started) * 1000.0,
        }
        logger.info(
            "Discovered %d patterns (%d roots), %d quality clusters, %d outliers",
            stats["patterns_found"], stats["root_patterns"], stats["quality_clusters"], stats["outliers"],
        )
        return DiscoveryResult(tree=tree, clusters=clusters, outliers=outliers, stats=stats)

    # ---------- Clustering ---------- #

    @staticmethod
    def _embedded_records(records: Sequence[ExperienceRecord]) -> List[ExperienceRecord]:
        """Records with a non-zero embedding of the corpus' dominant width"""
        widths = Counter(len(r.embedding) for r in records if r.embedding)
        if not widths:
            return []
        width = widths.most_common(1)[0][0]
        usable = usable_embeddings(
            [r.id for r in records],
            {r.id: r.embedding for r in records},
            dimensions=width,
        )
        return [r for r in records if r.id in usable and np.any(usable[r.id])]

    def hard_cluster(
        self,
        records: Sequence[ExperienceRecord],
        threshold: float,
        min_size: int,
        max_clusters: int,
    ) -> List[List[ExperienceRecord]]:
        """
        Greedy strict clustering, seeds taken oldest first.

        A seed's cluster is kept only if it reaches ``min_size``; otherwise
        its members are released for later seeds.
        """
        ordered = sorted(records, key=lambda r: r.timestamp)
        vectors = {r.id: np.asarray(r.embedding, dtype=float) for r in ordered}
        clusters: List[List[ExperienceRecord]] = []
        assigned = set()

        for seed in ordered:
            if seed.id in assigned or len(clusters) >= max_clusters:
                continue
            cluster = [seed]
            assigned.add(seed.id)

            for candidate in ordered:
                if candidate.id in assigned:
                    continue
                lowest = min(cosine_similarity(vectors[candidate.id], vectors[m.id]) for m in cluster)
                if lowest >= threshold:
                    cluster.append(candidate)
                    assigned.add(candidate.id)
                    if len(cluster) >= self.max_cluster_size:
                        break

            if len(cluster) >= min_size:
                clusters.append(cluster)
            else:
                for member in cluster:
                    assigned.discard(member.id)
        return clusters

    def _build_level(
        self,
        records: Sequence[ExperienceRecord],
        tree: PatternTree,
        parent_id: Optional[str],
        level: int,
        threshold: float,
        min_size: int,
        embeddings: Dict[str, Optional[List[float]]],
        records_by_id: Dict[str, ExperienceRecord],
    ) -> None:
        groups = self.hard_cluster(records, threshold, min_size, self.max_clusters)
        for index, group in enumerate(groups, start=1):
            pattern_id = f"L1-{index}" if parent_id is None else f"{parent_id}.{index}"
            keywords = extract_themes((r.text for r in group), self.config.max_themes)

            pattern = NavigablePattern(
                id=pattern_id,
                name=self._pattern_name(group, keywords, level),
                level=level,
                experience_ids=[r.id for r in group],
                parent_id=parent_id,
            )
            pattern.metadata.emojis = merge_emojis([], group, self.config.max_emojis)
            pattern.metadata.semantic_meaning = self._semantic_meaning(keywords, level)
            tree.add(pattern)
            self._metadata.refresh_pattern(pattern, records_by_id, embeddings)

            if level + 1 < self.max_depth and len(group) >= 2 * min_size:
                self._build_level(
                    group, tree, pattern_id, level + 1,
                    threshold + self.level_step, max(2, min_size - 1),
                    embeddings, records_by_id,
                )

    def _quality_clusters(
        self,
        records: Sequence[ExperienceRecord],
        embeddings: Dict[str, Optional[List[float]]],
    ) -> List[QualityPattern]:
        clusters: List[QualityPattern] = []
        min_size = self.config.min_pattern_size
        for dimension in ALL_DIMENSIONS:
            strong = [r for r in records if r.prominence(dimension) > self.quality_prominence]
            if len(strong) < min_size:
                continue
            groups = self.hard_cluster(strong, self.quality_threshold, min_size, self.max_quality_clusters)
            for index, group in enumerate(groups, start=1):
                ids = [r.id for r in group]
                keywords = self._quality_keywords(group, dimension)
                clusters.append(QualityPattern(
                    dimension=dimension,
                    cluster_name=f"{dimension}_{index}",
                    experiences=ids,
                    size=len(ids),
                    keywords=keywords,
                    semantic_meaning=self._quality_meaning(dimension, keywords, index),
                    coherence=members_coherence(ids, embeddings),
                ))
        return clusters

    # ---------- Naming ---------- #

    def _pattern_name(self, group: Sequence[ExperienceRecord], keywords: List[str], level: int) -> str:
        emojis = merge_emojis([], group, 3)
        prefix = "".join(emojis) + " " if emojis else ""
        if keywords:
            return f"{prefix}{' '.join(keywords[:3])}"
        return f"{prefix}pattern-{level + 1}"

    @staticmethod
    def _semantic_meaning(keywords: List[str], level: int) -> str:
        base = LEVEL_DESCRIPTIONS[level] if level < len(LEVEL_DESCRIPTIONS) else "Pattern cluster"
        if keywords:
            return f"{base} around {', '.join(keywords[:3])}"
        return base

    def _quality_keywords(self, group: Sequence[ExperienceRecord], dimension: str) -> List[str]:
        """Themes from the dimension's manifestations first, then from the text"""
        manifestations = [q.manifestation for r in group for q in r.evidence_for(dimension) if q.manifestation]
        keywords = extract_themes(manifestations, self.config.max_themes)
        for word in extract_themes((r.text for r in group), self.config.max_themes):
            if word not in keywords:
                keywords.append(word)
        return keywords[:self.config.max_themes]

    @staticmethod
    def _quality_meaning(dimension: str, keywords: List[str], index: int) -> str:
        words = set(keywords)
        for triggers, meaning in KEYWORD_MEANINGS:
            if words & triggers:
                return meaning
        templates = QUALITY_MEANINGS.get(dimension, ["Experience clusters"])
        return templates[(index - 1) % len(templates)]
