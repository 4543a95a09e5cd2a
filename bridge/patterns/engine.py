"""
Incremental Pattern Engine

Folds new experiences into an existing theme tree and quality clusters
without rediscovering everything:

- Hierarchical assignment: depth-first walk, a pattern matches when the
  record is >= 0.7 similar to its member centroid; children are visited
  only under a matching parent; the best three matches receive the record.
- Quality clustering: for each dimension the record shows at >= 0.6
  prominence, the single most similar cluster of that dimension (>= 0.6)
  receives it. New clusters are never created here.
- Drift detection: loose patterns (split) and near-duplicate siblings
  (merge) are reported, never applied; structure changes only through a
  full rediscovery.
- Metadata: touched patterns and their ancestors are recomputed bottom-up
  before the call returns.

Inputs are deep-copied; the caller's snapshot is never mutated.
"""

import copy
import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from ..common.config import PatternConfig
from ..common.schemas import ExperienceRecord
from ..common.vectors import centroid, cosine_similarity, usable_embeddings
from .metadata import MetadataCalculator, members_coherence, merge_emojis
from .models import (
    NavigablePattern,
    PatternTree,
    PatternUpdate,
    QualityPattern,
    UpdateResult,
    UpdateStats,
    UpdateType,
)

logger = logging.getLogger("bridge.patterns.engine")

Embeddings = Dict[str, Optional[List[float]]]


def centroid_similarity(
    member_ids: Sequence[str],
    vector: Sequence[float],
    embeddings: Embeddings,
) -> Optional[float]:
    """
    Cosine between ``vector`` and the centroid of the members' embeddings.

    Members without a same-width embedding are ignored; None when no
    member is usable.
    """
    usable = usable_embeddings(member_ids, embeddings, dimensions=len(vector))
    center = centroid(list(usable.values()))
    if center is None:
        return None
    return cosine_similarity(vector, center)


class PatternEngine:
    """
    Incremental updater for the pattern tree and quality clusters.

    Usage:
        engine = PatternEngine()
        result = engine.update_patterns(new_records, tree, clusters, all_records)
        result.updated_tree, result.changes, result.stats
    """

    def __init__(
        self,
        config: Optional[PatternConfig] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the engine.

        Args:
            config: Thresholds (defaults: 0.7 / 0.6 / 0.6, min size 3)
            now: Clock for recency buckets
        """
        self.config = config or PatternConfig()
        self._metadata = MetadataCalculator(max_themes=self.config.max_themes, now=now)

    def update_patterns(
        self,
        new_records: Sequence[ExperienceRecord],
        tree: PatternTree,
        quality_clusters: Sequence[QualityPattern],
        all_records: Sequence[ExperienceRecord],
    ) -> UpdateResult:
        """
        Assign new records to existing patterns and report drift.

        Args:
            new_records: Records to fold in
            tree: Current theme tree (not modified)
            quality_clusters: Current quality clusters (not modified)
            all_records: Full corpus, for member embeddings and metadata

        Returns:
            UpdateResult with the updated snapshot, changes and stats
        """
        started = time.perf_counter()

        tree = copy.deepcopy(tree)
        clusters = copy.deepcopy(list(quality_clusters))

        records_by_id: Dict[str, ExperienceRecord] = {r.id: r for r in all_records}
        for record in new_records:
            records_by_id[record.id] = record
        embeddings: Embeddings = {rid: r.embedding for rid, r in records_by_id.items()}

        stats = UpdateStats()
        changes: List[PatternUpdate] = []
        touched_patterns: Set[str] = set()
        touched_clusters: Set[int] = set()

        for record in new_records:
            stats.records_processed += 1
            try:
                if not record.embedding:
                    logger.debug("Skipping %s: no embedding", record.id)
                    continue
                self._assign_hierarchical(record, tree, embeddings, touched_patterns, changes)
                self._assign_quality(record, clusters, embeddings, touched_clusters, changes)
            except Exception as e:
                stats.records_failed += 1
                logger.warning("Pattern update failed for %s: %s", record.id, e)

        self._refresh_metadata(tree, touched_patterns, records_by_id, embeddings)
        for index in touched_clusters:
            self._metadata.refresh_cluster(clusters[index], embeddings)

        structural = self.detect_structural_changes(tree, embeddings)
        changes.extend(structural)
        if structural:
            logger.info(
                "Structural changes detected: %d changes. Full rediscovery recommended.",
                len(structural),
            )

        stats.patterns_affected = len(touched_patterns) + len(touched_clusters)
        stats.time_ms = (time.perf_counter() - started) * 1000.0

        return UpdateResult(
            updated_tree=tree,
            updated_clusters=clusters,
            changes=changes,
            stats=stats,
            rediscovery_recommended=bool(structural),
        )

    # ---------- Hierarchical assignment ---------- #

    def find_matches(
        self,
        vector: Sequence[float],
        tree: PatternTree,
        embeddings: Embeddings,
    ) -> List[Tuple[NavigablePattern, float]]:
        """
        Depth-first search for matching patterns.

        Returns:
            Best matches first, at most ``max_matches``
        """
        threshold = self.config.similarity_threshold
        matches: List[Tuple[NavigablePattern, float]] = []

        stack = list(reversed(tree.roots()))
        while stack:
            pattern = stack.pop()
            similarity = centroid_similarity(pattern.experience_ids, vector, embeddings)
            if similarity is None or similarity < threshold:
                continue
            matches.append((pattern, similarity))
            stack.extend(reversed(tree.children(pattern.id)))

        matches.sort(key=lambda m: m[1], reverse=True)
        return matches[:self.config.max_matches]

    def _assign_hierarchical(
        self,
        record: ExperienceRecord,
        tree: PatternTree,
        embeddings: Embeddings,
        touched: Set[str],
        changes: List[PatternUpdate],
    ) -> None:
        # Each change is recorded as soon as its membership is applied
        for pattern, similarity in self.find_matches(record.embedding, tree, embeddings):
            if not pattern.add_member(record.id):
                continue
            touched.add(pattern.id)
            changes.append(PatternUpdate(
                type=UpdateType.ADD,
                pattern_id=pattern.id,
                affected_experiences=[record.id],
                confidence=similarity,
            ))
            pattern.metadata.emojis = merge_emojis(
                pattern.metadata.emojis, [record], self.config.max_emojis
            )

    # ---------- Quality clustering ---------- #

    def _assign_quality(
        self,
        record: ExperienceRecord,
        clusters: List[QualityPattern],
        embeddings: Embeddings,
        touched: Set[int],
        changes: List[PatternUpdate],
    ) -> None:
        dimensions = list(dict.fromkeys(q.dimension.value for q in record.qualities))

        for dimension in dimensions:
            if record.prominence(dimension) < self.config.quality_prominence_threshold:
                continue

            best_index: Optional[int] = None
            best_similarity = -1.0
            for index, cluster in enumerate(clusters):
                if cluster.dimension != dimension:
                    continue
                similarity = centroid_similarity(cluster.experiences, record.embedding, embeddings)
                if similarity is not None and similarity > best_similarity:
                    best_index, best_similarity = index, similarity

            if best_index is None or best_similarity < self.config.cluster_similarity_threshold:
                continue

            cluster = clusters[best_index]
            if cluster.add_member(record.id):
                touched.add(best_index)
                changes.append(PatternUpdate(
                    type=UpdateType.ADD,
                    pattern_id=cluster.pattern_id,
                    affected_experiences=[record.id],
                    confidence=best_similarity,
                ))

    # ---------- Metadata ---------- #

    def _refresh_metadata(
        self,
        tree: PatternTree,
        touched: Set[str],
        records_by_id: Dict[str, ExperienceRecord],
        embeddings: Embeddings,
    ) -> None:
        """Recompute touched patterns and every ancestor, deepest first"""
        to_refresh: Set[str] = set()
        for pattern_id in touched:
            to_refresh.add(pattern_id)
            to_refresh.update(a.id for a in tree.ancestors(pattern_id))

        for pattern_id in sorted(to_refresh, key=tree.depth, reverse=True):
            self._metadata.refresh_pattern(tree.patterns[pattern_id], records_by_id, embeddings)

    # ---------- Drift detection ---------- #

    def detect_structural_changes(
        self,
        tree: PatternTree,
        embeddings: Embeddings,
    ) -> List[PatternUpdate]:
        """
        Report split and merge candidates without touching the tree.

        Split: size >= 2 x min_pattern_size and cohesion < split threshold.
        Merge: siblings whose centroids are more than the merge threshold alike.
        """
        changes: List[PatternUpdate] = []
        min_split_size = 2 * self.config.min_pattern_size

        for pattern in tree.walk():
            if pattern.size < min_split_size:
                continue
            cohesion = members_coherence(pattern.experience_ids, embeddings)
            if cohesion < self.config.split_cohesion_threshold:
                changes.append(PatternUpdate(
                    type=UpdateType.SPLIT,
                    pattern_id=pattern.id,
                    affected_experiences=list(pattern.experience_ids),
                    confidence=1.0 - cohesion,
                ))

        for siblings in tree.siblings_groups():
            centers = [self._pattern_centroid(p, embeddings) for p in siblings]
            for i in range(len(siblings)):
                for j in range(i + 1, len(siblings)):
                    if centers[i] is None or centers[j] is None:
                        continue
                    if centers[i].shape != centers[j].shape:
                        continue
                    similarity = cosine_similarity(centers[i], centers[j])
                    if similarity > self.config.merge_similarity_threshold:
                        affected = list(dict.fromkeys(
                            siblings[i].experience_ids + siblings[j].experience_ids
                        ))
                        changes.append(PatternUpdate(
                            type=UpdateType.MERGE,
                            pattern_id=siblings[i].id,
                            affected_experiences=affected,
                            confidence=similarity,
                        ))
        return changes

    @staticmethod
    def _pattern_centroid(pattern: NavigablePattern, embeddings: Embeddings) -> Optional[np.ndarray]:
        usable = usable_embeddings(pattern.experience_ids, embeddings)
        return centroid(list(usable.values()))
