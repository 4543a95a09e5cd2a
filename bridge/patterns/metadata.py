"""
Pattern Metadata

Recomputes the derived statistics of a pattern from its members:
coherence, per-dimension average prominence, recency bucket and themes.
"""

import re
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from ..common.schemas import ALL_DIMENSIONS, ExperienceRecord
from ..common.vectors import mean_pairwise_similarity, usable_embeddings
from .models import NavigablePattern, QualityPattern, Recency

# Bucket upper bounds in days
ACTIVE_DAYS = 7
RECENT_DAYS = 30
PAST_DAYS = 90

THEME_STOP_WORDS = {
    "about", "after", "again", "being", "could", "every", "first", "their",
    "there", "these", "thing", "things", "think", "those", "through", "where",
    "which", "while", "would", "really", "because", "before", "still", "other",
    "should", "right", "something",
}


def recency_bucket(latest: Optional[datetime], now: datetime) -> Recency:
    """
    Bucket the age of the newest member.

    < 7 days active, < 30 recent, < 90 past, otherwise (or no members) dormant.
    """
    if latest is None:
        return Recency.DORMANT
    age_days = (now - latest).total_seconds() / 86400.0
    if age_days < ACTIVE_DAYS:
        return Recency.ACTIVE
    if age_days < RECENT_DAYS:
        return Recency.RECENT
    if age_days < PAST_DAYS:
        return Recency.PAST
    return Recency.DORMANT


def average_qualities(records: Sequence[ExperienceRecord]) -> Dict[str, float]:
    """Mean prominence per dimension over all members (absent counts as 0)"""
    if not records:
        return {}
    return {
        dimension: round(sum(r.prominence(dimension) for r in records) / len(records), 4)
        for dimension in ALL_DIMENSIONS
    }


def extract_themes(texts: Iterable[str], max_themes: int = 10) -> List[str]:
    """
    Words longer than four characters that appear more than once,
    most frequent first (ties alphabetical).
    """
    counts: Counter = Counter()
    for text in texts:
        for word in re.findall(r"[a-z][a-z'-]*", text.lower()):
            word = word.strip("'-")
            if len(word) > 4 and word not in THEME_STOP_WORDS:
                counts[word] += 1
    frequent = [(w, c) for w, c in counts.items() if c > 1]
    frequent.sort(key=lambda item: (-item[1], item[0]))
    return [w for w, _ in frequent[:max_themes]]


def merge_emojis(existing: List[str], records: Iterable[ExperienceRecord], limit: int = 4) -> List[str]:
    """Keep the earliest distinct emojis, capped at ``limit``"""
    emojis = list(dict.fromkeys(e for e in existing if e))
    for record in records:
        if record.emoji and record.emoji not in emojis:
            emojis.append(record.emoji)
    return emojis[:limit]


def members_coherence(member_ids: Sequence[str], embeddings: Dict[str, Optional[List[float]]]) -> float:
    """Mean pairwise cosine among members that have embeddings, clamped to [0, 1]"""
    vectors = usable_embeddings(member_ids, embeddings)
    return max(0.0, min(1.0, mean_pairwise_similarity(list(vectors.values()))))


class MetadataCalculator:
    """
    Bottom-up metadata maintenance.

    Usage:
        calc = MetadataCalculator()
        calc.refresh_pattern(pattern, records_by_id, embeddings)
    """

    def __init__(
        self,
        max_themes: int = 10,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self._max_themes = max_themes
        self._now = now or (lambda: datetime.now(timezone.utc))

    def refresh_pattern(
        self,
        pattern: NavigablePattern,
        records_by_id: Dict[str, ExperienceRecord],
        embeddings: Dict[str, Optional[List[float]]],
    ) -> None:
        """Recompute coherence, qualities, recency and themes in place"""
        members = [records_by_id[i] for i in pattern.experience_ids if i in records_by_id]

        pattern.coherence = members_coherence(pattern.experience_ids, embeddings)
        pattern.metadata.qualities = average_qualities(members)

        latest = max((m.timestamp for m in members), default=None)
        pattern.metadata.recency = recency_bucket(latest, self._now())
        pattern.metadata.themes = extract_themes((m.text for m in members), self._max_themes)

    def refresh_cluster(
        self,
        cluster: QualityPattern,
        embeddings: Dict[str, Optional[List[float]]],
    ) -> None:
        cluster.size = len(cluster.experiences)
        cluster.coherence = members_coherence(cluster.experiences, embeddings)
