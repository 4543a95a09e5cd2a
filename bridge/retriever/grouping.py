"""
Result Grouping

Groups a page of recall results by dominant quality dimension or by
embedding similarity.
"""

from typing import Dict, List

import numpy as np

from ..common.schemas import ExperienceRecord, RecallCluster
from ..common.vectors import centroid, cosine_similarity, usable_embeddings

NO_QUALITIES = "no-qualities"
UNCLUSTERED = "unclustered"


def _plural(count: int) -> str:
    return f"{count} experience{'' if count == 1 else 's'}"


def group_by_dimension(records: List[ExperienceRecord]) -> List[RecallCluster]:
    """Bucket records by their most prominent quality, largest bucket first"""
    groups: Dict[str, List[str]] = {}
    for record in records:
        dominant = record.dominant_dimension()
        key = dominant.value if dominant else NO_QUALITIES
        groups.setdefault(key, []).append(record.id)

    ordered = sorted(groups.items(), key=lambda item: (-len(item[1]), item[0]))
    return [
        RecallCluster(
            id=f"dimension-{key}",
            label=f"{key} ({_plural(len(ids))})",
            size=len(ids),
            experience_ids=ids,
            dimension=None if key == NO_QUALITIES else key,
        )
        for key, ids in ordered
    ]


def group_by_similarity(
    records: List[ExperienceRecord],
    threshold: float = 0.75,
) -> List[RecallCluster]:
    """
    Greedy single-pass clustering in result order.

    Each record joins the first group whose running centroid it is at
    least ``threshold`` similar to, otherwise it starts a new group.
    Records without a usable embedding land in one "unclustered" group.
    """
    vectors = usable_embeddings(
        [r.id for r in records],
        {r.id: r.embedding for r in records},
    )

    groups: List[List[str]] = []
    members: List[List[np.ndarray]] = []
    leftovers: List[str] = []

    for record in records:
        vector = vectors.get(record.id)
        if vector is None:
            leftovers.append(record.id)
            continue
        placed = False
        for index, group_vectors in enumerate(members):
            if cosine_similarity(vector, centroid(group_vectors)) >= threshold:
                groups[index].append(record.id)
                group_vectors.append(vector)
                placed = True
                break
        if not placed:
            groups.append([record.id])
            members.append([vector])

    by_id = {r.id: r for r in records}
    clusters = []
    for index, ids in enumerate(groups, start=1):
        lead = by_id[ids[0]].text.strip().split("\n")[0][:60]
        clusters.append(RecallCluster(
            id=f"similar-{index}",
            label=f"{lead} ({_plural(len(ids))})",
            size=len(ids),
            experience_ids=ids,
        ))
    clusters.sort(key=lambda c: -c.size)

    if leftovers:
        clusters.append(RecallCluster(
            id=UNCLUSTERED,
            label=f"without embeddings ({_plural(len(leftovers))})",
            size=len(leftovers),
            experience_ids=leftovers,
        ))
    return clusters
