"""
Pattern Models

The theme tree is an arena: patterns live in a dict keyed by id and refer
to their parent and children by id, never by object reference.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class Recency(str, Enum):
    """How recently a pattern saw a new member"""
    ACTIVE = "active"    # < 7 days
    RECENT = "recent"    # < 30 days
    PAST = "past"        # < 90 days
    DORMANT = "dormant"


class UpdateType(str, Enum):
    ADD = "add"
    MERGE = "merge"
    SPLIT = "split"


@dataclass
class PatternMetadata:
    qualities: Dict[str, float] = field(default_factory=dict)
    recency: Recency = Recency.DORMANT
    themes: List[str] = field(default_factory=list)
    emojis: List[str] = field(default_factory=list)
    semantic_meaning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "qualities": dict(self.qualities),
            "recency": self.recency.value,
            "themes": list(self.themes),
            "emojis": list(self.emojis),
            "semantic_meaning": self.semantic_meaning,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternMetadata":
        return cls(
            qualities={k: float(v) for k, v in data.get("qualities", {}).items()},
            recency=Recency(data.get("recency", Recency.DORMANT.value)),
            themes=list(data.get("themes", [])),
            emojis=list(data.get("emojis", [])),
            semantic_meaning=data.get("semantic_meaning", ""),
        )


@dataclass
class NavigablePattern:
    """
    A node in the theme tree.

    ``experience_ids`` is ordered but behaves as a set: add_member() never
    inserts an id twice.
    """
    id: str
    name: str = ""
    level: int = 0
    experience_ids: List[str] = field(default_factory=list)
    parent_id: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)
    coherence: float = 1.0
    metadata: PatternMetadata = field(default_factory=PatternMetadata)

    def add_member(self, experience_id: str) -> bool:
        """Add an id; returns False if it was already a member"""
        if experience_id in self.experience_ids:
            return False
        self.experience_ids.append(experience_id)
        return True

    @property
    def size(self) -> int:
        return len(self.experience_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "level": self.level,
            "experience_ids": list(self.experience_ids),
            "parent_id": self.parent_id,
            "child_ids": list(self.child_ids),
            "coherence": self.coherence,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NavigablePattern":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            level=int(data.get("level", 0)),
            experience_ids=list(dict.fromkeys(data.get("experience_ids", []))),
            parent_id=data.get("parent_id"),
            child_ids=list(data.get("child_ids", [])),
            coherence=float(data.get("coherence", 1.0)),
            metadata=PatternMetadata.from_dict(data.get("metadata", {})),
        )


@dataclass
class PatternTree:
    """Arena of patterns plus the ordered list of root ids"""
    patterns: Dict[str, NavigablePattern] = field(default_factory=dict)
    root_ids: List[str] = field(default_factory=list)

    def add(self, pattern: NavigablePattern) -> None:
        """Insert a pattern and link it under its parent (or as a root)"""
        self.patterns[pattern.id] = pattern
        if pattern.parent_id is None:
            if pattern.id not in self.root_ids:
                self.root_ids.append(pattern.id)
        else:
            parent = self.patterns[pattern.parent_id]
            if pattern.id not in parent.child_ids:
                parent.child_ids.append(pattern.id)

    def get(self, pattern_id: str) -> Optional[NavigablePattern]:
        return self.patterns.get(pattern_id)

    def roots(self) -> List[NavigablePattern]:
        return [self.patterns[pid] for pid in self.root_ids if pid in self.patterns]

    def children(self, pattern_id: str) -> List[NavigablePattern]:
        pattern = self.patterns.get(pattern_id)
        if pattern is None:
            return []
        return [self.patterns[cid] for cid in pattern.child_ids if cid in self.patterns]

    def siblings_groups(self) -> List[List[NavigablePattern]]:
        """Root patterns, then each set of children sharing a parent"""
        groups = [self.roots()]
        for pattern in self.walk():
            if pattern.child_ids:
                groups.append(self.children(pattern.id))
        return groups

    def ancestors(self, pattern_id: str) -> List[NavigablePattern]:
        """Parent first, root last"""
        chain = []
        current = self.patterns.get(pattern_id)
        seen = set()
        while current is not None and current.parent_id is not None and current.parent_id not in seen:
            seen.add(current.parent_id)
            current = self.patterns.get(current.parent_id)
            if current is not None:
                chain.append(current)
        return chain

    def walk(self) -> Iterator[NavigablePattern]:
        """Depth-first, pre-order"""
        stack = list(reversed(self.roots()))
        while stack:
            pattern = stack.pop()
            yield pattern
            stack.extend(reversed(self.children(pattern.id)))

    def depth(self, pattern_id: str) -> int:
        return len(self.ancestors(pattern_id))

    def __len__(self) -> int:
        return len(self.patterns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_ids": list(self.root_ids),
            "patterns": [p.to_dict() for p in self.patterns.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternTree":
        tree = cls()
        for item in data.get("patterns", []):
            pattern = NavigablePattern.from_dict(item)
            tree.patterns[pattern.id] = pattern
        tree.root_ids = [pid for pid in data.get("root_ids", []) if pid in tree.patterns]
        return tree


@dataclass
class QualityPattern:
    """A flat cluster scoped to one quality dimension"""
    dimension: str
    cluster_name: str
    experiences: List[str] = field(default_factory=list)
    size: int = 0
    keywords: List[str] = field(default_factory=list)
    semantic_meaning: str = ""
    coherence: float = 1.0

    @property
    def pattern_id(self) -> str:
        return f"{self.dimension}-{self.cluster_name}"

    def add_member(self, experience_id: str) -> bool:
        if experience_id in self.experiences:
            return False
        self.experiences.append(experience_id)
        self.size += 1
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "cluster_name": self.cluster_name,
            "experiences": list(self.experiences),
            "size": self.size,
            "keywords": list(self.keywords),
            "semantic_meaning": self.semantic_meaning,
            "coherence": self.coherence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualityPattern":
        experiences = list(dict.fromkeys(data.get("experiences", [])))
        return cls(
            dimension=data["dimension"],
            cluster_name=data["cluster_name"],
            experiences=experiences,
            size=int(data.get("size", len(experiences))),
            keywords=list(data.get("keywords", [])),
            semantic_meaning=data.get("semantic_meaning", ""),
            coherence=float(data.get("coherence", 1.0)),
        )


@dataclass
class PatternUpdate:
    """Audit entry for one detected or applied change"""
    type: UpdateType
    pattern_id: str
    affected_experiences: List[str] = field(default_factory=list)
    confidence: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "pattern_id": self.pattern_id,
            "affected_experiences": list(self.affected_experiences),
            "confidence": self.confidence,
        }


@dataclass
class UpdateStats:
    patterns_affected: int = 0
    records_processed: int = 0
    records_failed: int = 0
    time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patterns_affected": self.patterns_affected,
            "records_processed": self.records_processed,
            "records_failed": self.records_failed,
            "time_ms": self.time_ms,
        }


@dataclass
class UpdateResult:
    updated_tree: PatternTree
    updated_clusters: List[QualityPattern]
    changes: List[PatternUpdate] = field(default_factory=list)
    stats: UpdateStats = field(default_factory=UpdateStats)
    rediscovery_recommended: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changes": [c.to_dict() for c in self.changes],
            "stats": self.stats.to_dict(),
            "rediscovery_recommended": self.rediscovery_recommended,
            "pattern_count": len(self.updated_tree),
            "cluster_count": len(self.updated_clusters),
        }
