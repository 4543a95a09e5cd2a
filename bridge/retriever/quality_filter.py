"""
Quality Filter

Predicate language over a record's quality evidence.

Filter shape:
    {
        "affective": {"min": 0.5, "max": 1.0, "manifestation": "anxious|worried"},
        "embodied": {"present": False},
        "$or": [{...}, {...}],
        "$not": {...},
    }

A dimension clause is met when at least one evidence entry of that
dimension meets every constraint in it. All top-level keys must hold.
Filters are parsed (and rejected with ValidationError) before any record
is evaluated; an empty filter matches everything.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern

from ..common.errors import ValidationError
from ..common.schemas import ALL_DIMENSIONS, ExperienceRecord

CLAUSE_KEYS = {"min", "max", "manifestation", "present"}
OPERATORS = {"$and", "$or", "$not"}

# Floor for a passing record whose matching evidence has zero prominence
MIN_MATCH_STRENGTH = 0.05


@dataclass
class DimensionClause:
    dimension: str
    min: Optional[float] = None
    max: Optional[float] = None
    manifestation: Optional[Pattern] = None
    present: Optional[bool] = None

    def _evidence_matches(self, prominence: float, manifestation: str) -> bool:
        if self.min is not None and prominence < self.min:
            return False
        if self.max is not None and prominence > self.max:
            return False
        if self.manifestation is not None and not self.manifestation.search(manifestation or ""):
            return False
        return True

    def matching_prominences(self, record: ExperienceRecord) -> List[float]:
        return [
            q.prominence
            for q in record.qualities
            if q.dimension.value == self.dimension
            and self._evidence_matches(q.prominence, q.manifestation)
        ]

    def evaluate(self, record: ExperienceRecord) -> bool:
        has_dimension = any(q.dimension.value == self.dimension for q in record.qualities)
        if self.present is False:
            return not has_dimension
        if self.present is True and not has_dimension:
            return False
        if self.min is None and self.max is None and self.manifestation is None:
            return has_dimension if self.present is None else True
        return bool(self.matching_prominences(record))

    def describe(self) -> str:
        if self.present is False:
            return f"NOT {self.dimension}"
        parts = []
        if self.min is not None:
            parts.append(f">= {self.min:g}")
        if self.max is not None:
            parts.append(f"<= {self.max:g}")
        if self.manifestation is not None:
            parts.append(f"~ /{self.manifestation.pattern}/")
        return f"{self.dimension} {' and '.join(parts)}".strip()


@dataclass
class FilterNode:
    """AND of clauses and nested operators"""
    clauses: List[DimensionClause] = field(default_factory=list)
    all_of: List["FilterNode"] = field(default_factory=list)
    any_of: List[List["FilterNode"]] = field(default_factory=list)
    none_of: List["FilterNode"] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.clauses or self.all_of or self.any_of or self.none_of)

    def evaluate(self, record: ExperienceRecord) -> bool:
        if not all(c.evaluate(record) for c in self.clauses):
            return False
        if not all(n.evaluate(record) for n in self.all_of):
            return False
        for options in self.any_of:
            if not any(n.evaluate(record) for n in options):
                return False
        if any(n.evaluate(record) for n in self.none_of):
            return False
        return True

    def positive_prominences(self, record: ExperienceRecord) -> List[float]:
        """Prominence of evidence satisfying the positive clauses reachable through AND/OR"""
        values: List[float] = []
        for clause in self.clauses:
            if clause.present is not False:
                values.extend(clause.matching_prominences(record))
        for node in self.all_of:
            values.extend(node.positive_prominences(record))
        for options in self.any_of:
            for node in options:
                if node.evaluate(record):
                    values.extend(node.positive_prominences(record))
        return values

    def describe(self) -> str:
        parts = [c.describe() for c in self.clauses]
        parts.extend(f"({n.describe()})" for n in self.all_of)
        parts.extend("(" + " OR ".join(n.describe() for n in options) + ")" for options in self.any_of)
        parts.extend(f"NOT ({n.describe()})" for n in self.none_of)
        return " AND ".join(parts)


def _parse_bound(value: Any, name: str, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{path}.{name} must be a number")
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{path}.{name} must be between 0 and 1")
    return float(value)


def _parse_clause(dimension: str, spec: Any, path: str) -> DimensionClause:
    if isinstance(spec, bool):
        return DimensionClause(dimension=dimension, present=spec)
    if not isinstance(spec, dict):
        raise ValidationError(f"{path} must be an object or boolean")

    unknown = set(spec) - CLAUSE_KEYS
    if unknown:
        raise ValidationError(f"{path} has unknown keys: {', '.join(sorted(unknown))}")

    clause = DimensionClause(dimension=dimension)
    if "min" in spec and spec["min"] is not None:
        clause.min = _parse_bound(spec["min"], "min", path)
    if "max" in spec and spec["max"] is not None:
        clause.max = _parse_bound(spec["max"], "max", path)
    if clause.min is not None and clause.max is not None and clause.min > clause.max:
        raise ValidationError(f"{path}.min must not exceed {path}.max")

    if spec.get("manifestation") is not None:
        pattern = spec["manifestation"]
        if not isinstance(pattern, str) or not pattern:
            raise ValidationError(f"{path}.manifestation must be a non-empty string")
        try:
            clause.manifestation = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            raise ValidationError(f"{path}.manifestation is not a valid pattern: {e}") from e

    if "present" in spec and spec["present"] is not None:
        if not isinstance(spec["present"], bool):
            raise ValidationError(f"{path}.present must be a boolean")
        clause.present = spec["present"]
        if clause.present is False and (
            clause.min is not None or clause.max is not None or clause.manifestation is not None
        ):
            raise ValidationError(f"{path} cannot combine present: false with value constraints")
    return clause


def _parse_node(spec: Any, path: str) -> FilterNode:
    if not isinstance(spec, dict):
        raise ValidationError(f"{path} must be an object")

    node = FilterNode()
    for key, value in spec.items():
        key_path = f"{path}.{key}" if path else key
        if key == "$and":
            if not isinstance(value, list) or not value:
                raise ValidationError(f"{key_path} must be a non-empty list")
            node.all_of.extend(_parse_node(v, f"{key_path}[{i}]") for i, v in enumerate(value))
        elif key == "$or":
            if not isinstance(value, list) or not value:
                raise ValidationError(f"{key_path} must be a non-empty list")
            node.any_of.append([_parse_node(v, f"{key_path}[{i}]") for i, v in enumerate(value)])
        elif key == "$not":
            node.none_of.append(_parse_node(value, key_path))
        elif key.startswith("$"):
            raise ValidationError(f"Unknown operator '{key}'. Supported: {', '.join(sorted(OPERATORS))}")
        elif key.lower() in ALL_DIMENSIONS:
            node.clauses.append(_parse_clause(key.lower(), value, key_path))
        else:
            raise ValidationError(
                f"Unknown quality dimension '{key}'. Valid: {', '.join(ALL_DIMENSIONS)}"
            )
    return node


class QualityFilter:
    """
    Compiled quality filter.

    Usage:
        qf = QualityFilter.parse({"affective": {"min": 0.6}})
        qf.evaluate(record)   # bool
        qf.strength(record)   # graded match in [0, 1]
    """

    def __init__(self, root: Optional[FilterNode] = None, source: Optional[Dict[str, Any]] = None):
        self._root = root or FilterNode()
        self.source = source or {}

    @classmethod
    def parse(cls, spec: Optional[Dict[str, Any]]) -> "QualityFilter":
        """
        Validate and compile a filter.

        Raises:
            ValidationError: describing the offending path
        """
        if spec is None:
            return cls()
        return cls(_parse_node(spec, ""), dict(spec))

    def is_empty(self) -> bool:
        return self._root.is_empty()

    def evaluate(self, record: ExperienceRecord) -> bool:
        return self._root.evaluate(record)

    def strength(self, record: ExperienceRecord) -> float:
        """
        Graded satisfaction in [0, 1].

        0.0 when the filter fails; otherwise the mean prominence of the
        evidence that satisfied positive clauses (never below
        MIN_MATCH_STRENGTH), or 1.0 when the match was purely structural
        (e.g. only absence checks).
        """
        if not self.evaluate(record):
            return 0.0
        values = self._root.positive_prominences(record)
        if not values:
            return 1.0
        return max(MIN_MATCH_STRENGTH, min(1.0, sum(values) / len(values)))

    def describe(self) -> str:
        if self.is_empty():
            return "any qualities"
        return self._root.describe()
