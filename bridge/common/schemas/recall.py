"""
Recall Request / Response Schemas
"""

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator


class SortOrder(str, Enum):
    """Result ordering"""
    RELEVANCE = "relevance"
    CREATED = "created"  # newest first


class GroupBy(str, Enum):
    """Result grouping"""
    SIMILARITY = "similarity"
    DIMENSION = "dimension"
    NONE = "none"


def _parse_bound(value: str, end_of_day: bool) -> datetime:
    """Parse an ISO date or datetime; bare dates expand to the whole UTC day"""
    value = value.strip()
    if len(value) == 10:
        day = date.fromisoformat(value)
        moment = datetime.combine(day, time.max if end_of_day else time.min)
        return moment.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_created_filter(value: Union[str, Dict[str, Any]]) -> Tuple[datetime, datetime]:
    """
    Turn a ``created`` filter into an inclusive [start, end] window.

    A single date selects that UTC calendar day. A {start, end} range is
    inclusive on both ends; a missing side is open.

    Raises:
        ValueError: for unparseable dates or an inverted range
    """
    if isinstance(value, str):
        if len(value.strip()) == 10:
            return _parse_bound(value, False), _parse_bound(value, True)
        moment = _parse_bound(value, False)
        start = datetime.combine(moment.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)
        return start, start + timedelta(days=1) - timedelta(microseconds=1)

    if isinstance(value, dict):
        unknown = set(value) - {"start", "end"}
        if unknown:
            raise ValueError(f"Unknown created range keys: {sorted(unknown)}")
        for key in ("start", "end"):
            if value.get(key) is not None and not isinstance(value[key], str):
                raise ValueError(f"created.{key} must be an ISO date string")
        start = _parse_bound(value["start"], False) if value.get("start") else datetime.min.replace(tzinfo=timezone.utc)
        end = _parse_bound(value["end"], True) if value.get("end") else datetime.max.replace(tzinfo=timezone.utc)
        if start > end:
            raise ValueError("created.start must not be after created.end")
        return start, end

    raise ValueError("created must be a date string or {start, end}")


class RecallRequest(BaseModel):
    """Retrieval request"""
    query: Optional[str] = None
    id: Optional[str] = None
    limit: int = Field(default=10, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

    who: Optional[str] = None
    perspective: Optional[str] = None
    processing: Optional[str] = None
    crafted: Optional[bool] = None
    created: Optional[Union[str, Dict[str, Any]]] = None

    semantic_query: Optional[str] = None
    semantic_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    qualities: Optional[Dict[str, Any]] = None

    sort: SortOrder = SortOrder.CREATED
    group_by: GroupBy = GroupBy.NONE
    include_debug: bool = True

    @field_validator("created")
    @classmethod
    def _check_created(cls, value):
        if value is not None:
            parse_created_filter(value)
        return value

    def created_window(self) -> Optional[Tuple[datetime, datetime]]:
        if self.created is None:
            return None
        return parse_created_filter(self.created)

    def echo(self) -> Dict[str, Any]:
        """Filters actually applied, for the response"""
        return self.model_dump(
            mode="json",
            exclude_none=True,
            exclude={"include_debug"},
        )


class RecallResult(BaseModel):
    id: str
    content: str
    snippet: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    relevance_score: float = Field(ge=0.0, le=1.0)
    relevance_breakdown: Dict[str, Any] = Field(default_factory=dict)


class RecallCluster(BaseModel):
    id: str
    label: str
    size: int
    experience_ids: List[str] = Field(default_factory=list)
    dimension: Optional[str] = None


class RecallDebug(BaseModel):
    errors: List[str] = Field(default_factory=list)
    records_scanned: int = 0
    records_filtered: int = 0
    semantic_search: bool = False
    semantic_matches: int = 0
    scoring_mode: str = ""


class RecallResponse(BaseModel):
    """Retrieval response; ``total`` counts matches before pagination"""
    results: List[RecallResult] = Field(default_factory=list)
    total: int = 0
    filters_echoed: Dict[str, Any] = Field(default_factory=dict)
    clusters: Optional[List[RecallCluster]] = None
    debug: Optional[RecallDebug] = None
