"""Data types for raw log events, usage records and API responses."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

_U64_MAX = 2**64 - 1

_SKIP = {"skip": True}
_SKIP_IF_EMPTY = {"skip_if_empty": True}


def _require_mapping(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be a JSON object, got {type(data).__name__}")
    return data


def _opt_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _opt_u64(data: dict, key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an unsigned integer")
    if not 0 <= value <= _U64_MAX:
        raise ValueError(f"field {key!r} is out of range for an unsigned integer")
    return value


def _opt_list(data: dict, key: str) -> list | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError(f"field {key!r} must be an array")
    return value


# ── Raw JSONL structures ──────────────────────────────────────────────────────


@dataclass
class RawUsage:
    """Token counts reported with an assistant message."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> RawUsage:
        """Build from a decoded JSON object; raise ValueError on bad field types."""
        data = _require_mapping(data, "usage")
        return cls(
            input_tokens=_opt_u64(data, "input_tokens"),
            output_tokens=_opt_u64(data, "output_tokens"),
            cache_creation_input_tokens=_opt_u64(data, "cache_creation_input_tokens"),
            cache_read_input_tokens=_opt_u64(data, "cache_read_input_tokens"),
        )


@dataclass
class RawMessage:
    """The message part of a log event."""

    model: str | None = None
    id: str | None = None
    content: list[Any] | None = None
    usage: RawUsage | None = None

    @classmethod
    def from_dict(cls, data: Any) -> RawMessage:
        """Build from a decoded JSON object; raise ValueError on bad field types."""
        data = _require_mapping(data, "message")
        usage = data.get("usage")
        return cls(
            model=_opt_str(data, "model"),
            id=_opt_str(data, "id"),
            content=_opt_list(data, "content"),
            usage=None if usage is None else RawUsage.from_dict(usage),
        )


@dataclass
class RawEvent:
    """One line of a session log."""

    event_type: str | None = None
    request_id: str | None = None
    session_id: str | None = None
    cwd: str | None = None
    timestamp: str | None = None
    tool_use_result: Any = None
    message: RawMessage | None = None

    @classmethod
    def from_dict(cls, data: Any) -> RawEvent:
        """Build from a decoded JSON object; raise ValueError on bad field types."""
        data = _require_mapping(data, "event")
        message = data.get("message")
        return cls(
            event_type=_opt_str(data, "type"),
            request_id=_opt_str(data, "requestId"),
            session_id=_opt_str(data, "sessionId"),
            cwd=_opt_str(data, "cwd"),
            timestamp=_opt_str(data, "timestamp"),
            tool_use_result=data.get("toolUseResult"),
            message=None if message is None else RawMessage.from_dict(message),
        )


# ── Domain model ──────────────────────────────────────────────────────────────


@dataclass
class UsageRecord:
    """One deduplicated, priced API request."""

    request_id: str
    session_id: str
    project: str
    model: str
    input_tokens: int
    output_tokens: int
    cache_write_tokens: int
    cache_read_tokens: int
    cost_input: float
    cost_output: float
    cost_cache_write: float
    cost_cache_read: float
    total_cost: float
    timestamp: datetime
    workspace_root: str = field(default="", metadata=_SKIP)
    touched_paths: list[str] = field(default_factory=list, metadata=_SKIP)
    subprojects: list[str] = field(default_factory=list, metadata=_SKIP_IF_EMPTY)


# ── API response types ────────────────────────────────────────────────────────


@dataclass
class CostSummary:
    cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_write_tokens: int = 0
    cache_read_tokens: int = 0


@dataclass
class DailySpend:
    date: str = ""
    cost: float = 0.0


@dataclass
class ModelSeries:
    model: str = ""
    daily: list[float] = field(default_factory=list)
    hourly: list[float] = field(default_factory=list)


@dataclass
class CostBreakdown:
    input: float = 0.0
    output: float = 0.0
    cache_read: float = 0.0
    cache_write: float = 0.0


@dataclass
class ModelBreakdown:
    model: str = ""
    cost: float = 0.0
    sessions: int = 0
    pct_of_total: float = 0.0


@dataclass
class HeatmapCell:
    hour: int
    day_of_week: int
    cost: float


@dataclass
class SessionSummary:
    id: str = ""
    project: str = ""
    model: str = ""
    last_active: str = ""
    total_tokens: int = 0
    cost: float = 0.0


@dataclass
class SubprojectSummary:
    name: str = ""
    total_cost: float = 0.0
    sessions: int = 0
    models: list[str] = field(default_factory=list)


@dataclass
class ProjectSummary:
    name: str = ""
    total_cost: float = 0.0
    sessions: int = 0
    models: list[str] = field(default_factory=list)
    subprojects: list[SubprojectSummary] = field(default_factory=list)


@dataclass
class RateEntry:
    model: str
    input_per_mtok: float
    output_per_mtok: float
    cache_write_per_mtok: float
    cache_read_per_mtok: float


@dataclass
class OverviewResponse:
    today: CostSummary = field(default_factory=CostSummary)
    week: CostSummary = field(default_factory=CostSummary)
    month: CostSummary = field(default_factory=CostSummary)
    projected: CostSummary = field(default_factory=CostSummary)
    daily_spend: list[DailySpend] = field(default_factory=list)
    hourly_spend: list[float] = field(default_factory=list)
    model_series: list[ModelSeries] = field(default_factory=list)
    cost_breakdown: CostBreakdown = field(default_factory=CostBreakdown)
    model_breakdown: list[ModelBreakdown] = field(default_factory=list)
    activity_heatmap: list[HeatmapCell] = field(default_factory=list)
    recent_sessions: list[SessionSummary] = field(default_factory=list)


# ── App state ─────────────────────────────────────────────────────────────────


@dataclass
class AppState:
    """All usage records currently loaded."""

    records: list[UsageRecord] = field(default_factory=list)


# ── Serialisation ─────────────────────────────────────────────────────────────


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    micros = value.microsecond
    if micros:
        if micros % 1000 == 0:
            text += f".{micros // 1000:03d}"
        else:
            text += f".{micros:06d}"
    return text + "Z"


def to_jsonable(value: Any) -> Any:
    """Convert response and record objects into plain JSON-ready values."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        result = {}
        for f in dataclasses.fields(value):
            item = getattr(value, f.name)
            if f.metadata.get("skip"):
                continue
            if f.metadata.get("skip_if_empty") and not item:
                continue
            result[f.name] = to_jsonable(item)
        return result
    if isinstance(value, datetime):
        return _format_timestamp(value)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    return value