"""Aggregate usage records into the dashboard's API responses."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from cctrack.models import (
    AppState,
    CostBreakdown,
    CostSummary,
    DailySpend,
    HeatmapCell,
    ModelBreakdown,
    ModelSeries,
    OverviewResponse,
    ProjectSummary,
    SessionSummary,
    SubprojectSummary,
    UsageRecord,
)

_RECENT_SESSIONS = 20
_DAILY_WINDOW = 14
_HOURS = 24


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _local_midnight_utc(day: date) -> datetime:
    """Midnight of ``day`` on the local clock, expressed in UTC."""
    return datetime.combine(day, time()).astimezone().astimezone(timezone.utc)


def _days_from_sunday(value: datetime) -> int:
    return (value.weekday() + 1) % 7


def _rfc3339(value: datetime) -> str:
    value = _as_utc(value)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    micros = value.microsecond
    if micros:
        if micros % 1000 == 0:
            text += f".{micros // 1000:03d}"
        else:
            text += f".{micros:06d}"
    return text + "+00:00"


def _accumulate(summary: CostSummary, record: UsageRecord) -> None:
    summary.cost += record.total_cost
    summary.input_tokens += record.input_tokens
    summary.output_tokens += record.output_tokens
    summary.cache_write_tokens += record.cache_write_tokens
    summary.cache_read_tokens += record.cache_read_tokens


def build_overview(state: AppState, now: datetime | None = None) -> OverviewResponse:
    """Summarise spend for today, this week and this month, plus charts and sessions.

    Period boundaries follow the local clock; ``now`` defaults to the current time.
    """
    now = datetime.now(timezone.utc) if now is None else _as_utc(now)
    now_local = now.astimezone()
    local_date = now_local.date()

    today_start = _local_midnight_utc(local_date)
    week_start = _local_midnight_utc(local_date - timedelta(days=_days_from_sunday(now_local)))
    month_start = _local_midnight_utc(local_date.replace(day=1))

    today = CostSummary()
    week = CostSummary()
    month = CostSummary()
    breakdown = CostBreakdown()
    heatmap: dict[tuple[int, int], float] = {}
    model_cost: dict[str, float] = {}
    model_sessions: dict[str, set[str]] = {}
    daily_map: dict[str, float] = {}
    hourly = [0.0] * _HOURS
    model_daily: dict[str, dict[str, float]] = {}
    model_hourly: dict[str, list[float]] = {}

    for record in state.records:
        cost = record.total_cost
        timestamp = _as_utc(record.timestamp)
        local_ts = timestamp.astimezone()

        if timestamp >= today_start:
            _accumulate(today, record)
        if timestamp >= week_start:
            _accumulate(week, record)
        if timestamp >= month_start:
            _accumulate(month, record)

        breakdown.input += record.cost_input
        breakdown.output += record.cost_output
        breakdown.cache_read += record.cost_cache_read
        breakdown.cache_write += record.cost_cache_write

        hour = local_ts.hour
        cell = (hour, _days_from_sunday(local_ts))
        heatmap[cell] = heatmap.get(cell, 0.0) + cost
        hourly[hour] += cost

        day = timestamp.strftime("%Y-%m-%d")
        daily_map[day] = daily_map.get(day, 0.0) + cost

        model_cost[record.model] = model_cost.get(record.model, 0.0) + cost
        model_sessions.setdefault(record.model, set()).add(record.session_id)

        per_day = model_daily.setdefault(record.model, {})
        per_day[day] = per_day.get(day, 0.0) + cost
        model_hourly.setdefault(record.model, [0.0] * _HOURS)[hour] += cost

    dates = [
        (now - timedelta(days=offset)).strftime("%Y-%m-%d")
        for offset in reversed(range(_DAILY_WINDOW))
    ]
    daily_spend = [DailySpend(date=day, cost=daily_map.get(day, 0.0)) for day in dates]

    model_series = [
        ModelSeries(
            model=model,
            daily=[per_day.get(day, 0.0) for day in dates],
            hourly=list(model_hourly.get(model, [0.0] * _HOURS)),
        )
        for model, per_day in model_daily.items()
    ]
    model_series.sort(key=lambda s: sum(s.daily) + sum(s.hourly), reverse=True)

    total_cost = sum(model_cost.values())
    model_breakdown = [
        ModelBreakdown(
            model=model,
            cost=cost,
            sessions=len(model_sessions.get(model, ())),
            pct_of_total=cost / total_cost * 100.0 if total_cost > 0.0 else 0.0,
        )
        for model, cost in model_cost.items()
    ]
    model_breakdown.sort(key=lambda b: b.cost, reverse=True)

    activity_heatmap = [
        HeatmapCell(hour=hour, day_of_week=dow, cost=cost)
        for (hour, dow), cost in heatmap.items()
    ]

    elapsed_secs = float(int((now - month_start).total_seconds()))
    month_days = days_in_month(now.year, now.month)
    projected_cost = (
        month.cost / elapsed_secs * month_days * 86400.0 if elapsed_secs > 0.0 else 0.0
    )

    return OverviewResponse(
        today=today,
        week=week,
        month=month,
        projected=CostSummary(cost=projected_cost),
        daily_spend=daily_spend,
        hourly_spend=hourly,
        model_series=model_series,
        cost_breakdown=breakdown,
        model_breakdown=model_breakdown,
        activity_heatmap=activity_heatmap,
        recent_sessions=_build_sessions(state, _RECENT_SESSIONS),
    )


def build_sessions(state: AppState) -> list[SessionSummary]:
    """Every session, most recently active first."""
    return _build_sessions(state, None)


def _build_sessions(state: AppState, limit: int | None) -> list[SessionSummary]:
    sessions: dict[str, SessionSummary] = {}

    for record in state.records:
        stamp = _rfc3339(record.timestamp)
        summary = sessions.get(record.session_id)
        if summary is None:
            summary = SessionSummary(
                id=record.session_id,
                project=record.project,
                model=record.model,
                last_active=stamp,
            )
            sessions[record.session_id] = summary
        summary.total_tokens += (
            record.input_tokens
            + record.output_tokens
            + record.cache_write_tokens
            + record.cache_read_tokens
        )
        summary.cost += record.total_cost
        if stamp > summary.last_active:
            summary.last_active = stamp
            summary.model = record.model

    ordered = sorted(sessions.values(), key=lambda s: s.last_active, reverse=True)
    return ordered if limit is None else ordered[:limit]


class _Tally:
    __slots__ = ("cost", "sessions", "models")

    def __init__(self) -> None:
        self.cost = 0.0
        self.sessions: set[str] = set()
        self.models: set[str] = set()

    def add(self, cost: float, record: UsageRecord) -> None:
        self.cost += cost
        self.sessions.add(record.session_id)
        self.models.add(record.model)


def build_projects(state: AppState) -> list[ProjectSummary]:
    """Spend per project and per nested repository, costliest first.

    A record attributed to several subprojects has its cost split evenly between them.
    """
    projects: dict[str, tuple[_Tally, dict[str, _Tally]]] = {}

    for record in state.records:
        tally, subs = projects.setdefault(record.project, (_Tally(), {}))
        tally.add(record.total_cost, record)
        if record.subprojects:
            share = record.total_cost / len(record.subprojects)
            for name in record.subprojects:
                subs.setdefault(name, _Tally()).add(share, record)

    result = []
    for name, (tally, subs) in projects.items():
        subprojects = [
            SubprojectSummary(
                name=sub_name,
                total_cost=sub.cost,
                sessions=len(sub.sessions),
                models=sorted(sub.models),
            )
            for sub_name, sub in subs.items()
        ]
        subprojects.sort(key=lambda s: s.total_cost, reverse=True)
        result.append(
            ProjectSummary(
                name=name,
                total_cost=tally.cost,
                sessions=len(tally.sessions),
                models=sorted(tally.models),
                subprojects=subprojects,
            )
        )
    result.sort(key=lambda p: p.total_cost, reverse=True)
    return result


def days_in_month(year: int, month: int) -> int:
    """Number of days in the given month."""
    first = date(year, month, 1)
    following = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return (following - first).days