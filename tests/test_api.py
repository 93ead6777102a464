import calendar
import time
from datetime import datetime, timedelta, timezone

import pytest

from cctrack.api import build_overview, build_projects, build_sessions, days_in_month
from cctrack.models import AppState, UsageRecord


@pytest.fixture(autouse=True)
def utc_local_clock(monkeypatch):
    monkeypatch.setenv("TZ", "UTC")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def make_record(
    session_id="s1",
    project="org/app",
    model="claude-sonnet-4",
    timestamp=datetime(2026, 3, 31, 10, 0, tzinfo=timezone.utc),
    total_cost=1.0,
    input_tokens=10,
    output_tokens=20,
    cache_write_tokens=0,
    cache_read_tokens=0,
    subprojects=None,
    request_id="r",
):
    return UsageRecord(
        request_id=request_id,
        session_id=session_id,
        project=project,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_write_tokens=cache_write_tokens,
        cache_read_tokens=cache_read_tokens,
        cost_input=total_cost / 2,
        cost_output=total_cost / 2,
        cost_cache_write=0.0,
        cost_cache_read=0.0,
        total_cost=total_cost,
        timestamp=timestamp,
        subprojects=list(subprojects or []),
    )


NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("year", [2023, 2024, 2026, 2100])
@pytest.mark.parametrize("month", range(1, 13))
def test_days_in_month_matches_calendar(year, month):
    assert days_in_month(year, month) == calendar.monthrange(year, month)[1]


def test_sessions_aggregate_tokens_and_cost():
    records = [
        make_record(session_id="a", total_cost=1.5, input_tokens=3, output_tokens=4,
                    cache_write_tokens=5, cache_read_tokens=6),
        make_record(session_id="a", total_cost=0.5, input_tokens=1, output_tokens=1,
                    timestamp=datetime(2026, 3, 31, 11, 0, tzinfo=timezone.utc)),
    ]
    sessions = build_sessions(AppState(records=records))
    assert len(sessions) == 1
    assert sessions[0].id == "a"
    assert sessions[0].total_tokens == (3 + 4 + 5 + 6) + (1 + 1)
    assert sessions[0].cost == pytest.approx(2.0)


def test_session_last_active_is_rfc3339_and_model_follows_latest():
    records = [
        make_record(session_id="a", model="claude-opus-4",
                    timestamp=datetime(2026, 3, 31, 0, 1, tzinfo=timezone.utc)),
        make_record(session_id="a", model="claude-haiku-4",
                    timestamp=datetime(2026, 3, 31, 0, 0, tzinfo=timezone.utc)),
    ]
    (session,) = build_sessions(AppState(records=records))
    assert session.last_active == "2026-03-31T00:01:00+00:00"
    assert session.model == "claude-opus-4"


def test_sessions_sorted_most_recent_first():
    records = [
        make_record(session_id=f"s{i}", timestamp=NOW - timedelta(hours=i))
        for i in (3, 1, 2)
    ]
    ids = [s.id for s in build_sessions(AppState(records=records))]
    assert ids == ["s1", "s2", "s3"]


def test_projects_split_subproject_cost_and_sort():
    records = [
        make_record(project="org/big", session_id="x", model="m1", total_cost=4.0,
                    subprojects=["repo-a", "repo-b"]),
        make_record(project="org/big", session_id="y", model="m2", total_cost=2.0,
                    subprojects=["repo-a"]),
        make_record(project="org/small", session_id="z", total_cost=1.0),
    ]
    projects = build_projects(AppState(records=records))
    assert [p.name for p in projects] == ["org/big", "org/small"]
    big = projects[0]
    assert big.total_cost == pytest.approx(6.0)
    assert big.sessions == 2
    assert big.models == ["m1", "m2"]
    assert [s.name for s in big.subprojects] == ["repo-a", "repo-b"]
    assert big.subprojects[0].total_cost == pytest.approx(4.0)
    assert big.subprojects[1].total_cost == pytest.approx(2.0)
    assert big.subprojects[0].sessions == 2
    assert projects[1].subprojects == []
    assert sum(s.total_cost for s in big.subprojects) == pytest.approx(big.total_cost)


def test_overview_period_summaries():
    records = [
        make_record(timestamp=datetime(2026, 3, 31, 10, tzinfo=timezone.utc), total_cost=1.0),
        make_record(timestamp=datetime(2026, 3, 29, 10, tzinfo=timezone.utc), total_cost=2.0),
        make_record(timestamp=datetime(2026, 3, 2, 10, tzinfo=timezone.utc), total_cost=4.0),
        make_record(timestamp=datetime(2026, 2, 20, 10, tzinfo=timezone.utc), total_cost=8.0),
    ]
    overview = build_overview(AppState(records=records), now=NOW)
    assert overview.today.cost == pytest.approx(1.0)
    assert overview.week.cost == pytest.approx(1.0 + 2.0)
    assert overview.month.cost == pytest.approx(1.0 + 2.0 + 4.0)
    assert overview.today.input_tokens == 10
    assert overview.month.output_tokens == 3 * 20
    total = 1.0 + 2.0 + 4.0 + 8.0
    assert sum(overview.hourly_spend) == pytest.approx(total)
    assert overview.cost_breakdown.input + overview.cost_breakdown.output == pytest.approx(total)


def test_overview_daily_window_and_heatmap():
    records = [make_record(timestamp=datetime(2026, 3, 31, 10, tzinfo=timezone.utc), total_cost=1.5)]
    overview = build_overview(AppState(records=records), now=NOW)
    assert len(overview.daily_spend) == 14
    assert overview.daily_spend[-1].date == "2026-03-31"
    assert overview.daily_spend[-1].cost == pytest.approx(1.5)
    assert overview.daily_spend[0].date == "2026-03-18"
    assert len(overview.hourly_spend) == 24
    assert overview.hourly_spend[10] == pytest.approx(1.5)
    (cell,) = overview.activity_heatmap
    assert (cell.hour, cell.day_of_week) == (10, 2)
    assert cell.cost == pytest.approx(1.5)


def test_overview_projection_at_half_month():
    now = datetime(2026, 4, 16, tzinfo=timezone.utc)
    records = [make_record(timestamp=datetime(2026, 4, 5, tzinfo=timezone.utc), total_cost=3.0)]
    overview = build_overview(AppState(records=records), now=now)
    assert overview.projected.cost == pytest.approx(2 * 3.0)


def test_overview_model_breakdown_and_series():
    records = [
        make_record(model="claude-opus-4", session_id="a", total_cost=3.0),
        make_record(model="claude-opus-4", session_id="b", total_cost=3.0),
        make_record(model="claude-haiku-4", session_id="a", total_cost=2.0),
    ]
    overview = build_overview(AppState(records=records), now=NOW)
    models = [b.model for b in overview.model_breakdown]
    assert models == ["claude-opus-4", "claude-haiku-4"]
    assert overview.model_breakdown[0].sessions == 2
    assert overview.model_breakdown[1].sessions == 1
    assert sum(b.pct_of_total for b in overview.model_breakdown) == pytest.approx(100.0)
    assert [s.model for s in overview.model_series] == models
    for series in overview.model_series:
        assert len(series.daily) == 14
        assert len(series.hourly) == 24
    assert overview.model_series[0].daily[-1] == pytest.approx(6.0)


def test_overview_recent_sessions_limited():
    records = [
        make_record(session_id=f"s{i:02d}", timestamp=NOW - timedelta(minutes=i))
        for i in range(25)
    ]
    overview = build_overview(AppState(records=records), now=NOW)
    assert len(overview.recent_sessions) == 20
    assert overview.recent_sessions[0].id == "s00"
    assert len(build_sessions(AppState(records=records))) == 25


def test_overview_empty_state():
    overview = build_overview(AppState(), now=NOW)
    assert overview.today.cost == 0.0
    assert overview.projected.cost == 0.0
    assert overview.model_breakdown == []
    assert overview.activity_heatmap == []
    assert [d.cost for d in overview.daily_spend] == [0.0] * 14
    assert overview.hourly_spend == [0.0] * 24