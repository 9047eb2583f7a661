from datetime import date, datetime, timedelta, timezone

from prodmet.aggregator import aggregate_events
from prodmet.analytics import (
    active_users,
    breakdown_rows,
    compute_project_analytics,
    conversion_rate,
    empty_project_analytics,
    fill_missing_dates,
    key_event_counts,
    label_events,
    merge_daily_counts,
    people_summary,
    percent_change,
    retention_percentages,
    sdk_status,
    user_journey,
)
from prodmet.models import ComparisonTotals, Event, EventDefinition, ProjectConfig, PropertyFilter

FUNNEL = ("page_view", "signup_started", "signup_completed")


def _day(day, hour=12):
    return datetime(2026, 1, day, hour, tzinfo=timezone.utc)


def test_percent_change_zero_handling():
    assert percent_change(0, 0) == 0
    assert percent_change(5, 0) == 100
    assert percent_change(0, 5) == -100
    assert percent_change(150, 100) == 50


def test_fill_missing_dates_returns_consecutive_days_ending_today():
    today = date(2026, 1, 10)
    sparse = {"2026-01-08": 4, "2026-01-10": 2}

    series = fill_missing_dates(sparse, 5, today=today)

    assert [point["date"] for point in series] == [
        "2026-01-06",
        "2026-01-07",
        "2026-01-08",
        "2026-01-09",
        "2026-01-10",
    ]
    assert [point["count"] for point in series] == [0, 0, 4, 0, 2]


def test_fill_missing_dates_crosses_month_boundary():
    series = fill_missing_dates({}, 3, today=date(2026, 3, 1))

    assert [point["date"] for point in series] == ["2026-02-27", "2026-02-28", "2026-03-01"]
    assert fill_missing_dates({"2026-03-01": 1}, 0, today=date(2026, 3, 1)) == []


def test_fill_missing_dates_defaults_to_utc_today():
    series = fill_missing_dates({}, 30)

    assert len(series) == 30
    assert series[-1]["date"] == datetime.now(timezone.utc).date().isoformat()


def test_retention_uses_each_users_own_cohort_day():
    events = [
        Event("signup_completed", _day(10, 8), user_id="a"),
        Event("page_view", _day(11), user_id="a"),
        Event("page_view", _day(13), user_id="a"),
        Event("signup_completed", _day(12, 8), user_id="b"),
        Event("page_view", _day(13), user_id="b"),
    ]
    acc = aggregate_events(events, FUNNEL, retention_event="signup_completed")

    rows = {row["day"]: row for row in retention_percentages(acc, offsets=(1, 3, 7))}

    assert rows[1]["retained"] == 2
    assert rows[1]["percentage"] == 100
    assert rows[3]["retained"] == 1
    assert rows[3]["percentage"] == 50
    assert rows[7]["percentage"] == 0


def test_retention_with_unknown_event_is_empty_cohort():
    acc = aggregate_events([Event("page_view", _day(10), user_id="a")], FUNNEL, retention_event="never_seen")

    rows = retention_percentages(acc)

    assert [row["day"] for row in rows] == [1, 3, 7]
    assert all(row["percentage"] == 0 for row in rows)


def test_conversion_rate_falls_back_to_funnel():
    events = [
        Event("page_view", _day(10, 8), user_id="a"),
        Event("signup_started", _day(10, 9), user_id="a"),
        Event("signup_completed", _day(10, 10), user_id="a"),
        Event("page_view", _day(10, 8), user_id="b"),
        Event("page_view", _day(10, 8), user_id="c"),
        Event("page_view", _day(10, 8), user_id="d"),
    ]
    acc = aggregate_events(events, FUNNEL, retention_event="signup_completed")

    result = conversion_rate(acc, ProjectConfig())

    assert result["mode"] == "funnel"
    assert result["value"] == 25
    assert result["label"] == "Funnel Conversion"


def test_conversion_rate_is_zero_without_users():
    acc = aggregate_events([], FUNNEL, retention_event="signup_completed", primary_goal="signup_completed")

    assert conversion_rate(acc, ProjectConfig(primary_goal="signup_completed"))["value"] == 0
    assert conversion_rate(acc, None)["value"] == 0


def test_end_to_end_goal_conversion():
    events = []
    for index in range(100):
        day = 10 if index < 60 else 11
        events.append(
            Event(
                "page_view",
                _day(day, 1 + index % 20),
                user_id=f"user_{index % 10}",
                session_id=f"s_{index // 5}",
                properties={"path": "/"},
            )
        )
    events.append(Event("signup_completed", _day(11, 23), user_id="user_3", session_id="s_19"))
    config = ProjectConfig(
        primary_goal="signup_completed",
        goal_window=14,
        event_definitions={
            "signup_completed": EventDefinition("signup_completed", "Sign Up Success", is_critical=True),
        },
    )
    acc = aggregate_events(events, FUNNEL, retention_event="signup_completed", primary_goal="signup_completed")

    result = compute_project_analytics(
        acc,
        project_id="p1",
        range_days=7,
        config=config,
        previous=ComparisonTotals(session_count=10, page_view_count=80, event_count=80),
        start_date=_day(5),
        end_date=_day(12),
    )

    assert result["kpis"]["conversion_rate"]["value"] == 10.0
    assert result["kpis"]["conversion_rate"]["label"] == "Conversion: Sign Up Success"
    assert result["kpis"]["conversion_rate"]["goal_window_days"] == 14
    assert result["kpis"]["page_views"]["value"] == 100
    assert result["kpis"]["page_views"]["change"] == 25
    assert result["kpis"]["sessions"]["value"] == 20
    assert result["kpis"]["sessions"]["change"] == 100
    assert result["kpis"]["comparison_available"] is True
    assert set(acc.views_by_date) == {"2026-01-10", "2026-01-11"}
    assert sum(acc.views_by_date.values()) == 100
    assert len(result["views_by_date"]) == 7
    assert result["views_by_date"][-1] == {"date": "2026-01-12", "count": 0}
    assert result["key_events"] == [{"event_name": "signup_completed", "label": "Sign Up Success", "count": 1}]
    assert result["retention"]["cohort_size"] == 1
    assert [step["users"] for step in result["funnel"]["steps"]] == [10, 0, 0]


def test_compute_project_analytics_without_comparison():
    acc = aggregate_events([Event("page_view", _day(10), user_id="a")], FUNNEL, retention_event="x")

    result = compute_project_analytics(
        acc,
        project_id="p1",
        range_days=3,
        filters=[PropertyFilter("plan", "equals", "pro")],
        end_date=_day(10),
    )

    assert result["kpis"]["sessions"]["change"] is None
    assert result["kpis"]["page_views"]["change"] is None
    assert result["kpis"]["comparison_available"] is False
    assert result["filters"] == [{"key": "plan", "operator": "equals", "value": "pro"}]
    assert result["kpis"]["conversion_rate"]["goal_window_days"] is None


def test_breakdowns_are_sorted_and_labelled():
    config = ProjectConfig(
        event_definitions={"page_view": EventDefinition("page_view", "Page View", category="traffic")}
    )

    rows = label_events({"click": 2, "page_view": 5, "signup": 2}, config)

    assert [row["event_name"] for row in rows] == ["page_view", "click", "signup"]
    assert rows[0]["label"] == "Page View"
    assert rows[0]["category"] == "traffic"
    assert rows[1]["label"] == "click"
    assert breakdown_rows({"/a": 1, "/b": 3}, "path") == [{"path": "/b", "count": 3}, {"path": "/a", "count": 1}]


def test_key_event_counts_include_unseen_critical_events():
    config = ProjectConfig(
        event_definitions={
            "purchase": EventDefinition("purchase", "Purchase", is_critical=True),
            "signup": EventDefinition("signup", "Signup", is_critical=True),
            "page_view": EventDefinition("page_view", "Page View"),
        }
    )

    rows = key_event_counts({"signup": 3, "page_view": 10}, config)

    assert rows == [
        {"event_name": "signup", "label": "Signup", "count": 3},
        {"event_name": "purchase", "label": "Purchase", "count": 0},
    ]
    assert key_event_counts({"signup": 3}, None) == []


def test_sdk_status_thresholds_and_environment():
    now = _day(10)

    live = sdk_status(Event("page_view", now - timedelta(minutes=2), properties={"url": "http://localhost:3000"}), now)
    idle = sdk_status(Event("page_view", now - timedelta(minutes=30), properties={"host": "app.example.com"}), now)
    gone = sdk_status(Event("page_view", now - timedelta(hours=3)), now)

    assert live["status"] == "live"
    assert live["environment"] == "development"
    assert idle["status"] == "idle"
    assert idle["environment"] == "production"
    assert gone["status"] == "disconnected"
    assert sdk_status(None, now)["status"] == "no_data"


def test_people_summary_orders_by_last_seen():
    events = [
        Event("page_view", _day(10), user_id="a"),
        Event("page_view", _day(11), user_id=None),
        Event("page_view", _day(12), user_id="a"),
        Event("page_view", _day(9), user_id="b"),
    ]
    acc = aggregate_events(events, FUNNEL, retention_event="x")

    people = people_summary(acc, limit=2)

    assert [person["user_id"] for person in people] == ["a", "anonymous"]
    assert people[0]["event_count"] == 2
    assert people[1]["identified"] is False
    assert active_users(acc, _day(11)) == 2


def test_merge_daily_counts_sums_projects():
    merged = merge_daily_counts([{"2026-01-01": 2}, {"2026-01-01": 3, "2026-01-02": 1}])

    assert merged == {"2026-01-01": 5, "2026-01-02": 1}


def test_empty_window_returns_zeroed_record_with_same_shape():
    config = ProjectConfig(
        primary_goal="signup_completed",
        goal_window=14,
        event_definitions={
            "signup_completed": EventDefinition("signup_completed", "Sign Up Success", is_critical=True),
        },
    )
    previous = ComparisonTotals(session_count=4, page_view_count=10, event_count=12)
    populated = compute_project_analytics(
        aggregate_events([Event("page_view", _day(10), user_id="a", session_id="s1")], FUNNEL, "signup_completed"),
        project_id="p1",
        range_days=3,
        config=config,
        end_date=_day(10),
    )

    result = compute_project_analytics(
        aggregate_events([], FUNNEL, "signup_completed"),
        project_id="p1",
        range_days=3,
        config=config,
        previous=previous,
        end_date=_day(10),
    )

    assert result == empty_project_analytics(
        "p1",
        3,
        config=config,
        funnel_steps=FUNNEL,
        retention_event="signup_completed",
        previous=previous,
        end_date=_day(10),
    )
    assert result.keys() == populated.keys()
    assert result["kpis"].keys() == populated["kpis"].keys()
    assert result["kpis"]["sessions"]["change"] == -100
    assert result["kpis"]["page_views"]["change"] == -100
    assert result["kpis"]["conversion_rate"]["label"] == "Conversion: Sign Up Success"
    assert result["kpis"]["conversion_rate"]["goal_window_days"] == 14
    assert [point["count"] for point in result["views_by_date"]] == [0, 0, 0]
    assert result["key_events"] == [{"event_name": "signup_completed", "label": "Sign Up Success", "count": 0}]
    assert [step["users"] for step in result["funnel"]["steps"]] == [0, 0, 0]
    assert [row["day"] for row in result["retention"]["days"]] == [1, 3, 7]
    assert result["retention"] == populated["retention"]


def test_empty_project_analytics_without_comparison():
    result = empty_project_analytics("p1", 2, funnel_steps=("a", "b"))

    assert result["kpis"]["comparison_available"] is False
    assert result["kpis"]["sessions"]["change"] is None
    assert result["kpis"]["conversion_rate"]["explanation"] == "Users who reached 'b' after starting with 'a'."
    assert result["key_events"] == []
    assert len(result["kpis"]["page_views"]["series"]) == 2


def test_user_journey_groups_sessions_newest_first():
    events = [
        Event("page_view", _day(10, 9), user_id="a", session_id="s1", properties={"path": "/"}),
        Event("signup_started", _day(10, 9).replace(minute=42), user_id="a", session_id="s1"),
        Event("page_view", _day(11, 8), user_id="a", session_id="s2"),
        Event("identify", _day(9, 7), user_id="a"),
        Event("page_view", datetime(2026, 1, 10, 8, 30), user_id="a", session_id="s1"),
    ]

    journey = user_journey(events, "a")

    assert [session["session_id"] for session in journey["sessions"]] == ["s2", "s1", "unknown_session"]
    first = journey["sessions"][1]
    assert [event["event_name"] for event in first["events"]] == ["page_view", "page_view", "signup_started"]
    assert first["duration_minutes"] == 72
    assert first["duration_label"] == "72m"
    assert first["event_count"] == 3
    assert first["start"] == "2026-01-10T08:30:00+00:00"
    assert journey["sessions"][0]["duration_label"] == "< 1m"
    assert journey["total_events"] == 5
    assert journey["total_sessions"] == 3
    assert journey["first_seen"] == "2026-01-09T07:00:00+00:00"
    assert journey["last_seen"] == "2026-01-11T08:00:00+00:00"
    assert journey["identified"] is True


def test_user_journey_without_events():
    journey = user_journey([], "anonymous")

    assert journey["sessions"] == []
    assert journey["first_seen"] is None
    assert journey["last_seen"] is None
    assert journey["total_events"] == 0
    assert journey["identified"] is False
