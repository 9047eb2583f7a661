"""Pure metric reducers that work on an aggregation's accumulated state."""

from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from .aggregator import Accumulator
from .models import ANONYMOUS_USER, ComparisonTotals, Event, ProjectConfig, PropertyFilter, get_str_property
from .policy import RETENTION_OFFSETS, day_key, retained_count, to_utc

LIVE_MINUTES = 5
IDLE_MINUTES = 60
DEV_HOST_MARKERS = ("localhost", "127.0.0.1")
UNKNOWN_SESSION = "unknown_session"


def session_count(acc: Accumulator) -> int:
    return len(acc.sessions)


def total_page_views(acc: Accumulator) -> int:
    return acc.total_page_views


def percent_change(current: float, previous: float) -> float:
    """
    Relative change in percent.

    Going from nothing to something is reported as +100 rather than infinite.
    """
    if previous == 0:
        return 0.0 if current == 0 else 100.0
    return (current - previous) / previous * 100


def conversion_rate(acc: Accumulator, config: Optional[ProjectConfig] = None) -> Dict:
    """Goal-based conversion when a primary goal is set, else funnel completion."""
    goal = config.primary_goal if config else None
    if goal:
        total_users = len(acc.all_users)
        value = len(acc.goal_users) * 100 / total_users if total_users > 0 else 0.0
        label = config.label_for(goal)
        return {
            "value": value,
            "label": f"Conversion: {label}",
            "explanation": f"Share of users who triggered '{label}' at least once.",
            "mode": "goal",
        }

    steps = acc.funnel.steps
    first = len(acc.funnel_steps[0]) if steps else 0
    last = len(acc.funnel_steps[-1]) if steps else 0
    value = last * 100 / first if first > 0 else 0.0
    return {
        "value": value,
        "label": "Funnel Conversion",
        "explanation": (
            f"Users who reached '{steps[-1]}' after starting with '{steps[0]}'."
            if steps
            else "No funnel configured."
        ),
        "mode": "funnel",
    }


def retention_percentages(
    acc: Accumulator,
    offsets: Sequence[int] = RETENTION_OFFSETS,
) -> List[Dict]:
    cohort_size = acc.cohort.size
    rows = []
    for offset in offsets:
        retained = retained_count(acc.cohort_start, acc.activity_by_user, offset)
        rows.append(
            {
                "day": offset,
                "retained": retained,
                "percentage": retained * 100 / cohort_size if cohort_size > 0 else 0.0,
            }
        )
    return rows


def fill_missing_dates(
    sparse: Mapping[str, int],
    days: int,
    today: Optional[date] = None,
) -> List[Dict]:
    """Return ``days`` consecutive calendar days ending ``today`` with 0 for gaps."""
    if days <= 0:
        return []
    if today is None:
        today = datetime.now(timezone.utc).date()
    first = today - timedelta(days=days - 1)
    series = []
    for index in range(days):
        key = (first + timedelta(days=index)).isoformat()
        series.append({"date": key, "count": sparse.get(key, 0)})
    return series


def sessions_by_date(acc: Accumulator) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for session in acc.sessions.values():
        key = day_key(session.start)
        counts[key] = counts.get(key, 0) + 1
    return counts


def merge_daily_counts(series: Iterable[Mapping[str, int]]) -> Dict[str, int]:
    merged: Dict[str, int] = {}
    for counts in series:
        for key, value in counts.items():
            merged[key] = merged.get(key, 0) + value
    return merged


def breakdown_rows(counts: Mapping[str, int], key_name: str) -> List[Dict]:
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{key_name: key, "count": count} for key, count in ordered]


def label_events(events_by_name: Mapping[str, int], config: Optional[ProjectConfig]) -> List[Dict]:
    definitions = config.event_definitions if config else {}
    rows = []
    for row in breakdown_rows(events_by_name, "event_name"):
        definition = definitions.get(row["event_name"])
        rows.append(
            {
                "event_name": row["event_name"],
                "label": definition.title if definition else row["event_name"],
                "category": definition.category if definition else None,
                "is_critical": definition.is_critical if definition else False,
                "count": row["count"],
            }
        )
    return rows


def key_event_counts(events_by_name: Mapping[str, int], config: Optional[ProjectConfig]) -> List[Dict]:
    if config is None:
        return []
    rows = [
        {
            "event_name": name,
            "label": definition.title,
            "count": events_by_name.get(name, 0),
        }
        for name, definition in config.event_definitions.items()
        if definition.is_critical
    ]
    rows.sort(key=lambda row: (-row["count"], row["event_name"]))
    return rows


def funnel_rows(acc: Accumulator, config: Optional[ProjectConfig] = None) -> List[Dict]:
    return [
        {
            "step": step,
            "label": config.label_for(step) if config else step,
            "users": len(acc.funnel_steps[index]),
        }
        for index, step in enumerate(acc.funnel.steps)
    ]


def sdk_status(last_event: Optional[Event], now: Optional[datetime] = None) -> Dict:
    """Classify SDK connectivity from the most recent event."""
    if last_event is None:
        return {
            "status": "no_data",
            "last_seen": None,
            "minutes_since": None,
            "environment": None,
        }

    now = to_utc(now) if now else datetime.now(timezone.utc)
    seen = to_utc(last_event.created_at)
    minutes = (now - seen).total_seconds() / 60
    if minutes < LIVE_MINUTES:
        status = "live"
    elif minutes < IDLE_MINUTES:
        status = "idle"
    else:
        status = "disconnected"

    url = get_str_property(last_event.properties, "url") or get_str_property(last_event.properties, "host")
    is_dev = any(marker in url for marker in DEV_HOST_MARKERS)
    return {
        "status": status,
        "last_seen": seen.isoformat(),
        "minutes_since": minutes,
        "environment": "development" if is_dev else "production",
    }


def people_summary(acc: Accumulator, limit: int = 50) -> List[Dict]:
    ordered = sorted(acc.last_seen_by_user.items(), key=lambda item: to_utc(item[1]), reverse=True)
    return [
        {
            "user_id": user_id,
            "event_count": acc.event_count_by_user.get(user_id, 0),
            "last_seen": to_utc(last_seen).isoformat(),
            "identified": user_id != ANONYMOUS_USER,
        }
        for user_id, last_seen in ordered[:limit]
    ]


def active_users(acc: Accumulator, since: datetime) -> int:
    since = to_utc(since)
    return sum(1 for seen in acc.last_seen_by_user.values() if to_utc(seen) >= since)


def user_journey(events: Iterable[Event], user_id: str) -> Dict:
    """
    Rebuild one user's sessions from their raw events.

    Events without a session id are grouped under ``unknown_session``.
    Sessions are ordered newest first, events inside a session oldest first.
    """
    grouped: Dict[str, List[Event]] = {}
    for event in events:
        grouped.setdefault(event.session_id or UNKNOWN_SESSION, []).append(event)
    for session_events in grouped.values():
        session_events.sort(key=lambda event: to_utc(event.created_at))

    ordered = sorted(grouped.items(), key=lambda item: to_utc(item[1][0].created_at), reverse=True)
    sessions = []
    for session_id, session_events in ordered:
        start = to_utc(session_events[0].created_at)
        end = to_utc(session_events[-1].created_at)
        minutes = int((end - start).total_seconds() // 60)
        sessions.append(
            {
                "session_id": session_id,
                "start": start.isoformat(),
                "end": end.isoformat(),
                "duration_minutes": minutes,
                "duration_label": "< 1m" if minutes < 1 else f"{minutes}m",
                "event_count": len(session_events),
                "events": [
                    {
                        "event_name": event.event_name,
                        "created_at": to_utc(event.created_at).isoformat(),
                        "properties": dict(event.properties),
                    }
                    for event in session_events
                ],
            }
        )

    last_seen = max((to_utc(items[-1].created_at) for items in grouped.values()), default=None)
    return {
        "user_id": user_id,
        "identified": user_id != ANONYMOUS_USER,
        "first_seen": sessions[-1]["start"] if sessions else None,
        "last_seen": last_seen.isoformat() if last_seen else None,
        "total_events": sum(session["event_count"] for session in sessions),
        "total_sessions": len(sessions),
        "sessions": sessions,
    }


def compute_project_analytics(
    acc: Accumulator,
    project_id: str,
    range_days: int,
    config: Optional[ProjectConfig] = None,
    filters: Sequence[PropertyFilter] = (),
    previous: Optional[ComparisonTotals] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict:
    """Assemble the dashboard record from one aggregation run."""
    if acc.total_events == 0:
        return empty_project_analytics(
            project_id,
            range_days,
            config=config,
            filters=filters,
            funnel_steps=acc.funnel.steps,
            retention_event=acc.cohort.entry_event,
            previous=previous,
            start_date=start_date,
            end_date=end_date,
        )

    today = to_utc(end_date).date() if end_date else None
    sessions = session_count(acc)
    page_views = total_page_views(acc)
    retention = retention_percentages(acc)
    day1 = next((row["percentage"] for row in retention if row["day"] == 1), 0.0)
    conversion = conversion_rate(acc, config)

    return {
        "project_id": project_id,
        "period": _period(start_date, end_date, range_days),
        "filters": [item.as_dict() for item in filters],
        "kpis": {
            "sessions": {
                "value": sessions,
                "change": percent_change(sessions, previous.session_count) if previous else None,
                "series": fill_missing_dates(sessions_by_date(acc), range_days, today),
            },
            "page_views": {
                "value": page_views,
                "change": percent_change(page_views, previous.page_view_count) if previous else None,
                "series": fill_missing_dates(acc.views_by_date, range_days, today),
            },
            "conversion_rate": {
                "value": conversion["value"],
                "label": conversion["label"],
                "explanation": conversion["explanation"],
                "goal_window_days": config.goal_window if config and config.primary_goal else None,
            },
            "day1_retention": {"value": day1},
            "comparison_available": previous is not None,
        },
        "views_by_date": fill_missing_dates(acc.views_by_date, range_days, today),
        "views_by_path": breakdown_rows(acc.views_by_path, "path"),
        "events_by_name": label_events(acc.events_by_name, config),
        "key_events": key_event_counts(acc.events_by_name, config),
        "funnel": {"steps": funnel_rows(acc, config)},
        "retention": {
            "event": acc.cohort.entry_event,
            "cohort_size": acc.cohort.size,
            "days": retention,
        },
    }


def empty_project_analytics(
    project_id: str,
    range_days: int,
    config: Optional[ProjectConfig] = None,
    filters: Sequence[PropertyFilter] = (),
    funnel_steps: Sequence[str] = (),
    retention_event: Optional[str] = None,
    previous: Optional[ComparisonTotals] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Dict:
    """Return the dashboard record for a window without events."""
    today = to_utc(end_date).date() if end_date else None
    goal = config.primary_goal if config else None
    if goal:
        label = config.label_for(goal)
        conversion_label = f"Conversion: {label}"
        explanation = f"Share of users who triggered '{label}' at least once."
    else:
        conversion_label = "Funnel Conversion"
        explanation = (
            f"Users who reached '{funnel_steps[-1]}' after starting with '{funnel_steps[0]}'."
            if funnel_steps
            else "No funnel configured."
        )

    return {
        "project_id": project_id,
        "period": _period(start_date, end_date, range_days),
        "filters": [item.as_dict() for item in filters],
        "kpis": {
            "sessions": {
                "value": 0,
                "change": percent_change(0, previous.session_count) if previous else None,
                "series": fill_missing_dates({}, range_days, today),
            },
            "page_views": {
                "value": 0,
                "change": percent_change(0, previous.page_view_count) if previous else None,
                "series": fill_missing_dates({}, range_days, today),
            },
            "conversion_rate": {
                "value": 0.0,
                "label": conversion_label,
                "explanation": explanation,
                "goal_window_days": config.goal_window if goal else None,
            },
            "day1_retention": {"value": 0.0},
            "comparison_available": previous is not None,
        },
        "views_by_date": fill_missing_dates({}, range_days, today),
        "views_by_path": [],
        "events_by_name": [],
        "key_events": key_event_counts({}, config),
        "funnel": {
            "steps": [
                {"step": step, "label": config.label_for(step) if config else step, "users": 0}
                for step in funnel_steps
            ]
        },
        "retention": {
            "event": retention_event,
            "cohort_size": 0,
            "days": [{"day": offset, "retained": 0, "percentage": 0.0} for offset in RETENTION_OFFSETS],
        },
    }


def _period(start_date: Optional[datetime], end_date: Optional[datetime], range_days: int) -> Dict:
    return {
        "start": start_date.isoformat() if start_date else None,
        "end": end_date.isoformat() if end_date else None,
        "range_days": range_days,
    }
