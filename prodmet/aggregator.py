"""Single-pass aggregation over a scoped, time-ordered event sequence."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .models import (
    ANONYMOUS_USER,
    PAGE_VIEW_EVENT,
    UNKNOWN_PATH,
    Event,
    Session,
    get_str_property,
)
from .policy import CohortTracker, FunnelTracker, day_key


@dataclass
class Accumulator:
    """
    State built by one aggregation run.

    Owned by the run that creates it; callers read it after
    ``aggregate_events`` returns and never share it between runs.
    """

    funnel: FunnelTracker
    cohort: CohortTracker
    primary_goal: Optional[str] = None
    total_events: int = 0
    total_page_views: int = 0
    events_by_name: Dict[str, int] = field(default_factory=dict)
    views_by_date: Dict[str, int] = field(default_factory=dict)
    views_by_path: Dict[str, int] = field(default_factory=dict)
    sessions: Dict[str, Session] = field(default_factory=dict)
    activity_by_user: Dict[str, Set[str]] = field(default_factory=dict)
    goal_users: Set[str] = field(default_factory=set)
    all_users: Set[str] = field(default_factory=set)
    event_count_by_user: Dict[str, int] = field(default_factory=dict)
    last_seen_by_user: Dict[str, datetime] = field(default_factory=dict)
    last_event: Optional[Event] = None

    @property
    def funnel_steps(self) -> List[Set[str]]:
        return self.funnel.reached

    @property
    def cohort_start(self) -> Dict[str, datetime]:
        return self.cohort.cohort_start


def aggregate_events(
    events: Iterable[Event],
    funnel_steps: Sequence[str],
    retention_event: str,
    primary_goal: Optional[str] = None,
) -> Accumulator:
    """Traverse ``events`` once, in input order, and return the accumulated state."""
    acc = Accumulator(
        funnel=FunnelTracker(funnel_steps),
        cohort=CohortTracker(retention_event),
        primary_goal=primary_goal,
    )
    for event in events:
        _observe(acc, event)
    return acc


def _observe(acc: Accumulator, event: Event) -> None:
    user_id = event.user_id or ANONYMOUS_USER
    name = event.event_name
    at = event.created_at
    day = day_key(at)
    is_page_view = name == PAGE_VIEW_EVENT

    acc.total_events += 1
    acc.events_by_name[name] = acc.events_by_name.get(name, 0) + 1

    acc.all_users.add(user_id)
    acc.activity_by_user.setdefault(user_id, set()).add(day)
    acc.event_count_by_user[user_id] = acc.event_count_by_user.get(user_id, 0) + 1
    last_seen = acc.last_seen_by_user.get(user_id)
    if last_seen is None or at > last_seen:
        acc.last_seen_by_user[user_id] = at
    if acc.last_event is None or at >= acc.last_event.created_at:
        acc.last_event = event

    acc.cohort.observe(user_id, name, at)
    if acc.primary_goal and name == acc.primary_goal:
        acc.goal_users.add(user_id)

    path = get_str_property(event.properties, "path")
    if is_page_view:
        acc.total_page_views += 1
        acc.views_by_date[day] = acc.views_by_date.get(day, 0) + 1
        key = path or UNKNOWN_PATH
        acc.views_by_path[key] = acc.views_by_path.get(key, 0) + 1

    if event.session_id:
        session = acc.sessions.get(event.session_id)
        if session is None:
            session = Session(start=at, end=at)
            acc.sessions[event.session_id] = session
        if at < session.start:
            session.start = at
        if at > session.end:
            session.end = at
        if is_page_view and path:
            session.pages.append(path)

    acc.funnel.observe(user_id, name, at)
