"""In-memory demo dataset served behind the EventSource interface."""

from datetime import datetime, timedelta, timezone
from random import Random
from typing import List, Optional, Sequence

from ..models import ANONYMOUS_USER, PAGE_VIEW_EVENT, ComparisonTotals, Event, EventDefinition, ProjectConfig
from ..policy import to_utc
from ..ports import PropertyPredicate

DEMO_DAYS = 30
DEMO_PATHS = ("/", "/pricing", "/docs")
DEMO_COUNTRIES = ("US", "IN", "DE")
DEMO_COMPARISON_FACTOR = 0.85

DEMO_CONFIG = ProjectConfig(
    primary_goal="signup_completed",
    goal_window=30,
    event_definitions={
        "signup_completed": EventDefinition(
            name="signup_completed", title="Sign Up Success", category="conversion", is_critical=True
        ),
        "page_view": EventDefinition(name="page_view", title="Page View", category="traffic"),
    },
)


class FixtureEventSource:
    """
    Serves a generated dataset for onboarding and demo projects.

    Every project id gets the same data. Prior-window totals are not queried,
    they are the current window's totals scaled by ``comparison_factor``.
    """

    def __init__(
        self,
        events: Optional[Sequence[Event]] = None,
        config: ProjectConfig = DEMO_CONFIG,
        comparison_factor: float = DEMO_COMPARISON_FACTOR,
        now: Optional[datetime] = None,
        seed: int = 42,
    ):
        if events is None:
            events = build_demo_events(now=now, seed=seed)
        self.events = sorted(events, key=lambda event: to_utc(event.created_at))
        self.config = config
        self.comparison_factor = comparison_factor

    def fetch_events(self, project_id: str, since: datetime) -> Sequence[Event]:
        since = to_utc(since)
        return [event for event in self.events if to_utc(event.created_at) >= since]

    def fetch_project_config(self, project_id: str) -> Optional[ProjectConfig]:
        return self.config

    def fetch_comparison_totals(
        self,
        project_id: str,
        start: datetime,
        end: datetime,
        predicate: PropertyPredicate,
    ) -> ComparisonTotals:
        current_start = to_utc(end)
        current_end = current_start + (current_start - to_utc(start))

        event_count = 0
        page_view_count = 0
        sessions = set()
        for event in self.events:
            at = to_utc(event.created_at)
            if not current_start <= at < current_end or not predicate(event.properties):
                continue
            event_count += 1
            if event.event_name == PAGE_VIEW_EVENT:
                page_view_count += 1
            if event.session_id:
                sessions.add(event.session_id)

        return ComparisonTotals(
            session_count=self._scale(len(sessions)),
            page_view_count=self._scale(page_view_count),
            event_count=self._scale(event_count),
        )

    def fetch_last_event(self, project_id: str) -> Optional[Event]:
        return self.events[-1] if self.events else None

    def fetch_user_events(self, project_id: str, user_id: str, limit: int = 500) -> Sequence[Event]:
        matched = [event for event in self.events if (event.user_id or ANONYMOUS_USER) == user_id]
        return matched[-limit:] if limit > 0 else []

    def _scale(self, value: int) -> int:
        return int(round(value * self.comparison_factor))


def build_demo_events(now: Optional[datetime] = None, seed: int = 42) -> List[Event]:
    """Traffic waves with quieter weekends plus signups on about a fifth of sessions."""
    rng = Random(seed)
    now = to_utc(now) if now else datetime.now(timezone.utc)

    events: List[Event] = []
    session_firsts = {}
    for days_ago in range(DEMO_DAYS, -1, -1):
        day = now - timedelta(days=days_ago)
        is_weekend = day.weekday() >= 5
        volume = (50 if is_weekend else 150) + rng.randrange(50)
        for index in range(volume):
            session_id = f"session_{days_ago}_{index // 5}"
            user_id = f"user_{index // 10}"
            created_at = day - timedelta(minutes=rng.randrange(1440))
            events.append(
                Event(
                    event_name=PAGE_VIEW_EVENT,
                    created_at=created_at,
                    user_id=user_id,
                    session_id=session_id,
                    properties={
                        "path": rng.choice(DEMO_PATHS),
                        "country": rng.choice(DEMO_COUNTRIES),
                        "url": "https://demo.example.com",
                    },
                )
            )
            first = session_firsts.get(session_id)
            if first is None or created_at < first[0]:
                session_firsts[session_id] = (created_at, user_id)

    for session_id, (first_at, user_id) in sorted(session_firsts.items()):
        if rng.random() <= 0.8:
            continue
        plan = rng.choice(("free", "pro"))
        events.append(
            Event(
                event_name="signup_started",
                created_at=first_at + timedelta(minutes=1),
                user_id=user_id,
                session_id=session_id,
                properties={"plan": plan},
            )
        )
        if rng.random() < 0.6:
            events.append(
                Event(
                    event_name="signup_completed",
                    created_at=first_at + timedelta(minutes=3),
                    user_id=user_id,
                    session_id=session_id,
                    properties={"plan": plan},
                )
            )

    events.sort(key=lambda event: event.created_at)
    return events
