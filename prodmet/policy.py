"""
Funnel advancement and retention cohort rules.

Both trackers are first-touch: only a user's first qualifying event counts,
later matches are ignored. Funnel steps advance strictly in order and a step
must happen strictly after the previous one.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Mapping, Optional, Sequence, Set

from .errors import InvalidFunnelConfiguration
from .models import ProjectConfig

DEFAULT_FUNNEL_STEPS = ("page_view", "signup_started", "signup_completed")
DEFAULT_RETENTION_EVENT = "signup_completed"
RETENTION_OFFSETS = (1, 3, 7)
MIN_FUNNEL_STEPS = 2


def validate_funnel(steps: Sequence[str]) -> tuple:
    cleaned = tuple(step.strip() for step in steps if step and step.strip())
    if len(cleaned) < MIN_FUNNEL_STEPS:
        raise InvalidFunnelConfiguration()
    return cleaned


def resolve_retention_event(explicit: Optional[str], config: Optional[ProjectConfig]) -> str:
    """Explicit choice, then the project's primary goal, then the fallback."""
    if explicit:
        return explicit
    if config is not None and config.primary_goal:
        return config.primary_goal
    return DEFAULT_RETENTION_EVENT


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_of(value: datetime) -> date:
    return to_utc(value).date()


def day_key(value: datetime) -> str:
    """Calendar day (UTC) of a timestamp as ``YYYY-MM-DD``."""
    return day_of(value).isoformat()


class FunnelTracker:
    """Per-user ordered step advancement for one aggregation run."""

    def __init__(self, steps: Sequence[str]):
        self.steps = tuple(steps)
        self.reached: List[Set[str]] = [set() for _ in self.steps]
        self.step_times: Dict[str, Dict[int, datetime]] = {}
        self._positions: Dict[str, List[int]] = {}
        for index, name in enumerate(self.steps):
            self._positions.setdefault(name, []).append(index)

    def observe(self, user_id: str, event_name: str, at: datetime) -> None:
        positions = self._positions.get(event_name)
        if not positions:
            return

        times = self.step_times.setdefault(user_id, {})
        for index in positions:
            if index in times:
                continue
            if index > 0:
                previous = times.get(index - 1)
                if previous is None or not at > previous:
                    continue
            times[index] = at
            self.reached[index].add(user_id)

    def counts(self) -> List[int]:
        return [len(users) for users in self.reached]


class CohortTracker:
    """Rolling cohorts keyed by each user's first retention event."""

    def __init__(self, entry_event: str):
        self.entry_event = entry_event
        self.cohort_start: Dict[str, datetime] = {}

    def observe(self, user_id: str, event_name: str, at: datetime) -> None:
        if event_name == self.entry_event and user_id not in self.cohort_start:
            self.cohort_start[user_id] = at

    @property
    def size(self) -> int:
        return len(self.cohort_start)


def retained_count(
    cohort_start: Mapping[str, datetime],
    activity_by_user: Mapping[str, Set[str]],
    offset: int,
) -> int:
    """Count cohort users active exactly ``offset`` days after their own entry day."""
    retained = 0
    for user_id, started_at in cohort_start.items():
        target = (day_of(started_at) + timedelta(days=offset)).isoformat()
        if target in activity_by_user.get(user_id, ()):
            retained += 1
    return retained
