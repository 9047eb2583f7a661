"""Application service orchestrating event sources and pure analytics."""

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .aggregator import aggregate_events
from .analytics import (
    active_users,
    compute_project_analytics,
    fill_missing_dates,
    merge_daily_counts,
    people_summary,
    sdk_status,
    user_journey,
)
from .config import Settings, get_settings
from .errors import DataUnavailable
from .filters import compile_filters, normalize_filters
from .models import Event, PropertyFilter
from .policy import DEFAULT_FUNNEL_STEPS, resolve_retention_event, to_utc, validate_funnel
from .ports import EventSource

logger = logging.getLogger(__name__)

FilterInput = Union[None, str, Iterable[Union[PropertyFilter, dict]]]
StepsInput = Union[None, str, Sequence[str]]

USER_EVENT_LIMIT = 500


class AnalyticsService:
    """Facade service that exposes project analytics independent of web frameworks."""

    def __init__(self, source: EventSource, settings: Optional[Settings] = None):
        self.source = source
        self.settings = settings or get_settings()

    def get_project_analytics(
        self,
        project_id: str,
        range_days: Optional[int] = None,
        retention_event: Optional[str] = None,
        filters: FilterInput = None,
        funnel_steps: StepsInput = None,
        now: Optional[datetime] = None,
    ) -> Dict:
        steps = validate_funnel(_split_steps(funnel_steps))
        property_filters = normalize_filters(filters)
        predicate = compile_filters(property_filters)
        range_days = self._range_days(range_days)
        start, end = normalize_period(range_days, now)
        previous_start = start - timedelta(days=range_days)

        started = time.monotonic()
        pool = ThreadPoolExecutor(max_workers=3, thread_name_prefix="prodmet-fetch")
        try:
            events_future = pool.submit(self.source.fetch_events, project_id, start)
            config_future = pool.submit(self.source.fetch_project_config, project_id)
            previous_future = pool.submit(
                self.source.fetch_comparison_totals, project_id, previous_start, start, predicate
            )
            deadline = started + self.settings.fetch_timeout_seconds
            events = _result(events_future, deadline, "events")
            config = _result(config_future, deadline, "project config")
            try:
                previous = _result(previous_future, deadline, "comparison totals")
            except DataUnavailable as exc:
                logger.warning("Comparison window unavailable for project %s: %s", project_id, exc)
                previous = None
        finally:
            pool.shutdown(wait=False)

        scoped = [event for event in _before(events, end) if predicate(event.properties)]
        retention = resolve_retention_event(retention_event, config)
        acc = aggregate_events(
            scoped,
            funnel_steps=steps,
            retention_event=retention,
            primary_goal=config.primary_goal if config else None,
        )
        logger.debug(
            "Aggregated %d of %d events for project %s in %.1f ms",
            len(scoped),
            len(events),
            project_id,
            (time.monotonic() - started) * 1000,
        )

        return compute_project_analytics(
            acc,
            project_id=project_id,
            range_days=range_days,
            config=config,
            filters=property_filters,
            previous=previous,
            start_date=start,
            end_date=end,
        )

    def get_people(
        self,
        project_id: str,
        range_days: Optional[int] = None,
        limit: int = 50,
        now: Optional[datetime] = None,
    ) -> Dict:
        start, end = normalize_period(self._range_days(range_days), now)
        events = self._fetch("events", self.source.fetch_events, project_id, start)
        acc = aggregate_events(
            _before(events, end),
            funnel_steps=DEFAULT_FUNNEL_STEPS,
            retention_event=resolve_retention_event(None, None),
        )
        return {
            "people": people_summary(acc, limit=limit),
            "active_last_24h": active_users(acc, end - timedelta(hours=24)),
            "total_users": len(acc.all_users),
        }

    def get_user_journey(
        self,
        project_id: str,
        user_id: str,
        limit: int = USER_EVENT_LIMIT,
        now: Optional[datetime] = None,
    ) -> Dict:
        """Return one user's most recent events grouped into sessions."""
        end = to_utc(now) if now else datetime.now(timezone.utc)
        events = self._fetch("user events", self.source.fetch_user_events, project_id, user_id, limit)
        return user_journey(_before(events, end), user_id)

    def get_sdk_status(self, project_id: str, now: Optional[datetime] = None) -> Dict:
        end = to_utc(now) if now else datetime.now(timezone.utc)
        last_event = self._fetch("last event", self.source.fetch_last_event, project_id)
        return sdk_status(last_event, now=end)

    def get_workspace_views(
        self,
        project_ids: Iterable[str],
        days: int = 30,
        now: Optional[datetime] = None,
    ) -> Dict:
        start, end = normalize_period(days, now)
        per_project = []
        for project_id in project_ids:
            events = self._fetch("events", self.source.fetch_events, project_id, start)
            acc = aggregate_events(
                _before(events, end),
                funnel_steps=DEFAULT_FUNNEL_STEPS,
                retention_event=resolve_retention_event(None, None),
            )
            per_project.append(acc.views_by_date)

        series = fill_missing_dates(merge_daily_counts(per_project), days, end.date())
        return {
            "total_views": sum(point["count"] for point in series),
            "series": series,
        }

    def _range_days(self, range_days: Optional[int]) -> int:
        if not range_days or range_days < 1:
            return self.settings.default_range_days
        return int(range_days)

    def _fetch(self, what: str, fetch: Callable, *args):
        deadline = time.monotonic() + self.settings.fetch_timeout_seconds
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="prodmet-fetch")
        try:
            return _result(pool.submit(fetch, *args), deadline, what)
        finally:
            pool.shutdown(wait=False)


def normalize_period(range_days: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Return ``(start, end)`` covering ``range_days`` UTC calendar days.

    ``start`` is midnight of the oldest day so the window matches the
    gap-filled daily series, ``end`` is ``now``.
    """
    end_date = to_utc(now) if now else datetime.now(timezone.utc)
    first_day = end_date.date() - timedelta(days=range_days - 1)
    start_date = datetime(first_day.year, first_day.month, first_day.day, tzinfo=timezone.utc)
    return start_date, end_date


def _before(events: Iterable[Event], end: datetime) -> List[Event]:
    return [event for event in events if to_utc(event.created_at) < end]


def _split_steps(steps: StepsInput) -> Sequence[str]:
    if steps is None or steps == "":
        return DEFAULT_FUNNEL_STEPS
    if isinstance(steps, str):
        return steps.split(",")
    return list(steps)


def _result(future: Future, deadline: float, what: str):
    try:
        return future.result(timeout=max(deadline - time.monotonic(), 0))
    except FuturesTimeoutError as exc:
        raise DataUnavailable(f"Timed out fetching {what}") from exc
