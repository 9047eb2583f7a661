"""SQLAlchemy event source adapter for ProdMet."""

import json
import logging
from datetime import datetime
from typing import Dict, Optional, Sequence

from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..errors import DataUnavailable
from ..models import ANONYMOUS_USER, PAGE_VIEW_EVENT, ComparisonTotals, Event, EventDefinition, ProjectConfig, PropertyValue
from ..ports import PropertyPredicate

logger = logging.getLogger(__name__)


class SQLAlchemyEventSource:
    """
    Fetches raw events from relational tables and maps them to domain models.

    Expected tables:
      - events(project_id, event_name, created_at, user_id, session_id, properties)
      - projects(id, primary_goal, goal_window, event_definitions)
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def fetch_events(self, project_id: str, since: datetime) -> Sequence[Event]:
        rows = self._execute(
            """
            SELECT event_name, created_at, user_id, session_id, properties
            FROM events
            WHERE project_id = :project_id AND created_at >= :since
            ORDER BY created_at ASC
            """,
            {"project_id": project_id, "since": since},
        )
        return [_row_to_event(row) for row in rows]

    def fetch_project_config(self, project_id: str) -> Optional[ProjectConfig]:
        rows = self._execute(
            """
            SELECT primary_goal, goal_window, event_definitions
            FROM projects
            WHERE id = :project_id
            """,
            {"project_id": project_id},
        )
        if not rows:
            return None

        row = rows[0]
        return ProjectConfig(
            primary_goal=row.primary_goal or None,
            goal_window=int(row.goal_window or 30),
            event_definitions=_parse_definitions(row.event_definitions),
        )

    def fetch_comparison_totals(
        self,
        project_id: str,
        start: datetime,
        end: datetime,
        predicate: PropertyPredicate,
    ) -> ComparisonTotals:
        rows = self._execute(
            """
            SELECT event_name, session_id, properties
            FROM events
            WHERE project_id = :project_id
              AND created_at >= :start_date
              AND created_at < :end_date
            """,
            {"project_id": project_id, "start_date": start, "end_date": end},
        )

        event_count = 0
        page_view_count = 0
        sessions = set()
        for row in rows:
            if not predicate(_parse_properties(row.properties)):
                continue
            event_count += 1
            if row.event_name == PAGE_VIEW_EVENT:
                page_view_count += 1
            if row.session_id:
                sessions.add(row.session_id)

        return ComparisonTotals(
            session_count=len(sessions),
            page_view_count=page_view_count,
            event_count=event_count,
        )

    def fetch_last_event(self, project_id: str) -> Optional[Event]:
        rows = self._execute(
            """
            SELECT event_name, created_at, user_id, session_id, properties
            FROM events
            WHERE project_id = :project_id
            ORDER BY created_at DESC
            LIMIT 1
            """,
            {"project_id": project_id},
        )
        return _row_to_event(rows[0]) if rows else None

    def fetch_user_events(self, project_id: str, user_id: str, limit: int = 500) -> Sequence[Event]:
        user_clause = "user_id IS NULL OR user_id = :user_id" if user_id == ANONYMOUS_USER else "user_id = :user_id"
        rows = self._execute(
            f"""
            SELECT event_name, created_at, user_id, session_id, properties
            FROM events
            WHERE project_id = :project_id AND ({user_clause})
            ORDER BY created_at DESC
            LIMIT :limit
            """,
            {"project_id": project_id, "user_id": user_id, "limit": int(limit)},
        )
        return [_row_to_event(row) for row in reversed(rows)]

    def _execute(self, query: str, params: Dict) -> list:
        statement = text(query)
        timestamps = [key for key, value in params.items() if isinstance(value, datetime)]
        if timestamps:
            statement = statement.bindparams(*(bindparam(key, type_=DateTime()) for key in timestamps))
        try:
            with self.engine.connect() as connection:
                return connection.execute(statement, params).fetchall()
        except SQLAlchemyError as exc:
            logger.error("Event store query failed: %s", exc)
            raise DataUnavailable("Event store is unavailable") from exc


def _row_to_event(row) -> Event:
    return Event(
        event_name=row.event_name,
        created_at=_parse_timestamp(row.created_at),
        user_id=row.user_id or None,
        session_id=row.session_id or None,
        properties=_parse_properties(row.properties),
    )


def _parse_timestamp(raw) -> datetime:
    if isinstance(raw, datetime):
        return raw
    value = str(raw).strip()
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise DataUnavailable(f"Event store returned an unreadable timestamp: {raw!r}") from exc


def _parse_json(raw):
    if isinstance(raw, (str, bytes)):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return None
    return raw


def _parse_properties(raw) -> Dict[str, PropertyValue]:
    parsed = _parse_json(raw)
    if not isinstance(parsed, dict):
        return {}
    return {
        str(key): value
        for key, value in parsed.items()
        if value is None or isinstance(value, (str, int, float, bool))
    }


def _parse_definitions(raw) -> Dict[str, EventDefinition]:
    parsed = _parse_json(raw)
    if isinstance(parsed, dict):
        parsed = [dict(value, name=key) for key, value in parsed.items() if isinstance(value, dict)]
    if not isinstance(parsed, list):
        return {}

    definitions: Dict[str, EventDefinition] = {}
    for item in parsed:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        name = str(item["name"])
        definitions[name] = EventDefinition(
            name=name,
            title=str(item.get("title") or name),
            category=item.get("category"),
            is_critical=bool(item.get("isCritical", item.get("is_critical", False))),
        )
    return definitions
