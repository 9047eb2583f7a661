"""Event source construction and selection at the request boundary."""

import logging
from typing import Optional

from sqlalchemy import create_engine

from ..config import Settings, get_settings
from ..errors import DataUnavailable
from ..ports import EventSource
from .fixture import FixtureEventSource
from .sqlalchemy_repo import SQLAlchemyEventSource

logger = logging.getLogger(__name__)


def build_event_source_from_settings(settings: Optional[Settings] = None) -> Optional[SQLAlchemyEventSource]:
    cfg = settings or get_settings()
    if not cfg.database_url:
        logger.info("No database URL configured; only the demo project is available")
        return None
    engine = create_engine(cfg.database_url, pool_pre_ping=True)
    return SQLAlchemyEventSource(engine)


def select_event_source(
    project_id: str,
    persisted: Optional[EventSource],
    fixture: Optional[EventSource] = None,
    demo_project_id: str = "demo",
) -> EventSource:
    """Route the demo sentinel project to the fixture, everything else to the store."""
    if project_id == demo_project_id:
        return fixture if fixture is not None else FixtureEventSource()
    if persisted is None:
        raise DataUnavailable("No event store is configured")
    return persisted
