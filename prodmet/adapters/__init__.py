"""Adapters for integrating ProdMet with storage and demo data."""

from .factory import build_event_source_from_settings, select_event_source
from .fixture import FixtureEventSource
from .sqlalchemy_repo import SQLAlchemyEventSource

__all__ = [
    "FixtureEventSource",
    "SQLAlchemyEventSource",
    "build_event_source_from_settings",
    "select_event_source",
]
