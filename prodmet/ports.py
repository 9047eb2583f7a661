"""Port definitions for fetching project events from any source."""

from datetime import datetime
from typing import Callable, Optional, Protocol, Sequence

from .models import ComparisonTotals, Event, ProjectConfig, Properties

PropertyPredicate = Callable[[Properties], bool]


class EventSource(Protocol):
    """Source interface that adapters can implement for any backend."""

    def fetch_events(self, project_id: str, since: datetime) -> Sequence[Event]:
        """Return events created at or after ``since``, oldest first."""

    def fetch_project_config(self, project_id: str) -> Optional[ProjectConfig]:
        """Return the project's settings, or None when the project has none."""

    def fetch_comparison_totals(
        self,
        project_id: str,
        start: datetime,
        end: datetime,
        predicate: PropertyPredicate,
    ) -> ComparisonTotals:
        """Return totals for ``[start, end)`` restricted by ``predicate``."""

    def fetch_last_event(self, project_id: str) -> Optional[Event]:
        """Return the project's most recent event regardless of age."""

    def fetch_user_events(self, project_id: str, user_id: str, limit: int = 500) -> Sequence[Event]:
        """Return a user's most recent ``limit`` events, oldest first."""
