"""Core domain models used by the analytics engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

PropertyValue = Union[str, int, float, bool, None]
Properties = Mapping[str, PropertyValue]

ANONYMOUS_USER = "anonymous"
PAGE_VIEW_EVENT = "page_view"
UNKNOWN_PATH = "unknown"


@dataclass(frozen=True)
class Event:
    """A single behavioral event captured by the SDK."""

    event_name: str
    created_at: datetime
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    properties: Properties = field(default_factory=dict)


@dataclass(frozen=True)
class EventDefinition:
    """Human-readable labeling for a raw event name."""

    name: str
    title: str
    category: Optional[str] = None
    is_critical: bool = False


@dataclass(frozen=True)
class ProjectConfig:
    """Project settings read once per aggregation run."""

    primary_goal: Optional[str] = None
    goal_window: int = 30
    event_definitions: Mapping[str, EventDefinition] = field(default_factory=dict)

    def label_for(self, event_name: str) -> str:
        definition = self.event_definitions.get(event_name)
        return definition.title if definition else event_name


@dataclass
class Session:
    """Events sharing one session id, rebuilt during a pass."""

    start: datetime
    end: datetime
    pages: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PropertyFilter:
    """One ``key:operator:value`` triple from the filter bar."""

    key: str
    operator: str
    value: str

    def as_dict(self) -> Dict[str, str]:
        return {"key": self.key, "operator": self.operator, "value": self.value}


@dataclass(frozen=True)
class ComparisonTotals:
    """Aggregate counts for one comparison window."""

    session_count: int
    page_view_count: int
    event_count: int


def get_property(properties: Any, key: str, default: PropertyValue = None) -> PropertyValue:
    """Return ``properties[key]`` or ``default`` when the bag or key is unusable."""
    if not isinstance(properties, Mapping):
        return default
    value = properties.get(key, default)
    if value is not None and not isinstance(value, (str, int, float, bool)):
        return default
    return value


def get_str_property(properties: Any, key: str, default: str = "") -> str:
    """Return a non-empty string property, else ``default``."""
    value = get_property(properties, key)
    if isinstance(value, str) and value:
        return value
    return default
