"""Property filter parsing and predicate compilation."""

import logging
from typing import Iterable, List, Optional, Union

from .models import PropertyFilter, PropertyValue, Properties, get_property
from .ports import PropertyPredicate

logger = logging.getLogger(__name__)

OPERATORS = ("equals", "contains")


def parse_filters(raw: Optional[str]) -> List[PropertyFilter]:
    """
    Parse the ``key:operator:value,key:operator:value`` transport format.

    Incomplete triples and unknown operators are dropped rather than failing
    the whole query. Values may themselves contain ``:``.
    """
    if not raw:
        return []

    filters: List[PropertyFilter] = []
    for chunk in raw.split(","):
        parts = chunk.split(":", 2)
        if len(parts) != 3:
            logger.debug("Dropping malformed filter %r", chunk)
            continue
        parsed = _build_filter(*parts)
        if parsed is not None:
            filters.append(parsed)
    return filters


def normalize_filters(
    filters: Union[None, str, Iterable[Union[PropertyFilter, dict]]],
) -> List[PropertyFilter]:
    """Accept the flat string, dicts, or PropertyFilter objects."""
    if filters is None or isinstance(filters, str):
        return parse_filters(filters)

    result: List[PropertyFilter] = []
    for item in filters:
        if isinstance(item, PropertyFilter):
            parsed = _build_filter(item.key, item.operator, item.value)
        elif isinstance(item, dict):
            parsed = _build_filter(item.get("key"), item.get("operator"), item.get("value"))
        else:
            parsed = None
        if parsed is not None:
            result.append(parsed)
    return result


def compile_filters(filters: Iterable[PropertyFilter]) -> PropertyPredicate:
    """Combine filters into one AND predicate over an event's properties."""
    checks = list(filters)
    if not checks:
        return _accept_all

    def predicate(properties: Properties) -> bool:
        return all(_matches(properties, item) for item in checks)

    return predicate


def _accept_all(properties: Properties) -> bool:
    return True


def _matches(properties: Properties, item: PropertyFilter) -> bool:
    actual = get_property(properties, item.key)
    if actual is None:
        return False
    text = _coerce(actual)
    if item.operator == "equals":
        return text == item.value
    if item.operator == "contains":
        return item.value in text
    return False


def _coerce(value: PropertyValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _build_filter(key, operator, value) -> Optional[PropertyFilter]:
    key = (key or "").strip() if isinstance(key, str) else ""
    operator = (operator or "").strip().lower() if isinstance(operator, str) else ""
    if not isinstance(value, str):
        value = ""
    if not key or not value or operator not in OPERATORS:
        logger.debug("Dropping incomplete filter key=%r operator=%r", key, operator)
        return None
    return PropertyFilter(key=key, operator=operator, value=value)
