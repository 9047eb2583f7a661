"""ProdMet - single-pass product analytics for event streams."""

from .aggregator import Accumulator, aggregate_events
from .analytics import (
    compute_project_analytics,
    conversion_rate,
    empty_project_analytics,
    fill_missing_dates,
    percent_change,
    retention_percentages,
    user_journey,
)
from .errors import DataUnavailable, InvalidFunnelConfiguration, ProdMetError
from .filters import compile_filters, parse_filters
from .service import AnalyticsService

__all__ = [
    "Accumulator",
    "AnalyticsService",
    "DataUnavailable",
    "InvalidFunnelConfiguration",
    "ProdMetError",
    "aggregate_events",
    "compile_filters",
    "compute_project_analytics",
    "conversion_rate",
    "empty_project_analytics",
    "fill_missing_dates",
    "parse_filters",
    "percent_change",
    "retention_percentages",
    "user_journey",
]

__version__ = "0.1.0"
