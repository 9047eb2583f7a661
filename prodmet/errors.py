"""Named failures surfaced to callers of the analytics engine."""


class ProdMetError(Exception):
    """Base class for analytics errors."""


class DataUnavailable(ProdMetError):
    """The event or config store could not be reached in time."""


class InvalidFunnelConfiguration(ProdMetError):
    """A funnel was requested with fewer than two steps."""

    def __init__(self, message: str = "A funnel needs at least 2 steps"):
        super().__init__(message)
        self.message = message
