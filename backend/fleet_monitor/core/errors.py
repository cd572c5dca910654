"""Exception hierarchy for the tracking backend."""


class FleetMonitorError(Exception):
    """Base exception for all fleet_monitor errors."""


class UpstreamQueryError(FleetMonitorError):
    """A live-store or trail-store call failed or returned a malformed structure."""

    def __init__(self, message: str, *, store: str = "") -> None:
        self.store = store
        super().__init__(message)


class MappingRefreshError(FleetMonitorError):
    """The relational mapping store could not be read."""

    def __init__(self, message: str, *, table: str = "") -> None:
        self.table = table
        super().__init__(message)


class MalformedLiveRecord(FleetMonitorError):
    """A single live-store field did not hold a usable vehicle payload."""

    def __init__(self, message: str, *, field: str = "") -> None:
        self.field = field
        super().__init__(message)


class InvalidQueryError(FleetMonitorError):
    """Inbound query parameters could not be interpreted."""
