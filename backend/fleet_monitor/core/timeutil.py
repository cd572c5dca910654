"""Wire-format timestamps in the deployment's fixed local civil time.

The trail store keeps timestamps as zone-less ``YYYY-MM-DD HH:MM:SS`` strings
in local civil time (UTC+05:30 by default). Every value crossing that boundary
goes through this module so range bounds never drift by the zone offset.
"""

import datetime

from fleet_monitor.config import settings
from fleet_monitor.core.errors import InvalidQueryError

WIRE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOCAL_TZ = datetime.timezone(datetime.timedelta(minutes=settings.local_utc_offset_minutes))


def local_now() -> datetime.datetime:
    """Current local civil time as a naive datetime truncated to seconds."""
    now = datetime.datetime.now(LOCAL_TZ).replace(tzinfo=None)
    return now.replace(microsecond=0)


def to_local(value: datetime.datetime) -> datetime.datetime:
    """Convert an aware datetime to naive local civil time; naive values pass through."""
    if value.tzinfo is not None:
        value = value.astimezone(LOCAL_TZ).replace(tzinfo=None)
    return value


def format_wire_timestamp(value: datetime.datetime) -> str:
    return to_local(value).strftime(WIRE_FORMAT)


def parse_wire_timestamp(raw: str) -> datetime.datetime:
    """Parse a ``YYYY-MM-DD HH:MM:SS`` string as naive local civil time."""
    return datetime.datetime.strptime(raw, WIRE_FORMAT)


def parse_request_timestamp(raw: str) -> datetime.datetime:
    """Parse an inbound query bound into naive local civil time.

    Accepts the wire format or ISO-8601 (``T`` separator, fractional seconds,
    ``Z`` or ``+HH:MM`` suffix). Zone-qualified values are converted into local
    civil time; zone-less values are already local.
    """
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        value = datetime.datetime.fromisoformat(text)
    except ValueError:
        raise InvalidQueryError(f"Unrecognised timestamp: {raw!r}") from None
    return to_local(value).replace(microsecond=0)


def epoch_to_wire(seconds: float) -> str:
    """Seconds since the epoch -> wire-format local civil time."""
    value = datetime.datetime.fromtimestamp(seconds, tz=LOCAL_TZ)
    return value.strftime(WIRE_FORMAT)
