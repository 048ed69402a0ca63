"""Utility functions for SocialDB.

Timestamps are stored as fixed-width UTC strings
(``2024-01-15T10:30:00.000000Z``), so comparing two stored values as text
gives the same answer as comparing the instants. Helpers here convert between
that form, ``datetime`` objects and the looser inputs callers pass in.

The rest covers identifiers and reshaping of aggregated query columns.
"""

import uuid
from datetime import UTC, datetime

from dateutil import parser as dateutil_parser  # type: ignore[import-untyped]

STORED_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def as_utc(moment: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def parse_datetime(value: str | datetime | None) -> datetime | None:
    """Read a stored or caller-supplied timestamp as an aware UTC datetime.

    Strings go through ``dateutil``'s ISO parser, which also accepts the
    space-separated ``2024-01-15 10:30:00`` that SQLite's
    ``CURRENT_TIMESTAMP`` produces. Values without an offset are UTC.

    Raises:
        ValueError: The string is not an ISO 8601 timestamp
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(dateutil_parser.isoparse(value))


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_iso(moment: datetime | None) -> str | None:
    """Render a datetime in the stored timestamp format.

    Example:
        >>> format_iso(datetime(2024, 1, 15, 10, 30, tzinfo=UTC))
        '2024-01-15T10:30:00.000000Z'
    """
    if moment is None:
        return None
    return as_utc(moment).strftime(STORED_TIMESTAMP_FORMAT)


def utc_now_iso() -> str:
    """Current instant in the stored timestamp format (server-assigned times)."""
    return as_utc(utc_now()).strftime(STORED_TIMESTAMP_FORMAT)


def normalize_timestamp(value: str | datetime | None) -> str | None:
    """Render any accepted timestamp input in the stored string format."""
    return format_iso(parse_datetime(value))


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid.uuid4())


def split_ids(value: str | None) -> list[str]:
    """Split a GROUP_CONCAT column into a list of identifiers.

    Example:
        >>> split_ids("a,b")
        ['a', 'b']
        >>> split_ids(None)
        []
    """
    if not value:
        return []
    return [item for item in value.split(",") if item]


def direct_key(user_a: str, user_b: str) -> str:
    """Order-independent key identifying the direct conversation of two users.

    Example:
        >>> direct_key("b", "a") == direct_key("a", "b")
        True
    """
    first, second = sorted((user_a, user_b))
    return f"{first}:{second}"


def escape_like(query: str, escape: str = "\\") -> str:
    """Escape LIKE wildcards so the query matches as a literal substring.

    Example:
        >>> escape_like("50%") == "50" + "\\" + "%"
        True
    """
    return (
        query.replace(escape, escape * 2)
        .replace("%", f"{escape}%")
        .replace("_", f"{escape}_")
    )
