"""UTC timestamp helpers.

Everything stored in the database is an ISO-8601 UTC string with
microseconds so that lexical order equals chronological order.
"""

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_db(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def from_db(value: str | None) -> datetime | None:
    if not value:
        return None
    return parse_timestamp(value)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse ISO-8601 text from git, gh or a transcript. Returns None on garbage."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
