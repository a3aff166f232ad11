"""Parsing of admin-submitted date strings into UTC instants.

Accepted shapes:

- date only: ``2024-06-01``
- local datetime: ``2024-06-01T08:30`` or ``2024-06-01T08:30:15``
- ISO-8601 with offset: ``2024-06-01T08:30:15.250Z`` or ``...+07:00``

Local shapes are read in the caller's configured timezone. Every result is
normalized to UTC.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pricerules.domain.errors import FieldError, ValidationError
from pricerules.domain.intervals import TemporalInterval

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LOCAL_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2})?$")
_ISO_WITH_OFFSET = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?(Z|[+-]\d{2}:\d{2})$"
)


def resolve_timezone(name: str) -> tzinfo:
    """Look up an IANA timezone name; ``UTC`` is always available."""
    if name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        msg = f"Unknown timezone: {name!r}"
        raise ValueError(msg) from exc


def parse_instant(
    value: str | datetime | date,
    *,
    tz: tzinfo = UTC,
    end_of_day: bool = False,
    field: str = "date",
) -> datetime:
    """Parse *value* to an aware UTC datetime.

    With *end_of_day*, a date-only value means "through the end of that
    day" and yields the following midnight, which is the exclusive end of
    a half-open window.

    Raises:
        ValidationError: If *value* is not a string, date or datetime, or
            matches none of the accepted shapes.
    """
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=tz)
        return aware.astimezone(UTC)
    if isinstance(value, date):
        return _from_date(value, tz=tz, end_of_day=end_of_day)
    if not isinstance(value, str):
        raise ValidationError.single(
            field, f"must be a date string, got {type(value).__name__} {value!r}"
        )

    text = value.strip()
    try:
        if _DATE_ONLY.match(text):
            return _from_date(date.fromisoformat(text), tz=tz, end_of_day=end_of_day)
        if _LOCAL_DATETIME.match(text):
            return datetime.fromisoformat(text).replace(tzinfo=tz).astimezone(UTC)
        if _ISO_WITH_OFFSET.match(text):
            return datetime.fromisoformat(text).astimezone(UTC)
    except ValueError as exc:
        raise ValidationError.single(field, f"invalid date {value!r}: {exc}") from exc
    raise ValidationError.single(
        field,
        f"unrecognized date {value!r}; expected YYYY-MM-DD, "
        "YYYY-MM-DDTHH:mm[:ss] or ISO-8601 with Z/offset",
    )


def _from_date(day: date, *, tz: tzinfo, end_of_day: bool) -> datetime:
    if end_of_day:
        day = day + timedelta(days=1)
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)


def parse_window(
    start: str | datetime | date,
    end: str | datetime | date | None,
    *,
    tz: tzinfo = UTC,
    start_field: str = "start",
    end_field: str = "end",
) -> TemporalInterval:
    """Parse a start/end pair into a :class:`TemporalInterval`.

    Both bounds are checked before raising so a form gets every error at once.
    """
    errors: list[FieldError] = []
    start_at: datetime | None = None
    end_at: datetime | None = None
    try:
        start_at = parse_instant(start, tz=tz, field=start_field)
    except ValidationError as exc:
        errors.extend(exc.errors)
    if end is not None and end != "":
        try:
            end_at = parse_instant(end, tz=tz, end_of_day=True, field=end_field)
        except ValidationError as exc:
            errors.extend(exc.errors)
    if errors:
        raise ValidationError(errors)
    assert start_at is not None
    if end_at is not None and end_at <= start_at:
        raise ValidationError.single(end_field, f"must be after {start_field}")
    return TemporalInterval(start=start_at, end=end_at)
