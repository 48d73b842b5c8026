"""Conversion between stored timestamp representations and ``datetime``.

Values read back from storage arrive in one of a closed set of shapes:

* ``datetime`` (timestamp columns),
* ``int``/``float`` epoch seconds, or a string holding one,
* an ISO-8601 string,
* a ``{"seconds": ..., "nanoseconds": ...}`` mapping (turn timestamps
  inside JSON documents, see :func:`to_storage_timestamp`).

Anything else raises :class:`TimestampFormatError`; there is no fallback
to the current time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Mapping, Union

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

TimestampValue = Union[datetime, int, float, str, Mapping[str, int]]


class TimestampFormatError(ValueError):
    """Raised for timestamp values outside the supported representations."""


def _from_epoch(seconds: float, microseconds: int = 0) -> datetime:
    # Non-finite or out-of-range epochs cannot become a datetime.
    try:
        return EPOCH + timedelta(seconds=seconds, microseconds=microseconds)
    except (OverflowError, ValueError) as exc:
        raise TimestampFormatError(f"Epoch value out of range: {seconds!r}") from exc


def _from_string(value: str) -> datetime:
    text = value.strip()
    try:
        return _from_epoch(float(text))
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise TimestampFormatError(f"Unrecognized timestamp string: {value!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_datetime(value: TimestampValue) -> datetime:
    """Return a timezone-aware UTC ``datetime`` for a stored timestamp value."""

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, bool):
        raise TimestampFormatError(f"Unrecognized timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, str):
        return _from_string(value)
    if isinstance(value, Mapping) and "seconds" in value and "nanoseconds" in value:
        seconds, nanoseconds = value["seconds"], value["nanoseconds"]
        if not isinstance(seconds, int) or not isinstance(nanoseconds, int):
            raise TimestampFormatError(f"Unrecognized timestamp value: {value!r}")
        return _from_epoch(seconds, nanoseconds // 1000)
    raise TimestampFormatError(f"Unrecognized timestamp value: {value!r}")


def to_storage_timestamp(value: datetime) -> dict[str, int]:
    """Encode a ``datetime`` as a seconds/nanoseconds pair, exact to the microsecond."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - EPOCH
    return {
        "seconds": delta.days * 86400 + delta.seconds,
        "nanoseconds": delta.microseconds * 1000,
    }
