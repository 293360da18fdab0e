"""Wall clock and monotonic time helpers for HTTP header handling."""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from rtftpd.errors import BadHttpTime
from rtftpd.proxy.headers import as_u64

log = logging.getLogger(__name__)

_I64_MAX = 2**63 - 1


@functools.total_ordering
@dataclass(eq=False)
class Time:
    """A point in time as wall clock (``local``) and monotonic (``mono``) value.

    Comparison uses the monotonic value only.
    """

    local: datetime
    mono: float

    @classmethod
    def now(cls) -> Time:
        return cls(local=datetime.now(timezone.utc), mono=time.monotonic())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Time):
            return NotImplemented
        return self.mono == other.mono

    def __lt__(self, other: Time) -> bool:
        if not isinstance(other, Time):
            return NotImplemented
        return self.mono < other.mono

    __hash__ = None  # type: ignore[assignment]


def time_delta(a: datetime, b: datetime) -> timedelta:
    """Return ``b - a``; raise :class:`BadHttpTime` when it exceeds 64 bit nanoseconds."""
    delta = b - a
    if abs(delta) // timedelta(microseconds=1) * 1000 > _I64_MAX:
        log.warning("failed to calculate delta of %s and %s", a, b)
        raise BadHttpTime()
    return delta


def _first_value(headers: Mapping[str, Any], name: str) -> Any:
    get_list = getattr(headers, "get_list", None)
    if callable(get_list):
        values = get_list(name)
        return values[0] if values else None
    return headers.get(name)


def header_system_time(headers: Mapping[str, Any], name: str) -> datetime | None:
    """Parse an HTTP date header into an aware UTC datetime."""
    value = _first_value(headers, name)
    if value is None:
        return None

    try:
        if isinstance(value, (bytes, bytearray)):
            value = bytes(value).decode("ascii")
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError, OverflowError, UnicodeDecodeError):
        raise BadHttpTime() from None

    if parsed is None:
        raise BadHttpTime()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def header_u64(headers: Mapping[str, Any], name: str) -> int | None:
    """Parse a numeric header value."""
    value = _first_value(headers, name)
    if value is None:
        return None
    return as_u64(value)


def header_instant(
    headers: Mapping[str, Any], now: float, reftm: datetime, name: str
) -> float | None:
    """Translate a date header into a monotonic instant.

    ``reftm`` is the wall clock time which corresponds to the monotonic ``now``.
    """
    tm = header_system_time(headers, name)
    if tm is None:
        return None
    return now + time_delta(reftm, tm).total_seconds()