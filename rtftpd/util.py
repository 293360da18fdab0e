"""Small helpers: number formatting, byte lowering, debug dumps and a counting bucket."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any

log = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def format_number(value: int) -> str:
    """Format an integer with ``_`` as thousands separator."""
    return f"{int(value):_}"


def to_lower(data: bytes) -> bytes:
    """Lower-case the ASCII letters of ``data``; other bytes stay untouched."""
    return bytes(data).lower()


def pretty_dump(value: Any) -> str:
    """Return a compact human readable description of ``value``.

    ``None`` is shown as ``n/a``; datetimes as seconds since the epoch with
    millisecond precision; floats are taken as :func:`time.monotonic` instants
    and shown as wall clock time; timedeltas as seconds.
    """
    if value is None:
        return "n/a"

    dump = getattr(value, "pretty_dump", None)
    if callable(dump):
        return dump()

    if isinstance(value, bool):
        return str(value)

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        millis = (value - _EPOCH) // timedelta(milliseconds=1)
        secs, ms = divmod(millis, 1000)
        return f"{secs}.{ms:03d}"

    if isinstance(value, timedelta):
        return f"{value.total_seconds():.3f}s"

    if isinstance(value, float):
        age = time.monotonic() - value
        return pretty_dump(datetime.now(timezone.utc) - timedelta(seconds=age))

    if isinstance(value, int):
        return str(value)

    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("ascii")

    if hasattr(value, "status_code") and hasattr(value, "url"):
        reason = getattr(value, "reason_phrase", "")
        text = f"{value.status_code} {reason}".rstrip() + f" {value.url}"
        length = getattr(value, "headers", {}).get("content-length")
        if length is not None:
            text += f" ({length})"
        return text

    fileno = getattr(value, "fileno", None)
    if callable(fileno):
        return f"fd={fileno()}"

    return str(value)


class Bucket:
    """A non-blocking counting semaphore."""

    def __init__(self, level: int) -> None:
        if level < 0:
            raise ValueError("bucket level must not be negative")
        self._level = level
        self._lock = threading.Lock()

    def level(self) -> int:
        """Return the number of slots still available."""
        return self._level

    def acquire(self) -> BucketGuard | None:
        """Take a slot; return a guard, or ``None`` when the bucket is empty."""
        with self._lock:
            if self._level == 0:
                return None
            self._level -= 1
        return BucketGuard(self)

    def _give_back(self) -> None:
        with self._lock:
            self._level += 1


class BucketGuard:
    """Holds one slot of a :class:`Bucket` until released."""

    def __init__(self, bucket: Bucket) -> None:
        self._bucket = bucket
        self._released = False

    def release(self) -> None:
        """Return the slot to the bucket; further calls do nothing."""
        if not self._released:
            self._released = True
            self._bucket._give_back()

    def __enter__(self) -> BucketGuard:
        return self

    def __exit__(self, *args: Any) -> None:
        self.release()