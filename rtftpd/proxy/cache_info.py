"""Caching metadata derived from HTTP response headers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from email.utils import format_datetime
from typing import Any

from rtftpd.proxy.headers import CacheControlKind, iter_cache_control
from rtftpd.proxy.timeutil import Time, header_instant, header_system_time
from rtftpd.util import pretty_dump

log = logging.getLogger(__name__)


def _all_values(headers: Mapping[str, Any], name: str) -> list[Any]:
    get_list = getattr(headers, "get_list", None)
    if callable(get_list):
        return list(get_list(name))
    value = headers.get(name)
    return [] if value is None else [value]


def _first_value(headers: Mapping[str, Any], name: str) -> Any:
    values = _all_values(headers, name)
    return values[0] if values else None


@dataclass
class CacheInfo:
    """Freshness information of a cached resource.

    ``not_after`` and ``local_time`` are :func:`time.monotonic` instants;
    ``modified`` is given in remote wall clock time.
    """

    not_after: float | None
    modified: datetime | None
    etag: str | None
    local_time: float

    @classmethod
    def from_headers(cls, localtm: Time, headers: Mapping[str, Any]) -> CacheInfo:
        max_age: timedelta | None = None
        max_sage: timedelta | None = None

        for directive in iter_cache_control(_all_values(headers, "cache-control")):
            if directive.kind is CacheControlKind.MAX_AGE:
                max_age = directive.duration
            elif directive.kind is CacheControlKind.S_MAXAGE:
                max_sage = directive.duration
            elif directive.kind is CacheControlKind.NO_CACHE:
                max_sage = timedelta(0)

        remote_tm = header_system_time(headers, "date") or localtm.local

        age = max_sage if max_sage is not None else max_age
        if age is not None:
            not_after = localtm.mono + age.total_seconds()
        else:
            not_after = header_instant(headers, localtm.mono, remote_tm, "expires")

        return cls(
            not_after=not_after,
            modified=header_system_time(headers, "last-modified"),
            etag=_first_value(headers, "etag"),
            local_time=localtm.mono,
        )

    def request_headers(self, now: float) -> dict[str, str]:
        """Return the conditional request headers for revalidation at ``now``."""
        headers: dict[str, str] = {}

        if self.modified is not None:
            headers["If-Modified-Since"] = format_datetime(self.modified, usegmt=True)

        if self.etag is not None:
            headers["If-None-Match"] = self.etag

        if self.not_after is not None:
            delta = 0 if self.not_after < now else int(round(self.not_after - now, 6))
            headers["Cache-Control"] = f"max-age={delta}"

        return headers

    def update(self, localtm: Time, headers: Mapping[str, Any]) -> CacheInfo:
        """Merge the headers of a revalidation response into this information."""
        fresh = CacheInfo.from_headers(localtm, headers)
        return CacheInfo(
            not_after=fresh.not_after if fresh.not_after is not None else self.not_after,
            modified=fresh.modified if fresh.modified is not None else self.modified,
            etag=fresh.etag if fresh.etag is not None else self.etag,
            local_time=fresh.local_time,
        )

    def expiration_time(self, max_lifetime: timedelta) -> float:
        """Return the instant when the resource expires, capped by ``max_lifetime``."""
        limit = self.local_time + max_lifetime.total_seconds()
        if self.not_after is None:
            return limit
        return min(self.not_after, limit)

    def is_outdated(self, reftm: float, max_lifetime: timedelta) -> bool:
        return self.expiration_time(max_lifetime) <= reftm

    def __str__(self) -> str:
        return (
            f"[not_after={pretty_dump(self.not_after)}, "
            f"modified={pretty_dump(self.modified)}, "
            f"etag={pretty_dump(self.etag)}, "
            f"tm={pretty_dump(self.local_time)}]"
        )