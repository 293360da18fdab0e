"""Parsing of comma separated HTTP header lists and Cache-Control directives."""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import timedelta

from rtftpd.errors import StringConversion, TftpError
from rtftpd.util import to_lower

log = logging.getLogger(__name__)

_U64_MAX = 2**64 - 1


def as_u64(data: bytes | str) -> int:
    """Parse an unsigned decimal number which must fit into 64 bits."""
    raw = data.encode("latin-1") if isinstance(data, str) else bytes(data)
    value = 0
    for c in raw:
        value *= 10
        if value > _U64_MAX or not 0x30 <= c <= 0x39:
            raise StringConversion()
        value += c - 0x30
        if value > _U64_MAX:
            raise StringConversion()
    return value


def duration_from_seconds(data: bytes | str) -> timedelta:
    """Parse a number of seconds into a :class:`timedelta`."""
    seconds = as_u64(data)
    try:
        return timedelta(seconds=seconds)
    except OverflowError:
        raise StringConversion() from None


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode("latin-1") if isinstance(value, str) else bytes(value)


def _split(hdr: bytes, pos: int) -> tuple[bytes, bytes | None, int] | None:
    start = None  # start of data
    stop = None  # end of data
    delim = None
    end = len(hdr)

    for i, c in enumerate(hdr[pos:], pos):
        if c in b" \t":
            c = 0x20

        if start is None:
            if c not in b" ,":
                start = i
        elif c == 0x3D and delim is None:  # '='
            delim = i
        elif c == 0x20:
            stop = i if stop is None else stop
        elif c == 0x2C:  # ','
            end = i + 1
            stop = i if stop is None else stop
            break
        else:
            stop = None

    if start is None:
        return None

    stop = end if stop is None else stop
    if delim is None:
        return hdr[start:stop], None, end
    return hdr[start:delim], hdr[delim + 1 : stop], end


def split_header_items(
    values: Iterable[bytes | str],
) -> Iterator[tuple[bytes, bytes | None]]:
    """Yield ``(key, value)`` pairs of all comma separated items of ``values``.

    ``value`` is ``None`` for items without ``=``; surrounding whitespace and
    empty items are skipped.
    """
    for value in values:
        hdr = _as_bytes(value)
        pos = 0
        while (item := _split(hdr, pos)) is not None:
            key, val, pos = item
            yield key, val


class CacheControlKind(enum.Enum):
    MAX_AGE = "max-age"
    S_MAXAGE = "s-maxage"
    NO_CACHE = "no-cache"
    MUST_REVALIDATE = "must-revalidate"
    PROXY_REVALIDATE = "proxy-revalidate"
    PRIVATE = "private"
    PUBLIC = "public"
    IMMUTABLE = "immutable"
    OTHER = "other"


_SIMPLE = {
    b"no-cache": CacheControlKind.NO_CACHE,
    b"must-revalidate": CacheControlKind.MUST_REVALIDATE,
    b"proxy-revalidate": CacheControlKind.PROXY_REVALIDATE,
    b"private": CacheControlKind.PRIVATE,
    b"public": CacheControlKind.PUBLIC,
    b"immutable": CacheControlKind.IMMUTABLE,
}

_TIMED = {
    b"max-age": CacheControlKind.MAX_AGE,
    b"s-maxage": CacheControlKind.S_MAXAGE,
}


@dataclass(frozen=True)
class CacheControl:
    """One Cache-Control directive; ``duration`` is set for the age directives."""

    kind: CacheControlKind
    duration: timedelta | None = None


def parse_cache_control(key: bytes | str, value: bytes | str | None) -> CacheControl:
    """Interpret one Cache-Control directive, case-insensitively."""
    name = to_lower(_as_bytes(key))

    timed = _TIMED.get(name)
    if timed is not None:
        if value is None:
            raise StringConversion()
        return CacheControl(timed, duration_from_seconds(value))

    simple = _SIMPLE.get(name)
    if simple is not None:
        return CacheControl(simple)

    log.debug("unsupported cache-control %r", name)
    return CacheControl(CacheControlKind.OTHER)


def iter_cache_control(values: Iterable[bytes | str]) -> Iterator[CacheControl]:
    """Yield the directives of Cache-Control header values.

    Malformed directives are logged and skipped.
    """
    for key, value in split_header_items(values):
        try:
            yield parse_cache_control(key, value)
        except TftpError:
            log.warning("bad cache-control from server")