"""Reading of resources from HTTP servers through the shared cache."""

from __future__ import annotations

import enum
import logging
from typing import Any

import httpx

from rtftpd.errors import HttpStatusError, InternalError, ProxyError
from rtftpd.proxy.cache import Cache, EntryData, get_cache

log = logging.getLogger(__name__)


class UriFlags(enum.Flag):
    NONE = 0
    NO_CACHE = enum.auto()
    NO_COMPRESS = enum.auto()


def split_scheme_flags(url: Any) -> tuple[str, UriFlags]:
    """Strip ``+modifier`` suffixes from the scheme and return them as flags."""
    text = str(url)
    scheme, sep, rest = text.partition(":")
    base, *modifiers = scheme.split("+")

    flags = UriFlags.NONE
    for modifier in modifiers:
        if modifier == "nocache":
            flags |= UriFlags.NO_CACHE
        elif modifier == "nocompress":
            flags |= UriFlags.NO_COMPRESS
        else:
            log.warning("unsupported scheme modifier %s", modifier)

    if not modifiers:
        return text, flags
    return base + sep + rest, flags


class Uri:
    """A remote resource which is read sequentially."""

    def __init__(self, url: Any) -> None:
        self.url = str(url)
        self._size: int | None = None
        self._entry: EntryData | None = None
        self._pos = 0
        self._eof = False

    async def _open_cached(self, cache: Cache, entry: EntryData, flags: UriFlags) -> None:
        if entry.is_running():
            return

        client = cache.client()
        headers = entry.request_headers()
        if UriFlags.NO_COMPRESS in flags:
            headers["Accept-Encoding"] = "identity"

        entry.update_localtm()

        try:
            request = client.build_request("GET", entry.key, headers=headers)
            response = await client.send(request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ProxyError(f"http error: {e}") from e

        if response.status_code == httpx.codes.NOT_MODIFIED:
            entry.set_response(response)
            await entry.fill_meta()
        elif response.status_code == httpx.codes.OK:
            entry.invalidate()
            entry.set_response(response)
            await entry.fill_meta()
        else:
            await response.aclose()
            raise HttpStatusError(response.status_code)

    async def open(self) -> None:
        """Fetch or revalidate the resource and determine its size."""
        cache = get_cache()
        url, flags = split_scheme_flags(self.url)

        if UriFlags.NO_CACHE in flags:
            entry = cache.create(url)
        else:
            entry = cache.lookup_or_create(url)

        async with entry.lock:
            await self._open_cached(cache, entry, flags)
            self._size = await entry.get_filesize()

            if entry.is_error():
                cache.remove(entry.key)

        cache.replace(entry.key, entry)
        self._entry = entry

    def size(self) -> int | None:
        return self._size

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; a short result marks the end of the resource."""
        if self._eof:
            raise InternalError("read after end of file")
        if self._entry is None:
            raise InternalError("uri not opened")

        parts: list[bytes] = []
        remaining = size

        async with self._entry.lock:
            while remaining > 0:
                data = await self._entry.read_some(self._pos, remaining)
                if not data:
                    self._eof = True
                    break
                parts.append(data)
                self._pos += len(data)
                remaining -= len(data)

        return b"".join(parts)

    def is_eof(self) -> bool:
        return self._eof