"""Cache of resources fetched over HTTP, backed by anonymous temporary files."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import IO, Any

import httpx

from rtftpd.errors import InternalError, ProxyError
from rtftpd.proxy.cache_info import CacheInfo
from rtftpd.proxy.timeutil import Time
from rtftpd.util import pretty_dump

log = logging.getLogger(__name__)

READ_TIMEOUT = 30.0
CONNECT_TIMEOUT = 30.0
KEEPALIVE = 300.0


class _Body:
    """The streamed body of an HTTP response plus the time spent waiting for it."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self._chunks = response.aiter_bytes()
        self.elapsed = 0.0
        self.closed = False

    async def chunk(self) -> bytes | None:
        """Return the next non-empty chunk, or ``None`` at the end of the body."""
        if self.closed:
            return None

        start = time.monotonic()
        try:
            while True:
                data = await anext(self._chunks, None)
                if data is None:
                    await self.close()
                    return None
                if data:
                    return data
        except httpx.HTTPError as e:
            await self.close()
            raise ProxyError(f"http error: {e}") from e
        finally:
            self.elapsed += time.monotonic() - start

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            await self.response.aclose()


@dataclass
class _Empty:
    pass


@dataclass
class _Failed:
    hint: str


@dataclass
class _Init:
    body: _Body


@dataclass
class _HaveMeta:
    body: _Body
    cache_info: CacheInfo
    file_size: int | None


@dataclass
class _Downloading:
    body: _Body
    cache_info: CacheInfo
    file_size: int | None
    file: IO[bytes]
    file_pos: int


@dataclass
class _Complete:
    cache_info: CacheInfo
    file: IO[bytes]
    file_size: int


@dataclass
class _Refresh:
    body: _Body
    cache_info: CacheInfo
    file: IO[bytes]
    file_size: int


_State = _Empty | _Failed | _Init | _HaveMeta | _Downloading | _Complete | _Refresh


def _dump_state(state: _State) -> str:
    match state:
        case _Empty():
            return "no state"
        case _Failed(hint=hint):
            return f'error "{hint}"'
        case _Init(body=body):
            return f"INIT({pretty_dump(body.response)})"
        case _HaveMeta(body=body, cache_info=ci, file_size=size):
            return (
                f"META({pretty_dump(body.response)}, {pretty_dump(ci)}, "
                f"{pretty_dump(size)}, {body.elapsed:.3f}s)"
            )
        case _Downloading(body=body, cache_info=ci, file_size=size, file=f, file_pos=pos):
            return (
                f"DOWNLOADING({pretty_dump(body.response)}, {pretty_dump(ci)}, "
                f"{pretty_dump(size)}, {pretty_dump(f)}@{pos}, {body.elapsed:.3f}s)"
            )
        case _Complete(cache_info=ci, file=f, file_size=size):
            return f"COMPLETE({pretty_dump(ci)}, {pretty_dump(f)}/{size})"
        case _Refresh(body=body, cache_info=ci, file=f, file_size=size):
            return (
                f"REFRESH({pretty_dump(body.response)},.{pretty_dump(ci)}, "
                f"[{pretty_dump(f)}/{size}])"
            )
    return repr(state)


def _state_file_size(state: _State) -> int | None:
    match state:
        case _Empty() | _Init():
            return None
        case _HaveMeta(file_size=size) | _Downloading(file_size=size):
            return size
        case _Complete(file_size=size) | _Refresh(file_size=size):
            return size
        case _Failed(hint=hint):
            raise InternalError(f"get_file_size called in error state ({hint})")
    return None


def _state_cache_info(state: _State) -> CacheInfo | None:
    match state:
        case _HaveMeta(cache_info=ci) | _Downloading(cache_info=ci):
            return ci
        case _Complete(cache_info=ci) | _Refresh(cache_info=ci):
            return ci
    return None


def _read_file(file: IO[bytes], offset: int, size: int, limit: int) -> bytes:
    if limit <= offset:
        raise InternalError("read behind end of data")
    file.flush()
    return os.pread(file.fileno(), min(size, limit - offset), offset)


def _read_state(state: _State, offset: int, size: int) -> bytes | None:
    match state:
        case _Downloading(file=f, file_pos=pos) if offset < pos:
            return _read_file(f, offset, size, pos)
        case _Complete(file=f, file_size=total) if offset < total:
            return _read_file(f, offset, size, total)
        case _Complete(file_size=total) if offset == total:
            return b""
        case _Complete():
            raise InternalError("file out-of-bound read")
    return None


def _content_length(response: httpx.Response) -> int | None:
    """Return the length of the decoded body when the headers tell it."""
    encoding = response.headers.get("content-encoding", "identity").strip().lower()
    length = response.headers.get("content-length")
    if encoding not in ("", "identity") or length is None:
        return None
    try:
        return int(length)
    except ValueError:
        return None


async def _fetch(body: _Body, file: IO[bytes]) -> bytes | None:
    data = await body.chunk()
    if data is not None:
        file.write(data)
        file.flush()
    return data


class EntryData:
    """One cached resource; guard access with ``lock``."""

    def __init__(self, url: Any) -> None:
        self.key = str(url)
        self._state: _State = _Empty()
        self.reftm = Time.now()
        self.lock = asyncio.Lock()

    def __str__(self) -> str:
        return (
            f"{self.key}: reftm={pretty_dump(self.reftm.local)}, "
            f"state={_dump_state(self._state)}"
        )

    def _take(self, hint: str) -> _State:
        state = self._state
        self._state = _Failed(hint)
        return state

    def is_complete(self) -> bool:
        return isinstance(self._state, _Complete)

    def is_error(self) -> bool:
        return isinstance(self._state, _Failed)

    def is_running(self) -> bool:
        return isinstance(self._state, (_HaveMeta, _Downloading))

    def update_localtm(self) -> None:
        self.reftm = Time.now()

    def set_response(self, response: httpx.Response) -> None:
        """Attach the response of a (conditional) GET request."""
        body = _Body(response)
        match self._take("set_response"):
            case _Empty() | _Failed():
                self._state = _Init(body)
            case _Complete(cache_info=ci, file=f, file_size=size) | _Refresh(
                cache_info=ci, file=f, file_size=size
            ):
                self._state = _Refresh(body, ci, f, size)
            case state:
                raise InternalError(f"unexpected state {_dump_state(state)}")

    def is_outdated(self, reftm: float, max_lifetime: timedelta) -> bool:
        info = self.cache_info()
        return info is None or info.is_outdated(reftm, max_lifetime)

    def cache_info(self) -> CacheInfo | None:
        return _state_cache_info(self._state)

    async def fill_meta(self) -> None:
        """Evaluate the headers of a freshly attached response."""
        if not isinstance(self._state, (_Init, _Empty, _Refresh)):
            return

        match self._take("fill_meta"):
            case _Init(body=body):
                headers = body.response.headers
                self._state = _HaveMeta(
                    body,
                    CacheInfo.from_headers(self.reftm, headers),
                    _content_length(body.response),
                )
            case _Refresh(body=body, cache_info=ci, file=f, file_size=size):
                await body.close()
                self._state = _Complete(ci.update(self.reftm, body.response.headers), f, size)
            case _:
                raise InternalError("unexpected state")

    def _signal_complete(self, body: _Body) -> None:
        if isinstance(self._state, _Complete):
            log.info(
                "downloaded %s with %d bytes in %dms",
                self.key,
                self._state.file_size,
                int(body.elapsed * 1000),
            )

    async def get_filesize(self) -> int:
        """Return the size of the resource, downloading it completely if unknown."""
        size = _state_file_size(self._state)
        if size is not None:
            return size

        state = self._take("get_filesize")
        match state:
            case _HaveMeta(body=body, cache_info=ci, file_size=None):
                file = get_cache().new_file()
                pos = 0
            case _Downloading(body=body, cache_info=ci, file=file, file_pos=pos, file_size=None):
                pass
            case _:
                raise InternalError(f"unexpected state: {_dump_state(state)}")

        while (data := await body.chunk()) is not None:
            pos += len(data)
            file.write(data)
        file.flush()

        self._state = _Complete(ci, file, pos)
        self._signal_complete(body)
        return pos

    def request_headers(self) -> dict[str, str]:
        """Return the conditional headers for revalidating this entry."""
        info = self.cache_info()
        return {} if info is None else info.request_headers(self.reftm.mono)

    def matches(self, etag: str | None) -> bool:
        info = self.cache_info()

        if info is not None and info.not_after is not None:
            if info.not_after < Time.now().mono:
                return False

        own = None if info is None else info.etag
        return own == etag

    def invalidate(self) -> None:
        """Forget the cached content so that the next response replaces it."""
        if isinstance(self._state, (_Complete, _Refresh)):
            if isinstance(self._state, _Complete):
                self._state.file.close()
            self._state = _Empty()

    async def read_some(self, offset: int, size: int) -> bytes:
        """Return up to ``size`` bytes at ``offset``; an empty result means end of data."""
        log.debug("state=%s, ofs=%d, #buf=%d", _dump_state(self._state), offset, size)

        if isinstance(self._state, _Init):
            await self.fill_meta()

        data = _read_state(self._state, offset, size)
        if data is not None:
            return data

        state = self._take("read_some")
        match state:
            case _HaveMeta(body=body, cache_info=ci, file_size=total):
                file = get_cache().new_file()
                chunk = await _fetch(body, file)
                if chunk is None:
                    self._state = _Complete(ci, file, 0)
                else:
                    self._state = _Downloading(body, ci, total, file, len(chunk))

            case _Downloading(file_pos=pos) if offset < pos:
                raise InternalError("downloaded data not served from file")

            case _Downloading(body=body, cache_info=ci, file_size=total, file=file, file_pos=pos):
                chunk = await _fetch(body, file)
                if chunk is None:
                    self._state = _Complete(ci, file, pos)
                else:
                    self._state = _Downloading(body, ci, total, file, pos + len(chunk))

            case _:
                raise InternalError(f"unexpected state: {_dump_state(state)}")

        self._signal_complete(body)
        return b"" if chunk is None else chunk[:size]


@dataclass
class GcProperties:
    """Limits of the cache garbage collector."""

    max_elements: int = 50
    max_lifetime: timedelta = timedelta(hours=1)
    sleep: timedelta = timedelta(seconds=30)


class Cache:
    """Shared registry of cached resources with a periodic garbage collector."""

    def __init__(self) -> None:
        self.tmpdir = Path(tempfile.gettempdir())
        self.entries: dict[str, EntryData] = {}
        self._client: httpx.AsyncClient | None = None
        self._refcnt = 0
        self._abort: asyncio.Event | None = None
        self._gc: asyncio.Task[None] | None = None

    def instantiate(self, tmpdir: Any, props: GcProperties) -> None:
        """Start using the cache; the first user starts the garbage collector."""
        if self._refcnt == 0:
            self.tmpdir = Path(tmpdir)
            self._abort = asyncio.Event()
            self._gc = asyncio.get_running_loop().create_task(
                self._gc_runner(props, self._abort)
            )
        self._refcnt += 1

    async def close(self) -> None:
        """Stop using the cache; the last user clears it and stops the collector."""
        if self._refcnt == 0:
            raise InternalError("cache closed more often than instantiated")

        self._refcnt -= 1
        if self._refcnt > 0:
            return

        self.entries.clear()
        abort, gc = self._abort, self._gc
        self._abort = self._gc = None
        if abort is not None:
            abort.set()
        if gc is not None:
            await gc
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _gc_runner(self, props: GcProperties, abort: asyncio.Event) -> None:
        while True:
            if self.entries:
                count = self.gc_outdated(props.max_lifetime)
                if count > props.max_elements:
                    self.gc_oldest(count - props.max_elements)

            try:
                await asyncio.wait_for(abort.wait(), props.sleep.total_seconds())
            except TimeoutError:
                continue

            log.debug("cache gc runner gracefully closed")
            break

    def lookup_or_create(self, key: Any) -> EntryData:
        entry = self.entries.get(str(key))
        return entry if entry is not None else self.create(key)

    def create(self, key: Any) -> EntryData:
        """Return a new entry which is not registered in the cache."""
        return EntryData(key)

    def replace(self, key: Any, entry: EntryData) -> None:
        self.entries[str(key)] = entry

    def remove(self, key: Any) -> None:
        self.entries.pop(str(key), None)

    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(None, connect=CONNECT_TIMEOUT, read=READ_TIMEOUT),
                limits=httpx.Limits(keepalive_expiry=KEEPALIVE),
                follow_redirects=True,
            )
        return self._client

    def new_file(self) -> IO[bytes]:
        """Create an anonymous temporary file in the cache directory."""
        return tempfile.TemporaryFile(dir=self.tmpdir)

    async def dump(self) -> None:
        """Print the state of all entries."""
        entries = list(self.entries.values())
        print(f"Cache information ({len(entries)} entries)")
        for entry in entries:
            async with entry.lock:
                print(entry)

    def clear(self) -> None:
        self.entries.clear()

    def gc_oldest(self, num: int) -> None:
        """Remove the ``num`` oldest entries which are not in use."""
        if num <= 0:
            return

        candidates = [
            (key, entry.cache_info())
            for key, entry in self.entries.items()
            if not entry.lock.locked()
        ]
        candidates.sort(
            key=lambda item: (item[1] is not None, item[1].local_time if item[1] else 0.0)
        )

        removed = 0
        for key, _ in candidates[:num]:
            log.debug("gc: removing old %s", key)
            del self.entries[key]
            removed += 1

        if removed:
            log.info("gc: removed %d old entries", removed)

    def gc_outdated(self, max_lifetime: timedelta) -> int:
        """Remove entries older than ``max_lifetime``; return the number remaining."""
        now = time.monotonic()
        outdated = [
            key
            for key, entry in self.entries.items()
            if not entry.lock.locked() and entry.is_outdated(now, max_lifetime)
        ]

        for key in outdated:
            log.debug("gc: removing outdated %s", key)
            del self.entries[key]

        if outdated:
            log.info("gc: removed %d obsolete entries", len(outdated))

        return len(self.entries)


_CACHE = Cache()


def get_cache() -> Cache:
    """Return the process wide cache."""
    return _CACHE