"""Data sources for read requests: local files, memory buffers and URIs."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import IO, Any

from rtftpd.errors import FileMissing, InternalError
from rtftpd.proxy.uri import Uri

log = logging.getLogger(__name__)


class FileFetcher:
    """Reads a local file."""

    def __init__(self, path: Any) -> None:
        self.path = Path(path)
        self._file: IO[bytes] | None = None
        self._eof = False

    async def open(self) -> None:
        if self._file is not None:
            raise InternalError("file already opened")
        try:
            self._file = open(self.path, "rb")
        except FileNotFoundError:
            raise FileMissing(self.path) from None

    def _opened(self) -> IO[bytes]:
        if self._file is None:
            raise InternalError("file not opened")
        return self._file

    def size(self) -> int | None:
        file = self._opened()
        try:
            return os.fstat(file.fileno()).st_size
        except OSError:
            return None

    async def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; a short result marks the end of file."""
        if self._eof:
            raise InternalError("read after end of file")

        file = self._opened()
        parts: list[bytes] = []
        remaining = size

        while remaining > 0:
            data = file.read(remaining)
            if not data:
                log.debug("eof reached")
                self._eof = True
                break
            parts.append(data)
            remaining -= len(data)

        return b"".join(parts)

    def read_mmap(self, count: int) -> bytes:
        raise InternalError("read_mmap() not implemented for files")

    def is_mmaped(self) -> bool:
        return False

    def is_eof(self) -> bool:
        return self._eof

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


class MemoryFetcher:
    """Serves data held in memory."""

    def __init__(self, data: bytes) -> None:
        self._buf = bytes(data)
        self._pos = 0

    async def open(self) -> None:
        return None

    def size(self) -> int | None:
        return len(self._buf)

    def _take(self, size: int) -> bytes:
        data = self._buf[self._pos : self._pos + max(size, 0)]
        self._pos += len(data)
        return data

    async def read(self, size: int) -> bytes:
        return self._take(size)

    def read_mmap(self, count: int) -> bytes:
        data = self._take(count)
        log.debug("pos=%d, sz=%d", self._pos - len(data), len(data))
        return data

    def is_mmaped(self) -> bool:
        return True

    def is_eof(self) -> bool:
        return self._pos == len(self._buf)


class UriFetcher:
    """Reads a remote resource through the HTTP proxy cache."""

    def __init__(self, url: Any) -> None:
        self._uri = Uri(url)

    @property
    def url(self) -> str:
        return self._uri.url

    async def open(self) -> None:
        await self._uri.open()

    def size(self) -> int | None:
        return self._uri.size()

    async def read(self, size: int) -> bytes:
        return await self._uri.read(size)

    def read_mmap(self, count: int) -> bytes:
        raise InternalError("read_mmap() not supported for uris")

    def is_mmaped(self) -> bool:
        return False

    def is_eof(self) -> bool:
        return self._uri.is_eof()


Fetcher = FileFetcher | MemoryFetcher | UriFetcher