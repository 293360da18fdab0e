"""Parsing of TFTP read and write requests (RFC 1350, 2347 - 2349, 7440)."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from rtftpd.errors import RequestError, RequestErrorKind as E
from rtftpd.util import to_lower

log = logging.getLogger(__name__)

_U64_MAX = 2**64 - 1


class Mode(enum.Enum):
    NETASCII = "netascii"
    OCTET = "octet"
    MAIL = "mail"

    @property
    def is_octet(self) -> bool:
        return self is Mode.OCTET


class Direction(enum.Enum):
    READ = "read"
    WRITE = "write"


_MODES = {
    b"netascii": Mode.NETASCII,
    b"octet": Mode.OCTET,
    b"binary": Mode.OCTET,  # legacy name
    b"mail": Mode.MAIL,
}


def parse_mode(data: bytes) -> Mode:
    """Parse a transfer mode name, case-insensitively."""
    try:
        return _MODES[to_lower(data)]
    except KeyError:
        raise RequestError(E.BAD_MODE) from None


def parse_ranged(data: bytes, minimum: int, maximum: int) -> int:
    """Parse a decimal number and check that it lies in ``[minimum, maximum]``."""
    value = 0
    for c in data:
        if not 0x30 <= c <= 0x39:
            raise RequestError(E.BAD_DIGIT, c)
        value = value * 10 + (c - 0x30)
        if value > _U64_MAX:
            raise RequestError(E.NUMBER_OUT_OF_RANGE)

    if not minimum <= value <= maximum:
        raise RequestError(E.NUMBER_OUT_OF_RANGE)

    return value


@dataclass
class Request:
    """A parsed RRQ or WRQ; ``timeout`` is given in seconds."""

    filename: bytes
    mode: Mode
    block_size: int | None = None
    timeout: float | None = None
    window_size: int | None = None
    tsize: int | None = None

    def has_options(self) -> bool:
        return any(
            v is not None
            for v in (self.block_size, self.timeout, self.window_size, self.tsize)
        )

    def path(self) -> Path:
        return Path(os.fsdecode(self.filename))


def parse_request(data: bytes, direction: Direction) -> Request:
    """Parse the body (without opcode) of a read or write request."""
    if not data:
        raise RequestError(E.TOO_SHORT)
    if data[-1] != 0:
        raise RequestError(E.MISSING_ZERO)

    fields = iter(data[:-1].split(b"\0"))

    filename = next(fields)
    if not filename:
        raise RequestError(E.MISSING_FILENAME)

    mode_raw = next(fields, None)
    if mode_raw is None:
        raise RequestError(E.MISSING_MODE)

    request = Request(filename=filename, mode=parse_mode(mode_raw))

    for raw_name in fields:
        name = to_lower(raw_name)
        arg = next(fields, None)
        if arg is None:
            raise RequestError(E.MISSING_ARGUMENT)

        if name == b"blksize":
            request.block_size = parse_ranged(arg, 8, 65464)
        elif name == b"timeout":
            request.timeout = float(parse_ranged(arg, 0, 65536))
        elif name == b"tsize":
            limit = 0 if direction is Direction.READ else 4_294_967_295
            request.tsize = parse_ranged(arg, 0, limit)
        elif name == b"windowsize":
            request.window_size = parse_ranged(arg, 1, 65535)
        else:
            log.warning("unsupported %r=%r option", name, arg)

    return request