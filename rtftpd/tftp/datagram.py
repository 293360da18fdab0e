"""Encoding and decoding of TFTP datagrams."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from rtftpd.errors import RequestError, RequestErrorKind as E, TransferTimeout
from rtftpd.tftp.request import Direction, Request, parse_request
from rtftpd.tftp.sequence_id import SequenceId

log = logging.getLogger(__name__)

OP_RRQ = 1
OP_WRQ = 2
OP_DATA = 3
OP_ACK = 4
OP_ERROR = 5
OP_OACK = 6


def _u16(data: bytes, idx: int) -> int:
    return int.from_bytes(data[idx : idx + 2], "big")


def _need(data: bytes, size: int) -> None:
    if len(data) < size:
        raise RequestError(E.TOO_SHORT)


@dataclass(frozen=True)
class ReadPacket:
    """A read request (RRQ)."""

    request: Request

    def __str__(self) -> str:
        return f"RRQ({self.request!r})"


@dataclass(frozen=True)
class WritePacket:
    """A write request (WRQ)."""

    request: Request

    def __str__(self) -> str:
        return f"WRQ({self.request!r})"


@dataclass(frozen=True)
class DataPacket:
    """A DATA block."""

    seq: SequenceId
    data: bytes

    def to_bytes(self) -> bytes:
        return bytes((0, OP_DATA)) + self.seq.to_bytes() + bytes(self.data)

    def __str__(self) -> str:
        return f"DATA({self.seq}, ..{len(self.data)})"


@dataclass(frozen=True)
class AckPacket:
    """An acknowledgement of a DATA block."""

    seq: SequenceId

    def to_bytes(self) -> bytes:
        return bytes((0, OP_ACK)) + self.seq.to_bytes()

    def __str__(self) -> str:
        return f"ACK({self.seq})"


@dataclass(frozen=True)
class ErrorPacket:
    """An ERROR datagram; ``message`` excludes the terminating zero."""

    code: int
    message: bytes

    def to_bytes(self) -> bytes:
        return bytes((0, OP_ERROR)) + self.code.to_bytes(2, "big") + bytes(self.message) + b"\0"

    def __str__(self) -> str:
        text = bytes(self.message).decode("utf-8", errors="replace").strip()
        return f'ERROR({self.code}, "{text}")'


@dataclass(frozen=True)
class OackPacket:
    """An option acknowledgement; only ever received by clients."""

    def __str__(self) -> str:
        return "OACK"


Datagram = ReadPacket | WritePacket | DataPacket | AckPacket | ErrorPacket | OackPacket


def parse_datagram(data: bytes) -> Datagram:
    """Decode one TFTP datagram; raise :class:`RequestError` when malformed."""
    data = bytes(data)
    _need(data, 2)
    op = _u16(data, 0)

    if op == OP_RRQ:
        _need(data, 3)
        return ReadPacket(parse_request(data[2:], Direction.READ))

    if op == OP_WRQ:
        _need(data, 3)
        return WritePacket(parse_request(data[2:], Direction.WRITE))

    if op == OP_DATA:
        _need(data, 4)
        return DataPacket(SequenceId(_u16(data, 2)), data[4:])

    if op == OP_ACK:
        if len(data) != 4:
            raise RequestError(E.MALFORMED_ACK)
        return AckPacket(SequenceId(_u16(data, 2)))

    if op == OP_ERROR:
        if data[-1] != 0:
            raise RequestError(E.MISSING_ZERO)
        _need(data, 5)
        return ErrorPacket(_u16(data, 2), data[4:-1])

    if op == OP_OACK:
        return OackPacket()

    raise RequestError(E.BAD_OP_CODE, op)


async def recv_datagram(sock: Any, size: int, expected: Any, timeout: float | timedelta) -> Datagram:
    """Receive the next datagram from ``expected``, ignoring other senders.

    Raise :class:`TransferTimeout` when nothing arrives within ``timeout``.
    """
    if isinstance(timeout, timedelta):
        timeout = timeout.total_seconds()

    async def receive() -> Datagram:
        while True:
            data, addr = await sock.recvfrom(size)
            if addr != expected:
                log.error("unexpected address: %s vs %s", addr, expected)
                continue
            return parse_datagram(data)

    try:
        return await asyncio.wait_for(receive(), timeout)
    except TimeoutError:
        raise TransferTimeout() from None