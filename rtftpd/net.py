"""Asynchronous UDP sockets which report the local address of received packets."""

from __future__ import annotations

import asyncio
import ipaddress
import socket
import struct
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from rtftpd.errors import InternalError

T = TypeVar("T")

_IP_PKTINFO = getattr(socket, "IP_PKTINFO", 8)
_IPV6_RECVPKTINFO = getattr(socket, "IPV6_RECVPKTINFO", 49)
_IPV6_PKTINFO = getattr(socket, "IPV6_PKTINFO", 50)

_IN_PKTINFO = struct.Struct("=i4s4s")
_IN6_PKTINFO = struct.Struct("=16sI")

_ANCILLARY_SIZE = socket.CMSG_SPACE(_IN6_PKTINFO.size) + socket.CMSG_SPACE(_IN_PKTINFO.size)


@dataclass(frozen=True)
class RecvInfo:
    """A received datagram with the interface and addresses it travelled between."""

    data: bytes
    if_idx: int
    local: str
    remote: Any

    @property
    def size(self) -> int:
        return len(self.data)


def _family_of(addr: Any) -> socket.AddressFamily:
    host = addr[0]
    try:
        version = ipaddress.ip_address(host).version
    except ValueError:
        raise InternalError("unsupported address type") from None
    return socket.AF_INET if version == 4 else socket.AF_INET6


class UdpSocket:
    """A non-blocking UDP socket driven by the running asyncio loop."""

    def __init__(self, sock: socket.socket) -> None:
        if sock.family not in (socket.AF_INET, socket.AF_INET6):
            raise InternalError("unsupported address type")
        self._sock = sock
        self.family = sock.family

    @classmethod
    def bind(cls, addr: Any) -> UdpSocket:
        """Create a socket bound to ``addr``, a ``(host, port)`` tuple."""
        sock = socket.socket(_family_of(addr), socket.SOCK_DGRAM)
        try:
            sock.setblocking(False)
            sock.bind(tuple(addr))
        except OSError:
            sock.close()
            raise
        return cls(sock)

    @classmethod
    def from_socket(cls, sock: socket.socket | int) -> UdpSocket:
        """Wrap an existing socket object or file descriptor."""
        if isinstance(sock, int):
            sock = socket.socket(fileno=sock)
        return cls(sock)

    def fileno(self) -> int:
        return self._sock.fileno()

    def local_addr(self) -> Any:
        return self._sock.getsockname()

    def set_nonblocking(self) -> None:
        self._sock.setblocking(False)

    def set_request_pktinfo(self) -> None:
        """Ask the kernel to report the destination address of received packets."""
        if self.family == socket.AF_INET:
            self._sock.setsockopt(socket.IPPROTO_IP, _IP_PKTINFO, 1)
        elif self.family == socket.AF_INET6:
            self._sock.setsockopt(socket.IPPROTO_IPV6, _IPV6_RECVPKTINFO, 1)
        else:
            raise InternalError("unexpected af")

    async def _io(self, op: Callable[[], T], writable: bool = False) -> T:
        loop = asyncio.get_running_loop()
        fd = self._sock.fileno()

        while True:
            try:
                return op()
            except (BlockingIOError, InterruptedError):
                pass

            ready = loop.create_future()

            def wake() -> None:
                if not ready.done():
                    ready.set_result(None)

            if writable:
                loop.add_writer(fd, wake)
            else:
                loop.add_reader(fd, wake)
            try:
                await ready
            finally:
                if writable:
                    loop.remove_writer(fd)
                else:
                    loop.remove_reader(fd)

    async def sendto(self, data: bytes, addr: Any) -> None:
        """Send one datagram; raise :class:`OSError` when it was truncated."""
        sent = await self._io(lambda: self._sock.sendto(data, addr), writable=True)
        if sent != len(data):
            raise OSError(f"sent only {sent} bytes out of {len(data)} ones")

    async def recvfrom(self, size: int) -> tuple[bytes, Any]:
        """Receive one datagram of at most ``size`` bytes and its sender."""
        return await self._io(lambda: self._sock.recvfrom(size))

    async def recvmsg(self, size: int) -> RecvInfo:
        """Receive one datagram together with its packet information."""
        data, ancdata, _flags, remote = await self._io(
            lambda: self._sock.recvmsg(size, _ANCILLARY_SIZE)
        )

        if_idx: int | None = None
        local: str | None = None

        for level, kind, payload in ancdata:
            if level == socket.IPPROTO_IP and kind == _IP_PKTINFO:
                idx, _spec_dst, addr = _IN_PKTINFO.unpack_from(payload)
                if_idx = idx
                local = str(ipaddress.IPv4Address(addr))
            elif level == socket.IPPROTO_IPV6 and kind == _IPV6_PKTINFO:
                addr, idx = _IN6_PKTINFO.unpack_from(payload)
                if_idx = idx
                local = str(ipaddress.IPv6Address(addr))

        if remote is None:
            raise InternalError("missing remote address")
        if if_idx is None or local is None:
            raise InternalError("Option is None")

        return RecvInfo(data=data, if_idx=if_idx, local=local, remote=remote)

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> UdpSocket:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()