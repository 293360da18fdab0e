"""Option acknowledgement (RFC 2347) negotiation."""

from __future__ import annotations

from dataclasses import dataclass

from rtftpd.errors import InternalError
from rtftpd.tftp.request import Request


def _option(name: bytes, value: int) -> bytes:
    return name + b"\0" + str(int(value)).encode() + b"\0"


@dataclass
class Oack:
    """Options accepted by the server; ``timeout`` is given in seconds."""

    block_size: int | None = None
    timeout: float | None = None
    window_size: int | None = None
    tsize: int | None = None

    @classmethod
    def from_request(cls, request: Request) -> Oack:
        return cls(
            block_size=request.block_size,
            timeout=request.timeout,
            window_size=request.window_size,
            tsize=request.tsize,
        )

    def update_block_size(self, max_value: int) -> int | None:
        """Clamp the block size to ``max_value``; return the negotiated value."""
        if self.block_size is not None:
            self.block_size = min(self.block_size, max_value)
        return self.block_size

    def update_window_size(self, max_value: int) -> int | None:
        """Clamp the window size to ``max_value``; return the negotiated value."""
        if self.window_size is not None:
            self.window_size = min(self.window_size, max_value)
        return self.window_size

    def update_tsize(self, size: int | None) -> None:
        """Answer a tsize query (which must be 0) with the real file size."""
        if self.tsize is not None:
            if self.tsize != 0:
                raise InternalError("tsize query must be 0")
            self.tsize = size

    def to_bytes(self) -> bytes:
        """Encode the OACK datagram."""
        parts = [b"\x00\x06"]
        if self.block_size is not None:
            parts.append(_option(b"blksize", self.block_size))
        if self.window_size is not None:
            parts.append(_option(b"windowsize", self.window_size))
        if self.tsize is not None:
            parts.append(_option(b"tsize", self.tsize))
        if self.timeout is not None:
            parts.append(_option(b"timeout", self.timeout))
        return b"".join(parts)