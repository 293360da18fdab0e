"""Statistics of a single TFTP transfer."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import timedelta

from rtftpd.util import format_number


class Direction(enum.Enum):
    WRQ = "wrq"
    RRQ = "rrq"

    def arrow(self) -> str:
        return "<=" if self is Direction.WRQ else "=>"


@dataclass
class SessionStats:
    """Counters collected while serving one request."""

    direction: Direction = Direction.RRQ
    filesize: int = 0
    xmitsz: int = 0
    retries: int = 0
    wastedsz: int = 0
    num_timeouts: int = 0
    window_size: int = 0
    block_size: int = 0
    filename: str = ""
    remote_ip: str = ""
    local_ip: str = ""
    is_complete: bool = False

    def has_errors(self) -> bool:
        return (
            self.filesize != self.xmitsz
            or self.retries != 0
            or self.wastedsz != 0
            or self.num_timeouts != 0
        )

    def speed(self, duration: timedelta | float) -> tuple[float, float] | None:
        """Return ``(file, net)`` bytes per second, or ``None`` for a zero duration."""
        seconds = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
        if seconds == 0:
            return None
        return self.filesize / seconds, self.xmitsz / seconds

    def __str__(self) -> str:
        text = (
            f'"{self.filename}" ({self.local_ip} {self.direction.arrow()} {self.remote_ip}, '
            f"{self.window_size}x {self.block_size})"
        )
        details = (
            f"({self.retries} retries, {format_number(self.wastedsz)} blocks wasted, "
            f"{self.num_timeouts} timeouts)"
        )

        if self.direction is Direction.RRQ:
            text += f" {format_number(self.filesize)} bytes"
            if self.has_errors():
                text += f", sent={format_number(self.xmitsz)} {details}"
        else:
            text += f" {format_number(self.xmitsz)} bytes"
            if self.has_errors():
                text += f" {details}"

        return text