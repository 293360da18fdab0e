"""Wrapping 16 bit TFTP block numbers."""

from __future__ import annotations

from dataclasses import dataclass

_MASK = 0xFFFF


@dataclass(frozen=True)
class SequenceId:
    """A TFTP block number with modulo 2**16 arithmetic and ordering."""

    value: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.value <= _MASK:
            raise ValueError(f"sequence id {self.value} out of range")

    def delta(self, other: SequenceId) -> int:
        """Return ``self - other`` modulo 2**16."""
        return (self.value - other.value) & _MASK

    def to_bytes(self) -> bytes:
        return self.value.to_bytes(2, "big")

    def hi(self) -> int:
        return (self.value >> 8) & 0xFF

    def lo(self) -> int:
        return self.value & 0xFF

    def __add__(self, other: int) -> SequenceId:
        if not isinstance(other, int):
            return NotImplemented
        return SequenceId((self.value + other) & _MASK)

    def __sub__(self, other: int) -> SequenceId:
        if not isinstance(other, int):
            return NotImplemented
        return SequenceId((self.value - other) & _MASK)

    def _distance(self, other: SequenceId) -> int:
        # doubled forward distance; never equal to 0xffff since 0xffff is odd
        return 2 * ((other.value - self.value) & _MASK)

    def __lt__(self, other: SequenceId) -> bool:
        if not isinstance(other, SequenceId):
            return NotImplemented
        d = self._distance(other)
        return d != 0 and d < _MASK

    def __le__(self, other: SequenceId) -> bool:
        if not isinstance(other, SequenceId):
            return NotImplemented
        return self._distance(other) < _MASK

    def __gt__(self, other: SequenceId) -> bool:
        if not isinstance(other, SequenceId):
            return NotImplemented
        return self._distance(other) > _MASK

    def __ge__(self, other: SequenceId) -> bool:
        if not isinstance(other, SequenceId):
            return NotImplemented
        d = self._distance(other)
        return d == 0 or d > _MASK

    def __str__(self) -> str:
        return f"#{self.value}"

    def __repr__(self) -> str:
        return str(self.value)