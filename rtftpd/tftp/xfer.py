"""Sliding window of DATA blocks for a read transfer (RFC 7440)."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from rtftpd.errors import InternalError, ProtocolError
from rtftpd.tftp.datagram import DataPacket
from rtftpd.tftp.sequence_id import SequenceId

log = logging.getLogger(__name__)


class Xfer:
    """Holds the blocks of the current window and refills it on acknowledgements."""

    def __init__(self, fetcher: Any, block_size: int, window_size: int) -> None:
        if not 0 < window_size < 0xFFFF:
            raise ValueError(f"invalid window size {window_size}")
        if block_size <= 0:
            raise ValueError(f"invalid block size {block_size}")

        self._block_size = block_size
        self._use_mmap = fetcher.is_mmaped()
        self._blocks: list[bytes] = [b""] * window_size
        self._start_seq = SequenceId(0)
        self._start_idx = 0
        self._active = 0
        self._eof = False

    @property
    def _window_size(self) -> int:
        return len(self._blocks)

    def _free_blocks(self, block_id: SequenceId) -> None:
        delta = 0 if self._active == 0 else block_id.delta(self._start_seq)

        if delta == self._active:
            log.debug("all active blocks consumed")
            self._start_idx = 0
            self._start_seq = block_id
            self._active = 0
        elif delta > self._active:
            raise ProtocolError("blk-id out of window")
        else:
            log.debug("freeing %d blocks", delta)
            self._start_idx = (self._start_idx + delta) % self._window_size
            self._start_seq = self._start_seq + delta
            self._active -= delta

    async def _read_block(self, fetcher: Any) -> bytes:
        if fetcher.is_eof():
            return b""
        if self._use_mmap:
            data = fetcher.read_mmap(self._block_size)
        else:
            data = await fetcher.read(self._block_size)
        if len(data) > self._block_size:
            raise InternalError("block exceeds block size")
        return bytes(data)

    async def fill_window(self, block_id: SequenceId, fetcher: Any) -> int:
        """Drop the blocks before ``block_id`` and read new ones into the window.

        Returns the number of blocks which stayed in the window, i.e. the
        blocks that will be sent again.
        """
        log.debug(
            "filling %r in %r@%d+%d", block_id, self._start_seq, self._start_idx, self._active
        )

        self._free_blocks(block_id)
        kept = self._active

        while self._active < self._window_size and not self._eof:
            slot = (self._start_idx + self._active) % self._window_size
            data = await self._read_block(fetcher)
            self._blocks[slot] = data
            self._active += 1

            if len(data) < self._block_size:
                self._eof = True

            log.debug("read %d; active_sz=%d", len(data), self._active)

        return kept

    def is_eof(self) -> bool:
        """Whether all data has been read and acknowledged."""
        return self._eof and self._active == 0

    def __iter__(self) -> Iterator[DataPacket]:
        ring = self._blocks[self._start_idx :] + self._blocks[: self._start_idx]
        for offset, data in enumerate(ring[: self._active]):
            yield DataPacket(self._start_seq + offset, data)