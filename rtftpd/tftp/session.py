"""Serving of a single TFTP request on its own UDP socket."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from rtftpd.errors import (
    BadAck,
    FileMissing,
    OperationNotImplemented,
    ProtocolError,
    RequestError,
    RequestErrorKind,
    TftpError,
    TooManyClients,
    TransferTimeout,
)
from rtftpd.fetcher.builder import Builder
from rtftpd.fetcher.sources import FileFetcher
from rtftpd.net import UdpSocket
from rtftpd.tftp.datagram import (
    AckPacket,
    DataPacket,
    ErrorPacket,
    ReadPacket,
    WritePacket,
    parse_datagram,
    recv_datagram,
)
from rtftpd.tftp.oack import Oack
from rtftpd.tftp.request import Mode, Request
from rtftpd.tftp.sequence_id import SequenceId
from rtftpd.tftp.session_stats import Direction, SessionStats
from rtftpd.tftp.xfer import Xfer

log = logging.getLogger(__name__)

RETRY_CNT = 5
GENERIC_PKT_SZ = 512
FILL_TIMEOUT = 300.0


def tftp_error_code(error: BaseException) -> int:
    """Return the TFTP error code which is reported for ``error``."""
    if isinstance(error, (TooManyClients, RequestError)):
        return 4
    if isinstance(error, FileMissing):
        return 1
    return 0


def _seconds(value: Any) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _format_addr(addr: Any) -> str:
    host, port = addr[0], addr[1]
    return f"[{host}]:{port}" if ":" in str(host) else f"{host}:{port}"


class Session:
    """One transfer with a single client, using a fresh local port."""

    def __init__(self, env: Any, remote: Any, sock: UdpSocket) -> None:
        self.env = env
        self.remote = remote
        self._sock = sock
        self.window_size = 1
        self.block_size = 512
        self.timeout = _seconds(env.timeout)

    @classmethod
    async def create(cls, env: Any, remote: Any, local: Any) -> Session:
        """Open a session socket on ``local`` for talking to ``remote``."""
        sock = UdpSocket.bind((str(local), 0))
        session = cls(env, remote, sock)
        log.debug(
            "session remote=%s local=%s", _format_addr(remote), _format_addr(sock.local_addr())
        )
        return session

    def close(self) -> None:
        self._sock.close()

    async def _send(self, data: bytes) -> None:
        await self._sock.sendto(data, self.remote)

    async def _send_err(self, error: BaseException) -> None:
        log.warning("error: %s", error)
        packet = ErrorPacket(tftp_error_code(error), str(error).encode("utf-8", "replace"))
        await self._send(packet.to_bytes())

    async def _send_ack(self, seq: SequenceId) -> None:
        await self._send(AckPacket(seq).to_bytes())

    async def _recv(self, size: int) -> Any:
        return await recv_datagram(self._sock, size, self.remote, self.timeout)

    def _new_stats(self, direction: Direction, request: Request) -> SessionStats:
        return SessionStats(
            direction=direction,
            filename=str(request.path()),
            remote_ip=_format_addr(self.remote),
            local_ip=_format_addr(self._sock.local_addr()),
        )

    def _apply_oack(self, oack: Oack, max_block: int, max_window: int) -> None:
        oack.update_block_size(max_block)
        if oack.block_size is not None:
            self.block_size = oack.block_size
        oack.update_window_size(max_window)
        if oack.window_size is not None:
            self.window_size = oack.window_size
        if oack.timeout is not None:
            self.timeout = _seconds(oack.timeout)

    async def _wrq_oack(self, oack: Oack) -> None:
        # only a window size of 1 is supported for writes
        self._apply_oack(oack, self.env.max_block_size, 1)
        await self._send(oack.to_bytes())

    async def _run_wrq_devnull(self, request: Request) -> SessionStats:
        log.debug("write request=%r", request)
        stats = self._new_stats(Direction.WRQ, request)

        if not self.env.no_rfc2347 and request.has_options():
            await self._wrq_oack(Oack.from_request(request))
        else:
            await self._send_ack(SequenceId(0))

        stats.window_size = self.window_size
        stats.block_size = self.block_size

        seq = SequenceId(1)
        last_id: SequenceId | None = None
        retry = RETRY_CNT

        while True:
            try:
                resp = await self._recv(4 + self.block_size)
            except TransferTimeout:
                if last_id is not None and retry > 0:
                    log.debug("timeout while waiting for DATA; retrying...")
                    await self._send_ack(last_id)
                    retry -= 1
                    stats.retries += 1
                    continue
                log.warning("timeout while waiting for DATA")
                raise
            except RequestError as e:
                log.warning("bad response for WRQ: %s", e)
                raise ProtocolError("bad response to WRQ") from e

            match resp:
                case DataPacket(seq=pkt_id) if pkt_id != seq:
                    log.debug("got DATA with wrong id %s...", pkt_id)
                case DataPacket(seq=pkt_id, data=data):
                    log.debug("got DATA %s with len %d; throwing it away...", pkt_id, len(data))
                    await self._send_ack(pkt_id)
                    last_id = pkt_id
                    retry = RETRY_CNT
                    seq = seq + 1
                    stats.xmitsz += len(data)
                    if len(data) < self.block_size:
                        break
                case ErrorPacket():
                    log.info("remote site sent %s", resp)
                    break
                case _:
                    log.warning("bad response for WRQ: %s", resp)
                    raise ProtocolError("bad response to WRQ")

        log.debug("stats: %r", stats)
        return stats

    async def _rrq_oack(self, oack: Oack, file_size: int | None) -> None:
        oack.update_tsize(file_size)
        self._apply_oack(oack, self.env.max_block_size, self.env.max_window_size)
        await self._send(oack.to_bytes())

        resp = await self._recv(GENERIC_PKT_SZ)
        match resp:
            case AckPacket(seq=seq) if seq.value == 0:
                return
            case AckPacket(seq=seq):
                log.warning("ACK of OACK with invalid id %s", seq)
                raise BadAck()
            case _:
                log.warning("bad response to OACK: %s", resp)
                raise ProtocolError("bad response to OACK")

    async def _run_rrq(self, request: Request) -> SessionStats:
        log.debug("read request=%r", request)
        stats = self._new_stats(Direction.RRQ, request)

        fetcher = Builder(self.env).instantiate(request.path())
        try:
            try:
                await fetcher.open()
            except (TftpError, OSError) as e:
                await self._send_err(e)
                raise

            fsize = fetcher.size()
            if fsize is not None:
                stats.filesize = fsize

            if not self.env.no_rfc2347 and request.has_options():
                await self._rrq_oack(Oack.from_request(request), fsize)

            stats.window_size = self.window_size
            stats.block_size = self.block_size

            await self._transmit(fetcher, stats)
        finally:
            if isinstance(fetcher, FileFetcher):
                fetcher.close()

        log.debug("stats: %r", stats)
        return stats

    async def _transmit(self, fetcher: Any, stats: SessionStats) -> None:
        seq = SequenceId(1)
        xfer = Xfer(fetcher, self.block_size, self.window_size)
        retry = RETRY_CNT
        is_startup = True

        while True:
            try:
                kept = await asyncio.wait_for(xfer.fill_window(seq, fetcher), FILL_TIMEOUT)
            except TimeoutError:
                raise TransferTimeout() from None

            if kept:
                log.debug("retransmitting %r+", seq)
                stats.retries += 1
                stats.wastedsz += kept

            if xfer.is_eof():
                stats.is_complete = True
                return

            window_count = 0
            for packet in xfer:
                stats.xmitsz += len(packet.data)
                window_count += 1
                await self._send(packet.to_bytes())

            try:
                resp = await self._recv(GENERIC_PKT_SZ)
            except TransferTimeout:
                if retry > 0:
                    log.debug("timeout; resending seq %s", seq)
                    retry -= 1
                    stats.num_timeouts += 1
                    continue
                log.warning("timeout while waiting for ACK")
                raise
            except RequestError as e:
                log.warning("bad response to DATA: %s", e)
                raise ProtocolError("bad response to DATA") from e

            match resp:
                case AckPacket(seq=ack):
                    log.debug("got ACK %s (window %s+%d)", ack, seq, window_count)
                    if is_startup and ack + 1 < seq + window_count:
                        log.warning(
                            "first window truncated; you might want to reduce "
                            "window size to %d or less",
                            ack.value,
                        )
                    is_startup = False
                    retry = RETRY_CNT
                    seq = ack + 1
                case ErrorPacket() if is_startup:
                    log.debug(
                        "remote site sent %s on startup; probably just testing for existence",
                        resp,
                    )
                    return
                case ErrorPacket():
                    log.info("remote site sent %s", resp)
                    return
                case _:
                    log.warning("bad response to DATA: %s", resp)
                    raise ProtocolError("bad response to DATA")

    async def _fail(self, error: TftpError) -> None:
        await self._send_err(error)
        raise error

    async def run(self, request: bytes) -> SessionStats:
        """Handle the initial datagram of a client and return the transfer statistics."""
        try:
            packet = parse_datagram(request)
        except RequestError as e:
            await self._send_err(e)
            raise

        match packet:
            case ReadPacket(request=req) | WritePacket(request=req) if req.mode is not Mode.OCTET:
                await self._fail(RequestError(RequestErrorKind.MODE_UNSUPPORTED))
            case WritePacket(request=req) if self.env.wrq_devnull:
                return await self._run_wrq_devnull(req)
            case WritePacket():
                await self._send_err(RequestError(RequestErrorKind.WRITE_UNSUPPORTED))
                raise OperationNotImplemented()
            case ReadPacket(request=req):
                return await self._run_rrq(req)

        await self._fail(RequestError(RequestErrorKind.OPERATION_UNSUPPORTED))
        raise OperationNotImplemented()

    async def reject(self) -> SessionStats:
        """Tell the client that the server is busy."""
        await self._fail(TooManyClients())
        raise TooManyClients()