"""Command line entry point and request dispatch loop of the TFTP server."""

from __future__ import annotations

import argparse
import asyncio
import enum
import ipaddress
import itertools
import json
import logging
import os
import signal
import socket
import tempfile
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from rtftpd.errors import TftpError
from rtftpd.net import RecvInfo, UdpSocket
from rtftpd.proxy.cache import Cache, GcProperties, get_cache
from rtftpd.tftp.session import Session
from rtftpd.tftp.session_stats import SessionStats
from rtftpd.util import Bucket, format_number

log = logging.getLogger(__name__)

_RECV_SIZE = 1500
_SYSTEMD_FD_START = 3


@dataclass
class Environment:
    """Settings shared by all sessions."""

    dir: Path = Path(".")
    cache_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    fallback_uri: str | None = None
    max_block_size: int = 1500
    max_window_size: int = 64
    max_connections: int = 64
    timeout: float = 3.0
    no_rfc2347: bool = False
    wrq_devnull: bool = False
    enable_proxy: bool = True

    def allow_uri(self) -> bool:
        return self.enable_proxy


class LogFormat(enum.Enum):
    DEFAULT = "default"
    COMPACT = "compact"
    FULL = "full"
    JSON = "json"


def format_speed(duration: timedelta | float, stats: SessionStats) -> str:
    """Describe the duration and throughput of a finished transfer."""
    seconds = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
    text = f"duration={format_number(int(seconds * 1000))} ms"

    speed = stats.speed(seconds)
    if speed is None:
        return text

    file_speed, net_speed = speed
    if file_speed == net_speed:
        return text + f" => total={format_number(int(file_speed))} bytes/s"
    if not stats.is_complete:
        return text + f" => net={format_number(int(net_speed))} bytes/s"
    return (
        text
        + f" => file={format_number(int(file_speed))} bytes/s,"
        + f" net={format_number(int(net_speed))} bytes/s"
    )


async def handle_request(
    env: Environment, conn_id: int, info: RecvInfo, request: bytes, bucket: Bucket
) -> None:
    """Serve one incoming request on a new session socket."""
    start = time.monotonic()
    try:
        session = await Session.create(env, info.remote, info.local)
    except (TftpError, OSError) as e:
        log.warning("conn#%d: failed to create tftp session: %r", conn_id, e)
        return

    guard = bucket.acquire()
    try:
        if guard is None:
            stats = await session.reject()
        else:
            stats = await session.run(request)
    except Exception as e:
        log.error("conn#%d: request failed: %r", conn_id, e)
        return
    finally:
        if guard is not None:
            guard.release()
        session.close()

    log.info(
        "conn#%d: %s, %s", conn_id, stats, format_speed(time.monotonic() - start, stats)
    )


async def run_server(env: Environment, sock: UdpSocket) -> None:
    """Receive requests on ``sock`` and serve each in its own task."""
    bucket = Bucket(env.max_connections)
    tasks: set[asyncio.Task[None]] = set()

    try:
        for conn_id in itertools.count():
            info = await sock.recvmsg(_RECV_SIZE)
            task = asyncio.create_task(handle_request(env, conn_id, info, info.data, bucket))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _install_signal_handlers(cache: Cache) -> list[int]:
    loop = asyncio.get_running_loop()
    pending: set[asyncio.Task[None]] = set()

    def dump() -> None:
        log.debug("got SIGUSR1")
        task = loop.create_task(cache.dump())
        pending.add(task)
        task.add_done_callback(pending.discard)

    def clear() -> None:
        log.debug("got SIGUSR2")
        cache.clear()

    installed = []
    for signum, handler in ((signal.SIGUSR1, dump), (signal.SIGUSR2, clear)):
        try:
            loop.add_signal_handler(signum, handler)
        except (NotImplementedError, RuntimeError, ValueError):
            log.warning("cannot install handler for signal %d", signum)
            continue
        installed.append(signum)
    return installed


async def _serve(env: Environment, listen: tuple[str, int] | socket.socket) -> None:
    cache = get_cache()
    cache.instantiate(
        env.cache_dir,
        GcProperties(
            max_elements=50,
            max_lifetime=timedelta(hours=1),
            sleep=timedelta(seconds=30),
        ),
    )

    installed: list[int] = []
    try:
        if isinstance(listen, socket.socket):
            sock = UdpSocket.from_socket(listen)
        else:
            sock = UdpSocket.bind(listen)

        with sock:
            sock.set_nonblocking()
            sock.set_request_pktinfo()
            installed = _install_signal_handlers(cache)
            await run_server(env, sock)
    finally:
        loop = asyncio.get_running_loop()
        for signum in installed:
            loop.remove_signal_handler(signum)
        await cache.close()


def _ip_address(text: str) -> str:
    try:
        return str(ipaddress.ip_address(text))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid ip address '{text}'") from None


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse the command line."""
    parser = argparse.ArgumentParser(prog="rtftpd", description="TFTP server")
    parser.add_argument("-s", "--systemd", action="store_true",
                        help="use systemd fd propagation")
    parser.add_argument("-p", "--port", type=int, default=69, help="port to listen on")
    parser.add_argument("-l", "--listen", type=_ip_address, default="::", metavar="IP",
                        help="ip address to listen on")
    parser.add_argument("-m", "--max-connections", type=int, default=64, metavar="NUM",
                        help="maximum number of connections")
    parser.add_argument("-t", "--timeout", type=float, default=3.0,
                        help="timeout in seconds during tftp transfers")
    parser.add_argument("-f", "--fallback", metavar="URI", help="fallback uri")
    parser.add_argument("-L", "--log-format", choices=[f.value for f in LogFormat],
                        default=LogFormat.DEFAULT.value, metavar="FMT", help="log format")
    parser.add_argument("-C", "--cache-dir", metavar="DIR",
                        help="directory used for cache files")
    parser.add_argument("--no-rfc2347", action="store_true",
                        help="disable RFC 2347 (OACK) support; only useful for testing some clients")
    parser.add_argument("--wrq-devnull", action="store_true",
                        help="accept WRQ but throw it away; only useful for testing some clients")
    parser.add_argument("--disable-proxy", action="store_true", help="disable proxy support")

    args = parser.parse_args(argv)
    if not 0 <= args.port <= 0xFFFF:
        parser.error(f"port {args.port} out of range")
    if args.max_connections < 0:
        parser.error("maximum number of connections must not be negative")
    args.log_format = LogFormat(args.log_format)
    return args


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(
            {
                "timestamp": self.formatTime(record),
                "level": record.levelname,
                "target": record.name,
                "message": record.getMessage(),
            }
        )


def _setup_logging(fmt: LogFormat) -> None:
    handler = logging.StreamHandler()
    if fmt is LogFormat.COMPACT:
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    elif fmt is LogFormat.JSON:
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )

    name = os.environ.get("RTFTPD_LOG", "ERROR").upper()
    level = logging.getLevelNamesMapping().get(name, logging.ERROR)
    logging.basicConfig(level=level, handlers=[handler], force=True)


def _systemd_socket() -> socket.socket | None:
    try:
        pid = int(os.environ.get("LISTEN_PID", ""))
        count = int(os.environ.get("LISTEN_FDS", ""))
    except ValueError:
        return None
    if pid != os.getpid() or count < 1:
        return None
    return socket.socket(fileno=_SYSTEMD_FD_START)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    log_format = args.log_format
    if log_format is LogFormat.DEFAULT:
        # the journal records timestamps itself
        log_format = LogFormat.COMPACT if args.systemd else LogFormat.FULL
    _setup_logging(log_format)

    env = Environment(
        dir=Path("."),
        cache_dir=Path(args.cache_dir) if args.cache_dir else Path(tempfile.gettempdir()),
        fallback_uri=args.fallback,
        max_connections=args.max_connections,
        timeout=args.timeout,
        no_rfc2347=args.no_rfc2347,
        wrq_devnull=args.wrq_devnull,
        enable_proxy=not args.disable_proxy,
    )

    listen: Any = _systemd_socket() if args.systemd else None
    if listen is None:
        listen = (args.listen, args.port)

    try:
        asyncio.run(_serve(env, listen))
    except KeyboardInterrupt:
        return 0
    except (TftpError, OSError) as e:
        log.error("server failed: %s", e)
        return 1
    return 0