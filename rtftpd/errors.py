"""Exception hierarchy of the TFTP server and its HTTP proxy backend."""

from __future__ import annotations

import enum
import http
from typing import Any


class TftpError(Exception):
    """Base class of all errors raised by the server."""

    message = "tftp error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(self.message if message is None else message)


class InvalidPathName(TftpError):
    message = "invalid pathname"


class StringConversion(TftpError):
    message = "string conversion error"


class UriParse(TftpError):
    message = "failed to parse uri"


class FileMissing(TftpError):
    """A requested file does not exist."""

    def __init__(self, path: Any) -> None:
        self.path = path
        super().__init__(f"file '{path}' is missing")


class InternalError(TftpError):
    """An inconsistency inside the server."""

    def __init__(self, message: str) -> None:
        self.detail = message
        super().__init__(f"internal error: {message}")


class TransferTimeout(TftpError):
    message = "timeout"


class BadAck(TftpError):
    message = "bad ack package"


class ProtocolError(TftpError):
    """The peer violated the protocol."""

    def __init__(self, message: str) -> None:
        self.detail = message
        super().__init__(f"generic protocol error: {message}")


class OperationNotImplemented(TftpError):
    message = "operation not implemented"


class TooManyClients(TftpError):
    message = "too much clients"


class RequestErrorKind(enum.Enum):
    """Reasons why a TFTP datagram or request was rejected."""

    TOO_SHORT = "datagram too short"
    BAD_OP_CODE = "bad op code ({})"
    MISSING_FILENAME = "filename missing"
    MISSING_MODE = "mode missing"
    BAD_MODE = "unsupported mode"
    BAD_DIGIT = "not a digit ({})"
    NUMBER_OUT_OF_RANGE = "number out of range"
    MISSING_ARGUMENT = "missing argument"
    MISSING_ZERO = "datagram without trailing zero"
    WRITE_UNSUPPORTED = "write operation not implemented"
    OPERATION_UNSUPPORTED = "operation not supported"
    MODE_UNSUPPORTED = "transfer mode not supported; only 'octet' is implemented"
    MALFORMED_ACK = "malformed ACK"


class RequestError(TftpError):
    """A malformed or unsupported request; ``value`` carries extra detail."""

    def __init__(self, kind: RequestErrorKind, value: int | None = None) -> None:
        self.kind = kind
        self.value = value
        super().__init__(kind.value.format(value))


class ProxyError(TftpError):
    """Base class of errors raised by the HTTP proxy backend."""

    message = "proxy error"


class HttpStatusError(ProxyError):
    """The HTTP server answered with an unexpected status."""

    def __init__(self, status: int) -> None:
        self.status = status
        try:
            text = f"{status} {http.HTTPStatus(status).phrase}"
        except ValueError:
            text = str(status)
        super().__init__(f"request failed with status {text}")


class BadHttpTime(ProxyError):
    message = "bad http time"