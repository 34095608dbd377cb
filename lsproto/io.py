"""Framing of language server messages over byte streams."""

from __future__ import annotations

import abc
import itertools
import json
import logging
import re
import sys
import threading
from typing import Any, BinaryIO, Optional

from .message import JsonRpcError, Notification, Request, RequestId, format_request_id

log = logging.getLogger(__name__)

_USIZE_MAX = 2**64 - 1
_DECIMAL = re.compile(r"\+?[0-9]+")


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ValueError(f"stream did not contain valid UTF-8: {exc}") from None


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise EOFError("failed to fill whole buffer")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_message(stream: BinaryIO) -> str:
    """Read the content of the next base-protocol message from a binary stream.

    Raises ``EOFError`` when the input ends early and ``ValueError`` when the
    headers or the content are invalid.
    """
    size: Optional[int] = None
    while True:
        line = _decode(stream.readline())
        if not line:
            raise EOFError("EOF encountered in the middle of reading LSP headers")
        if line == "\r\n":
            break

        parts = line.split(" ")
        if len(parts) != 2:
            raise ValueError(f"Header '{line}' is malformed")
        name = parts[0].lower()
        value = parts[1].strip()

        if name == "content-length:":
            if not _DECIMAL.fullmatch(value) or int(value) > _USIZE_MAX:
                raise ValueError("Couldn't read size")
            size = int(value)
        elif name == "content-type:":
            if value not in ("utf8", "utf-8"):
                raise ValueError(f"Content type '{value}' is invalid")
        # Unknown headers are ignored.

    if size is None:
        raise ValueError("Message is missing 'content-length' header")
    log.debug("reading: %d bytes", size)
    return _decode(_read_exact(stream, size))


class StreamMessageReader:
    """Reads language server messages from a binary stream (stdin by default)."""

    def __init__(self, stream: Optional[BinaryIO] = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def read_message(self) -> Optional[str]:
        """Return the next message, or ``None`` if it cannot be read."""
        stream = self._stream if self._stream is not None else sys.stdin.buffer
        with self._lock:
            try:
                return read_message(stream)
            except (EOFError, ValueError, OSError) as exc:
                log.debug("%r", exc)
                return None


def _to_json(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(value: Any) -> str:
    return json.dumps(
        value, separators=(",", ":"), ensure_ascii=False, allow_nan=False, default=_to_json
    )


class Output(abc.ABC):
    """Anything that can send notifications and responses to a client."""

    @abc.abstractmethod
    def response(self, output: str) -> None:
        """Send a response string along the output."""

    @abc.abstractmethod
    def provide_id(self) -> RequestId:
        """Return a new unique request id."""

    def failure(self, request_id: Optional[RequestId], error: JsonRpcError) -> None:
        """Notify the client of a failure."""
        payload = {"jsonrpc": "2.0", "error": error.to_dict(), "id": request_id}
        self.response(_dumps(payload))

    def failure_message(self, request_id: RequestId, code: int, message: str) -> None:
        """Notify the client of a failure with the given diagnostic message."""
        self.failure(request_id, JsonRpcError(code, message))

    def success(self, request_id: RequestId, data: Any) -> None:
        """Send a successful response carrying ``data``."""
        try:
            body = _dumps(data)
        except (TypeError, ValueError) as exc:
            log.debug("Could not serialize data for success message: %r (%s)", data, exc)
            return
        self.response(f'{{"jsonrpc":"2.0","id":{format_request_id(request_id)},"result":{body}}}')

    def notify(self, notification: Notification) -> None:
        """Send a notification."""
        self.response(notification.to_json())

    def request(self, request: Request) -> None:
        """Send a one-shot request; any response to it is ignored."""
        self.response(request.to_json())


class StreamOutput(Output):
    """Writes framed messages to a binary stream (stdout by default)."""

    def __init__(self, stream: Optional[BinaryIO] = None) -> None:
        self._stream = stream
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def response(self, output: str) -> None:
        body = output.encode("utf-8")
        framed = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body
        log.debug("response: %r", framed)
        stream = self._stream if self._stream is not None else sys.stdout.buffer
        with self._lock:
            stream.write(framed)
            stream.flush()

    def provide_id(self) -> RequestId:
        with self._lock:
            return next(self._ids)