"""JSON-RPC message types: raw messages, requests, notifications and responses."""

from __future__ import annotations

import enum
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

log = logging.getLogger(__name__)

RequestId = Union[str, int]
Params = Union[dict, list, None]

SHOW_MESSAGE_METHOD = "window/showMessage"
MESSAGE_TYPE_WARNING = 2


class ErrorCode(enum.IntEnum):
    """Standard JSON-RPC error codes and the LSP "not initialized" server error."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    SERVER_NOT_INITIALIZED = -32002


class JsonRpcError(Exception):
    """A JSON-RPC error object, raised when a message cannot be handled."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = int(code)
        self.message = message
        self.data = data

    @classmethod
    def parse_error(cls) -> "JsonRpcError":
        return cls(ErrorCode.PARSE_ERROR, "Parse error")

    @classmethod
    def invalid_request(cls) -> "JsonRpcError":
        return cls(ErrorCode.INVALID_REQUEST, "Invalid request")

    @classmethod
    def invalid_params(cls, message: str) -> "JsonRpcError":
        return cls(ErrorCode.INVALID_PARAMS, f"Invalid params: {message}")

    def to_dict(self) -> dict:
        result: dict = {"code": self.code, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JsonRpcError):
            return NotImplemented
        return (self.code, self.message, self.data) == (other.code, other.message, other.data)

    def __hash__(self) -> int:
        return hash((self.code, self.message))

    def __repr__(self) -> str:
        return f"JsonRpcError(code={self.code}, message={self.message!r})"


class ResponseError(Exception):
    """Failure of a request handler.

    Without a code it is an "empty" error that carries no special response for
    the client; with a code it carries a message to send back.
    """

    def __init__(self, code: Optional[int] = None, message: Optional[str] = None) -> None:
        super().__init__(message or "")
        self.code = None if code is None else int(code)
        self.message = message

    @property
    def is_empty(self) -> bool:
        return self.code is None


@dataclass(frozen=True)
class Ack:
    """A response that only acknowledges receipt; serialized as ``null``."""


@dataclass(frozen=True)
class NoResponse:
    """The lack of a response to a request: nothing is sent."""


@dataclass
class ResponseWithMessage:
    """Either a proper response, or a warning shown to the user followed by a default response."""

    response: Any = None
    warning: Optional[str] = None
    default: Callable[[], Any] = dict


def format_request_id(request_id: RequestId) -> str:
    """Render a request id as it appears inside a JSON message."""
    if isinstance(request_id, bool):
        raise TypeError("request id must be a string or an integer")
    if isinstance(request_id, str):
        return f'"{request_id}"'
    if isinstance(request_id, int):
        return str(request_id)
    raise TypeError("request id must be a string or an integer")


def send_response(response: Any, request_id: RequestId, out: Any) -> None:
    """Send a handler's response for ``request_id`` along ``out``."""
    if isinstance(response, NoResponse):
        return
    if isinstance(response, Ack):
        out.success(request_id, None)
        return
    if isinstance(response, ResponseWithMessage):
        if response.warning is None:
            out.success(request_id, response.response)
        else:
            out.notify(
                Notification(
                    SHOW_MESSAGE_METHOD,
                    {"type": MESSAGE_TYPE_WARNING, "message": response.warning},
                )
            )
            send_response(response.default(), request_id, out)
        return
    out.success(request_id, response)


def _check_params(method: str, params: Any) -> Params:
    if params is None or isinstance(params, (dict, list)):
        return params
    raise ValueError(f"Bad parameter type found for {method!r} request")


@dataclass
class Request:
    """A request with an id, as defined by the language server protocol."""

    id: RequestId
    method: str
    params: Any = None
    received: float = field(default_factory=time.monotonic, compare=False)

    def to_json(self) -> str:
        raw = RawMessage(self.method, self.id, _check_params(self.method, self.params))
        return raw.to_json()

    def __str__(self) -> str:
        return self.to_json()


@dataclass
class Notification:
    """A notification: a message with a method and no id."""

    method: str
    params: Any = None

    def to_json(self) -> str:
        raw = RawMessage(self.method, None, _check_params(self.method, self.params))
        return raw.to_json()

    def __str__(self) -> str:
        return self.to_json()


def _valid_id(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, str):
        return True
    return isinstance(value, int) and value >= 0


_PARAM_ERRORS = (TypeError, ValueError, KeyError, AttributeError)


@dataclass
class RawMessage:
    """A parsed but untyped JSON-RPC message; missing params are ``None``."""

    method: str
    id: Optional[RequestId] = None
    params: Params = None

    @classmethod
    def try_parse(cls, msg: str) -> Optional["RawMessage"]:
        """Parse a message; return ``None`` for responses to our own requests."""
        try:
            command = json.loads(msg)
        except (ValueError, TypeError):
            raise JsonRpcError.parse_error() from None
        if not isinstance(command, dict):
            return None

        request_id = command.get("id")
        if request_id is not None and not _valid_id(request_id):
            raise JsonRpcError.invalid_request()

        if "method" not in command:
            return None
        method = command["method"]
        if not isinstance(method, str):
            raise JsonRpcError.invalid_request()

        params = command.get("params")
        if params is not None and not isinstance(params, (dict, list)):
            raise JsonRpcError.invalid_request()

        return cls(method, request_id, params)

    def _parse_params(self, parse_params: Optional[Callable[[Params], Any]], kind: str) -> Any:
        if parse_params is None:
            return self.params
        try:
            return parse_params(self.params)
        except _PARAM_ERRORS as exc:
            log.debug("error when parsing as %s: %s", kind, exc)
            raise JsonRpcError.invalid_params(str(exc)) from None

    def parse_as_request(self, parse_params: Optional[Callable[[Params], Any]] = None) -> Request:
        params = self._parse_params(parse_params, "request")
        if self.id is None:
            raise JsonRpcError.invalid_request()
        return Request(self.id, self.method, params)

    def parse_as_notification(
        self, parse_params: Optional[Callable[[Params], Any]] = None
    ) -> Notification:
        params = self._parse_params(parse_params, "notification")
        return Notification(self.method, params)

    def to_dict(self) -> dict:
        result: dict = {"jsonrpc": "2.0", "method": self.method}
        if self.id is not None:
            result["id"] = self.id
        if isinstance(self.params, (dict, list)):
            result["params"] = self.params
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)