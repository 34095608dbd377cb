"""The language server loop: reading, routing and answering client messages."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Mapping, Optional, Tuple

from .dispatch import Dispatcher, RequestAction
from .io import Output, StreamMessageReader, StreamOutput
from .lsp_data import ClientCapabilities, InitializationOptions, parse_file_path
from .message import (
    MESSAGE_TYPE_WARNING,
    SHOW_MESSAGE_METHOD,
    Ack,
    ErrorCode,
    JsonRpcError,
    NoResponse,
    Notification,
    RawMessage,
    Request,
    ResponseError,
    send_response,
)

log = logging.getLogger(__name__)

EXIT_METHOD = "exit"
SHUTDOWN_METHOD = "shutdown"
INITIALIZE_METHOD = "initialize"

NOT_INITIALIZED_MESSAGE = "not yet received `initialize` request"
ALREADY_INITIALIZED_CODE = 123
FATAL_EXIT_CODE = 101

TEXT_DOCUMENT_SYNC_INCREMENTAL = 2
COMMAND_PREFIX = "rls"

SettingsCheck = Callable[[dict], Tuple[Dict[str, List[str]], List[str], List[str]]]
NotificationHandler = Callable[[Any, "ServerContext", Output], None]


@dataclass(frozen=True)
class ServerStateChange:
    """How the server proceeds after a message: continue, or stop with ``exit_code``."""

    exit_code: Optional[int] = None

    @property
    def is_break(self) -> bool:
        return self.exit_code is not None


_CONTINUE = ServerStateChange()


@dataclass
class ServerContext:
    """State shared by handlers; filled in by the ``initialize`` request."""

    pid: int = field(default_factory=os.getpid)
    initialized: bool = False
    root_path: Optional[Path] = None
    init_options: Optional[InitializationOptions] = None
    capabilities: ClientCapabilities = field(default_factory=ClientCapabilities)
    shut_down: threading.Event = field(default_factory=threading.Event, repr=False)

    def init(
        self,
        root_path: Path,
        init_options: InitializationOptions,
        capabilities: ClientCapabilities,
    ) -> None:
        """Mark the context initialized; raise ``RuntimeError`` if it already is."""
        if self.initialized:
            raise RuntimeError("context is already initialized")
        self.root_path = root_path
        self.init_options = init_options
        self.capabilities = capabilities
        self.initialized = True

    @property
    def is_shut_down(self) -> bool:
        return self.initialized and self.shut_down.is_set()


def _show_warning(out: Output, message: str) -> None:
    out.notify(Notification(SHOW_MESSAGE_METHOD, {"type": MESSAGE_TYPE_WARNING, "message": message}))


def maybe_notify_unknown_configs(out: Output, unknowns: List[str]) -> None:
    """Warn the client about unknown configuration keys, if there are any."""
    if not unknowns:
        return
    parts = "".join(
        f"{' ' if index == 0 else ','}`{key}` " for index, key in enumerate(unknowns)
    )
    _show_warning(out, f"Unknown configuration:{parts}")


def maybe_notify_deprecated_configs(
    out: Output, keys: List[str], notices: Optional[Mapping[str, Optional[str]]] = None
) -> None:
    """Warn the client once for each deprecated key, with its notice if there is one."""
    notices = notices or {}
    for key in keys:
        notice = notices.get(key)
        suffix = f": {notice}" if notice else ""
        _show_warning(out, f"Configuration option `{key}` is deprecated{suffix}")


def maybe_notify_duplicated_configs(out: Output, dups: Mapping[str, List[str]]) -> None:
    """Warn the client about configuration keys that were given more than once."""
    if not dups:
        return
    msg = ""
    for key, values in dups.items():
        msg += f"{key}:"
        msg += "".join(f"{' ' if index == 0 else ','}{value}, " for index, value in enumerate(values))
        msg += "; "
    _show_warning(out, f"Duplicated configuration: {msg}")


def get_root_path(params: Mapping[str, Any]) -> Path:
    """Return the workspace root from ``initialize`` params: ``rootUri`` first, then ``rootPath``."""
    root_uri = params.get("rootUri")
    if root_uri is not None:
        return parse_file_path(root_uri)
    root_path = params.get("rootPath")
    if root_path is None:
        raise ValueError("No root path or URI")
    return Path(root_path)


def server_capabilities(pid: int) -> dict:
    """The capabilities announced in the ``initialize`` response."""
    return {
        "textDocumentSync": TEXT_DOCUMENT_SYNC_INCREMENTAL,
        "hoverProvider": True,
        "completionProvider": {"resolveProvider": True, "triggerCharacters": [".", ":"]},
        "definitionProvider": True,
        "implementationProvider": True,
        "referencesProvider": True,
        "documentHighlightProvider": True,
        "documentSymbolProvider": True,
        "workspaceSymbolProvider": True,
        "codeActionProvider": True,
        "documentFormattingProvider": True,
        "executeCommandProvider": {
            # The pid keeps command names unique across server instances.
            "commands": [
                f"{COMMAND_PREFIX}.applySuggestion-{pid}",
                f"{COMMAND_PREFIX}.deglobImports-{pid}",
            ]
        },
        "renameProvider": True,
        "documentRangeFormattingProvider": False,
        "codeLensProvider": {"resolveProvider": False},
    }


def _void_params(params: Any) -> None:
    # Some clients send an empty object or array for requests without params.
    return None


def _initialize_params(params: Any) -> dict:
    if not isinstance(params, dict):
        raise TypeError("initialize params must be an object")
    if not isinstance(params.get("capabilities"), dict):
        raise ValueError("missing field `capabilities`")
    return params


class LsService:
    """A language server: reads messages from ``reader`` and answers on ``output``.

    ``reader`` is any object with a ``read_message()`` method returning a
    string, or ``None`` when no message can be read.
    """

    def __init__(
        self,
        reader: Any,
        output: Output,
        *,
        context: Optional[ServerContext] = None,
        check_settings: Optional[SettingsCheck] = None,
        deprecated_notices: Optional[Mapping[str, Optional[str]]] = None,
    ) -> None:
        self._reader = reader
        self.output = output
        self.ctx = context if context is not None else ServerContext()
        self._check_settings = check_settings
        self._deprecated_notices = dict(deprecated_notices or {})
        self._dispatcher = Dispatcher(output)
        self._notifications: Dict[str, Tuple[Optional[Callable[[Any], Any]], NotificationHandler]] = {}
        self._requests: Dict[str, Tuple[RequestAction, Optional[Callable[[Any], Any]]]] = {}

    def register_notification(
        self,
        method: str,
        parse_params: Optional[Callable[[Any], Any]],
        handler: NotificationHandler,
    ) -> None:
        """Handle notifications of ``method`` with ``handler(params, ctx, out)``."""
        self._notifications[method] = (parse_params, handler)

    def register_request(
        self, action: RequestAction, parse_params: Optional[Callable[[Any], Any]] = None
    ) -> None:
        """Handle requests of ``action.method`` on the dispatch worker."""
        self._requests[action.method] = (action, parse_params)

    def handle_message(self) -> ServerStateChange:
        """Read one message, handle it, and say how the server should proceed."""
        msg = self._reader.read_message()
        if msg is None:
            log.error("Can't read message")
            self.output.failure(None, JsonRpcError.parse_error())
            return ServerStateChange(FATAL_EXIT_CODE)

        log.debug("Read message `%s`", msg)
        try:
            raw = RawMessage.try_parse(msg)
        except JsonRpcError as exc:
            log.error("parsing error, %r", exc)
            self.output.failure(None, JsonRpcError.parse_error())
            return ServerStateChange(FATAL_EXIT_CODE)
        if raw is None:
            return _CONTINUE

        shutdown_mode = self.ctx.is_shut_down
        if raw.method == EXIT_METHOD:
            return ServerStateChange(0 if shutdown_mode else 1)
        if shutdown_mode:
            log.debug("In shutdown mode, ignoring %r", raw)
            return _CONTINUE

        try:
            self._dispatch_message(raw)
        except JsonRpcError as exc:
            log.error("dispatch error: %r, message: `%s`", exc, msg)
            self.output.failure(raw.id, exc)
            return ServerStateChange(FATAL_EXIT_CODE)
        return _CONTINUE

    def run(self) -> int:
        """Handle messages until told to stop; return the exit code."""
        try:
            while True:
                change = self.handle_message()
                if change.is_break:
                    return change.exit_code
        finally:
            self.close()

    def wait_for_concurrent_jobs(self) -> None:
        """Block until every dispatched request has been answered."""
        if self.ctx.initialized:
            self._dispatcher.wait_idle()

    def close(self) -> None:
        """Stop the dispatch worker after the queued requests are handled."""
        self._dispatcher.close()

    def __enter__(self) -> "LsService":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _dispatch_message(self, raw: RawMessage) -> None:
        method = raw.method
        log.debug("Handling `%s`", method)

        if method in self._notifications:
            parse_params, handler = self._notifications[method]
            notification = raw.parse_as_notification(parse_params)
            if not self.ctx.initialized:
                log.warning(
                    "Server has not yet received an `initialize` request, ignoring %s", method
                )
                return
            try:
                handler(notification.params, self.ctx, self.output)
            except Exception:
                log.debug("Error handling notification: %r", raw, exc_info=True)
        elif method == SHUTDOWN_METHOD:
            self._blocking(raw.parse_as_request(_void_params), self._shutdown)
        elif method == INITIALIZE_METHOD:
            self._blocking(raw.parse_as_request(_initialize_params), self._initialize)
        elif method in self._requests:
            action, parse_params = self._requests[method]
            request = raw.parse_as_request(parse_params)
            if self.ctx.initialized:
                self._dispatcher.dispatch(action, request, self.ctx)
            else:
                log.warning(
                    "Server has not yet received an `initialize` request, cannot handle %s",
                    method,
                )
                self.output.failure_message(
                    request.id, ErrorCode.SERVER_NOT_INITIALIZED, NOT_INITIALIZED_MESSAGE
                )
        else:
            log.debug("Method not found: %s", method)

    def _blocking(self, request: Request, handler: Callable[[Request], Any]) -> None:
        # Wait for non-blocking requests first, to keep responses in order.
        self.wait_for_concurrent_jobs()
        try:
            response = handler(request)
        except ResponseError as err:
            if err.is_empty:
                log.debug("error handling %s", request.method)
                self.output.failure_message(
                    request.id, ErrorCode.INTERNAL_ERROR, "An unknown error occurred"
                )
            else:
                log.debug("error handling %s: %s", request.method, err.message)
                self.output.failure_message(request.id, err.code, err.message or "")
        else:
            send_response(response, request.id, self.output)

    def _shutdown(self, request: Request) -> Ack:
        if not self.ctx.initialized:
            raise ResponseError(ErrorCode.SERVER_NOT_INITIALIZED, NOT_INITIALIZED_MESSAGE)
        self.ctx.shut_down.set()
        return Ack()

    def _initialize(self, request: Request) -> NoResponse:
        params = request.params
        dups: Dict[str, List[str]] = {}
        deprecated: List[str] = []

        init_options = InitializationOptions()
        raw_options = params.get("initializationOptions")
        if raw_options is not None:
            try:
                init_options = InitializationOptions.from_json(raw_options)
            except ValueError as exc:
                log.debug("invalid initialization options: %s", exc)
        unknowns = list(init_options.unknown_settings)

        if init_options.settings is not None and self._check_settings is not None:
            try:
                found_dups, found_unknowns, found_deprecated = self._check_settings(
                    init_options.settings
                )
            except ValueError as exc:
                log.debug("invalid settings: %s", exc)
                init_options.settings = None
            else:
                dups.update(found_dups)
                unknowns.extend(found_unknowns)
                deprecated.extend(found_deprecated)

        if self.ctx.initialized:
            raise ResponseError(ALREADY_INITIALIZED_CODE, "Already received an initialize request")

        try:
            root_path = get_root_path(params)
        except ValueError as exc:
            raise ResponseError(ErrorCode.INVALID_PARAMS, str(exc)) from None

        maybe_notify_unknown_configs(self.output, unknowns)
        maybe_notify_deprecated_configs(self.output, deprecated, self._deprecated_notices)
        maybe_notify_duplicated_configs(self.output, dups)

        # The response goes out before anything else the initialization triggers.
        send_response({"capabilities": server_capabilities(self.ctx.pid)}, request.id, self.output)

        capabilities = ClientCapabilities.from_initialize_params(params)
        self.ctx.init(root_path, init_options, capabilities)
        return NoResponse()


def run_server(stdin: Optional[BinaryIO] = None, stdout: Optional[BinaryIO] = None) -> int:
    """Serve on the given binary streams (standard input and output by default)."""
    service = LsService(StreamMessageReader(stdin), StreamOutput(stdout))
    log.debug("Language server starting up")
    exit_code = service.run()
    log.debug("Server shutting down")
    return exit_code