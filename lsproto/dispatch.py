"""Dispatch of non-blocking requests to a worker thread, with timeouts and fallbacks."""

from __future__ import annotations

import abc
import logging
import queue
import threading
import time
from typing import Any, Callable, Optional, Tuple

from .io import Output
from .message import ErrorCode, Request, ResponseError, send_response

log = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 1.5
"""Seconds after which an unanswered request gets its fallback response."""


class RequestAction(abc.ABC):
    """Request logic that runs off the input-reading thread.

    Subclasses set ``method`` and may override ``timeout`` (in seconds).
    Both methods return a response or raise ``ResponseError``.
    """

    method: str = ""
    timeout: float = DEFAULT_REQUEST_TIMEOUT

    @abc.abstractmethod
    def fallback_response(self) -> Any:
        """Return the response used when the request times out."""

    @abc.abstractmethod
    def handle(self, ctx: Any, params: Any) -> Any:
        """Process the request and return its response."""


_Outcome = Tuple[bool, Any]
_DISCONNECTED = object()


def _call(fn: Callable[[], Any]) -> _Outcome:
    try:
        return True, fn()
    except ResponseError as exc:
        return False, exc


def _work(action: RequestAction, request: Request, ctx: Any, results: "queue.Queue") -> None:
    try:
        # Skip expensive work for requests that have already timed out.
        if time.monotonic() - request.received >= action.timeout:
            outcome: Any = _call(action.fallback_response)
        else:
            outcome = _call(lambda: action.handle(ctx, request.params))
    except Exception:
        log.exception("request handler for %s failed", action.method)
        outcome = _DISCONNECTED
    results.put(outcome)


def handle_request(action: RequestAction, request: Request, ctx: Any, out: Output) -> None:
    """Run ``action`` for ``request`` on a worker thread and send the result to ``out``.

    If no result arrives within the action's timeout, or the handler fails
    unexpectedly, the fallback response is sent instead.
    """
    results: "queue.Queue" = queue.Queue(maxsize=1)
    worker = threading.Thread(
        target=_work,
        args=(action, request, ctx, results),
        name=f"work: {action.method}",
        daemon=True,
    )
    worker.start()

    try:
        outcome = results.get(timeout=action.timeout)
    except queue.Empty:
        outcome = _DISCONNECTED
    if outcome is _DISCONNECTED:
        outcome = _call(action.fallback_response)

    ok, value = outcome
    if ok:
        send_response(value, request.id, out)
    elif value.is_empty:
        out.failure_message(request.id, ErrorCode.INTERNAL_ERROR, "An unknown error occurred")
    else:
        out.failure_message(request.id, value.code, value.message or "")


_STOP = object()


class Dispatcher:
    """Hands requests to a single worker thread that handles them in order."""

    def __init__(self, out: Output) -> None:
        self._out = out
        self._queue: "queue.Queue" = queue.Queue()
        self._closed = False
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name="dispatch-worker", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                self._queue.task_done()
                return
            action, request, ctx, done = item
            try:
                handle_request(action, request, ctx, self._out)
            except Exception:
                log.exception("failed to handle %s", action.method)
            finally:
                done.set()
                self._queue.task_done()

    def dispatch(self, action: RequestAction, request: Request, ctx: Any) -> Optional[threading.Event]:
        """Queue a request without blocking; return an event set once it is handled."""
        with self._lock:
            if self._closed:
                log.debug("failed to dispatch request: dispatcher is closed")
                return None
            done = threading.Event()
            self._queue.put((action, request, ctx, done))
            return done

    def wait_idle(self) -> None:
        """Block until every dispatched request has been handled."""
        self._queue.join()

    def close(self) -> None:
        """Stop the worker after the requests already queued have been handled."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
        self._thread.join()

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()