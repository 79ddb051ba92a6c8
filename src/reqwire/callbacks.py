from __future__ import annotations

import logging
import threading
import typing

from .base import FutureResult, HTTPResponse

if typing.TYPE_CHECKING:
    from ._collections import HTTPHeaderDict

__all__ = ["ABORT_EVENT", "ExternalEventTrigger", "HttpCallback", "IOObserver"]

log = logging.getLogger(__name__)

T = typing.TypeVar("T")

#: Completion callbacks receive the single :class:`FutureResult` of an
#: execution.
_TYPE_CALLBACK = typing.Callable[[FutureResult[T]], None]
_TYPE_LISTENER = typing.Callable[[str, typing.Any], None]

#: Event asking the engine to terminate an in-flight exchange.
ABORT_EVENT = "abort"


class HttpCallback(typing.Generic[T]):
    """
    Convenience base for completion callbacks that prefer separate success
    and failure hooks. Any callable accepting a :class:`FutureResult` works
    as a callback; this class routes that result to :meth:`on_completed` or
    :meth:`on_error`.
    """

    def __call__(self, result: FutureResult[T]) -> None:
        if result.error is not None:
            self.on_error(result.error)
        else:
            assert result.response is not None
            self.on_completed(result.response)

    def on_completed(self, response: HTTPResponse[T]) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        pass


class IOObserver:
    """
    Receives low-level progress events of an exchange as they happen. All
    hooks are no-ops; subclass and override the ones of interest. Hooks run
    on the engine's worker thread and must not block.
    """

    def on_connecting(self) -> None:
        pass

    def on_connected(self) -> None:
        pass

    def on_wrote_headers(self) -> None:
        pass

    def on_wrote_content_progressed(self, progress: int, total: int | None) -> None:
        pass

    def on_wrote_content_completed(self) -> None:
        pass

    def on_received_status(self, status: int) -> None:
        pass

    def on_received_headers(self, headers: HTTPHeaderDict) -> None:
        pass

    def on_received_content_part(self, length: int, total_read: int) -> None:
        pass

    def on_received_completed(self, status: int, headers: HTTPHeaderDict) -> None:
        pass

    def on_external_event(self, event: str, payload: typing.Any) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        pass


class ExternalEventTrigger:
    """
    A one-way channel for a third party to signal an in-flight execution.

    The engine registers a listener when the exchange starts. Events
    triggered before the first listener registers are buffered and replayed
    to it, so a trigger can be fired as soon as ``execute`` returns. Once a
    listener has been registered, events fired while nothing is listening
    are dropped: a finished execution never leaves an abort behind for the
    next one that reuses the trigger. :data:`ABORT_EVENT`
    asks the engine to stop the exchange; other events are passed to the
    execution's :class:`IOObserver`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[_TYPE_LISTENER] = []
        self._pending: list[tuple[str, typing.Any]] = []
        self._attached = False

    def register_listener(self, listener: _TYPE_LISTENER) -> None:
        with self._lock:
            self._listeners.append(listener)
            self._attached = True
            pending, self._pending = self._pending, []
        for event, payload in pending:
            listener(event, payload)

    def remove_listener(self, listener: _TYPE_LISTENER) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def trigger(self, event: str, payload: typing.Any = None) -> None:
        with self._lock:
            listeners = list(self._listeners)
            if not listeners and not self._attached:
                self._pending.append((event, payload))
                return
        if not listeners:
            log.debug("Dropping external event %r, nothing is listening", event)
            return
        log.debug("Triggering external event %r", event)
        for listener in listeners:
            listener(event, payload)

    def abort(self) -> None:
        """Shortcut for ``trigger(ABORT_EVENT)``."""
        self.trigger(ABORT_EVENT)
