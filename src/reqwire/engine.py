"""
Transport engines execute materialized requests.

:class:`TransportEngine` is the contract the dispatch layer relies on.
:class:`ThreadedTransportEngine` is a reference implementation running each
exchange on a thread pool over :mod:`http.client` connections.
"""
from __future__ import annotations

import abc
import functools
import itertools
import logging
import queue
import select
import socket
import ssl
import threading
import time
import typing
from concurrent.futures import Future, ThreadPoolExecutor
from http.client import HTTPException, HTTPResponse as _HTTPResponse
from urllib.parse import urljoin

from ._collections import HTTPHeaderDict, RecentlyUsedContainer
from .base import FutureResult, HTTPResponse, MaterializedRequest
from .callbacks import ABORT_EVENT, ExternalEventTrigger, IOObserver
from .connection import HTTPConnection, HTTPSConnection
from .exceptions import (
    EngineClosedError,
    HTTPError,
    NewConnectionError,
    ProtocolError,
    ReadTimeoutError,
    RequestAbortedError,
    TooManyRedirectsError,
    TotalTimeoutError,
)
from .util.request import host_header, remove_header, set_header
from .util.target import Target, resolve_target

if typing.TYPE_CHECKING:
    from .response import ResponseBodyConsumer

__all__ = ["TransportEngine", "ThreadedTransportEngine"]

log = logging.getLogger(__name__)

T = typing.TypeVar("T")

_TYPE_CALLBACK = typing.Optional[typing.Callable[[FutureResult[typing.Any]], None]]

DEFAULT_MAX_REDIRECTS = 5

#: Status codes that carry a ``Location`` to follow.
REDIRECT_STATUSES = frozenset([301, 302, 303, 307, 308])

#: Headers dropped when a redirect leaves the original origin.
REMOVE_HEADERS_ON_REDIRECT = frozenset(["Cookie", "Authorization", "Proxy-Authorization"])

_ABORTED = "aborted"
_TOTAL_TIMEOUT = "total timeout"


class TransportEngine(abc.ABC):
    """
    Executes materialized requests and reports each outcome exactly once,
    both to the completion callback (when there is one) and through the
    returned future.
    """

    @abc.abstractmethod
    def execute(
        self,
        method: str,
        request: MaterializedRequest,
        callback: _TYPE_CALLBACK,
        io_observer: IOObserver,
        consumer: ResponseBodyConsumer[T],
        idle_timeout: float | None,
        total_timeout: float | None,
        follow_redirects: bool,
        keep_alive: bool,
        trigger: ExternalEventTrigger | None,
    ) -> Future[FutureResult[T]]:
        raise NotImplementedError()

    def dispatch_error(
        self, callback: _TYPE_CALLBACK, error: BaseException
    ) -> Future[FutureResult[typing.Any]]:
        """
        Report ``error`` without touching the network: the callback (if any)
        receives the failed result and the returned future is already done.
        """
        result: FutureResult[typing.Any] = FutureResult.failure(error)
        self.deliver(callback, result)
        future: Future[FutureResult[typing.Any]] = Future()
        future.set_result(result)
        return future

    def deliver(self, callback: _TYPE_CALLBACK, result: FutureResult[T]) -> None:
        """Hand ``result`` to ``callback``; a failing callback is only logged."""
        if callback is None:
            return
        try:
            callback(result)
        except Exception:
            log.warning("Completion callback %r raised", callback, exc_info=True)


class _Exchange:
    """State of one execution that other threads may need to interrupt."""

    def __init__(self, target: Target, total_timeout: float | None = None) -> None:
        self.target = target
        self.conn: HTTPConnection | None = None
        self.abort_reason: str | None = None
        self.deadline: float | None = None
        if total_timeout is not None:
            self.deadline = time.monotonic() + total_timeout
        self._lock = threading.Lock()

    def connect_timeout(self, idle_timeout: float | None) -> float | None:
        """
        Socket timeout for opening a connection: the idle timeout, cut short
        by whatever is left of the total timeout. The timer cannot interrupt
        a connection that is not registered yet.
        """
        if self.deadline is None:
            return idle_timeout
        remaining = max(self.deadline - time.monotonic(), 0.001)
        if idle_timeout is None:
            return remaining
        return min(idle_timeout, remaining)

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def abort(self, reason: str) -> None:
        with self._lock:
            if self.abort_reason is not None:
                return
            self.abort_reason = reason
            conn = self.conn
        if conn is not None and conn.sock is not None:
            try:
                conn.sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass

    def check(self) -> None:
        if self.abort_reason is not None:
            raise _Aborted()


class _Aborted(Exception):
    pass


def _close_pool(pool: queue.LifoQueue[HTTPConnection]) -> None:
    while True:
        try:
            conn = pool.get_nowait()
        except queue.Empty:
            break
        conn.close()


def _is_connection_dropped(conn: HTTPConnection) -> bool:
    """
    An idle keep-alive connection that became readable was closed (or sent
    garbage) by the server and cannot be reused.
    """
    if conn.sock is None:
        return True
    try:
        readable, _, _ = select.select([conn.sock], [], [], 0.0)
    except (OSError, ValueError):
        return True
    return bool(readable)


def _content_length(headers: HTTPHeaderDict) -> int | None:
    value = headers.get("content-length")
    if value is None or not value.strip().isdigit():
        return None
    return int(value)


def redirect_request(
    request: MaterializedRequest, status: int, location: str
) -> MaterializedRequest | None:
    """
    Build the request for the next hop of a redirect, or ``None`` when it
    cannot be followed because a streamed body would have to be resent.

    303, and 301/302 for anything but GET and HEAD, turn into a body-less
    GET. The ``Host`` header is recomputed for the new target and
    credentials are dropped when the origin changes.
    """
    target = resolve_target(urljoin(request.target.url, location))

    method = request.method
    body = request.body
    if (status == 303 and method != "HEAD") or (
        status in (301, 302) and method not in ("GET", "HEAD")
    ):
        method = "GET"
        body = None
    elif body is not None and not body.rewindable:
        return None

    headers = list(request.header_items)
    if body is None:
        for name in ("Content-Length", "Transfer-Encoding", "Content-Type"):
            remove_header(headers, name)
    if target.origin != request.target.origin:
        for name in REMOVE_HEADERS_ON_REDIRECT:
            remove_header(headers, name)
    set_header(headers, "Host", host_header(target))

    return MaterializedRequest(
        method, target, request.version, headers, body, request.keep_alive
    )


class ThreadedTransportEngine(TransportEngine):
    """
    Runs each exchange on a worker thread.

    :param max_workers:
        Number of exchanges that can be in flight at once; further requests
        queue up.

    :param num_pools:
        Number of (scheme, host, port) keep-alive pools to retain. Least
        recently used pools are closed beyond that.

    :param maxsize:
        Idle connections kept per pool.

    :param ssl_context:
        Context for ``https`` targets. Defaults to
        :func:`ssl.create_default_context`.

    :param max_redirects:
        Redirect hops followed before failing with
        :class:`~reqwire.exceptions.TooManyRedirectsError`.

    Example:

    .. code-block:: python

        with ThreadedTransportEngine() as engine:
            client = reqwire.HttpClient(engine)
            future = client.create_get("http://example.com/").build().execute()
            print(future.result().unwrap().body)
    """

    blocksize = 16 * 1024

    def __init__(
        self,
        max_workers: int = 10,
        num_pools: int = 10,
        maxsize: int = 4,
        ssl_context: ssl.SSLContext | None = None,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
    ) -> None:
        self.maxsize = maxsize
        self.ssl_context = ssl_context
        self.max_redirects = max_redirects
        self.num_connections = 0
        self.pools: RecentlyUsedContainer[
            tuple[str, str, int], queue.LifoQueue[HTTPConnection]
        ] = RecentlyUsedContainer(num_pools, dispose_func=_close_pool)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="reqwire"
        )
        self._counter = itertools.count(1)
        self._closed = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(pools={len(self.pools)})"

    def __enter__(self: _SelfT) -> _SelfT:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        """
        Stop accepting requests, wait for in-flight exchanges and close all
        idle connections.
        """
        self._closed = True
        self._executor.shutdown(wait=True)
        self.pools.clear()

    def execute(
        self,
        method: str,
        request: MaterializedRequest,
        callback: _TYPE_CALLBACK,
        io_observer: IOObserver,
        consumer: ResponseBodyConsumer[T],
        idle_timeout: float | None,
        total_timeout: float | None,
        follow_redirects: bool,
        keep_alive: bool,
        trigger: ExternalEventTrigger | None,
    ) -> Future[FutureResult[T]]:
        if self._closed:
            return self.dispatch_error(callback, EngineClosedError("Engine is closed"))
        return self._executor.submit(
            self._run,
            request,
            callback,
            io_observer,
            consumer,
            idle_timeout,
            total_timeout,
            follow_redirects,
            keep_alive,
            trigger,
        )

    def _run(
        self,
        request: MaterializedRequest,
        callback: _TYPE_CALLBACK,
        observer: IOObserver,
        consumer: ResponseBodyConsumer[T],
        idle_timeout: float | None,
        total_timeout: float | None,
        follow_redirects: bool,
        keep_alive: bool,
        trigger: ExternalEventTrigger | None,
    ) -> FutureResult[T]:
        exchange = _Exchange(request.target, total_timeout)
        listener = functools.partial(self._on_external_event, exchange, observer)
        if trigger is not None:
            trigger.register_listener(listener)

        timer = None
        if total_timeout is not None:
            timer = threading.Timer(total_timeout, exchange.abort, (_TOTAL_TIMEOUT,))
            timer.daemon = True
            timer.start()

        result: FutureResult[T]
        try:
            response = self._urlopen(
                exchange,
                request,
                observer,
                consumer,
                idle_timeout,
                follow_redirects,
                keep_alive,
            )
            result = FutureResult.success(response)
        except Exception as e:
            if exchange.conn is not None:
                exchange.conn.close()
            error = self._translate_error(exchange, e, idle_timeout, total_timeout)
            log.debug("%s %s failed: %r", request.method, exchange.target.url, error)
            try:
                observer.on_error(error)
            except Exception:
                log.warning("I/O observer %r raised", observer, exc_info=True)
            result = FutureResult.failure(error)
        finally:
            if timer is not None:
                timer.cancel()
            if trigger is not None:
                trigger.remove_listener(listener)

        self.deliver(callback, result)
        return result

    def _on_external_event(
        self,
        exchange: _Exchange,
        observer: IOObserver,
        event: str,
        payload: typing.Any,
    ) -> None:
        if event == ABORT_EVENT:
            log.debug("Aborting %s on external event", exchange.target.url)
            exchange.abort(_ABORTED)
        else:
            observer.on_external_event(event, payload)

    def _translate_error(
        self,
        exchange: _Exchange,
        error: Exception,
        idle_timeout: float | None,
        total_timeout: float | None,
    ) -> BaseException:
        target = exchange.target
        new_error: BaseException
        if exchange.abort_reason == _TOTAL_TIMEOUT or (
            isinstance(error, NewConnectionError) and exchange.expired()
        ):
            new_error = TotalTimeoutError(
                target, f"Request exceeded total timeout of {total_timeout}s"
            )
        elif exchange.abort_reason == _ABORTED:
            new_error = RequestAbortedError(target, "Aborted by external trigger")
        elif isinstance(error, HTTPError):
            return error
        elif isinstance(error, socket.timeout):
            new_error = ReadTimeoutError(
                target, f"Read timed out. (idle timeout={idle_timeout})"
            )
        elif isinstance(error, (HTTPException, OSError)):
            new_error = ProtocolError("Connection aborted.", error)
        else:
            return error
        new_error.__cause__ = error
        return new_error

    def _urlopen(
        self,
        exchange: _Exchange,
        request: MaterializedRequest,
        observer: IOObserver,
        consumer: ResponseBodyConsumer[T],
        idle_timeout: float | None,
        follow_redirects: bool,
        keep_alive: bool,
    ) -> HTTPResponse[T]:
        redirects = 0
        while True:
            exchange.target = request.target
            response, headers = self._send(
                exchange, request, observer, idle_timeout, keep_alive
            )

            location = headers.get("location")
            if follow_redirects and response.status in REDIRECT_STATUSES and location:
                next_request = redirect_request(request, response.status, location)
                if next_request is not None:
                    if redirects >= self.max_redirects:
                        raise TooManyRedirectsError(request.target, self.max_redirects)
                    self._drain(exchange, response)
                    self._release(exchange, response, keep_alive)
                    log.info(
                        "Redirecting %s -> %s", request.target.url, next_request.target.url
                    )
                    request = next_request
                    redirects += 1
                    continue

            body = self._read_body(exchange, response, headers, consumer, observer)
            self._release(exchange, response, keep_alive)
            observer.on_received_completed(response.status, headers)
            return HTTPResponse(
                response.status,
                headers,
                body,
                url=request.target.url,
                version="HTTP/1.0" if response.version == 10 else "HTTP/1.1",
                reason=response.reason,
            )

    def _send(
        self,
        exchange: _Exchange,
        request: MaterializedRequest,
        observer: IOObserver,
        idle_timeout: float | None,
        keep_alive: bool,
    ) -> tuple[_HTTPResponse, HTTPHeaderDict]:
        exchange.check()
        conn = self._get_conn(
            request.target,
            observer,
            idle_timeout,
            exchange.connect_timeout(idle_timeout),
            keep_alive,
        )
        exchange.conn = conn
        exchange.check()

        conn.send_request(request, observer)
        response = conn.getresponse()
        target = request.target
        log.debug(
            '%s://%s:%s "%s %s %s" %s %s',
            target.scheme,
            target.host,
            target.port,
            request.method,
            request.request_uri,
            request.version,
            response.status,
            response.length,
        )

        observer.on_received_status(response.status)
        headers = HTTPHeaderDict(response.getheaders())
        observer.on_received_headers(headers)
        return response, headers

    def _read_body(
        self,
        exchange: _Exchange,
        response: _HTTPResponse,
        headers: HTTPHeaderDict,
        consumer: ResponseBodyConsumer[T],
        observer: IOObserver,
    ) -> T:
        consumer.on_body_start(
            _content_length(headers),
            headers.get("content-encoding"),
            headers.get("content-type"),
        )
        total_read = 0
        while True:
            exchange.check()
            data = response.read1(self.blocksize)
            if not data:
                break
            total_read += len(data)
            consumer.on_content_part(data)
            observer.on_received_content_part(len(data), total_read)
        exchange.check()
        consumer.on_body_completed()
        return consumer.get_body()

    def _drain(self, exchange: _Exchange, response: _HTTPResponse) -> None:
        while True:
            exchange.check()
            if not response.read1(self.blocksize):
                break

    def _pool_for(self, target: Target) -> queue.LifoQueue[HTTPConnection]:
        key = (target.scheme, target.host, target.port)
        with self.pools.lock:
            pool = self.pools.get(key)
            if pool is None:
                pool = queue.LifoQueue(maxsize=self.maxsize)
                self.pools[key] = pool
            return pool

    def _get_conn(
        self,
        target: Target,
        observer: IOObserver,
        idle_timeout: float | None,
        connect_timeout: float | None,
        keep_alive: bool,
    ) -> HTTPConnection:
        if keep_alive:
            pool = self._pool_for(target)
            while True:
                try:
                    conn = pool.get_nowait()
                except queue.Empty:
                    break
                if _is_connection_dropped(conn):
                    log.debug("Resetting dropped connection: %s", target.host)
                    conn.close()
                    continue
                log.debug("Reusing connection to %s:%s", target.host, target.port)
                conn.set_timeout(idle_timeout)
                return conn

        return self._new_conn(target, observer, idle_timeout, connect_timeout)

    def _new_conn(
        self,
        target: Target,
        observer: IOObserver,
        idle_timeout: float | None,
        connect_timeout: float | None,
    ) -> HTTPConnection:
        self.num_connections = next(self._counter)
        log.debug(
            "Starting new %s connection (%d): %s:%s",
            target.scheme.upper(),
            self.num_connections,
            target.host,
            target.port,
        )

        conn: HTTPConnection
        if target.is_secure:
            conn = HTTPSConnection(
                target.connect_host,
                target.port,
                timeout=connect_timeout,
                ssl_context=self.ssl_context,
            )
        else:
            conn = HTTPConnection(
                target.connect_host, target.port, timeout=connect_timeout
            )

        observer.on_connecting()
        try:
            conn.connect()
        except socket.gaierror as e:
            raise NewConnectionError(
                target, f"Failed to resolve '{target.host}' ({e})"
            ) from e
        except (socket.timeout, OSError) as e:
            if isinstance(e, ssl.SSLError):
                raise
            raise NewConnectionError(
                target, f"Failed to establish a new connection: {e}"
            ) from e
        conn.set_timeout(idle_timeout)
        observer.on_connected()
        return conn

    def _release(
        self, exchange: _Exchange, response: _HTTPResponse, keep_alive: bool
    ) -> None:
        # The body was read to the end; a HEAD response still needs closing
        # before the connection accepts another request.
        response.close()
        conn = exchange.conn
        exchange.conn = None
        if conn is None:
            return
        if not keep_alive or response.will_close or conn.sock is None:
            conn.close()
            return
        pool = self._pool_for(exchange.target)
        try:
            pool.put_nowait(conn)
        except queue.Full:
            log.debug("Connection pool is full, discarding connection: %s", exchange.target.host)
            conn.close()


_SelfT = typing.TypeVar("_SelfT", bound=ThreadedTransportEngine)
