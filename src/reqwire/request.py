from __future__ import annotations

import logging
import os
import typing

from ._collections import Param, to_params
from ._version import __version__
from .base import FutureResult, MaterializedRequest
from .body import (
    DEFAULT_CHARSET,
    BodyStrategy,
    BytesBodyStrategy,
    FileBodyStrategy,
    FormBodyStrategy,
    JSONBodyStrategy,
    MultipartBodyStrategy,
    StreamBodyStrategy,
    TextBodyStrategy,
    negotiate_body,
)
from .callbacks import ExternalEventTrigger, IOObserver
from .exceptions import LocationParseError
from .response import ResponseBodyConsumer, StringResponseBody
from .util.request import HeaderContext, assemble_headers
from .util.target import Target, resolve_target
from .util.url import add_query_params

if typing.TYPE_CHECKING:
    from concurrent.futures import Future

    from .body import RequestBody, _TYPE_STREAM_SOURCE
    from .engine import TransportEngine
    from .filepost import _TYPE_FIELDS

__all__ = ["RequestConfiguration", "BuiltRequest", "RequestBuilder", "materialize_request"]

log = logging.getLogger(__name__)

T = typing.TypeVar("T")

_TYPE_CALLBACK = typing.Callable[[FutureResult[T]], None]
_TYPE_PARAMS = typing.Union[
    typing.Mapping[str, typing.Any],
    typing.Iterable[typing.Tuple[str, typing.Any]],
]

DEFAULT_USER_AGENT = f"reqwire/{__version__}"
DEFAULT_IDLE_TIMEOUT = 10.0
DEFAULT_TOTAL_TIMEOUT = None

HTTP_VERSIONS = frozenset(["HTTP/1.0", "HTTP/1.1"])


class RequestConfiguration(typing.NamedTuple):
    """
    Everything a request needs before it is executed. Produced by
    :meth:`RequestBuilder.build` and never changed afterwards; parameter
    lists are tuples of :class:`~reqwire._collections.Param`.
    """

    version: str
    method: str
    uri: str
    user_agent: str | None
    idle_timeout: float | None
    total_timeout: float | None
    follow_redirects: bool
    accept_compressed: bool
    keep_alive: bool
    body_strategy: BodyStrategy | None
    content_type: str | None
    charset: str
    query_params: typing.Tuple[Param, ...]
    header_params: typing.Tuple[Param, ...]


def materialize_request(
    config: RequestConfiguration, target: Target, body: RequestBody | None
) -> MaterializedRequest:
    """Freeze one execution of ``config`` against a resolved target and body."""
    context = HeaderContext(config.accept_compressed, body, config.user_agent, target)
    headers = assemble_headers(config.header_params, context)
    return MaterializedRequest(
        config.method, target, config.version, headers, body, config.keep_alive
    )


class _ExecuteOptions(typing.NamedTuple):
    callback: typing.Optional[_TYPE_CALLBACK[typing.Any]]
    consumer: ResponseBodyConsumer[typing.Any]
    io_observer: IOObserver
    trigger: ExternalEventTrigger


class BuiltRequest:
    """
    An executable request bound to a transport engine.

    The same instance may be executed any number of times, concurrently if
    need be: each call resolves the target, negotiates the body and
    assembles the headers afresh.
    """

    def __init__(self, engine: TransportEngine, config: RequestConfiguration) -> None:
        self._engine = engine
        self._config = config

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._config.method} {self._config.uri}>"

    @property
    def configuration(self) -> RequestConfiguration:
        return self._config

    @property
    def idle_timeout(self) -> float | None:
        return self._config.idle_timeout

    @property
    def total_timeout(self) -> float | None:
        return self._config.total_timeout

    @property
    def follow_redirects(self) -> bool:
        return self._config.follow_redirects

    @property
    def accept_compressed(self) -> bool:
        return self._config.accept_compressed

    @property
    def keep_alive(self) -> bool:
        return self._config.keep_alive

    @typing.overload
    def execute(self) -> Future[FutureResult[str]]:
        ...

    @typing.overload
    def execute(
        self,
        callback: _TYPE_CALLBACK[str] | None,
        *,
        io_observer: IOObserver | None = ...,
    ) -> Future[FutureResult[str]]:
        ...

    @typing.overload
    def execute(self, *, io_observer: IOObserver) -> Future[FutureResult[str]]:
        ...

    @typing.overload
    def execute(self, *, consumer: ResponseBodyConsumer[T]) -> Future[FutureResult[T]]:
        ...

    @typing.overload
    def execute(
        self,
        callback: _TYPE_CALLBACK[T] | None,
        consumer: ResponseBodyConsumer[T],
        io_observer: IOObserver | None = ...,
        trigger: ExternalEventTrigger | None = ...,
    ) -> Future[FutureResult[T]]:
        ...

    def execute(
        self,
        callback: _TYPE_CALLBACK[typing.Any] | None = None,
        consumer: ResponseBodyConsumer[typing.Any] | None = None,
        io_observer: IOObserver | None = None,
        trigger: ExternalEventTrigger | None = None,
    ) -> Future[FutureResult[typing.Any]]:
        """
        Execute the request and return a future of its :class:`FutureResult`.

        :param callback:
            Called once with the :class:`FutureResult`, whether the request
            failed before reaching the network or in the engine.

        :param consumer:
            Turns the response bytes into ``response.body``. A fresh
            :class:`~reqwire.response.StringResponseBody` when omitted.

        :param io_observer:
            Notified of low-level progress while the exchange runs.

        :param trigger:
            Lets a third party signal the in-flight exchange, for example
            to abort it.
        """
        return self._execute(
            _ExecuteOptions(
                callback,
                consumer if consumer is not None else StringResponseBody(),
                io_observer if io_observer is not None else IOObserver(),
                trigger if trigger is not None else ExternalEventTrigger(),
            )
        )

    def materialize(self) -> MaterializedRequest:
        """
        Run every step of an execution short of dispatching it and return
        the request the engine would receive.

        :raises LocationParseError: The URI cannot be resolved.
        """
        target = resolve_target(self._uri())
        return self._materialize(target)

    def _uri(self) -> str:
        return add_query_params(self._config.uri, self._config.query_params)

    def _materialize(self, target: Target) -> MaterializedRequest:
        config = self._config
        body = negotiate_body(
            config.body_strategy, config.content_type, config.charset, target.is_secure
        )
        return materialize_request(config, target, body)

    def _execute(self, options: _ExecuteOptions) -> Future[FutureResult[typing.Any]]:
        config = self._config
        uri = self._uri()

        try:
            target = resolve_target(uri)
        except LocationParseError as e:
            log.debug("Failed to resolve %s: %s", uri, e)
            return self._engine.dispatch_error(options.callback, e)

        try:
            request = self._materialize(target)
        except Exception as e:
            log.debug("Failed to prepare the body of %s %s: %r", config.method, uri, e)
            return self._engine.dispatch_error(options.callback, e)

        log.debug("Dispatching %s %s", config.method, target.url)
        return self._engine.execute(
            config.method,
            request,
            options.callback,
            options.io_observer,
            options.consumer,
            config.idle_timeout,
            config.total_timeout,
            config.follow_redirects,
            config.keep_alive,
            options.trigger,
        )


class RequestBuilder:
    """
    Accumulates the parts of a request. Every setter returns the builder so
    calls can be chained; :meth:`build` snapshots the current state, so a
    builder may keep changing after a request was built from it.

    .. code-block:: python

        request = (
            client.create_post("http://example.com/upload")
            .with_header("X-Token", "abc")
            .with_query_parameter("draft", "1")
            .body_json({"title": "Hello"})
            .build()
        )
    """

    def __init__(
        self,
        engine: TransportEngine,
        method: str,
        uri: str,
        *,
        version: str = "HTTP/1.1",
        user_agent: str | None = DEFAULT_USER_AGENT,
        idle_timeout: float | None = DEFAULT_IDLE_TIMEOUT,
        total_timeout: float | None = DEFAULT_TOTAL_TIMEOUT,
        follow_redirects: bool = True,
        accept_compressed: bool = True,
        keep_alive: bool = True,
    ) -> None:
        if not method:
            raise ValueError("method must not be empty")
        self._engine = engine
        self._method = method.upper()
        self._uri = uri
        self._version = _check_version(version)
        self._user_agent = user_agent
        self._idle_timeout = _check_timeout(idle_timeout)
        self._total_timeout = _check_timeout(total_timeout)
        self._follow_redirects = follow_redirects
        self._accept_compressed = accept_compressed
        self._keep_alive = keep_alive
        self._body_strategy: BodyStrategy | None = None
        self._content_type: str | None = None
        self._charset = DEFAULT_CHARSET
        self._query_params: list[Param] = []
        self._header_params: list[Param] = []

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._method} {self._uri}>"

    def with_header(self, name: str, value: typing.Any) -> RequestBuilder:
        """Add a header. Repeating a name sends the header several times."""
        self._header_params.extend(to_params([(name, value)]))
        return self

    def with_headers(self, headers: _TYPE_PARAMS) -> RequestBuilder:
        self._header_params.extend(to_params(headers))
        return self

    def with_query_parameter(self, name: str, value: typing.Any) -> RequestBuilder:
        self._query_params.extend(to_params([(name, value)]))
        return self

    def with_query_parameters(self, params: _TYPE_PARAMS) -> RequestBuilder:
        self._query_params.extend(to_params(params))
        return self

    def idle_timeout(self, seconds: float | None) -> RequestBuilder:
        self._idle_timeout = _check_timeout(seconds)
        return self

    def total_timeout(self, seconds: float | None) -> RequestBuilder:
        self._total_timeout = _check_timeout(seconds)
        return self

    def follow_redirects(self, flag: bool) -> RequestBuilder:
        self._follow_redirects = bool(flag)
        return self

    def accept_compressed(self, flag: bool) -> RequestBuilder:
        self._accept_compressed = bool(flag)
        return self

    def keep_alive(self, flag: bool) -> RequestBuilder:
        self._keep_alive = bool(flag)
        return self

    def user_agent(self, value: str | None) -> RequestBuilder:
        """Default ``User-Agent``; ``None`` sends none unless set as a header."""
        self._user_agent = value
        return self

    def http_version(self, version: str) -> RequestBuilder:
        self._version = _check_version(version)
        return self

    def content_type(self, value: str | None) -> RequestBuilder:
        self._content_type = value
        return self

    def charset(self, value: str) -> RequestBuilder:
        self._charset = value
        return self

    def body(self, data: bytes | str) -> RequestBuilder:
        if isinstance(data, str):
            return self.body_strategy(TextBodyStrategy(data))
        if isinstance(data, (bytes, bytearray, memoryview)):
            return self.body_strategy(BytesBodyStrategy(bytes(data)))
        raise TypeError(
            f"body must be bytes or str, not {type(data).__name__}; "
            "use body_stream() for file-like objects"
        )

    def body_file(self, path: str | os.PathLike[str]) -> RequestBuilder:
        return self.body_strategy(FileBodyStrategy(path))

    def body_stream(self, source: _TYPE_STREAM_SOURCE) -> RequestBuilder:
        return self.body_strategy(StreamBodyStrategy(source))

    def body_form(self, fields: _TYPE_PARAMS) -> RequestBuilder:
        return self.body_strategy(FormBodyStrategy(fields))

    def body_multipart(
        self, fields: _TYPE_FIELDS, boundary: str | None = None
    ) -> RequestBuilder:
        return self.body_strategy(MultipartBodyStrategy(fields, boundary))

    def body_json(self, obj: typing.Any) -> RequestBuilder:
        return self.body_strategy(JSONBodyStrategy(obj))

    def body_strategy(self, strategy: BodyStrategy | None) -> RequestBuilder:
        """Use ``strategy`` to produce the body; ``None`` removes the body."""
        if strategy is not None and not isinstance(strategy, BodyStrategy):
            raise TypeError(f"Expected a BodyStrategy, got {type(strategy).__name__}")
        self._body_strategy = strategy
        return self

    def build(self) -> BuiltRequest:
        config = RequestConfiguration(
            version=self._version,
            method=self._method,
            uri=self._uri,
            user_agent=self._user_agent,
            idle_timeout=self._idle_timeout,
            total_timeout=self._total_timeout,
            follow_redirects=self._follow_redirects,
            accept_compressed=self._accept_compressed,
            keep_alive=self._keep_alive,
            body_strategy=self._body_strategy,
            content_type=self._content_type,
            charset=self._charset,
            query_params=tuple(self._query_params),
            header_params=tuple(self._header_params),
        )
        return BuiltRequest(self._engine, config)


def _check_version(version: str) -> str:
    if version not in HTTP_VERSIONS:
        raise ValueError(
            f"Unsupported HTTP version {version!r}, expected one of {sorted(HTTP_VERSIONS)}"
        )
    return version


def _check_timeout(value: float | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Timeout value must be a number or None, not {value!r}")
    if value <= 0:
        raise ValueError(f"Timeout value must be greater than 0, not {value!r}")
    return float(value)
