from __future__ import annotations

import logging
import threading
import typing

from .engine import ThreadedTransportEngine, TransportEngine
from .exceptions import EngineClosedError
from .request import (
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_TOTAL_TIMEOUT,
    DEFAULT_USER_AGENT,
    RequestBuilder,
)

__all__ = ["HttpClient"]

log = logging.getLogger(__name__)


class HttpClient:
    """
    Entry point for creating requests. Holds the defaults every new
    :class:`~reqwire.request.RequestBuilder` starts from and the engine the
    built requests run on.

    :param engine:
        Transport engine to execute requests with. When omitted a
        :class:`~reqwire.engine.ThreadedTransportEngine` is created on first
        use and closed together with the client.

    :param user_agent:
        Default ``User-Agent`` header. ``None`` uses
        ``reqwire/<version>``.

    Example:

    .. code-block:: python

        >>> with reqwire.HttpClient() as client:
        ...     future = client.create_get("http://example.com/").build().execute()
        ...     future.result().unwrap().status
        200
    """

    def __init__(
        self,
        engine: TransportEngine | None = None,
        user_agent: str | None = None,
        idle_timeout: float | None = DEFAULT_IDLE_TIMEOUT,
        total_timeout: float | None = DEFAULT_TOTAL_TIMEOUT,
        follow_redirects: bool = True,
        accept_compressed: bool = True,
        keep_alive: bool = True,
        version: str = "HTTP/1.1",
    ) -> None:
        self._engine = engine
        self._owns_engine = engine is None
        self._closed = False
        self._lock = threading.Lock()
        self.user_agent = user_agent if user_agent is not None else DEFAULT_USER_AGENT
        self.idle_timeout = idle_timeout
        self.total_timeout = total_timeout
        self.follow_redirects = follow_redirects
        self.accept_compressed = accept_compressed
        self.keep_alive = keep_alive
        self.version = version

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.close()

    @property
    def engine(self) -> TransportEngine:
        """
        The engine requests run on.

        :raises EngineClosedError:
            The client created its own engine and has been closed since.
        """
        with self._lock:
            if self._closed:
                raise EngineClosedError("HttpClient is closed")
            if self._engine is None:
                log.debug("Creating default transport engine")
                self._engine = ThreadedTransportEngine()
            return self._engine

    def close(self) -> None:
        """Close the engine if this client created it."""
        if not self._owns_engine:
            return
        with self._lock:
            engine, self._engine = self._engine, None
            self._closed = True
        if isinstance(engine, ThreadedTransportEngine):
            engine.close()

    def create_request(self, method: str, uri: str) -> RequestBuilder:
        return RequestBuilder(
            self.engine,
            method,
            uri,
            version=self.version,
            user_agent=self.user_agent,
            idle_timeout=self.idle_timeout,
            total_timeout=self.total_timeout,
            follow_redirects=self.follow_redirects,
            accept_compressed=self.accept_compressed,
            keep_alive=self.keep_alive,
        )

    def create_get(self, uri: str) -> RequestBuilder:
        return self.create_request("GET", uri)

    def create_post(self, uri: str) -> RequestBuilder:
        return self.create_request("POST", uri)

    def create_put(self, uri: str) -> RequestBuilder:
        return self.create_request("PUT", uri)

    def create_delete(self, uri: str) -> RequestBuilder:
        return self.create_request("DELETE", uri)

    def create_head(self, uri: str) -> RequestBuilder:
        return self.create_request("HEAD", uri)

    def create_options(self, uri: str) -> RequestBuilder:
        return self.create_request("OPTIONS", uri)

    def create_patch(self, uri: str) -> RequestBuilder:
        return self.create_request("PATCH", uri)
