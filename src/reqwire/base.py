"""
This module provides the base structure of the Request/Response objects that
reqwire passes around.

These objects are the lowest common denominator between the request
assembly layer and a transport engine: the engine receives a
:class:`MaterializedRequest`, and whatever it produces is reported back as a
:class:`FutureResult` wrapping either an :class:`HTTPResponse` or an error.
"""
from __future__ import annotations

import typing

from ._collections import HTTPHeaderDict

if typing.TYPE_CHECKING:
    from .body import RequestBody
    from .util.target import Target

T = typing.TypeVar("T")


class MaterializedRequest:
    """
    A fully specified request, ready to be written to the wire.

    Every header default has already been applied: engines send
    :attr:`header_items` as they are. The header lines are stored in wire
    order as a tuple of pairs and :attr:`headers` hands out a fresh
    :class:`HTTPHeaderDict` view on each access, so nothing downstream can
    alter the request.
    """

    __slots__ = ("method", "target", "version", "header_items", "body", "keep_alive")

    method: str
    target: Target
    version: str
    header_items: tuple[tuple[str, str], ...]
    body: RequestBody | None
    keep_alive: bool

    def __init__(
        self,
        method: str,
        target: Target,
        version: str,
        headers: typing.Iterable[tuple[str, str]],
        body: RequestBody | None = None,
        keep_alive: bool = True,
    ) -> None:
        set_ = object.__setattr__
        set_(self, "method", method)
        #: Where to connect, and the request URI for the request line.
        set_(self, "target", target)
        set_(self, "version", version)
        set_(self, "header_items", tuple((name, value) for name, value in headers))
        set_(self, "body", body)
        set_(self, "keep_alive", keep_alive)

    def __setattr__(self, name: str, value: typing.Any) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError(f"{type(self).__name__} is immutable")

    @property
    def request_uri(self) -> str:
        """The path and query portions of the URI, as sent on the request line."""
        return self.target.request_uri

    @property
    def request_line(self) -> str:
        return f"{self.method} {self.request_uri} {self.version}"

    @property
    def headers(self) -> HTTPHeaderDict:
        return HTTPHeaderDict(self.header_items)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.request_line!r} to {self.target.origin}>"


class HTTPResponse(typing.Generic[T]):
    """
    The response an engine reports once the body consumer finished.
    ``body`` is whatever :meth:`ResponseBodyConsumer.get_body` returned.
    """

    def __init__(
        self,
        status: int,
        headers: HTTPHeaderDict,
        body: T,
        url: str | None = None,
        version: str = "HTTP/1.1",
        reason: str | None = None,
    ) -> None:
        #: The HTTP status code of the response.
        self.status = status
        self.headers = headers
        self.body = body
        #: The URL the response came from, after any redirects.
        self.url = url
        self.version = version
        self.reason = reason

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.status} from {self.url}>"


class FutureResult(typing.Generic[T]):
    """
    The terminal outcome of one execution: exactly one of ``response`` or
    ``error`` is set. Completion callbacks and the returned future both
    carry this object, whether the failure happened before dispatch or in
    the engine.
    """

    __slots__ = ("response", "error")

    def __init__(
        self,
        response: HTTPResponse[T] | None = None,
        error: BaseException | None = None,
    ) -> None:
        if (response is None) == (error is None):
            raise ValueError("Exactly one of 'response' or 'error' must be given")
        self.response = response
        self.error = error

    @classmethod
    def success(cls, response: HTTPResponse[T]) -> FutureResult[T]:
        return cls(response=response)

    @classmethod
    def failure(cls, error: BaseException) -> FutureResult[T]:
        return cls(error=error)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def unwrap(self) -> HTTPResponse[T]:
        """Return the response, raising the error if there is one."""
        if self.error is not None:
            raise self.error
        assert self.response is not None
        return self.response

    def __repr__(self) -> str:
        if self.error is not None:
            return f"<{type(self).__name__} error={self.error!r}>"
        return f"<{type(self).__name__} response={self.response!r}>"
