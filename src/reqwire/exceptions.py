from __future__ import annotations

import typing

if typing.TYPE_CHECKING:
    from .util.target import Target

# Base Exceptions


class HTTPError(Exception):
    """Base exception used by this module."""

    pass


class HTTPWarning(Warning):
    """Base warning used by this module."""

    pass


_TYPE_REDUCE_RESULT = typing.Tuple[
    typing.Callable[..., object], typing.Tuple[object, ...]
]


class ProtocolError(HTTPError):
    """Raised when something unexpected happens mid-request/response."""

    pass


class BodyError(HTTPError):
    """Raised when a request body strategy produces an unusable body."""

    pass


class LocationValueError(ValueError, HTTPError):
    """Raised when there is something wrong with a given URL input."""

    pass


class LocationParseError(LocationValueError):
    """Raised when a URI cannot be resolved into a request target.

    The underlying parser failure, if any, is kept as ``reason``.
    """

    def __init__(self, location: str, reason: Exception | None = None) -> None:
        message = f"Failed to parse: {location}"
        if reason is not None:
            message = f"{message} ({reason})"
        super().__init__(message)

        self.location = location
        self.reason = reason

    def __reduce__(self) -> _TYPE_REDUCE_RESULT:
        # For pickling purposes.
        return self.__class__, (self.location, self.reason)


class URLSchemeUnknown(LocationParseError):
    """Raised when a URL input has an unsupported scheme."""

    def __init__(self, scheme: str | None, location: str | None = None) -> None:
        message = f"Not supported URL scheme {scheme}"
        LocationValueError.__init__(self, message)

        self.scheme = scheme
        self.location = location if location is not None else ""
        self.reason = None

    def __reduce__(self) -> _TYPE_REDUCE_RESULT:
        return self.__class__, (self.scheme, self.location)


# Leaf Exceptions raised inside a transport engine and delivered through
# FutureResult.error rather than propagated to the caller.


class TargetError(HTTPError):
    """Base exception for failures tied to a resolved target."""

    def __init__(self, target: Target | None, message: str) -> None:
        self.target = target
        if target is not None:
            message = f"{target.url}: {message}"
        super().__init__(message)

    def __reduce__(self) -> _TYPE_REDUCE_RESULT:
        return self.__class__, (None, str(self))


class NewConnectionError(TargetError):
    """Raised when we fail to establish a new connection. Usually ECONNREFUSED."""

    pass


class TimeoutError(HTTPError):
    """Raised when an exchange runs out of time.

    Catching this error will catch both :exc:`ReadTimeoutErrors
    <ReadTimeoutError>` and :exc:`TotalTimeoutErrors <TotalTimeoutError>`.
    """

    pass


class ReadTimeoutError(TimeoutError, TargetError):
    """Raised when the idle timeout elapses while waiting on the socket."""

    pass


class TotalTimeoutError(TimeoutError, TargetError):
    """Raised when the total request timeout elapses."""

    pass


class RequestAbortedError(TargetError):
    """Raised when an external trigger asks an in-flight request to stop."""

    pass


class TooManyRedirectsError(TargetError):
    """Raised when a redirect chain exceeds the engine's limit."""

    def __init__(self, target: Target | None, redirects: int) -> None:
        self.redirects = redirects
        super().__init__(target, f"Exceeded {redirects} redirects")

    def __reduce__(self) -> _TYPE_REDUCE_RESULT:
        return self.__class__, (None, self.redirects)


class EngineClosedError(HTTPError):
    """Raised when a request is handed to an engine that was closed."""

    pass
