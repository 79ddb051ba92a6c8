from __future__ import annotations

import typing

from ..exceptions import LocationParseError, URLSchemeUnknown
from .url import parse_url

#: Conventional port for each supported scheme.
DEFAULT_PORTS = {"http": 80, "https": 443}


class Target(typing.NamedTuple):
    """
    The resolved destination of one request: where to connect and what to
    put on the request line. ``port`` is always a concrete number.
    """

    scheme: str
    host: str
    port: int
    request_uri: str

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"

    @property
    def default_port(self) -> int:
        return DEFAULT_PORTS[self.scheme]

    @property
    def connect_host(self) -> str:
        """Host suitable for a socket connect, IPv6 brackets removed."""
        return self.host.strip("[]")

    @property
    def origin(self) -> str:
        if self.port == self.default_port:
            return f"{self.scheme}://{self.host}"
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def url(self) -> str:
        return self.origin + self.request_uri


def resolve_target(uri: str) -> Target:
    """
    Resolve an absolute ``http``/``https`` URI into a :class:`Target`.

    The port falls back to the scheme default when the URI has none. The
    request URI is the path (``/`` when empty) plus the query string; the
    fragment is dropped as it is never sent.

    :raises LocationParseError:
        The URI is malformed, is not absolute or has no host.
    :raises URLSchemeUnknown:
        The scheme is something other than ``http`` or ``https``.
    """
    url = parse_url(uri)

    if not url.scheme or not url.host:
        raise LocationParseError(uri)
    if url.scheme not in DEFAULT_PORTS:
        raise URLSchemeUnknown(url.scheme, uri)

    port = url.port if url.port is not None else DEFAULT_PORTS[url.scheme]
    return Target(url.scheme, url.host, port, url.request_uri)
