from __future__ import annotations

import re
import typing
from urllib.parse import quote, urlencode

import rfc3986
from rfc3986.exceptions import RFC3986Exception
from rfc3986.validators import Validator

from .._collections import Param
from ..exceptions import LocationParseError

# We only want to normalize urls with an HTTP(S) scheme.
NORMALIZABLE_SCHEMES = ("http", "https", None)

_VALIDATOR = Validator().check_validity_of("scheme", "host", "port", "path", "query")

# Anything outside the unreserved, reserved and "%" characters must already
# be percent-encoded. rfc3986 would quietly encode it instead.
_INVALID_CHARS_RE = re.compile(r"[^A-Za-z0-9._~!$&'()*+,;=:/?#\[\]@%-]")


class Url(
    typing.NamedTuple(
        "Url",
        [
            ("scheme", typing.Optional[str]),
            ("auth", typing.Optional[str]),
            ("host", typing.Optional[str]),
            ("port", typing.Optional[int]),
            ("path", typing.Optional[str]),
            ("query", typing.Optional[str]),
            ("fragment", typing.Optional[str]),
        ],
    )
):
    """
    Data structure for representing an HTTP URL. Used as a return value for
    :func:`parse_url`. Both the scheme and host are normalized as they are
    both case-insensitive according to RFC 3986.
    """

    def __new__(  # type: ignore[no-untyped-def]
        cls,
        scheme: str | None = None,
        auth: str | None = None,
        host: str | None = None,
        port: int | None = None,
        path: str | None = None,
        query: str | None = None,
        fragment: str | None = None,
    ):
        if path and not path.startswith("/"):
            path = "/" + path
        if scheme is not None:
            scheme = scheme.lower()
        if host and scheme in NORMALIZABLE_SCHEMES:
            host = host.lower()
        return super().__new__(cls, scheme, auth, host, port, path, query, fragment)

    @property
    def request_uri(self) -> str:
        """Absolute path including the query string."""
        uri = self.path or "/"

        if self.query is not None:
            uri += "?" + self.query

        return uri

    @property
    def netloc(self) -> str | None:
        """Network location including host and port."""
        if self.host is None:
            return None
        if self.port:
            return f"{self.host}:{self.port}"
        return self.host

    @property
    def url(self) -> str:
        """
        Convert self into a url

        This function should more or less round-trip with :func:`.parse_url`.

        Example:

        .. code-block:: python

            U = reqwire.util.parse_url("https://google.com/mail/")
            print(U.url)
            # "https://google.com/mail/"
        """
        scheme, auth, host, port, path, query, fragment = self
        url = ""

        # We use "is not None" we want things to happen with empty strings (or 0 port)
        if scheme is not None:
            url += scheme + "://"
        if auth is not None:
            url += auth + "@"
        if host is not None:
            url += host
        if port is not None:
            url += ":" + str(port)
        if path is not None:
            url += path
        if query is not None:
            url += "?" + query
        if fragment is not None:
            url += "#" + fragment

        return url

    def __str__(self) -> str:
        return self.url


def parse_url(url: str) -> Url:
    """
    Given a url, return a parsed :class:`.Url` namedtuple. Fields not
    provided will be None. Parsing and component validation follow
    RFC 3986; any violation raises :class:`~reqwire.exceptions.LocationParseError`
    with the parser's own error as its ``reason``.

    Example:

    .. code-block:: python

        import reqwire

        print(reqwire.util.parse_url("http://google.com/mail/"))
        # Url(scheme='http', host='google.com', port=None, path='/mail/', ...)

        print(reqwire.util.parse_url("http://google.com:8080/a?b=c"))
        # Url(scheme='http', host='google.com', port=8080, path='/a', query='b=c', ...)
    """
    if not isinstance(url, str):
        raise TypeError(f"not expecting type {type(url).__name__}")

    if not url:
        # Empty
        return Url()

    invalid = _INVALID_CHARS_RE.search(url)
    if invalid is not None:
        reason = ValueError(
            f"invalid character {invalid.group()!r} at {invalid.start()}"
        )
        raise LocationParseError(url, reason) from reason

    try:
        reference = rfc3986.uri_reference(url)
        authority = reference.authority_info()
        _VALIDATOR.validate(reference)
    except RFC3986Exception as e:
        raise LocationParseError(url, e) from e

    port: int | None = None
    if authority["port"]:
        port = int(authority["port"])
        # RFC 3986 allows port 0, sockets do not.
        if not 0 < port <= 65535:
            raise LocationParseError(url)

    return Url(
        scheme=reference.scheme,
        auth=authority["userinfo"],
        host=authority["host"],
        port=port,
        path=reference.path or None,
        query=reference.query,
        fragment=reference.fragment,
    )


def encode_params(params: typing.Iterable[Param]) -> str:
    """
    Percent-encode ``params`` as a query string, preserving their order and
    any repeated names. Spaces become ``%20``.

    >>> encode_params([Param("a", "1"), Param("b", "2 x")])
    'a=1&b=2%20x'
    """
    return urlencode([(param.name, param.value) for param in params], quote_via=quote)


def add_query_params(uri: str, params: typing.Sequence[Param]) -> str:
    """
    Append ``params`` to ``uri``, joining with ``&`` when ``uri`` already
    carries a query string. A fragment, if present, stays at the end.
    """
    if not params:
        return uri

    uri, hash_mark, fragment = uri.partition("#")

    if "?" not in uri:
        separator = "?"
    elif uri.endswith(("?", "&")):
        separator = ""
    else:
        separator = "&"

    return f"{uri}{separator}{encode_params(params)}{hash_mark}{fragment}"
