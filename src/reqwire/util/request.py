from __future__ import annotations

import typing

from .._collections import Param

if typing.TYPE_CHECKING:
    from ..body import RequestBody
    from .target import Target

ACCEPT_ENCODING = "gzip,deflate"
DEFAULT_ACCEPT = "*/*"

#: Ports left out of the ``Host`` header whatever the scheme.
HOST_OMITTED_PORTS = frozenset([80, 443])

#: Header lines in wire order. Names compare case-insensitively.
HeaderItems = typing.List[typing.Tuple[str, str]]


class HeaderContext(typing.NamedTuple):
    """Values computed for one execution that the header rules draw on."""

    accept_compressed: bool
    body: RequestBody | None
    user_agent: str | None
    target: Target


class HeaderRule(typing.NamedTuple):
    """
    One defaulting step of :data:`HEADER_RULES`.

    ``compute`` returns the value for ``name`` or ``None`` when the rule
    does not apply to this execution. Unless ``override`` is set the value
    is only used when the header is absent. ``replaces`` lists headers that
    are removed whenever this rule sets its own.
    """

    name: str
    compute: typing.Callable[[HeaderContext], typing.Optional[str]]
    override: bool = False
    replaces: typing.Tuple[str, ...] = ()

    def apply(self, headers: HeaderItems, context: HeaderContext) -> None:
        if not self.override and has_header(headers, self.name):
            return
        value = self.compute(context)
        if value is None:
            return
        for name in self.replaces:
            remove_header(headers, name)
        set_header(headers, self.name, value)


def has_header(headers: HeaderItems, name: str) -> bool:
    name = name.lower()
    return any(key.lower() == name for key, _ in headers)


def remove_header(headers: HeaderItems, name: str) -> None:
    """Drop every line named ``name`` from ``headers``."""
    name = name.lower()
    headers[:] = [(key, val) for key, val in headers if key.lower() != name]


def set_header(headers: HeaderItems, name: str, value: str) -> None:
    """
    Make ``value`` the only line named ``name``. It takes the position of
    the first existing line of that name, or goes last when there is none.
    """
    lower = name.lower()
    for index, (key, _) in enumerate(headers):
        if key.lower() == lower:
            headers[index] = (name, value)
            headers[index + 1 :] = [
                (k, v) for k, v in headers[index + 1 :] if k.lower() != lower
            ]
            return
    headers.append((name, value))


def host_header(target: Target) -> str:
    """
    ``Host`` header value for ``target``: the bare host when the port is 80
    or 443, ``host:port`` otherwise.

    ``http://example.com:8080/`` gives ``example.com:8080`` while
    ``https://example.com/`` gives ``example.com``.
    """
    if target.port in HOST_OMITTED_PORTS:
        return target.host
    return f"{target.host}:{target.port}"


def _accept_encoding(context: HeaderContext) -> str | None:
    return ACCEPT_ENCODING if context.accept_compressed else None


def _transfer_encoding(context: HeaderContext) -> str | None:
    if context.body is not None and context.body.chunked:
        return "chunked"
    return None


def _content_length(context: HeaderContext) -> str | None:
    if context.body is not None and not context.body.chunked:
        return str(context.body.content_length)
    return None


def _content_type(context: HeaderContext) -> str | None:
    return context.body.content_type if context.body is not None else None


#: Applied in order after the caller's headers. Framing headers and Host
#: always describe the actual body and target, every other default yields
#: to a header the caller already set.
HEADER_RULES: typing.Tuple[HeaderRule, ...] = (
    HeaderRule("Accept-Encoding", _accept_encoding),
    HeaderRule(
        "Transfer-Encoding",
        _transfer_encoding,
        override=True,
        replaces=("Content-Length",),
    ),
    HeaderRule(
        "Content-Length",
        _content_length,
        override=True,
        replaces=("Transfer-Encoding",),
    ),
    HeaderRule("Content-Type", _content_type),
    HeaderRule("Accept", lambda context: DEFAULT_ACCEPT),
    HeaderRule("User-Agent", lambda context: context.user_agent),
    HeaderRule("Host", lambda context: host_header(context.target), override=True),
)


def assemble_headers(
    header_params: typing.Iterable[Param],
    context: HeaderContext,
    rules: typing.Iterable[HeaderRule] = HEADER_RULES,
) -> HeaderItems:
    """
    Build the final header lines of one request: the caller's headers in
    insertion order (repeated and interleaved names kept as given), then
    each rule of ``rules``.
    """
    headers: HeaderItems = [(name, value) for name, value in header_params]

    for rule in rules:
        rule.apply(headers, context)

    return headers
