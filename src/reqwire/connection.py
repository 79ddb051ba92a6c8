from __future__ import annotations

import logging
import ssl
import typing
from http.client import HTTPConnection as _HTTPConnection

from .body import FileRegionBody

if typing.TYPE_CHECKING:
    from .base import MaterializedRequest
    from .callbacks import IOObserver

__all__ = ["HTTPConnection", "HTTPSConnection"]

log = logging.getLogger(__name__)

_HTTP_VERSIONS = {"HTTP/1.0": 10, "HTTP/1.1": 11}


class HTTPConnection(_HTTPConnection):
    """
    A plaintext connection that writes a :class:`~reqwire.base.MaterializedRequest`
    exactly as assembled: no header is added, dropped or reordered here.

    The request body is framed according to its length: a known length is
    written as-is (files through ``socket.sendfile`` when possible), an
    unknown length is written with chunked transfer encoding.
    """

    default_port: typing.ClassVar[int] = 80

    def __init__(
        self,
        host: str,
        port: int | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        super().__init__(host, port, timeout=timeout)

    def set_version(self, version: str) -> None:
        try:
            vsn = _HTTP_VERSIONS[version]
        except KeyError:
            raise ValueError(f"Unsupported HTTP version {version!r}") from None
        self._http_vsn = vsn
        self._http_vsn_str = version

    def set_timeout(self, timeout: float | None) -> None:
        self.timeout = timeout
        if self.sock is not None:
            self.sock.settimeout(timeout)

    def send_request(self, request: MaterializedRequest, observer: IOObserver) -> None:
        self.set_version(request.version)
        self.putrequest(
            request.method,
            request.request_uri,
            skip_host=True,
            skip_accept_encoding=True,
        )
        for header, value in request.header_items:
            self.putheader(header, value)
        self.endheaders()
        observer.on_wrote_headers()

        body = request.body
        if body is None:
            return

        total = None if body.chunked else typing.cast(int, body.content_length)
        if body.chunked:
            written = self._send_chunked(body.iter_chunks(), observer)
        elif isinstance(body, FileRegionBody) and body.sendfile:
            with body.open() as fp:
                written = self.sock.sendfile(fp)
            observer.on_wrote_content_progressed(written, total)
        else:
            written = 0
            for chunk in body.iter_chunks():
                self.send(chunk)
                written += len(chunk)
                observer.on_wrote_content_progressed(written, total)

        log.debug("Wrote %d body bytes to %s:%s", written, self.host, self.port)
        observer.on_wrote_content_completed()

    def _send_chunked(
        self, chunks: typing.Iterable[bytes], observer: IOObserver
    ) -> int:
        written = 0
        for chunk in chunks:
            if not chunk:
                continue
            self.send(b"%x\r\n" % len(chunk))
            self.send(chunk)
            self.send(b"\r\n")
            written += len(chunk)
            observer.on_wrote_content_progressed(written, None)

        # Zero-length chunk terminates the body
        self.send(b"0\r\n\r\n")
        return written


class HTTPSConnection(HTTPConnection):
    """
    Many of the parameters to this constructor are passed to the underlying
    SSL socket by means of :py:meth:`ssl.SSLContext.wrap_socket`. When no
    context is given, :func:`ssl.create_default_context` is used, which
    verifies certificates and host names.
    """

    default_port = 443

    def __init__(
        self,
        host: str,
        port: int | None = None,
        *,
        timeout: float | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        super().__init__(host, port, timeout=timeout)
        self.ssl_context = ssl_context or ssl.create_default_context()

    def connect(self) -> None:
        super().connect()
        self.sock = self.ssl_context.wrap_socket(self.sock, server_hostname=self.host)
