"""
Request bodies and the strategies that produce them.

A strategy is configured once on a request and asked for a fresh
:class:`RequestBody` on every execution, because the body it produces may
depend on whether the destination is secure.
"""
from __future__ import annotations

import abc
import json
import os
import threading
import typing
from enum import Enum
from urllib.parse import urlencode

from ._collections import to_params
from .exceptions import BodyError
from .filepost import _TYPE_FIELDS, encode_multipart_formdata, guess_content_type

if typing.TYPE_CHECKING:
    from typing_extensions import Final

__all__ = [
    "UNKNOWN_LENGTH",
    "RequestBody",
    "BytesBody",
    "FileRegionBody",
    "ChunkedFileBody",
    "StreamBody",
    "BodyStrategy",
    "BytesBodyStrategy",
    "TextBodyStrategy",
    "FileBodyStrategy",
    "StreamBodyStrategy",
    "FormBodyStrategy",
    "MultipartBodyStrategy",
    "JSONBodyStrategy",
    "negotiate_body",
]

DEFAULT_CHARSET = "utf-8"


class _TYPE_UNKNOWN_LENGTH(Enum):
    token = 0


#: Content length of a body that is streamed and whose size is not known
#: before transmission.
UNKNOWN_LENGTH: Final[_TYPE_UNKNOWN_LENGTH] = _TYPE_UNKNOWN_LENGTH.token

_TYPE_CONTENT_LENGTH = typing.Union[int, _TYPE_UNKNOWN_LENGTH]
_TYPE_STREAM_SOURCE = typing.Union[
    typing.IO[typing.Any], typing.Iterable[bytes], typing.Iterable[str]
]


class RequestBody:
    """
    A body ready to be written: its length (or :data:`UNKNOWN_LENGTH`), its
    declared content type, and :meth:`iter_chunks` which yields the bytes.
    """

    #: Whether :meth:`iter_chunks` can be called more than once.
    rewindable = True

    def __init__(
        self, content_length: _TYPE_CONTENT_LENGTH, content_type: str | None = None
    ) -> None:
        self.content_length = content_length
        self.content_type = content_type

    @property
    def chunked(self) -> bool:
        return self.content_length is UNKNOWN_LENGTH

    def iter_chunks(self) -> typing.Iterator[bytes]:
        raise NotImplementedError()

    def __repr__(self) -> str:
        length = "unknown" if self.chunked else self.content_length
        return f"<{type(self).__name__} length={length} type={self.content_type!r}>"


class BytesBody(RequestBody):
    def __init__(self, data: bytes, content_type: str | None = None) -> None:
        super().__init__(len(data), content_type)
        self.data = data

    def iter_chunks(self) -> typing.Iterator[bytes]:
        if self.data:
            yield self.data


class FileRegionBody(RequestBody):
    """
    A file sent as a whole region. Over a plaintext socket the connection
    hands the open file to ``socket.sendfile``; :meth:`iter_chunks` is the
    fallback and reads large slices.
    """

    blocksize = 1024 * 1024
    #: Hand the open file to ``socket.sendfile`` instead of iterating.
    sendfile = True

    def __init__(
        self, path: str | os.PathLike[str], content_type: str | None = None
    ) -> None:
        self.path = os.fspath(path)
        super().__init__(os.path.getsize(self.path), content_type)

    def open(self) -> typing.BinaryIO:
        return open(self.path, "rb")

    def iter_chunks(self) -> typing.Iterator[bytes]:
        with self.open() as fp:
            while True:
                block = fp.read(self.blocksize)
                if not block:
                    break
                yield block


class ChunkedFileBody(FileRegionBody):
    """
    A file read and written in small blocks. Used for secure destinations
    where the file cannot be handed to the kernel as-is.
    """

    blocksize = 16 * 1024
    sendfile = False


class StreamBody(RequestBody):
    """
    A body produced incrementally from an iterable or a readable file-like
    object. Its length is unknown, so it is sent with chunked transfer
    encoding, and it can only be consumed once.
    """

    rewindable = False
    blocksize = 16 * 1024

    def __init__(
        self,
        source: _TYPE_STREAM_SOURCE,
        content_type: str | None = None,
        charset: str = DEFAULT_CHARSET,
    ) -> None:
        super().__init__(UNKNOWN_LENGTH, content_type)
        self.source = source
        self.charset = charset

    def _iter_source(self) -> typing.Iterator[bytes | str]:
        read = getattr(self.source, "read", None)
        if read is None:
            yield from self.source  # type: ignore[misc]
            return
        while True:
            block = read(self.blocksize)
            if not block:
                break
            yield block

    def iter_chunks(self) -> typing.Iterator[bytes]:
        for chunk in self._iter_source():
            if isinstance(chunk, str):
                chunk = chunk.encode(self.charset)
            if chunk:
                yield chunk


class BodyStrategy(abc.ABC):
    """
    Produces a :class:`RequestBody` for one execution of a request.

    ``content_type`` is the caller's declared content type (or ``None``),
    ``charset`` the configured body charset and ``secure`` tells whether the
    resolved destination uses TLS.
    """

    @abc.abstractmethod
    def create_body(
        self, content_type: str | None, charset: str, secure: bool
    ) -> RequestBody:
        raise NotImplementedError()


class BytesBodyStrategy(BodyStrategy):
    def __init__(self, data: bytes) -> None:
        self.data = bytes(data)

    def create_body(
        self, content_type: str | None, charset: str, secure: bool
    ) -> RequestBody:
        return BytesBody(self.data, content_type)


class TextBodyStrategy(BodyStrategy):
    def __init__(self, text: str) -> None:
        self.text = text

    def create_body(
        self, content_type: str | None, charset: str, secure: bool
    ) -> RequestBody:
        if content_type is None:
            content_type = f"text/plain; charset={charset}"
        return BytesBody(self.text.encode(charset), content_type)


class FileBodyStrategy(BodyStrategy):
    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = os.fspath(path)

    def create_body(
        self, content_type: str | None, charset: str, secure: bool
    ) -> RequestBody:
        if content_type is None:
            content_type = guess_content_type(os.path.basename(self.path))
        if secure:
            return ChunkedFileBody(self.path, content_type)
        return FileRegionBody(self.path, content_type)


class StreamBodyStrategy(BodyStrategy):
    """
    Hands its source to exactly one body. Any later :meth:`create_body`,
    whether from another execution or from :meth:`BuiltRequest.materialize`,
    fails with :class:`~reqwire.exceptions.BodyError` rather than sending
    an exhausted stream.
    """

    def __init__(self, source: _TYPE_STREAM_SOURCE) -> None:
        self.source = source
        self.consumed = False
        self._lock = threading.Lock()

    def create_body(
        self, content_type: str | None, charset: str, secure: bool
    ) -> RequestBody:
        with self._lock:
            if self.consumed:
                raise BodyError(f"Stream source {self.source!r} was already used")
            self.consumed = True
        return StreamBody(self.source, content_type, charset)


class FormBodyStrategy(BodyStrategy):
    """``application/x-www-form-urlencoded`` fields, order preserved."""

    def __init__(
        self,
        fields: typing.Mapping[str, typing.Any]
        | typing.Iterable[tuple[str, typing.Any]],
    ) -> None:
        self.fields = to_params(fields)

    def create_body(
        self, content_type: str | None, charset: str, secure: bool
    ) -> RequestBody:
        data = urlencode(self.fields, encoding=charset).encode("ascii")
        return BytesBody(data, content_type or "application/x-www-form-urlencoded")


class MultipartBodyStrategy(BodyStrategy):
    """
    ``multipart/form-data`` fields, see
    :func:`reqwire.filepost.encode_multipart_formdata`. The content type
    always carries the boundary actually used.
    """

    def __init__(self, fields: _TYPE_FIELDS, boundary: str | None = None) -> None:
        self.fields = fields
        self.boundary = boundary

    def create_body(
        self, content_type: str | None, charset: str, secure: bool
    ) -> RequestBody:
        data, multipart_type = encode_multipart_formdata(
            self.fields, boundary=self.boundary
        )
        return BytesBody(data, multipart_type)


class JSONBodyStrategy(BodyStrategy):
    def __init__(self, obj: typing.Any) -> None:
        self.obj = obj

    def create_body(
        self, content_type: str | None, charset: str, secure: bool
    ) -> RequestBody:
        data = json.dumps(self.obj, separators=(",", ":"), ensure_ascii=False)
        return BytesBody(data.encode(charset), content_type or "application/json")


def negotiate_body(
    strategy: BodyStrategy | None,
    content_type: str | None,
    charset: str,
    secure: bool,
) -> RequestBody | None:
    """
    Ask ``strategy`` for the body of one execution.

    Returns ``None`` when no strategy is configured. Exceptions raised by
    the strategy propagate unchanged.

    :raises BodyError:
        The strategy returned something that is not a :class:`RequestBody`
        or whose length is neither a non-negative int nor
        :data:`UNKNOWN_LENGTH`.
    """
    if strategy is None:
        return None

    body = strategy.create_body(content_type, charset, secure)

    if not isinstance(body, RequestBody):
        raise BodyError(
            f"{type(strategy).__name__} returned {type(body).__name__}, "
            "expected a RequestBody"
        )

    length = body.content_length
    if length is not UNKNOWN_LENGTH and (
        isinstance(length, bool) or not isinstance(length, int) or length < 0
    ):
        raise BodyError(f"Invalid content length {length!r} for {body!r}")

    return body
