from __future__ import annotations

import abc
import codecs
import json
import typing
from email.message import Message

__all__ = [
    "ResponseBodyConsumer",
    "BytesResponseBody",
    "StringResponseBody",
    "JSONResponseBody",
    "charset_from_content_type",
]

T = typing.TypeVar("T")

DEFAULT_CHARSET = "utf-8"


def charset_from_content_type(content_type: str | None) -> str | None:
    """
    Extract the ``charset`` parameter of a ``Content-Type`` value, or
    ``None`` when it is missing or names an unknown codec.

    >>> charset_from_content_type("text/html; charset=ISO-8859-1")
    'iso-8859-1'
    """
    if not content_type:
        return None
    message = Message()
    message["content-type"] = content_type
    charset = message.get_param("charset")
    if not isinstance(charset, str):
        return None
    charset = charset.strip().lower()
    try:
        codecs.lookup(charset)
    except LookupError:
        return None
    return charset


class ResponseBodyConsumer(abc.ABC, typing.Generic[T]):
    """
    Decides how the bytes of a response body turn into the result type.

    An engine calls :meth:`on_body_start` once, :meth:`on_content_part` for
    each block received, :meth:`on_body_completed` at the end and finally
    :meth:`get_body`. A consumer holds per-response state and is used for a
    single execution.
    """

    def on_body_start(
        self,
        content_length: int | None,
        content_encoding: str | None,
        content_type: str | None,
    ) -> None:
        pass

    @abc.abstractmethod
    def on_content_part(self, data: bytes) -> None:
        raise NotImplementedError()

    def on_body_completed(self) -> None:
        pass

    @abc.abstractmethod
    def get_body(self) -> T:
        raise NotImplementedError()


class BytesResponseBody(ResponseBodyConsumer[bytes]):
    """Keeps the whole response body as ``bytes``."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def on_body_start(
        self,
        content_length: int | None,
        content_encoding: str | None,
        content_type: str | None,
    ) -> None:
        self._buffer = bytearray()

    def on_content_part(self, data: bytes) -> None:
        self._buffer += data

    def get_body(self) -> bytes:
        return bytes(self._buffer)


class StringResponseBody(ResponseBodyConsumer[str]):
    """
    Keeps the whole response body as text, decoded with the charset of the
    response's ``Content-Type`` (``default_charset`` when there is none).
    Undecodable bytes are replaced rather than raising.
    """

    def __init__(self, default_charset: str = DEFAULT_CHARSET) -> None:
        self.default_charset = default_charset
        self._decoder = codecs.getincrementaldecoder(default_charset)("replace")
        self._parts: list[str] = []

    def on_body_start(
        self,
        content_length: int | None,
        content_encoding: str | None,
        content_type: str | None,
    ) -> None:
        charset = charset_from_content_type(content_type) or self.default_charset
        self._decoder = codecs.getincrementaldecoder(charset)("replace")
        self._parts = []

    def on_content_part(self, data: bytes) -> None:
        self._parts.append(self._decoder.decode(data))

    def on_body_completed(self) -> None:
        self._parts.append(self._decoder.decode(b"", final=True))

    def get_body(self) -> str:
        return "".join(self._parts)


class JSONResponseBody(ResponseBodyConsumer[typing.Any]):
    """Parses the response body as JSON. An empty body gives ``None``."""

    def __init__(self) -> None:
        self._bytes = BytesResponseBody()

    def on_body_start(
        self,
        content_length: int | None,
        content_encoding: str | None,
        content_type: str | None,
    ) -> None:
        self._bytes.on_body_start(content_length, content_encoding, content_type)

    def on_content_part(self, data: bytes) -> None:
        self._bytes.on_content_part(data)

    def get_body(self) -> typing.Any:
        data = self._bytes.get_body()
        if not data:
            return None
        return json.loads(data)
