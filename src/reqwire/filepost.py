from __future__ import annotations

import binascii
import codecs
import mimetypes
import os
import typing
from io import BytesIO

writer = codecs.lookup("utf-8")[3]

_TYPE_FIELD_VALUE = typing.Union[str, bytes]
_TYPE_FIELD_VALUE_TUPLE = typing.Union[
    _TYPE_FIELD_VALUE,
    typing.Tuple[str, _TYPE_FIELD_VALUE],
    typing.Tuple[str, _TYPE_FIELD_VALUE, str],
]
_TYPE_FIELDS = typing.Union[
    typing.Sequence[typing.Tuple[str, _TYPE_FIELD_VALUE_TUPLE]],
    typing.Mapping[str, _TYPE_FIELD_VALUE_TUPLE],
]

# All control characters from 0x00 to 0x1F *except* 0x1B, plus '"' and '\'.
_HTML5_REPLACEMENTS = {
    '"': "%22",
    "\\": "\\\\",
    **{chr(cc): f"%{cc:02X}" for cc in range(0x00, 0x1F + 1) if cc != 0x1B},
}


def choose_boundary() -> str:
    """
    Our embarrassingly-simple replacement for mimetools.choose_boundary.
    """
    return binascii.hexlify(os.urandom(16)).decode()


def guess_content_type(
    filename: str | None, default: str = "application/octet-stream"
) -> str:
    """
    Guess the "Content-Type" of a file from its name using :mod:`mimetypes`,
    falling back to ``default``.
    """
    if filename:
        return mimetypes.guess_type(filename)[0] or default
    return default


def format_param(name: str, value: _TYPE_FIELD_VALUE) -> str:
    """
    Quote a ``Content-Disposition`` parameter the way HTML5 browsers do:
    control characters and double quotes are percent-escaped, backslashes
    doubled, everything else (including non-ASCII) is kept as UTF-8.
    """
    if isinstance(value, bytes):
        value = value.decode("utf-8")

    value = "".join(_HTML5_REPLACEMENTS.get(ch, ch) for ch in value)
    return f'{name}="{value}"'


def iter_fields(
    fields: _TYPE_FIELDS,
) -> typing.Iterator[tuple[str, str | None, _TYPE_FIELD_VALUE, str | None]]:
    """
    Iterate over ``fields`` yielding ``(name, filename, data, content_type)``.

    Supports a mapping or a sequence of ``(name, value)`` pairs where the
    value is the data itself, ``(filename, data)`` or
    ``(filename, data, content_type)``.
    """
    iterable: typing.Iterable[tuple[str, _TYPE_FIELD_VALUE_TUPLE]]
    if isinstance(fields, typing.Mapping):
        iterable = fields.items()
    else:
        iterable = fields

    for name, value in iterable:
        if isinstance(value, tuple):
            if len(value) == 3:
                filename, data, content_type = value  # type: ignore[misc]
            else:
                filename, data = value  # type: ignore[misc]
                content_type = guess_content_type(filename)
            yield name, filename, data, content_type
        else:
            yield name, None, value, None


def encode_multipart_formdata(
    fields: _TYPE_FIELDS, boundary: str | None = None
) -> tuple[bytes, str]:
    """
    Encode ``fields`` using the multipart/form-data MIME format.

    :param fields:
        Dictionary of fields or list of ``(name, value)`` pairs, see
        :func:`iter_fields`.

    :param boundary:
        If not specified, then a random boundary will be generated using
        :func:`choose_boundary`.
    """
    body = BytesIO()
    if boundary is None:
        boundary = choose_boundary()

    for name, filename, data, content_type in iter_fields(fields):
        body.write(f"--{boundary}\r\n".encode("latin-1"))

        disposition = "form-data; " + format_param("name", name)
        if filename is not None:
            disposition += "; " + format_param("filename", filename)
        writer(body).write(f"Content-Disposition: {disposition}\r\n")
        if content_type:
            writer(body).write(f"Content-Type: {content_type}\r\n")
        body.write(b"\r\n")

        if isinstance(data, int):
            data = str(data)  # Numbers are sent as their text form

        if isinstance(data, str):
            writer(body).write(data)
        else:
            body.write(data)

        body.write(b"\r\n")

    body.write(f"--{boundary}--\r\n".encode("latin-1"))

    return body.getvalue(), f"multipart/form-data; boundary={boundary}"
