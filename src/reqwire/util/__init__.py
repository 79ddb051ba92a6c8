from __future__ import annotations

from .request import (
    ACCEPT_ENCODING,
    DEFAULT_ACCEPT,
    HEADER_RULES,
    HeaderContext,
    HeaderItems,
    HeaderRule,
    assemble_headers,
    has_header,
    host_header,
    remove_header,
    set_header,
)
from .target import DEFAULT_PORTS, Target, resolve_target
from .url import Url, add_query_params, encode_params, parse_url

__all__ = (
    "ACCEPT_ENCODING",
    "DEFAULT_ACCEPT",
    "DEFAULT_PORTS",
    "HEADER_RULES",
    "HeaderContext",
    "HeaderItems",
    "HeaderRule",
    "Target",
    "Url",
    "add_query_params",
    "assemble_headers",
    "encode_params",
    "has_header",
    "host_header",
    "parse_url",
    "remove_header",
    "resolve_target",
    "set_header",
)
