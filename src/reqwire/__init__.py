"""
Request assembly and asynchronous dispatch for HTTP/1.1, with a pluggable
transport engine.
"""

# Set default logging handler to avoid "No handler found" warnings.
import logging
import warnings
from logging import NullHandler
from typing import TextIO, Type

from . import exceptions
from ._collections import HTTPHeaderDict
from ._version import __version__
from .base import FutureResult, HTTPResponse, MaterializedRequest
from .body import UNKNOWN_LENGTH, BodyStrategy, RequestBody
from .callbacks import ABORT_EVENT, ExternalEventTrigger, HttpCallback, IOObserver
from .client import HttpClient
from .engine import ThreadedTransportEngine, TransportEngine
from .filepost import encode_multipart_formdata
from .request import BuiltRequest, RequestBuilder, RequestConfiguration
from .response import (
    BytesResponseBody,
    JSONResponseBody,
    ResponseBodyConsumer,
    StringResponseBody,
)

__license__ = "MIT"
__version__ = __version__

__all__ = (
    "ABORT_EVENT",
    "BodyStrategy",
    "BuiltRequest",
    "BytesResponseBody",
    "ExternalEventTrigger",
    "FutureResult",
    "HTTPHeaderDict",
    "HTTPResponse",
    "HttpCallback",
    "HttpClient",
    "IOObserver",
    "JSONResponseBody",
    "MaterializedRequest",
    "RequestBody",
    "RequestBuilder",
    "RequestConfiguration",
    "ResponseBodyConsumer",
    "StringResponseBody",
    "ThreadedTransportEngine",
    "TransportEngine",
    "UNKNOWN_LENGTH",
    "add_stderr_logger",
    "disable_warnings",
    "encode_multipart_formdata",
)

logging.getLogger(__name__).addHandler(NullHandler())


def add_stderr_logger(level: int = logging.DEBUG) -> "logging.StreamHandler[TextIO]":
    """
    Helper for quickly adding a StreamHandler to the logger. Useful for
    debugging.

    Returns the handler after adding it.
    """
    # Needs to live in this __init__.py so that __name__ is the package root.
    logger = logging.getLogger(__name__)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.debug("Added a stderr logging handler to logger: %s", __name__)
    return handler


# ... Clean up.
del NullHandler


def disable_warnings(category: Type[Warning] = exceptions.HTTPWarning) -> None:
    """
    Helper for quickly disabling all reqwire warnings.
    """
    warnings.simplefilter("ignore", category)
