from __future__ import annotations

import threading
import typing
from concurrent.futures import Future

import pytest

from reqwire._collections import HTTPHeaderDict
from reqwire.base import FutureResult, HTTPResponse, MaterializedRequest
from reqwire.client import HttpClient
from reqwire.engine import ThreadedTransportEngine, TransportEngine


class ExecuteCall(typing.NamedTuple):
    method: str
    request: MaterializedRequest
    callback: typing.Any
    io_observer: typing.Any
    consumer: typing.Any
    idle_timeout: float | None
    total_timeout: float | None
    follow_redirects: bool
    keep_alive: bool
    trigger: typing.Any


class RecordingEngine(TransportEngine):
    """
    Engine that never touches the network: every ``execute`` is recorded
    and answered with an empty 200 response.
    """

    def __init__(self) -> None:
        self.calls: list[ExecuteCall] = []
        self.errors: list[BaseException] = []
        self._lock = threading.Lock()

    def execute(self, method, request, callback, io_observer, consumer, *args):  # type: ignore[no-untyped-def, override]
        with self._lock:
            self.calls.append(
                ExecuteCall(method, request, callback, io_observer, consumer, *args)
            )
        consumer.on_body_start(0, None, None)
        consumer.on_body_completed()
        response = HTTPResponse(
            200, HTTPHeaderDict(), consumer.get_body(), url=request.target.url
        )
        result: FutureResult[typing.Any] = FutureResult.success(response)
        self.deliver(callback, result)
        future: Future[FutureResult[typing.Any]] = Future()
        future.set_result(result)
        return future

    def dispatch_error(self, callback, error):  # type: ignore[no-untyped-def]
        with self._lock:
            self.errors.append(error)
        return super().dispatch_error(callback, error)


@pytest.fixture
def engine() -> RecordingEngine:
    return RecordingEngine()


@pytest.fixture
def client(engine: RecordingEngine) -> HttpClient:
    return HttpClient(engine, user_agent="test-agent")


@pytest.fixture
def threaded_engine() -> typing.Generator[ThreadedTransportEngine, None, None]:
    with ThreadedTransportEngine(max_workers=4) as engine:
        yield engine


@pytest.fixture
def live_client(
    threaded_engine: ThreadedTransportEngine,
) -> HttpClient:
    return HttpClient(threaded_engine, user_agent="test-agent", idle_timeout=5.0)
