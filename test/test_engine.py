from __future__ import annotations

import logging
import socket
import threading
import time
import typing
from pathlib import Path

import pytest

from reqwire._collections import HTTPHeaderDict
from reqwire.base import FutureResult, MaterializedRequest
from reqwire.body import BytesBody, StreamBody
from reqwire.callbacks import ExternalEventTrigger, IOObserver
from reqwire.client import HttpClient
from reqwire.connection import HTTPConnection
from reqwire.engine import ThreadedTransportEngine, redirect_request
from reqwire.exceptions import (
    EngineClosedError,
    NewConnectionError,
    ReadTimeoutError,
    RequestAbortedError,
    TooManyRedirectsError,
    TotalTimeoutError,
)
from reqwire.response import JSONResponseBody
from reqwire.util.target import Target

from .threadserver import (
    read_chunked_body,
    read_exactly,
    read_request,
    response,
    split_request,
    start_server,
)

TIMEOUT = 5


class RecordingObserver(IOObserver):
    def __init__(self) -> None:
        self.events: list[str] = []
        self.external: list[tuple[str, typing.Any]] = []
        self.progress: list[tuple[int, int | None]] = []

    def on_connecting(self) -> None:
        self.events.append("connecting")

    def on_connected(self) -> None:
        self.events.append("connected")

    def on_wrote_headers(self) -> None:
        self.events.append("wrote_headers")

    def on_wrote_content_progressed(self, progress: int, total: int | None) -> None:
        self.progress.append((progress, total))

    def on_wrote_content_completed(self) -> None:
        self.events.append("wrote_content")

    def on_received_status(self, status: int) -> None:
        self.events.append(f"status {status}")

    def on_received_headers(self, headers: HTTPHeaderDict) -> None:
        self.events.append("headers")

    def on_received_content_part(self, length: int, total_read: int) -> None:
        self.events.append(f"part {length}/{total_read}")

    def on_received_completed(self, status: int, headers: HTTPHeaderDict) -> None:
        self.events.append("completed")

    def on_external_event(self, event: str, payload: typing.Any) -> None:
        self.external.append((event, payload))

    def on_error(self, error: BaseException) -> None:
        self.events.append(f"error {type(error).__name__}")


def serve_requests(
    payloads: typing.Sequence[bytes], received: list[bytes]
) -> typing.Callable[[socket.socket], None]:
    """Answer ``payloads`` in order on a single keep-alive connection."""

    def server(listener: socket.socket) -> None:
        sock, _ = listener.accept()
        with sock:
            for payload in payloads:
                received.append(read_request(sock))
                sock.sendall(payload)

    return server


def stalled_server(
    release: threading.Event,
) -> typing.Callable[[socket.socket], None]:
    """Read the request, then say nothing until ``release`` is set."""

    def server(listener: socket.socket) -> None:
        sock, _ = listener.accept()
        with sock:
            read_request(sock)
            release.wait(TIMEOUT)

    return server


class TestExchange:
    def test_get(self, live_client: HttpClient) -> None:
        received: list[bytes] = []
        host, port = start_server(
            serve_requests([response(body=b"hello", headers=[("X-Reply", "1")])], received)
        )

        future = live_client.create_get(f"http://{host}:{port}/path?q=1").build().execute()
        result = future.result(TIMEOUT).unwrap()

        assert result.status == 200
        assert result.reason == "OK"
        assert result.body == "hello"
        assert result.headers["X-Reply"] == "1"
        assert result.url == f"http://{host}:{port}/path?q=1"
        assert received[0] == (
            b"GET /path?q=1 HTTP/1.1\r\n"
            b"Accept-Encoding: gzip,deflate\r\n"
            b"Accept: */*\r\n"
            b"User-Agent: test-agent\r\n"
            b"Host: " + f"{host}:{port}".encode() + b"\r\n"
            b"\r\n"
        )

    def test_http_10_request_line(self, live_client: HttpClient) -> None:
        received: list[bytes] = []
        host, port = start_server(serve_requests([response()], received))

        request = live_client.create_get(f"http://{host}:{port}/").http_version("HTTP/1.0")
        request.build().execute().result(TIMEOUT).unwrap()

        assert received[0].startswith(b"GET / HTTP/1.0\r\n")

    def test_post_bytes(self, live_client: HttpClient) -> None:
        bodies: list[bytes] = []

        def server(listener: socket.socket) -> None:
            sock, _ = listener.accept()
            with sock:
                _, headers = split_request(read_request(sock))
                length = int(dict(headers)["Content-Length"])
                bodies.append(read_exactly(sock, length))
                sock.sendall(response("201 Created"))

        host, port = start_server(server)
        observer = RecordingObserver()
        future = (
            live_client.create_post(f"http://{host}:{port}/")
            .body(b"payload")
            .build()
            .execute(io_observer=observer)
        )

        assert future.result(TIMEOUT).unwrap().status == 201
        assert bodies == [b"payload"]
        assert observer.progress == [(7, 7)]
        assert observer.events == [
            "connecting",
            "connected",
            "wrote_headers",
            "wrote_content",
            "status 201",
            "headers",
            "completed",
        ]

    def test_post_stream_is_chunked(self, live_client: HttpClient) -> None:
        received: list[tuple[str, list[tuple[str, str]], bytes]] = []

        def server(listener: socket.socket) -> None:
            sock, _ = listener.accept()
            with sock:
                line, headers = split_request(read_request(sock))
                received.append((line, headers, read_chunked_body(sock)))
                sock.sendall(response())

        host, port = start_server(server)
        future = (
            live_client.create_post(f"http://{host}:{port}/")
            .body_stream(iter([b"abc", b"", "déf"]))
            .build()
            .execute()
        )

        future.result(TIMEOUT).unwrap()
        (line, headers, body) = received[0]
        assert ("Transfer-Encoding", "chunked") in headers
        assert "Content-Length" not in dict(headers)
        assert body == "abcdéf".encode()

    def test_post_file(self, live_client: HttpClient, tmp_path: Path) -> None:
        path = tmp_path / "upload.txt"
        path.write_bytes(b"x" * 100000)
        bodies: list[bytes] = []

        def server(listener: socket.socket) -> None:
            sock, _ = listener.accept()
            with sock:
                _, headers = split_request(read_request(sock))
                bodies.append(read_exactly(sock, int(dict(headers)["Content-Length"])))
                sock.sendall(response())

        host, port = start_server(server)
        future = live_client.create_put(f"http://{host}:{port}/").body_file(path).build().execute()

        future.result(TIMEOUT).unwrap()
        assert bodies == [b"x" * 100000]

    def test_head_has_no_body(self, live_client: HttpClient) -> None:
        received: list[bytes] = []
        head = b"HTTP/1.1 200 OK\r\nContent-Length: 10\r\n\r\n"
        host, port = start_server(serve_requests([head], received))

        result = live_client.create_head(f"http://{host}:{port}/").build().execute()
        assert result.result(TIMEOUT).unwrap().body == ""

    def test_chunked_response(self, live_client: HttpClient) -> None:
        received: list[bytes] = []
        payload = (
            b"HTTP/1.1 200 OK\r\n"
            b"Transfer-Encoding: chunked\r\n"
            b"Content-Type: application/json\r\n"
            b"\r\n"
            b"5\r\n{\"a\":\r\n"
            b"3\r\n[1]\r\n"
            b"1\r\n}\r\n"
            b"0\r\n\r\n"
        )
        host, port = start_server(serve_requests([payload], received))

        future = (
            live_client.create_get(f"http://{host}:{port}/")
            .build()
            .execute(consumer=JSONResponseBody())
        )
        assert future.result(TIMEOUT).unwrap().body == {"a": [1]}

    def test_observer_receives_content(self, live_client: HttpClient) -> None:
        received: list[bytes] = []
        host, port = start_server(serve_requests([response(body=b"abcd")], received))

        observer = RecordingObserver()
        live_client.create_get(f"http://{host}:{port}/").build().execute(
            io_observer=observer
        ).result(TIMEOUT)

        assert "part 4/4" in observer.events
        assert observer.events[-1] == "completed"

    def test_callback_and_future_agree(self, live_client: HttpClient) -> None:
        received: list[bytes] = []
        host, port = start_server(serve_requests([response(body=b"ok")], received))
        results: list[FutureResult[typing.Any]] = []

        future = live_client.create_get(f"http://{host}:{port}/").build().execute(results.append)

        assert future.result(TIMEOUT) is results[0]

    def test_failing_callback_does_not_break_engine(
        self, live_client: HttpClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        received: list[bytes] = []
        host, port = start_server(serve_requests([response(body=b"ok")], received))

        def callback(result: FutureResult[typing.Any]) -> None:
            raise RuntimeError("bad callback")

        with caplog.at_level(logging.WARNING, logger="reqwire"):
            future = live_client.create_get(f"http://{host}:{port}/").build().execute(callback)
            assert future.result(TIMEOUT).unwrap().body == "ok"

        assert "bad callback" in caplog.text

    def test_logs_request_line(
        self, live_client: HttpClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        received: list[bytes] = []
        host, port = start_server(serve_requests([response(body=b"ok")], received))

        with caplog.at_level(logging.DEBUG, logger="reqwire"):
            live_client.create_get(f"http://{host}:{port}/x").build().execute().result(TIMEOUT)

        assert f"Dispatching GET http://{host}:{port}/x" in caplog.text
        assert "Starting new HTTP connection (1)" in caplog.text
        assert f'http://{host}:{port} "GET /x HTTP/1.1" 200 2' in caplog.text


class TestConnectionReuse:
    def test_keep_alive_reuses_connection(
        self, threaded_engine: ThreadedTransportEngine, live_client: HttpClient
    ) -> None:
        received: list[bytes] = []
        host, port = start_server(
            serve_requests([response(body=b"one"), response(body=b"two")], received)
        )
        request = live_client.create_get(f"http://{host}:{port}/").build()

        assert request.execute().result(TIMEOUT).unwrap().body == "one"
        assert request.execute().result(TIMEOUT).unwrap().body == "two"
        assert threaded_engine.num_connections == 1
        assert len(received) == 2

    def test_no_keep_alive_opens_new_connections(
        self, threaded_engine: ThreadedTransportEngine, live_client: HttpClient
    ) -> None:
        def server(listener: socket.socket) -> None:
            for _ in range(2):
                sock, _ = listener.accept()
                with sock:
                    read_request(sock)
                    sock.sendall(response(body=b"ok"))

        host, port = start_server(server)
        request = live_client.create_get(f"http://{host}:{port}/").keep_alive(False).build()

        request.execute().result(TIMEOUT).unwrap()
        request.execute().result(TIMEOUT).unwrap()
        assert threaded_engine.num_connections == 2

    def test_server_close_is_honoured(
        self, threaded_engine: ThreadedTransportEngine, live_client: HttpClient
    ) -> None:
        def server(listener: socket.socket) -> None:
            for _ in range(2):
                sock, _ = listener.accept()
                with sock:
                    read_request(sock)
                    sock.sendall(response(body=b"ok", headers=[("Connection", "close")]))

        host, port = start_server(server)
        request = live_client.create_get(f"http://{host}:{port}/").build()

        request.execute().result(TIMEOUT).unwrap()
        request.execute().result(TIMEOUT).unwrap()
        assert threaded_engine.num_connections == 2


class TestRedirects:
    def test_post_302_becomes_get(self, live_client: HttpClient) -> None:
        received: list[bytes] = []
        bodies: list[bytes] = []

        def server(listener: socket.socket) -> None:
            sock, _ = listener.accept()
            with sock:
                head = read_request(sock)
                received.append(head)
                bodies.append(read_exactly(sock, 4))
                sock.sendall(response("302 Found", headers=[("Location", "/next")]))
                received.append(read_request(sock))
                sock.sendall(response(body=b"done"))

        host, port = start_server(server)
        future = (
            live_client.create_post(f"http://{host}:{port}/start")
            .body(b"data")
            .build()
            .execute()
        )

        result = future.result(TIMEOUT).unwrap()
        assert result.body == "done"
        assert result.url == f"http://{host}:{port}/next"
        line, headers = split_request(received[1])
        assert line == "GET /next HTTP/1.1"
        assert "Content-Length" not in dict(headers)
        assert "Content-Type" not in dict(headers)
        assert bodies == [b"data"]

    def test_307_resends_body(self, live_client: HttpClient) -> None:
        bodies: list[bytes] = []

        def server(listener: socket.socket) -> None:
            sock, _ = listener.accept()
            with sock:
                read_request(sock)
                bodies.append(read_exactly(sock, 4))
                sock.sendall(response("307 Temporary Redirect", headers=[("Location", "/b")]))
                line, _ = split_request(read_request(sock))
                bodies.append(line.encode() + b" " + read_exactly(sock, 4))
                sock.sendall(response(body=b"ok"))

        host, port = start_server(server)
        future = (
            live_client.create_put(f"http://{host}:{port}/a").body(b"data").build().execute()
        )

        assert future.result(TIMEOUT).unwrap().body == "ok"
        assert bodies == [b"data", b"PUT /b HTTP/1.1 data"]

    def test_307_with_stream_body_is_not_followed(self, live_client: HttpClient) -> None:
        def server(listener: socket.socket) -> None:
            sock, _ = listener.accept()
            with sock:
                read_request(sock)
                read_chunked_body(sock)
                sock.sendall(response("307 Temporary Redirect", headers=[("Location", "/b")]))

        host, port = start_server(server)
        future = (
            live_client.create_post(f"http://{host}:{port}/a")
            .body_stream([b"once"])
            .build()
            .execute()
        )

        assert future.result(TIMEOUT).unwrap().status == 307

    def test_follow_redirects_disabled(self, live_client: HttpClient) -> None:
        received: list[bytes] = []
        redirect = response("301 Moved Permanently", headers=[("Location", "/else")])
        host, port = start_server(serve_requests([redirect], received))

        future = (
            live_client.create_get(f"http://{host}:{port}/")
            .follow_redirects(False)
            .build()
            .execute()
        )

        result = future.result(TIMEOUT).unwrap()
        assert result.status == 301
        assert result.headers["Location"] == "/else"

    def test_too_many_redirects(self) -> None:
        redirect = response("302 Found", headers=[("Location", "/loop")])
        received: list[bytes] = []
        host, port = start_server(serve_requests([redirect] * 3, received))

        with ThreadedTransportEngine(max_redirects=2) as engine:
            future = HttpClient(engine).create_get(f"http://{host}:{port}/").build().execute()
            error = future.result(TIMEOUT).error

        assert isinstance(error, TooManyRedirectsError)
        assert error.redirects == 2
        assert len(received) == 3

    def test_cross_origin_drops_credentials(self, live_client: HttpClient) -> None:
        other: list[bytes] = []
        other_host, other_port = start_server(serve_requests([response(body=b"B")], other))
        location = f"http://localhost:{other_port}/b"

        first: list[bytes] = []
        redirect = response("302 Found", headers=[("Location", location)])
        host, port = start_server(serve_requests([redirect], first))

        future = (
            live_client.create_get(f"http://{host}:{port}/a")
            .with_header("Authorization", "Bearer secret")
            .with_header("Cookie", "a=1")
            .with_header("X-Keep", "1")
            .build()
            .execute()
        )

        assert future.result(TIMEOUT).unwrap().body == "B"
        _, first_headers = split_request(first[0])
        _, other_headers = split_request(other[0])
        assert dict(first_headers)["Authorization"] == "Bearer secret"
        assert "Authorization" not in dict(other_headers)
        assert "Cookie" not in dict(other_headers)
        assert dict(other_headers)["X-Keep"] == "1"
        assert dict(other_headers)["Host"] == f"localhost:{other_port}"


class TestRedirectRequest:
    def request(
        self, method: str = "POST", body: typing.Any = None, **headers: str
    ) -> MaterializedRequest:
        target = Target("http", "example.com", 80, "/a")
        all_headers = [*headers.items(), ("Host", "example.com")]
        if body is not None:
            all_headers.append(("Content-Length", "4"))
        return MaterializedRequest(method, target, "HTTP/1.1", all_headers, body)

    @pytest.mark.parametrize(
        "status, method, expected",
        [
            (301, "POST", "GET"),
            (302, "POST", "GET"),
            (303, "POST", "GET"),
            (303, "PUT", "GET"),
            (303, "HEAD", "HEAD"),
            (301, "HEAD", "HEAD"),
            (307, "POST", "POST"),
            (308, "PUT", "PUT"),
        ],
    )
    def test_method_rewrite(self, status: int, method: str, expected: str) -> None:
        new = redirect_request(self.request(method, BytesBody(b"data")), status, "/b")
        assert new is not None
        assert new.method == expected
        if expected == "GET":
            assert new.body is None
            assert "Content-Length" not in new.headers
        assert new.request_uri == "/b"

    def test_stream_body_blocks_307(self) -> None:
        assert redirect_request(self.request(body=StreamBody([b"x"])), 307, "/b") is None

    def test_stream_body_dropped_on_303(self) -> None:
        new = redirect_request(self.request(body=StreamBody([b"x"])), 303, "/b")
        assert new is not None and new.body is None

    def test_host_recomputed(self) -> None:
        new = redirect_request(self.request("GET"), 302, "https://other.example:8443/x")
        assert new is not None
        assert new.target == Target("https", "other.example", 8443, "/x")
        assert new.headers["Host"] == "other.example:8443"

    def test_same_origin_keeps_credentials(self) -> None:
        new = redirect_request(self.request("GET", Authorization="x"), 302, "/b")
        assert new is not None
        assert new.headers["Authorization"] == "x"

    def test_cross_origin_drops_credentials(self) -> None:
        request = self.request("GET", Authorization="x", Cookie="c", Accept="a/b")
        new = redirect_request(request, 302, "http://other.example/")
        assert new is not None
        assert "Authorization" not in new.headers
        assert "Cookie" not in new.headers
        assert new.headers["Accept"] == "a/b"

    def test_header_order_kept(self) -> None:
        request = MaterializedRequest(
            "GET",
            Target("http", "example.com", 80, "/a"),
            "HTTP/1.1",
            [("X-Tag", "a"), ("Host", "example.com"), ("X-Other", "b"), ("X-Tag", "c")],
        )
        new = redirect_request(request, 302, "http://example.com:8080/b")
        assert new is not None
        assert new.header_items == (
            ("X-Tag", "a"),
            ("Host", "example.com:8080"),
            ("X-Other", "b"),
            ("X-Tag", "c"),
        )


class TestFailures:
    def test_connection_refused(self, live_client: HttpClient) -> None:
        with socket.socket() as sock:
            sock.bind(("127.0.0.1", 0))
            port = sock.getsockname()[1]

        observer = RecordingObserver()
        future = live_client.create_get(f"http://127.0.0.1:{port}/").build().execute(
            io_observer=observer
        )

        assert isinstance(future.result(TIMEOUT).error, NewConnectionError)
        assert observer.events == ["connecting", "error NewConnectionError"]

    def test_idle_timeout(self, live_client: HttpClient) -> None:
        release = threading.Event()
        host, port = start_server(stalled_server(release))

        future = (
            live_client.create_get(f"http://{host}:{port}/")
            .idle_timeout(0.2)
            .build()
            .execute()
        )
        try:
            error = future.result(TIMEOUT).error
        finally:
            release.set()

        assert isinstance(error, ReadTimeoutError)

    def test_total_timeout(self, live_client: HttpClient) -> None:
        release = threading.Event()
        host, port = start_server(stalled_server(release))

        future = (
            live_client.create_get(f"http://{host}:{port}/")
            .idle_timeout(None)
            .total_timeout(0.2)
            .build()
            .execute()
        )
        try:
            error = future.result(TIMEOUT).error
        finally:
            release.set()

        assert isinstance(error, TotalTimeoutError)

    def test_total_timeout_bounds_connect(
        self, live_client: HttpClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        timeouts: list[float | None] = []

        def stalled_connect(conn: HTTPConnection) -> None:
            timeouts.append(conn.timeout)
            time.sleep(conn.timeout or 0)
            raise socket.timeout("timed out")

        monkeypatch.setattr(HTTPConnection, "connect", stalled_connect)
        future = (
            live_client.create_get("http://127.0.0.1:9/")
            .idle_timeout(None)
            .total_timeout(0.2)
            .build()
            .execute()
        )

        error = future.result(TIMEOUT).error
        assert isinstance(error, TotalTimeoutError)
        assert timeouts[0] is not None
        assert 0 < timeouts[0] <= 0.2

    def test_abort_in_flight(self, live_client: HttpClient) -> None:
        release = threading.Event()
        host, port = start_server(stalled_server(release))
        trigger = ExternalEventTrigger()
        observer = RecordingObserver()

        request = live_client.create_get(f"http://{host}:{port}/").idle_timeout(None).build()
        future = request.execute(None, JSONResponseBody(), observer, trigger)
        trigger.abort()
        try:
            error = future.result(TIMEOUT).error
        finally:
            release.set()

        assert isinstance(error, RequestAbortedError)
        assert observer.events[-1] == "error RequestAbortedError"

    def test_external_events_reach_observer(self, live_client: HttpClient) -> None:
        received: list[bytes] = []
        host, port = start_server(serve_requests([response()], received))
        trigger = ExternalEventTrigger()
        trigger.trigger("note", {"n": 1})
        observer = RecordingObserver()

        request = live_client.create_get(f"http://{host}:{port}/").build()
        request.execute(None, JSONResponseBody(), observer, trigger).result(TIMEOUT).unwrap()

        assert observer.external == [("note", {"n": 1})]

    def test_closed_engine(self) -> None:
        engine = ThreadedTransportEngine()
        engine.close()
        results: list[FutureResult[typing.Any]] = []

        future = HttpClient(engine).create_get("http://h/").build().execute(results.append)

        assert isinstance(future.result(0).error, EngineClosedError)
        assert results == [future.result(0)]

    def test_repr(self, threaded_engine: ThreadedTransportEngine) -> None:
        assert repr(threaded_engine) == "ThreadedTransportEngine(pools=0)"
