from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from reqwire.exceptions import LocationParseError, URLSchemeUnknown
from reqwire.util.target import DEFAULT_PORTS, Target, resolve_target

hostnames = st.from_regex(r"[a-z][a-z0-9-]{0,20}(\.[a-z][a-z0-9-]{0,20}){0,3}", fullmatch=True)
schemes = st.sampled_from(sorted(DEFAULT_PORTS))
ports = st.integers(min_value=1, max_value=65535)


class TestResolveTarget:
    @pytest.mark.parametrize(
        "uri, expected",
        [
            ("http://example.com", Target("http", "example.com", 80, "/")),
            ("https://example.com", Target("https", "example.com", 443, "/")),
            ("http://example.com:8080/a", Target("http", "example.com", 8080, "/a")),
            ("https://example.com:80/", Target("https", "example.com", 80, "/")),
            ("http://example.com/p?a=1", Target("http", "example.com", 80, "/p?a=1")),
            ("http://example.com/p#frag", Target("http", "example.com", 80, "/p")),
            ("http://[::1]:9000/", Target("http", "[::1]", 9000, "/")),
            ("HTTPS://Example.COM/Path", Target("https", "example.com", 443, "/Path")),
        ],
    )
    def test_resolve(self, uri: str, expected: Target) -> None:
        assert resolve_target(uri) == expected

    @pytest.mark.parametrize(
        "uri",
        [
            "",
            "/relative/path",
            "example.com/path",
            "http:///path",
            "http://host name/",
            "http://h/a b",
            "http://h/a\r\nX-Injected: 1",
        ],
    )
    def test_unresolvable(self, uri: str) -> None:
        with pytest.raises(LocationParseError):
            resolve_target(uri)

    @pytest.mark.parametrize("uri", ["ftp://example.com/", "ws://example.com:80/"])
    def test_unknown_scheme(self, uri: str) -> None:
        with pytest.raises(URLSchemeUnknown) as e:
            resolve_target(uri)
        assert e.value.location == uri
        # One except clause covers every resolution failure
        assert isinstance(e.value, LocationParseError)

    @given(scheme=schemes, host=hostnames, port=st.none() | ports)
    def test_port_is_explicit_or_scheme_default(
        self, scheme: str, host: str, port: int | None
    ) -> None:
        netloc = host if port is None else f"{host}:{port}"
        target = resolve_target(f"{scheme}://{netloc}/path")

        if port is not None:
            assert target.port == port
        elif scheme == "https":
            assert target.port == 443
        else:
            assert target.port == 80
        assert target.request_uri == "/path"


class TestTarget:
    def test_is_secure(self) -> None:
        assert Target("https", "h", 443, "/").is_secure
        assert not Target("http", "h", 443, "/").is_secure

    def test_origin_omits_default_port(self) -> None:
        assert Target("http", "h", 80, "/a").origin == "http://h"
        assert Target("https", "h", 443, "/a").origin == "https://h"
        assert Target("https", "h", 80, "/a").origin == "https://h:80"

    def test_url(self) -> None:
        assert Target("http", "h", 8080, "/a?b").url == "http://h:8080/a?b"

    def test_connect_host_strips_brackets(self) -> None:
        assert Target("http", "[::1]", 80, "/").connect_host == "::1"
        assert Target("http", "example.com", 80, "/").connect_host == "example.com"
