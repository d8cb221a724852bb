"""Unit tests for the feed fetcher."""

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from itertools import chain, repeat
from unittest.mock import MagicMock, Mock, patch

import pytest
import requests

from transpod.config import FetchConfig
from transpod.fetcher import FeedFetcher, decode_feed, detect_encoding, fetch
from transpod.models import FetchError, FetchErrorKind

FEED_URL = "https://example.com/podcast.xml"


def make_response(
    status_code=200, reason="OK", chunks=(b"<rss></rss>",), headers=None
):
    response = MagicMock()
    response.status_code = status_code
    response.reason = reason
    response.headers = headers or {}
    response.iter_content.return_value = list(chunks)
    return response


class TestFeedFetcherUnit:
    """Unit tests for FeedFetcher."""

    def setup_method(self):
        self.fetcher = FeedFetcher(FetchConfig(timeout=10.0, max_bytes=1024))
        self.fetcher.session = Mock()

    def test_returns_body_text_on_200(self):
        self.fetcher.session.get.return_value = make_response(
            chunks=[b"<rss>", b"<channel/>", b"</rss>"],
            headers={"Content-Type": "application/rss+xml; charset=utf-8"},
        )

        assert self.fetcher.fetch(FEED_URL) == "<rss><channel/></rss>"
        args, kwargs = self.fetcher.session.get.call_args
        assert args == (FEED_URL,)
        assert kwargs["stream"] is True
        assert 0 < kwargs["timeout"] <= 10.0

    def test_plain_http_allowed(self):
        self.fetcher.session.get.return_value = make_response()

        assert self.fetcher.fetch("http://example.com/feed") == "<rss></rss>"

    def test_non_200_status_is_http_status_error(self):
        self.fetcher.session.get.return_value = make_response(404, "Not Found")

        with pytest.raises(FetchError) as exc_info:
            self.fetcher.fetch(FEED_URL)

        error = exc_info.value
        assert error.kind == FetchErrorKind.HTTP_STATUS
        assert error.status_code == 404
        assert error.reason == "Not Found"
        assert "HTTP 404: Not Found" in str(error)

    def test_other_success_status_is_error(self):
        self.fetcher.session.get.return_value = make_response(204, "No Content")

        with pytest.raises(FetchError) as exc_info:
            self.fetcher.fetch(FEED_URL)

        assert exc_info.value.status_code == 204

    def test_timeout_on_connect(self):
        self.fetcher.session.get.side_effect = requests.Timeout("timed out")

        with pytest.raises(FetchError) as exc_info:
            self.fetcher.fetch(FEED_URL)

        assert exc_info.value.kind == FetchErrorKind.TIMEOUT

    def test_deadline_exceeded_while_reading(self):
        self.fetcher.session.get.return_value = make_response(
            chunks=[b"<rss>", b"</rss>"]
        )

        clock = chain([0.0, 1.0], repeat(11.0))
        with patch("transpod.fetcher.time.monotonic", side_effect=clock):
            with pytest.raises(FetchError) as exc_info:
                self.fetcher.fetch(FEED_URL)

        assert exc_info.value.kind == FetchErrorKind.TIMEOUT

    def test_slow_response_headers_bounded_by_deadline(self):
        fetcher = FeedFetcher(FetchConfig(timeout=0.3))
        fetcher.session = Mock()
        fetcher.session.get.side_effect = lambda *args, **kwargs: time.sleep(1.0)

        started = time.monotonic()
        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch(FEED_URL)

        assert exc_info.value.kind == FetchErrorKind.TIMEOUT
        assert time.monotonic() - started < 0.8

    def test_trickling_body_bounded_by_deadline(self):
        def trickle(chunk_size):
            for _ in range(10):
                time.sleep(0.1)
                yield b"<x/>"

        response = make_response()
        response.iter_content.side_effect = trickle
        fetcher = FeedFetcher(FetchConfig(timeout=0.35))
        fetcher.session = Mock()
        fetcher.session.get.return_value = response

        started = time.monotonic()
        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch(FEED_URL)

        assert exc_info.value.kind == FetchErrorKind.TIMEOUT
        assert time.monotonic() - started < 0.8

    def test_connection_error_is_transport_error(self):
        self.fetcher.session.get.side_effect = requests.ConnectionError(
            "Name or service not known"
        )

        with pytest.raises(FetchError) as exc_info:
            self.fetcher.fetch(FEED_URL)

        assert exc_info.value.kind == FetchErrorKind.TRANSPORT
        assert "Name or service not known" in exc_info.value.message

    def test_error_while_reading_body_is_transport_error(self):
        response = make_response()
        response.iter_content.side_effect = requests.exceptions.ChunkedEncodingError(
            "broken"
        )
        self.fetcher.session.get.return_value = response

        with pytest.raises(FetchError) as exc_info:
            self.fetcher.fetch(FEED_URL)

        assert exc_info.value.kind == FetchErrorKind.TRANSPORT

    @pytest.mark.parametrize(
        "url", ["invalid-url", "ftp://example.com/feed.xml", "file:///etc/passwd", "http://"]
    )
    def test_unsupported_urls_rejected_without_request(self, url):
        with pytest.raises(FetchError) as exc_info:
            self.fetcher.fetch(url)

        assert exc_info.value.kind == FetchErrorKind.TRANSPORT
        self.fetcher.session.get.assert_not_called()

    def test_declared_length_over_cap(self):
        self.fetcher.session.get.return_value = make_response(
            headers={"Content-Length": "4096"}
        )

        with pytest.raises(FetchError) as exc_info:
            self.fetcher.fetch(FEED_URL)

        assert exc_info.value.kind == FetchErrorKind.TOO_LARGE

    def test_streamed_body_over_cap(self):
        self.fetcher.session.get.return_value = make_response(
            chunks=[b"x" * 600, b"x" * 600]
        )

        with pytest.raises(FetchError) as exc_info:
            self.fetcher.fetch(FEED_URL)

        assert exc_info.value.kind == FetchErrorKind.TOO_LARGE

    def test_user_agent_header_set(self):
        fetcher = FeedFetcher(FetchConfig(user_agent="transpod-test/1.0"))

        assert fetcher.session.headers["User-Agent"] == "transpod-test/1.0"

    def test_module_level_fetch_uses_timeout(self):
        with patch("transpod.fetcher.requests.Session.get") as mock_get:
            mock_get.return_value = make_response()

            assert fetch(FEED_URL, timeout=3.5) == "<rss></rss>"

        assert 0 < mock_get.call_args.kwargs["timeout"] <= 3.5


class TestFeedDecodingUnit:
    """Unit tests for feed body decoding."""

    def test_utf8_default(self):
        assert detect_encoding(b"<rss/>") == "utf-8"

    def test_content_type_charset(self):
        assert detect_encoding(b"<rss/>", "text/xml; charset=ISO-8859-1") == "iso8859-1"

    def test_xml_declaration_encoding(self):
        body = b'<?xml version="1.0" encoding="windows-1252"?><rss/>'

        assert detect_encoding(body, "application/rss+xml") == "cp1252"

    def test_bom_wins(self):
        body = b"\xef\xbb\xbf<?xml version=\"1.0\" encoding=\"latin-1\"?><rss/>"

        assert detect_encoding(body, "text/xml; charset=latin-1") == "utf-8-sig"

    def test_unknown_encoding_falls_back_to_utf8(self):
        assert detect_encoding(b"<rss/>", "text/xml; charset=bogus-enc") == "utf-8"

    def test_decode_latin1_feed(self):
        body = '<?xml version="1.0" encoding="ISO-8859-1"?><t>café</t>'.encode("latin-1")

        assert decode_feed(body).endswith("<t>café</t>")

    def test_decode_replaces_invalid_bytes(self):
        assert decode_feed(b"<t>\xff</t>") == "<t>�</t>"


class SlowFeedHandler(BaseHTTPRequestHandler):
    """Serves a tiny feed after pausing before the headers and the body."""

    pause = 0.8

    def do_GET(self):
        time.sleep(self.pause)
        self.send_response(200)
        self.send_header("Content-Type", "application/rss+xml")
        self.send_header("Content-Length", "11")
        self.end_headers()
        self.wfile.flush()
        time.sleep(self.pause)
        self.wfile.write(b"<rss></rss>")

    def log_message(self, format, *args):
        pass


class TestFeedFetcherDeadline:
    """Whole-request deadline against a real slow server."""

    def setup_method(self):
        self.server = ThreadingHTTPServer(("127.0.0.1", 0), SlowFeedHandler)
        self.server.daemon_threads = True
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        self.url = f"http://127.0.0.1:{self.server.server_address[1]}/feed.xml"

    def teardown_method(self):
        self.server.shutdown()
        self.server.server_close()

    def test_slow_headers_and_body_fail_at_deadline(self):
        fetcher = FeedFetcher(FetchConfig(timeout=1.0))

        started = time.monotonic()
        with pytest.raises(FetchError) as exc_info:
            fetcher.fetch(self.url)
        elapsed = time.monotonic() - started

        assert exc_info.value.kind == FetchErrorKind.TIMEOUT
        assert elapsed < 1.4

    def test_server_within_deadline_succeeds(self):
        fetcher = FeedFetcher(FetchConfig(timeout=3.0))

        assert fetcher.fetch(self.url) == "<rss></rss>"
