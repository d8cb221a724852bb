"""Upstream feed retrieval for transpod."""

import codecs
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import urlparse

import requests

from .config import FetchConfig
from .logging_config import create_execution_logger
from .models import FetchError, FetchErrorKind

_CHARSET = re.compile(r"charset\s*=\s*[\"']?([\w.:-]+)", re.IGNORECASE)
_XML_ENCODING = re.compile(
    rb"^\s*<\?xml[^>]*?encoding\s*=\s*[\"']([A-Za-z][\w.-]*)[\"']"
)
_BOMS = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


def detect_encoding(body: bytes, content_type: str | None = None) -> str:
    """Pick the encoding of a feed body.

    A byte order mark wins, then the charset of the Content-Type header, then
    the encoding named in the XML declaration. Falls back to UTF-8.
    """
    for bom, encoding in _BOMS:
        if body.startswith(bom):
            return encoding

    candidates = []
    if content_type:
        match = _CHARSET.search(content_type)
        if match:
            candidates.append(match.group(1))
    match = _XML_ENCODING.match(body[:256])
    if match:
        candidates.append(match.group(1).decode("ascii"))

    for candidate in candidates:
        try:
            return codecs.lookup(candidate).name
        except LookupError:
            continue
    return "utf-8"


def decode_feed(body: bytes, content_type: str | None = None) -> str:
    """Decode a feed body to text, replacing undecodable bytes."""
    return body.decode(detect_encoding(body, content_type), errors="replace")


class FeedFetcher:
    """Downloads a single feed with a deadline and a size cap."""

    def __init__(self, config: FetchConfig | None = None, execution_id: str | None = None):
        """Initialize FeedFetcher with configuration.

        Args:
            config: Timeout, size cap and User-Agent settings
            execution_id: Execution ID for logging context
        """
        self.config = config or FetchConfig()
        self.logger = create_execution_logger("feed_fetcher", execution_id)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": self.config.user_agent})

    def fetch(self, feed_url: str) -> str:
        """Download a feed and return its body as text.

        Args:
            feed_url: HTTP or HTTPS URL of the feed

        Returns:
            The response body decoded to text

        Raises:
            FetchError: On a non-200 status, timeout, transport failure or an
                oversized body
        """
        try:
            parsed_url = urlparse(feed_url)
        except ValueError as e:
            raise self._failure(
                FetchErrorKind.TRANSPORT, f"Invalid feed URL {feed_url!r}: {e}", feed_url
            ) from e
        if parsed_url.scheme not in ("http", "https") or not parsed_url.netloc:
            raise self._failure(
                FetchErrorKind.TRANSPORT, f"Unsupported feed URL: {feed_url!r}", feed_url
            )

        self.logger.info("Downloading feed", feed_url=feed_url)
        deadline = time.monotonic() + self.config.timeout
        cancelled = threading.Event()

        # The download runs in a worker so the caller gets control back at the
        # deadline even while a socket read is still blocked
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self._download, feed_url, deadline, cancelled)
        try:
            text = future.result(timeout=self.config.timeout)
        except TimeoutError as e:
            cancelled.set()
            raise self._failure(
                FetchErrorKind.TIMEOUT, f"Request timeout: {feed_url}", feed_url
            ) from e
        finally:
            executor.shutdown(wait=False)
        return text

    def _download(
        self, feed_url: str, deadline: float, cancelled: threading.Event
    ) -> str:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise self._failure(
                FetchErrorKind.TIMEOUT, f"Request timeout: {feed_url}", feed_url
            )

        try:
            response = self.session.get(feed_url, timeout=remaining, stream=True)
        except requests.Timeout as e:
            raise self._failure(
                FetchErrorKind.TIMEOUT, f"Request timeout: {feed_url}", feed_url
            ) from e
        except requests.RequestException as e:
            raise self._failure(
                FetchErrorKind.TRANSPORT, f"Failed to download feed: {e}", feed_url
            ) from e

        with response:
            if response.status_code != 200:
                raise self._failure(
                    FetchErrorKind.HTTP_STATUS,
                    f"HTTP {response.status_code}: {response.reason}",
                    feed_url,
                    status_code=response.status_code,
                    reason=response.reason,
                )
            body = self._read_body(response, deadline, cancelled, feed_url)

        text = decode_feed(body, response.headers.get("Content-Type"))
        self.logger.info(
            "Feed downloaded successfully",
            feed_url=feed_url,
            status_code=response.status_code,
            content_length=len(body),
        )
        return text

    def _read_body(
        self,
        response: requests.Response,
        deadline: float,
        cancelled: threading.Event,
        feed_url: str,
    ) -> bytes:
        declared = response.headers.get("Content-Length", "")
        if declared.isdigit() and int(declared) > self.config.max_bytes:
            raise self._failure(
                FetchErrorKind.TOO_LARGE,
                f"Feed declares {declared} bytes, limit is {self.config.max_bytes}",
                feed_url,
            )

        chunks = []
        size = 0
        try:
            for chunk in response.iter_content(chunk_size=self.config.chunk_size):
                if cancelled.is_set():
                    raise FetchError(
                        FetchErrorKind.TIMEOUT, f"Download abandoned: {feed_url}"
                    )
                size += len(chunk)
                if size > self.config.max_bytes:
                    raise self._failure(
                        FetchErrorKind.TOO_LARGE,
                        f"Feed exceeds {self.config.max_bytes} bytes",
                        feed_url,
                    )
                if time.monotonic() > deadline:
                    raise self._failure(
                        FetchErrorKind.TIMEOUT, f"Request timeout: {feed_url}", feed_url
                    )
                chunks.append(chunk)
        except requests.Timeout as e:
            raise self._failure(
                FetchErrorKind.TIMEOUT, f"Request timeout: {feed_url}", feed_url
            ) from e
        except requests.RequestException as e:
            raise self._failure(
                FetchErrorKind.TRANSPORT, f"Failed to read feed body: {e}", feed_url
            ) from e
        return b"".join(chunks)

    def _failure(
        self, kind: FetchErrorKind, message: str, feed_url: str, **details
    ) -> FetchError:
        self.logger.error(message, feed_url=feed_url, error_kind=kind.value)
        return FetchError(kind, message, **details)


def fetch(feed_url: str, timeout: float = 10.0) -> str:
    """Download a feed with the default configuration and the given timeout."""
    return FeedFetcher(FetchConfig(timeout=timeout)).fetch(feed_url)
