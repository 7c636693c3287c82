"""Transport - sends one HTTP request and hands back a streaming reply.

The engine only depends on the Transport protocol. HttpxTransport is the
default implementation, built on a shared httpx.Client (connection pooling,
TLS and redirects are httpx's business).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

import httpx

from fanhttp.response import BodyStream, TransportError


@dataclass
class TransportResponse:
    """What a transport returns for a request that got a reply."""

    status_code: int
    stream: BodyStream
    headers: list[tuple[str, str]] = field(default_factory=list)
    reason_phrase: str = ""
    http_version: str = "HTTP/1.1"


class Transport(Protocol):
    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | Iterator[bytes] | None,
    ) -> TransportResponse:
        """Send a request.

        Raises:
            TransportError: If no reply was received.
        """
        ...


class HttpxBodyStream:
    """File-like view over a streamed httpx.Response.

    read() pulls decoded chunks from the response on demand; close() closes
    the response and returns its connection to the pool.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._chunks = response.iter_bytes()
        self._buffer = b""

    def read(self, size: int = -1) -> bytes:
        try:
            if size is None or size < 0:
                data = self._buffer + b"".join(self._chunks)
                self._buffer = b""
                return data

            while len(self._buffer) < size:
                chunk = next(self._chunks, None)
                if chunk is None:
                    break
                self._buffer += chunk
        except (httpx.HTTPError, httpx.StreamError) as e:
            raise TransportError(f"error reading response body: {e}") from e

        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def close(self) -> None:
        self._response.close()


class HttpxTransport:
    """Transport backed by an httpx.Client.

    Usage:
        with HttpxTransport(base_url="http://localhost:8000") as transport:
            result = transport.send("GET", "/health", {}, None)
    """

    def __init__(
        self,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            base_url: Base URL relative request URLs are joined to.
            headers: Default headers for every request.
            timeout: Timeout in seconds, or None to wait indefinitely.
            client: Preconfigured client to use instead of building one. The
                other arguments are ignored when it is given.
        """
        if client is None:
            kwargs: dict[str, Any] = {"headers": headers or {}, "timeout": timeout}
            if base_url:
                kwargs["base_url"] = base_url
            client = httpx.Client(**kwargs)
        self._client = client

    def __enter__(self) -> HttpxTransport:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def send(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: bytes | Iterator[bytes] | None,
    ) -> TransportResponse:
        """Send a request and return its reply with the body still unread.

        Headers are set in order, so a later key replaces an earlier one that
        differs only in case.

        Raises:
            TransportError: On connection failures, timeouts, invalid or
                unsupported URLs, non-ASCII header names or URLs, and raw
                request bodies that fail while being read.
        """
        try:
            request_headers = httpx.Headers()
            for key, value in headers.items():
                request_headers[key] = value

            request = self._client.build_request(
                method=method,
                url=url,
                headers=request_headers,
                content=body,
            )
            response = self._client.send(request, stream=True)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {url}: request timeout: {e}") from e
        except httpx.ConnectError as e:
            raise TransportError(f"{method} {url}: connection error: {e}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"{method} {url}: {e}") from e
        except UnicodeEncodeError as e:
            raise TransportError(
                f"{method} {url}: non-ASCII character {e.object[e.start:e.end]!r} "
                f"in header or URL"
            ) from e
        except (OSError, ValueError) as e:
            # A raw request body stream that fails mid-read (I/O error, closed file).
            raise TransportError(f"{method} {url}: error reading request body: {e}") from e

        return TransportResponse(
            status_code=response.status_code,
            stream=HttpxBodyStream(response),
            headers=response.headers.multi_items(),
            reason_phrase=response.reason_phrase,
            http_version=response.http_version,
        )
