"""Response descriptors, their error taxonomy, and the thread-safe ResponseSet.

A Response never raises for the outcome of its request. Everything that went
wrong while producing it is recorded in Response.errors:

  EncodingError           body could not be serialized; nothing was sent
  TransportError          request could not be sent or no reply was received
  InvalidStatusCodeError  reply received with a status outside [200, 300)

CloseError is only raised when releasing a body fails.
"""

from __future__ import annotations

import io
import threading
from typing import TYPE_CHECKING, Any, Protocol

import httpx

if TYPE_CHECKING:
    from fanhttp.transport import TransportResponse


class FanoutError(Exception):
    """Base class for fanhttp errors."""


class EncodingError(FanoutError):
    """Raised when a request body cannot be serialized."""


class TransportError(FanoutError):
    """Raised when a request fails in transit (connection error, bad URL, etc.)."""


class InvalidStatusCodeError(FanoutError):
    """Recorded when a response status code falls outside [200, 300)."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"Invalid status code: {status_code}")
        self.status_code = status_code


class CloseError(FanoutError):
    """Raised when a response body cannot be released."""


class BodyStream(Protocol):
    def read(self, size: int = -1) -> bytes: ...

    def close(self) -> None: ...


class LimitedStream:
    """Wraps a body stream so that at most `limit` bytes can be read.

    Truncation is silent. A limit of 0 or less means unlimited. close() is
    forwarded to the wrapped stream.
    """

    def __init__(self, stream: BodyStream, limit: int) -> None:
        self._stream = stream
        self._remaining = limit if limit > 0 else None

    def read(self, size: int = -1) -> bytes:
        if self._remaining is None:
            return self._stream.read(size)
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._stream.read(size)
        self._remaining -= len(data)
        return data

    def close(self) -> None:
        self._stream.close()


class Response:
    """The outcome of sending one request.

    Always check errors (or ok) before trusting status_code, headers or body:
    a response that failed before reaching the server has status_code 0, an
    empty status line, no headers and an empty body.
    """

    def __init__(
        self,
        status_code: int = 0,
        reason_phrase: str = "",
        headers: httpx.Headers | list[tuple[str, str]] | dict[str, str] | None = None,
        stream: BodyStream | None = None,
        http_version: str = "",
        errors: list[FanoutError] | None = None,
    ) -> None:
        self.status_code = status_code
        self.reason_phrase = reason_phrase
        self.http_version = http_version
        self.headers = httpx.Headers(headers or [])
        self.errors: list[FanoutError] = list(errors or [])
        self._stream = stream
        self._reader: Any = stream if stream is not None else io.BytesIO(b"")
        self._body: bytes | None = None
        self._closed = False
        self._close_lock = threading.Lock()

    @classmethod
    def from_error(cls, error: FanoutError) -> Response:
        """Create a response for a request that never got a reply."""
        return cls(errors=[error])

    @classmethod
    def from_transport(cls, result: TransportResponse, max_body_size: int = 0) -> Response:
        """Wrap a transport reply, classify its status and cap its body.

        Args:
            result: What the transport returned.
            max_body_size: Maximum readable body size in bytes; 0 or less
                means unlimited.

        Returns:
            Response carrying one InvalidStatusCodeError if the status code is
            outside [200, 300), otherwise no errors.
        """
        stream: BodyStream = result.stream
        if max_body_size > 0:
            stream = LimitedStream(stream, max_body_size)

        response = cls(
            status_code=result.status_code,
            reason_phrase=result.reason_phrase,
            headers=result.headers,
            stream=stream,
            http_version=result.http_version,
        )
        if not 200 <= response.status_code < 300:
            response.errors.append(InvalidStatusCodeError(response.status_code))
        return response

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def status(self) -> str:
        """Status line, e.g. "200 OK". Empty when no reply was received."""
        if not self.status_code:
            return ""
        return f"{self.status_code} {self.reason_phrase}".strip()

    @property
    def body_stream(self) -> Any:
        """Readable body with read(size=-1); capped at the configured maximum."""
        return self._reader

    def body(self) -> bytes:
        """Read and return the whole body.

        The content is cached and body_stream is rewound over it, so the
        body can still be consumed as a stream afterwards.
        """
        if self._body is None:
            self._body = self._reader.read()
            self._reader = io.BytesIO(self._body)
        return self._body

    def close(self) -> None:
        """Release the underlying body. Only the first call has any effect.

        Raises:
            CloseError: If the underlying stream fails to close.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        if self._stream is None:
            return
        try:
            self._stream.close()
        except Exception as e:
            raise CloseError(f"failed to close response body: {e}") from e

    def __enter__(self) -> Response:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Response [{self.status_code}] errors={len(self.errors)}>"


class ResponseSet:
    """Responses keyed by request name.

    Safe for concurrent use: every operation holds a single lock for the
    whole collection.
    """

    def __init__(self) -> None:
        self._responses: dict[str, Response] = {}
        self._lock = threading.Lock()

    def add(self, name: str, response: Response) -> None:
        with self._lock:
            self._responses[name] = response

    def get(self, name: str) -> Response | None:
        with self._lock:
            return self._responses.get(name)

    def delete(self, name: str) -> None:
        with self._lock:
            self._responses.pop(name, None)

    def names(self) -> set[str]:
        with self._lock:
            return set(self._responses)

    def close(self) -> dict[str, CloseError]:
        """Close every response body.

        Returns:
            Mapping of request name to the error raised while closing that
            response. Names that closed cleanly are not included.
        """
        with self._lock:
            responses = list(self._responses.items())

        errors: dict[str, CloseError] = {}
        for name, response in responses:
            try:
                response.close()
            except CloseError as e:
                errors[name] = e
        return errors

    def __len__(self) -> int:
        with self._lock:
            return len(self._responses)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._responses
