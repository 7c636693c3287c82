"""Wire encoding for requests: query strings, URLs and bodies.

Bodies are built just before sending:
  - body_stream set        -> sent verbatim (file-like objects are read in chunks)
  - Content-Type XML       -> body serialized with dict_to_xml
  - anything else          -> body serialized as compact JSON
  - nothing set            -> no body
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Iterable, Iterator
from urllib.parse import urlencode

from pydantic import BaseModel

from fanhttp.response import EncodingError, TransportError
from fanhttp.xml_body import dict_to_xml

if TYPE_CHECKING:
    from fanhttp.request import Request


XML_CONTENT_TYPE = "application/xml"

# Chunk size used when streaming a file-like body to the transport.
_STREAM_CHUNK_SIZE = 64 * 1024


def build_query(query: dict[str, str]) -> str:
    """Encode query parameters with keys in ascending order.

    Keys and values are percent-encoded (spaces become '+'). Returns an empty
    string for an empty mapping; the result never includes the leading '?'.
    """
    if not query:
        return ""
    return urlencode(sorted(query.items()))


def build_url(path: str, query: dict[str, str]) -> str:
    """Append the encoded query string to path, omitting '?' when empty."""
    encoded = build_query(query)
    if not encoded:
        return path
    return f"{path}?{encoded}"


def encode_body(request: Request) -> bytes | Iterator[bytes] | None:
    """Build the content to send for a request.

    Args:
        request: The request whose body_stream or body is encoded.

    Returns:
        An iterator of byte chunks for raw streams, serialized bytes for
        structured bodies, or None when the request has no body.

    Raises:
        EncodingError: If the structured body cannot be serialized.
    """
    if request.body_stream is not None:
        return _iter_stream(request.body_stream)
    if request.body is None:
        return None

    value = request.body
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")

    if request.get_header("Content-Type") == XML_CONTENT_TYPE:
        try:
            return dict_to_xml(value)
        except ValueError as e:
            raise EncodingError(f"xml encoding failed for request {request.name!r}: {e}") from e

    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodingError(f"json encoding failed for request {request.name!r}: {e}") from e


def _iter_stream(stream: Any) -> Iterator[bytes]:
    """Yield byte chunks from a file-like object or an iterable of chunks.

    Text chunks are encoded as UTF-8. A stream that fails while being read
    (closed file, I/O error) raises TransportError.
    """
    if isinstance(stream, (bytes, bytearray, memoryview)):
        yield bytes(stream)
        return
    if isinstance(stream, str):
        yield stream.encode("utf-8")
        return

    try:
        if hasattr(stream, "read"):
            chunks: Iterable[Any] = iter(lambda: stream.read(_STREAM_CHUNK_SIZE), stream.read(0))
        else:
            chunks = iter(stream)

        for chunk in chunks:
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            if chunk:
                yield bytes(chunk)
    except (OSError, ValueError) as e:
        raise TransportError(f"error reading request body: {e}") from e
