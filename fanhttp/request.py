"""Request descriptors and the named collection a batch is built from."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterator

from fanhttp.encoding import build_url
from fanhttp.response import FanoutError

if TYPE_CHECKING:
    from fanhttp.response import Response


class DuplicateRequestError(FanoutError, KeyError):
    """Raised when a RequestSet already holds a request with the same name."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class Method(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    HEAD = "HEAD"


BeforeHook = Callable[["Request"], bool]
AfterHook = Callable[["Request", "Response"], Any]


@dataclass
class Request:
    """One HTTP call in a batch.

    The name correlates the request with its response and must be unique
    within a RequestSet. body holds a structured value that is serialized at
    send time (JSON, or XML when Content-Type is application/xml);
    body_stream holds raw content sent verbatim and wins when both are set.

    before_hook is called with the request before anything is built; returning
    False drops the request from the batch without a response. after_hook is
    called with the request and its response once the response exists,
    including error responses. Its return value is ignored.
    """

    name: str
    method: Method | str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    body: Any = None
    body_stream: Any = None
    before_hook: BeforeHook | None = None
    after_hook: AfterHook | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("request name must be non-empty")
        method = self.method.value if isinstance(self.method, Method) else str(self.method)
        try:
            self.method = Method(method.upper())
        except ValueError:
            raise ValueError(f"unsupported HTTP method: {self.method!r}") from None
        self.headers = dict(self.headers)
        self.query = dict(self.query)

    def add_header(self, key: str, value: str) -> None:
        self.headers[key] = value

    def get_header(self, key: str) -> str:
        """Return a header value, matching the key case-insensitively.

        Returns an empty string when the header is not set. When several keys
        differ only in case, the last one set wins.
        """
        value = ""
        key_lower = key.lower()
        for k, v in self.headers.items():
            if k.lower() == key_lower:
                value = v
        return value

    def del_header(self, key: str) -> None:
        """Remove every header whose key matches case-insensitively."""
        key_lower = key.lower()
        for k in [k for k in self.headers if k.lower() == key_lower]:
            del self.headers[k]

    def add_query(self, key: str, value: str) -> None:
        self.query[key] = value

    def get_query(self, key: str) -> str:
        return self.query.get(key, "")

    def del_query(self, key: str) -> None:
        self.query.pop(key, None)

    @property
    def full_path(self) -> str:
        """Path with the encoded query string appended."""
        return build_url(self.path, self.query)


class RequestSet:
    """Requests keyed by name.

    Not thread-safe: a RequestSet is populated by the caller and only read
    while a batch runs.
    """

    def __init__(self, requests: list[Request] | None = None) -> None:
        self._requests: dict[str, Request] = {}
        for request in requests or []:
            self.add(request)

    def add(self, request: Request) -> None:
        """Add a request.

        Raises:
            DuplicateRequestError: If a request with the same name exists.
        """
        if request.name in self._requests:
            raise DuplicateRequestError(f"duplicate request name: {request.name!r}")
        self._requests[request.name] = request

    def get(self, name: str) -> Request | None:
        return self._requests.get(name)

    def delete(self, name: str) -> None:
        self._requests.pop(name, None)

    def names(self) -> list[str]:
        return list(self._requests)

    def __len__(self) -> int:
        return len(self._requests)

    def __contains__(self, name: object) -> bool:
        return name in self._requests

    def __iter__(self) -> Iterator[Request]:
        return iter(list(self._requests.values()))
