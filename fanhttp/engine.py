"""Engine - executes a batch of named requests concurrently.

Every request in a RequestSet runs in its own worker thread through the same
pipeline:

  before_hook -> body -> URL -> transport -> Response -> after_hook

and the resulting Response is stored under the request's name in a
ResponseSet. execute() returns only after every worker has finished. A
failure in one request never affects the others: it is recorded on that
request's Response.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from fanhttp.encoding import build_url, encode_body
from fanhttp.models import EngineConfig
from fanhttp.request import Method, Request, RequestSet
from fanhttp.response import CloseError, EncodingError, Response, ResponseSet, TransportError
from fanhttp.transport import HttpxTransport, Transport

log = logging.getLogger(__name__)


class _Timings:
    """Collects stage durations (in milliseconds) from many worker threads."""

    def __init__(self, target: dict[str, float] | None) -> None:
        self._target = target
        self._lock = threading.Lock()

    def record(self, key: str, start: float) -> float:
        """Store the time elapsed since start under key; return a new start."""
        now = time.perf_counter()
        if self._target is not None:
            elapsed_ms = (now - start) * 1000
            with self._lock:
                self._target[key] = elapsed_ms
            log.debug("%s took %.3fms", key, elapsed_ms)
        return now


class Engine:
    """Runs batches of requests in parallel.

    Usage:
        with Engine(EngineConfig(max_body_size=1 << 20)) as engine:
            responses = engine.execute(requests)
            try:
                for name in responses.names():
                    ...
            finally:
                responses.close()
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        transport: Transport | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Engine configuration. Defaults to EngineConfig().
            transport: Transport used to send requests. When omitted, an
                HttpxTransport is built from config and closed by close().
        """
        self._config = config or EngineConfig()
        self._owns_transport = transport is None
        if transport is None:
            transport = HttpxTransport(
                base_url=self._config.base_url,
                headers=self._config.headers,
                timeout=self._config.timeout,
            )
        self._transport = transport

    def __enter__(self) -> Engine:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the transport if this engine created it."""
        if self._owns_transport:
            close = getattr(self._transport, "close", None)
            if close is not None:
                close()

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def max_body_size(self) -> int:
        return self._config.max_body_size

    def execute(
        self,
        requests: RequestSet,
        timings: dict[str, float] | None = None,
    ) -> ResponseSet:
        """Execute every request concurrently and wait for all of them.

        Args:
            requests: Requests to send. They are not modified.
            timings: Optional dict that receives per-stage durations in
                milliseconds, keyed "<stage>.<request name>", plus "total".

        Returns:
            ResponseSet with one entry per request, except requests whose
            before_hook returned False.

        Raises:
            Exception: Whatever a before_hook or after_hook raised. It is
                re-raised only after every other request has finished, and
                after every response produced so far has been closed.
        """
        start = time.perf_counter()
        recorder = _Timings(timings)
        responses = ResponseSet()
        batch = list(requests)
        if not batch:
            recorder.record("total", start)
            return responses

        workers = len(batch)
        if self._config.max_concurrency is not None:
            workers = min(workers, self._config.max_concurrency)

        log.debug("Executing batch of %d requests with %d workers", len(batch), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fanhttp") as pool:
            futures = [
                pool.submit(self._run, request, responses, recorder) for request in batch
            ]

        # The pool has drained; surface the first hook exception, if any.
        # Responses produced so far are closed before re-raising.
        try:
            for future in futures:
                future.result()
        except Exception:
            failures = responses.close()
            for name, error in failures.items():
                log.warning("Failed to close response %r: %s", name, error)
            raise

        recorder.record("total", start)
        log.debug("Batch finished with %d responses", len(responses))
        return responses

    def execute_request(
        self,
        request: Request,
        timings: dict[str, float] | None = None,
    ) -> Response | None:
        """Run the pipeline for a single request.

        Returns:
            The Response, or None if the request's before_hook vetoed it.
        """
        return self._execute_single(request, _Timings(timings))

    def _run(self, request: Request, responses: ResponseSet, recorder: _Timings) -> None:
        response = self._execute_single(request, recorder)
        start = time.perf_counter()
        if response is not None:
            responses.add(request.name, response)
        recorder.record(f"add.{request.name}", start)

    def _execute_single(self, request: Request, recorder: _Timings) -> Response | None:
        name = request.name
        now = time.perf_counter()

        if request.before_hook is not None and not request.before_hook(request):
            log.debug("Request %r skipped by before_hook", name)
            return None
        now = recorder.record(f"before_hook.{name}", now)

        try:
            content = encode_body(request)
        except EncodingError as e:
            log.warning("Request %r not sent: %s", name, e)
            response = Response.from_error(e)
        else:
            now = recorder.record(f"body.{name}", now)
            response = self._send(request, content, recorder, now)
        now = time.perf_counter()

        if request.after_hook is not None:
            try:
                request.after_hook(request, response)
            except Exception:
                try:
                    response.close()
                except CloseError as e:
                    log.warning("Failed to close response %r: %s", name, e)
                raise
        recorder.record(f"after_hook.{name}", now)

        return response

    def _send(
        self,
        request: Request,
        content: Any,
        recorder: _Timings,
        now: float,
    ) -> Response:
        name = request.name
        url = build_url(request.path, request.query)
        try:
            result = self._transport.send(Method(request.method).value, url, request.headers, content)
        except TransportError as e:
            log.warning("Request %r failed: %s", name, e)
            return Response.from_error(e)
        now = recorder.record(f"send.{name}", now)

        response = Response.from_transport(result, self._config.max_body_size)
        recorder.record(f"response.{name}", now)
        return response
