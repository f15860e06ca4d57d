from __future__ import annotations

import time
from typing import AbstractSet, Any, Callable, Dict, Iterable, Optional

from webtrace.http.exchange import ERROR_EXCEPTION_ATTRIBUTE, Request, Response
from webtrace.observability.event_log import EventLogger
from webtrace.trace import builder
from webtrace.trace.capture import DEFAULT_MAX_PAYLOAD_LENGTH, CapturingReader, CapturingWriter
from webtrace.trace.errors import ErrorAttributes
from webtrace.trace.include import DEFAULT_INCLUDES, Include
from webtrace.trace.repository import TraceRepository

Handler = Callable[[Request, Response], None]


class _StatusOverride:
    """Response view reporting a fixed status, used when the handler raised."""

    def __init__(self, response: Response, status: int) -> None:
        self._response = response
        self.status = status

    def __getattr__(self, name: str) -> Any:
        return getattr(self._response, name)


class WebRequestTraceFilter:
    """Records one trace per request passing through it."""

    def __init__(
        self,
        repository: TraceRepository,
        includes: Iterable[Include] = DEFAULT_INCLUDES,
        *,
        error_attributes: Optional[ErrorAttributes] = None,
        max_payload_length: int = DEFAULT_MAX_PAYLOAD_LENGTH,
        event_logger: Optional[EventLogger] = None,
    ) -> None:
        self.repository = repository
        self.includes: AbstractSet[Include] = frozenset(includes)
        self.error_attributes = error_attributes
        self.max_payload_length = max(0, int(max_payload_length))
        self.event_logger = event_logger

    def get_trace(self, request: Request) -> Dict[str, Any]:
        return builder.build_initial_trace(request, self.includes)

    def enhance_trace(
        self,
        trace: Dict[str, Any],
        request: Request,
        response: Response,
        start_time: Optional[float] = None,
    ) -> None:
        builder.enhance_trace(
            trace,
            request,
            response,
            self.includes,
            start_time=start_time,
            error_attributes=self.error_attributes,
        )

    def do_filter(self, request: Request, response: Response, chain: Handler) -> None:
        start_time = time.perf_counter()
        trace = self.get_trace(request)
        if Include.REQUEST_BODY in self.includes:
            request.body = CapturingReader(request.body, self.max_payload_length)
        if Include.RESPONSE_BODY in self.includes:
            response.body = CapturingWriter(response.body, self.max_payload_length)

        status: Optional[int] = None
        try:
            chain(request, response)
            status = response.status
        except BaseException as exc:
            request.attributes.setdefault(ERROR_EXCEPTION_ATTRIBUTE, exc)
            raise
        finally:
            observed: Any = response if status is not None else _StatusOverride(response, 500)
            self._commit(trace, request, observed, start_time)

    __call__ = do_filter

    def _commit(self, trace: Dict[str, Any], request: Request, response: Response, start_time: float) -> None:
        try:
            self.enhance_trace(trace, request, response, start_time)
            stored = self.repository.add(trace)
        except Exception as exc:  # noqa: BLE001
            self._log("WARN", "trace.commit_failed", "trace could not be recorded", path=request.path, error=str(exc))
            return
        self._log(
            "DEBUG",
            "trace.recorded",
            "request trace recorded",
            trace_id=stored.id,
            method=request.method,
            path=request.path,
            status=response.status,
            time_taken=trace.get("timeTaken"),
        )

    def _log(self, level: str, event: str, message: str, **fields: Any) -> None:
        if self.event_logger is None:
            return
        try:
            self.event_logger.write(level=level, event=event, message=message, **fields)
        except OSError:
            return
