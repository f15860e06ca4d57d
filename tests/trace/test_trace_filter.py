from __future__ import annotations

import io
from pathlib import Path
from typing import Any, Dict, List, Mapping

import pytest

from webtrace.http.exchange import ERROR_EXCEPTION_ATTRIBUTE, NamedPrincipal, Request, Response
from webtrace.observability.event_log import EventLogger
from webtrace.trace.errors import DefaultErrorAttributes
from webtrace.trace.filter import WebRequestTraceFilter
from webtrace.trace.include import ALL_INCLUDES, Include
from webtrace.trace.repository import InMemoryTraceRepository, Trace


def _noop(_request: Request, _response: Response) -> None:
    return None


def _only_trace(repository: InMemoryTraceRepository) -> Mapping[str, Any]:
    traces = repository.find_all()
    assert len(traces) == 1
    return traces[0].info


def test_filter_adds_trace_with_default_includes() -> None:
    trace_filter = WebRequestTraceFilter(InMemoryTraceRepository())
    request = Request("GET", "/foo", headers=[("Accept", "application/json")])

    trace = trace_filter.get_trace(request)

    assert trace["method"] == "GET"
    assert trace["path"] == "/foo"
    assert trace["headers"]["request"] == {"Accept": "application/json"}


def test_default_includes_record_only_default_keys() -> None:
    repository = InMemoryTraceRepository()
    trace_filter = WebRequestTraceFilter(repository)
    request = Request("GET", "/foo", query_string="x=1", headers=[("Accept", "application/json")], remote_addr="1.2.3.4")

    trace_filter.do_filter(request, Response(), _noop)

    info = _only_trace(repository)
    assert set(info) == {"method", "path", "headers", "timeTaken"}
    assert set(info["headers"]) == {"request", "response"}


def test_filter_adds_trace_with_custom_includes() -> None:
    repository = InMemoryTraceRepository()
    trace_filter = WebRequestTraceFilter(repository, ALL_INCLUDES)
    request = Request(
        "GET",
        "/foo",
        query_string="some.query.string",
        headers=[("Accept", "application/json"), ("Cookie", "testCookie=testValue")],
        body=io.BytesIO(b"Hello, World!"),
        remote_addr="some.remote.addr",
        context_path="some.context.path",
        path_info="/tmp/spring-boot.tmp",
        auth_type="authType",
        user_principal=NamedPrincipal("principalTest"),
        parameters={"param": ["paramvalue"]},
    )
    response = Response(headers=[("Content-Type", "application/json")])
    seen: List[bytes] = []

    def _chain(req: Request, resp: Response) -> None:
        for line in req.body:
            seen.append(line)
        resp.write(b"Goodbye, World!\n")

    trace_filter.do_filter(request, response, _chain)

    info = _only_trace(repository)
    assert b"".join(seen) == b"Hello, World!"
    assert response.getvalue() == b"Goodbye, World!\n"
    assert info["headers"]["response"] == {"Content-Type": "application/json", "status": "200"}
    assert info["method"] == "GET"
    assert info["path"] == "/foo"
    assert info["parameters"]["param"][0] == "paramvalue"
    assert info["remoteAddress"] == "some.remote.addr"
    assert info["query"] == "some.query.string"
    assert info["userPrincipal"] == "principalTest"
    assert info["contextPath"] == "some.context.path"
    assert info["pathInfo"] == "/tmp/spring-boot.tmp"
    assert info["authType"] == "authType"
    assert info["cookies"] == {"testCookie": "testValue"}
    assert info["requestBody"] == "Hello, World!"
    assert info["responseBody"] == "Goodbye, World!\n"
    assert info["headers"]["request"]["Accept"] == "application/json"


def test_filter_does_not_add_response_headers_without_response_headers_include() -> None:
    repository = InMemoryTraceRepository()
    trace_filter = WebRequestTraceFilter(repository, {Include.REQUEST_HEADERS})
    response = Response(headers=[("Content-Type", "application/json")])

    trace_filter.do_filter(Request("GET", "/foo"), response, _noop)

    info = _only_trace(repository)
    assert "response" not in info["headers"]


def test_filter_has_response_status() -> None:
    trace_filter = WebRequestTraceFilter(InMemoryTraceRepository())
    request = Request("GET", "/foo")
    response = Response(status=404, headers=[("Content-Type", "application/json")])

    trace = trace_filter.get_trace(request)
    trace_filter.enhance_trace(trace, request, response)

    assert trace["headers"]["response"]["status"] == "404"


def test_filter_has_error() -> None:
    trace_filter = WebRequestTraceFilter(InMemoryTraceRepository(), error_attributes=DefaultErrorAttributes())
    request = Request("GET", "/foo")
    response = Response(status=500, headers=[("Content-Type", "application/json")])
    request.attributes[ERROR_EXCEPTION_ATTRIBUTE] = RuntimeError("Foo")

    trace = trace_filter.get_trace(request)
    trace_filter.enhance_trace(trace, request, response)

    assert trace["error"]["message"] == "Foo"


def test_handler_failure_propagates_and_trace_is_committed() -> None:
    repository = InMemoryTraceRepository()
    trace_filter = WebRequestTraceFilter(repository, error_attributes=DefaultErrorAttributes())
    failure = ValueError("boom")
    response = Response()

    def _chain(_req: Request, _resp: Response) -> None:
        raise failure

    with pytest.raises(ValueError) as excinfo:
        trace_filter.do_filter(Request("POST", "/broken"), response, _chain)

    assert excinfo.value is failure
    assert response.status == 200
    info = _only_trace(repository)
    assert info["headers"]["response"]["status"] == "500"
    assert info["error"]["message"] == "boom"
    assert info["error"]["status"] == 500
    assert "timeTaken" in info


def test_exactly_one_trace_per_request() -> None:
    repository = InMemoryTraceRepository()
    trace_filter = WebRequestTraceFilter(repository)
    for n in range(5):
        trace_filter(Request("GET", f"/item/{n}"), Response(), _noop)
    assert [trace.info["path"] for trace in repository.find_all()] == [f"/item/{n}" for n in range(4, -1, -1)]


def test_request_body_budget_truncates_trace_only() -> None:
    repository = InMemoryTraceRepository()
    trace_filter = WebRequestTraceFilter(repository, {Include.REQUEST_BODY}, max_payload_length=4)
    seen: Dict[str, bytes] = {}

    def _chain(req: Request, _resp: Response) -> None:
        seen["body"] = req.body.read()

    trace_filter.do_filter(Request("POST", "/foo", body=io.BytesIO(b"abcdefgh")), Response(), _chain)

    assert seen["body"] == b"abcdefgh"
    assert _only_trace(repository)["requestBody"] == "abcd...[truncated]"


def test_request_body_read_into_buffer_is_traced() -> None:
    repository = InMemoryTraceRepository()
    trace_filter = WebRequestTraceFilter(repository, {Include.REQUEST_BODY})
    seen: Dict[str, bytes] = {}

    def _chain(req: Request, _resp: Response) -> None:
        buffer = bytearray(64)
        count = req.body.readinto(buffer)
        seen["body"] = bytes(buffer[:count])

    trace_filter.do_filter(Request("POST", "/foo", body=io.BytesIO(b"Hello")), Response(), _chain)

    assert seen["body"] == b"Hello"
    assert _only_trace(repository)["requestBody"] == "Hello"


class _BrokenRepository:
    def add(self, info: Mapping[str, Any]) -> Trace:
        raise RuntimeError("store unavailable")

    def find_all(self, limit: int = 0) -> List[Trace]:
        return []


def test_commit_failure_does_not_mask_handler_outcome(tmp_path: Path) -> None:
    logger = EventLogger(str(tmp_path))
    trace_filter = WebRequestTraceFilter(_BrokenRepository(), event_logger=logger)

    def _chain(_req: Request, _resp: Response) -> None:
        raise KeyError("original")

    with pytest.raises(KeyError):
        trace_filter.do_filter(Request("GET", "/foo"), Response(), _chain)

    trace_filter.do_filter(Request("GET", "/ok"), Response(), _noop)
    assert "trace.commit_failed" in logger.path.read_text(encoding="utf-8")


def test_recorded_trace_is_logged(tmp_path: Path) -> None:
    logger = EventLogger(str(tmp_path), min_level="DEBUG")
    trace_filter = WebRequestTraceFilter(InMemoryTraceRepository(), event_logger=logger)
    trace_filter.do_filter(Request("GET", "/foo"), Response(), _noop)
    assert '"event": "trace.recorded"' in logger.path.read_text(encoding="utf-8")


def test_recorded_trace_is_not_logged_at_default_level(tmp_path: Path) -> None:
    logger = EventLogger(str(tmp_path))
    trace_filter = WebRequestTraceFilter(InMemoryTraceRepository(), event_logger=logger)
    trace_filter.do_filter(Request("GET", "/foo"), Response(), _noop)
    assert not logger.path.exists()
