from __future__ import annotations

import io
import time

from webtrace.http.exchange import ERROR_EXCEPTION_ATTRIBUTE, NamedPrincipal, Request, Response, Session
from webtrace.trace.builder import REDACTED, build_initial_trace, enhance_trace
from webtrace.trace.capture import CapturingReader, CapturingWriter
from webtrace.trace.errors import DefaultErrorAttributes
from webtrace.trace.include import ALL_INCLUDES, DEFAULT_INCLUDES, Include


def _full_request() -> Request:
    return Request(
        "get",
        "/foo",
        query_string="a=1&b=2&a=3",
        headers=[
            ("Accept", "application/json"),
            ("Authorization", "Bearer secret"),
            ("Cookie", "testCookie=testValue; other=x"),
        ],
        remote_addr="10.0.0.1",
        context_path="/app",
        path_info="/extra",
        auth_type="BASIC",
        user_principal=NamedPrincipal("alice"),
        remote_user="alice",
        session=Session(id="sess-1"),
    )


def test_initial_trace_with_all_includes() -> None:
    trace = build_initial_trace(_full_request(), ALL_INCLUDES)

    assert trace["method"] == "GET"
    assert trace["path"] == "/foo"
    assert trace["query"] == "a=1&b=2&a=3"
    assert trace["parameters"] == {"a": ["1", "3"], "b": ["2"]}
    assert trace["remoteAddress"] == "10.0.0.1"
    assert trace["contextPath"] == "/app"
    assert trace["pathInfo"] == "/extra"
    assert trace["authType"] == "BASIC"
    assert trace["userPrincipal"] == "alice"
    assert trace["remoteUser"] == "alice"
    assert trace["sessionId"] == "sess-1"
    assert trace["cookies"] == {"testCookie": "testValue", "other": "x"}
    assert trace["headers"]["request"] == {
        "Accept": "application/json",
        "Authorization": "Bearer secret",
        "Cookie": "testCookie=testValue; other=x",
    }


def test_initial_trace_default_includes_redacts_and_skips_optional_keys() -> None:
    trace = build_initial_trace(_full_request(), DEFAULT_INCLUDES)

    assert set(trace) == {"method", "path", "headers", "cookies"}
    assert trace["headers"]["request"]["Authorization"] == REDACTED
    assert trace["headers"]["request"]["Cookie"] == "testCookie=testValue; other=x"


def test_cookie_header_dropped_without_cookies_include() -> None:
    trace = build_initial_trace(_full_request(), {Include.AUTHORIZATION_HEADER})
    assert "Cookie" not in trace["headers"]["request"]
    assert trace["headers"]["request"]["Authorization"] == "Bearer secret"
    assert "cookies" not in trace


def test_each_flag_controls_its_key() -> None:
    gated = {
        Include.QUERY_STRING: "query",
        Include.PARAMETERS: "parameters",
        Include.REMOTE_ADDRESS: "remoteAddress",
        Include.CONTEXT_PATH: "contextPath",
        Include.PATH_INFO: "pathInfo",
        Include.AUTH_TYPE: "authType",
        Include.USER_PRINCIPAL: "userPrincipal",
        Include.REMOTE_USER: "remoteUser",
        Include.SESSION_ID: "sessionId",
        Include.COOKIES: "cookies",
    }
    request = _full_request()
    for flag, key in gated.items():
        assert key in build_initial_trace(request, {flag})
        assert key not in build_initial_trace(request, ALL_INCLUDES - {flag})


def test_missing_optional_values_are_omitted() -> None:
    request = Request("GET", "/foo", query_string="", user_principal=NamedPrincipal(None))
    trace = build_initial_trace(request, ALL_INCLUDES)

    for key in ("query", "parameters", "userPrincipal", "sessionId", "remoteAddress", "contextPath", "cookies"):
        assert key not in trace
    assert trace["headers"] == {"request": {}}


def test_session_is_not_created_by_tracing() -> None:
    request = Request("GET", "/foo")
    build_initial_trace(request, ALL_INCLUDES)
    assert request.get_session() is None


def test_explicit_parameters_are_lists() -> None:
    request = Request("POST", "/form", parameters={"param": ["paramvalue"]})
    trace = build_initial_trace(request, {Include.PARAMETERS})
    assert trace["parameters"] == {"param": ["paramvalue"]}


def test_enhance_adds_response_headers_and_status() -> None:
    request = Request("GET", "/foo")
    response = Response(status=404, headers=[("Content-Type", "application/json"), ("Set-Cookie", "a=b")])
    trace = build_initial_trace(request, DEFAULT_INCLUDES)

    enhance_trace(trace, request, response, DEFAULT_INCLUDES)
    first = dict(trace["headers"]["response"])
    enhance_trace(trace, request, response, DEFAULT_INCLUDES)

    assert trace["headers"]["response"] == first
    assert first == {"Content-Type": "application/json", "Set-Cookie": "a=b", "status": "404"}


def test_enhance_drops_set_cookie_without_cookies_include() -> None:
    request = Request("GET", "/foo")
    response = Response(headers=[("Set-Cookie", "a=b")])
    includes = {Include.RESPONSE_HEADERS}
    trace = build_initial_trace(request, includes)
    enhance_trace(trace, request, response, includes)
    assert trace["headers"]["response"] == {"status": "200"}


def test_enhance_time_taken_is_elapsed_millis() -> None:
    request = Request("GET", "/foo")
    trace = build_initial_trace(request, {Include.TIME_TAKEN})
    enhance_trace(trace, request, Response(), {Include.TIME_TAKEN}, start_time=time.perf_counter() - 0.05)
    assert isinstance(trace["timeTaken"], int)
    assert trace["timeTaken"] >= 50
    assert "response" not in trace["headers"]


def test_enhance_collects_captured_bodies() -> None:
    request = Request("POST", "/foo", body=io.BytesIO(b"ping"))
    request.body = CapturingReader(request.body)
    response = Response()
    response.body = CapturingWriter(response.body)
    request.body.read()
    response.write(b"pong")

    includes = {Include.REQUEST_BODY, Include.RESPONSE_BODY}
    trace = build_initial_trace(request, includes)
    enhance_trace(trace, request, response, includes)

    assert trace["requestBody"] == "ping"
    assert trace["responseBody"] == "pong"


def test_enhance_error_only_when_failure_recorded() -> None:
    request = Request("GET", "/foo")
    response = Response(status=500)
    trace = build_initial_trace(request, DEFAULT_INCLUDES)

    enhance_trace(trace, request, response, DEFAULT_INCLUDES, error_attributes=DefaultErrorAttributes())
    assert "error" not in trace

    request.attributes[ERROR_EXCEPTION_ATTRIBUTE] = ValueError("Foo")
    enhance_trace(trace, request, response, DEFAULT_INCLUDES, error_attributes=DefaultErrorAttributes())
    assert trace["error"]["message"] == "Foo"
    assert trace["error"]["exception"] == "ValueError"
    assert trace["error"]["status"] == 500
    assert trace["error"]["error"] == "Internal Server Error"
    assert "trace" in trace["error"]


def test_enhance_error_gated_by_errors_include() -> None:
    request = Request("GET", "/foo")
    request.attributes[ERROR_EXCEPTION_ATTRIBUTE] = ValueError("Foo")
    includes = {Include.RESPONSE_HEADERS}
    trace = build_initial_trace(request, includes)
    enhance_trace(trace, request, Response(status=500), includes, error_attributes=DefaultErrorAttributes())
    assert "error" not in trace
