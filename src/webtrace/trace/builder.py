"""Derive trace info maps from an exchange.

``build_initial_trace`` runs before the handler and only looks at the request.
``enhance_trace`` runs after it and adds what the response and any recorded
failure contribute. Neither touches anything but the trace dict it returns or
receives; body capture is done by the streams in ``webtrace.trace.capture``.
"""

from __future__ import annotations

import time
from typing import AbstractSet, Any, Dict, Optional

from webtrace.http.exchange import Request, Response
from webtrace.http.headers import HeaderMap, HeaderValue
from webtrace.trace.capture import CapturingReader, CapturingWriter
from webtrace.trace.errors import ErrorAttributes, current_error
from webtrace.trace.include import Include

REDACTED = "<redacted>"


def _add(trace: Dict[str, Any], includes: AbstractSet[Include], include: Include, key: str, value: Any) -> None:
    if include not in includes:
        return
    if value is None or (isinstance(value, (str, dict)) and not value):
        return
    trace[key] = value


def request_headers(request: Request, includes: AbstractSet[Include]) -> Dict[str, HeaderValue]:
    headers = request.headers.copy()
    if Include.COOKIES not in includes:
        headers.discard("Cookie")
    if Include.AUTHORIZATION_HEADER not in includes and "Authorization" in headers:
        headers["Authorization"] = [REDACTED] * len(headers["Authorization"])
    return headers.to_trace_dict()


def response_headers(response: Response, includes: AbstractSet[Include]) -> Dict[str, Any]:
    headers: HeaderMap = response.headers.copy()
    if Include.COOKIES not in includes:
        headers.discard("Set-Cookie")
    result: Dict[str, Any] = dict(headers.to_trace_dict())
    result["status"] = str(response.status)
    return result


def build_initial_trace(request: Request, includes: AbstractSet[Include]) -> Dict[str, Any]:
    session = request.get_session(create=False)
    principal = request.user_principal

    trace: Dict[str, Any] = {
        "method": request.method,
        "path": request.path,
        "headers": {"request": request_headers(request, includes)},
    }
    _add(trace, includes, Include.PATH_INFO, "pathInfo", request.path_info)
    _add(trace, includes, Include.CONTEXT_PATH, "contextPath", request.context_path)
    _add(trace, includes, Include.USER_PRINCIPAL, "userPrincipal", getattr(principal, "name", None))
    _add(trace, includes, Include.PARAMETERS, "parameters", request.parameters)
    _add(trace, includes, Include.QUERY_STRING, "query", request.query_string)
    _add(trace, includes, Include.AUTH_TYPE, "authType", request.auth_type)
    _add(trace, includes, Include.REMOTE_ADDRESS, "remoteAddress", request.remote_addr)
    _add(trace, includes, Include.SESSION_ID, "sessionId", session.id if session is not None else None)
    _add(trace, includes, Include.REMOTE_USER, "remoteUser", request.remote_user)
    _add(trace, includes, Include.COOKIES, "cookies", request.cookies)
    return trace


def enhance_trace(
    trace: Dict[str, Any],
    request: Request,
    response: Response,
    includes: AbstractSet[Include],
    *,
    start_time: Optional[float] = None,
    error_attributes: Optional[ErrorAttributes] = None,
) -> None:
    if Include.RESPONSE_HEADERS in includes:
        trace.setdefault("headers", {})["response"] = response_headers(response, includes)
    if Include.TIME_TAKEN in includes and start_time is not None:
        trace["timeTaken"] = int((time.perf_counter() - start_time) * 1000)
    if Include.REQUEST_BODY in includes and isinstance(request.body, CapturingReader):
        trace["requestBody"] = request.body.captured_text()
    if Include.RESPONSE_BODY in includes and isinstance(response.body, CapturingWriter):
        trace["responseBody"] = response.body.captured_text()
    if Include.ERRORS in includes and error_attributes is not None and current_error(request) is not None:
        error = error_attributes.resolve(request, response, True)
        if error:
            trace["error"] = dict(error)
