from __future__ import annotations

import traceback
from datetime import datetime, timezone
from http import HTTPStatus
from typing import Any, Dict, Mapping, Optional, Protocol

from webtrace.http.exchange import ERROR_EXCEPTION_ATTRIBUTE, Request, Response


class ErrorAttributes(Protocol):
    def resolve(self, request: Request, response: Response, include_stack_trace: bool) -> Mapping[str, Any]: ...


def current_error(request: Request) -> Optional[BaseException]:
    error = request.attributes.get(ERROR_EXCEPTION_ATTRIBUTE)
    if isinstance(error, BaseException):
        return error
    return None


def _exception_name(error: BaseException) -> str:
    kind = type(error)
    if kind.__module__ == "builtins":
        return kind.__qualname__
    return f"{kind.__module__}.{kind.__qualname__}"


def _reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return f"Http Status {status}"


class DefaultErrorAttributes:
    """Describes the failure recorded on a request, or nothing when there is none."""

    def resolve(self, request: Request, response: Response, include_stack_trace: bool) -> Dict[str, Any]:
        error = current_error(request)
        if error is None:
            return {}
        status = int(response.status)
        attributes: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status": status,
            "error": _reason_phrase(status),
            "exception": _exception_name(error),
            "message": str(error) or "No message available",
        }
        if include_stack_trace:
            attributes["trace"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        attributes["path"] = request.path
        return attributes
