from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Iterable, Optional


class Include(Enum):
    """Optional attributes the trace filter may record."""

    REQUEST_HEADERS = "request_headers"
    RESPONSE_HEADERS = "response_headers"
    COOKIES = "cookies"
    AUTHORIZATION_HEADER = "authorization_header"
    PATH_INFO = "path_info"
    QUERY_STRING = "query_string"
    PARAMETERS = "parameters"
    REMOTE_ADDRESS = "remote_address"
    SESSION_ID = "session_id"
    TIME_TAKEN = "time_taken"
    ERRORS = "errors"
    REQUEST_BODY = "request_body"
    RESPONSE_BODY = "response_body"
    AUTH_TYPE = "auth_type"
    USER_PRINCIPAL = "user_principal"
    REMOTE_USER = "remote_user"
    CONTEXT_PATH = "context_path"


DEFAULT_INCLUDES: FrozenSet[Include] = frozenset(
    {
        Include.REQUEST_HEADERS,
        Include.RESPONSE_HEADERS,
        Include.COOKIES,
        Include.ERRORS,
        Include.TIME_TAKEN,
    }
)

ALL_INCLUDES: FrozenSet[Include] = frozenset(Include)


def parse_includes(value: Optional[str], default: Iterable[Include] = DEFAULT_INCLUDES) -> FrozenSet[Include]:
    """Parse a comma separated list such as ``"cookies,time-taken"``.

    ``all`` selects every option, ``none`` selects nothing. Unknown names raise
    ``ValueError``.
    """
    if value is None or not value.strip():
        return frozenset(default)
    names = [part.strip().lower().replace("-", "_") for part in value.split(",") if part.strip()]
    if names == ["all"]:
        return ALL_INCLUDES
    if names == ["none"]:
        return frozenset()
    selected = set()
    for name in names:
        try:
            selected.add(Include(name))
        except ValueError:
            valid = ", ".join(sorted(item.value for item in Include))
            raise ValueError(f"unknown trace include '{name}' (valid: {valid})") from None
    return frozenset(selected)


def format_includes(includes: Iterable[Include]) -> str:
    return ",".join(sorted(item.value for item in includes))
