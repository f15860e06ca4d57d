from __future__ import annotations

import io
import uuid
from dataclasses import dataclass, field
from http.cookies import CookieError, SimpleCookie
from typing import Any, BinaryIO, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple
from urllib.parse import parse_qsl

from webtrace.http.headers import HeaderMap

ERROR_EXCEPTION_ATTRIBUTE = "webtrace.error.exception"


class Principal(Protocol):
    @property
    def name(self) -> Optional[str]: ...


@dataclass(frozen=True)
class NamedPrincipal:
    name: Optional[str]


@dataclass
class Session:
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


def parse_parameters(query_string: Optional[str]) -> Dict[str, List[str]]:
    params: Dict[str, List[str]] = {}
    if not query_string:
        return params
    for name, value in parse_qsl(query_string, keep_blank_values=True):
        params.setdefault(name, []).append(value)
    return params


class Request:
    """One inbound HTTP request as seen by the trace filter and handlers."""

    def __init__(
        self,
        method: str,
        path: str,
        *,
        query_string: Optional[str] = None,
        headers: Optional[Iterable[Tuple[str, str]]] = None,
        body: Optional[BinaryIO] = None,
        remote_addr: Optional[str] = None,
        context_path: str = "",
        path_info: Optional[str] = None,
        auth_type: Optional[str] = None,
        user_principal: Optional[Principal] = None,
        remote_user: Optional[str] = None,
        session: Optional[Session] = None,
        parameters: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> None:
        self.method = method.upper()
        self.path = path
        self.query_string = query_string or None
        self.headers = headers if isinstance(headers, HeaderMap) else HeaderMap(headers)
        self.body: BinaryIO = body if body is not None else io.BytesIO()
        self.remote_addr = remote_addr
        self.context_path = context_path
        self.path_info = path_info
        self.auth_type = auth_type
        self.user_principal = user_principal
        self.remote_user = remote_user
        self.attributes: Dict[str, Any] = {}
        self._session = session
        if parameters is None:
            self._parameters = parse_parameters(self.query_string)
        else:
            self._parameters = {str(name): [str(v) for v in values] for name, values in parameters.items()}

    @property
    def parameters(self) -> Dict[str, List[str]]:
        return {name: list(values) for name, values in self._parameters.items()}

    @property
    def cookies(self) -> Dict[str, str]:
        jar: SimpleCookie = SimpleCookie()
        for raw in self.headers.get_all("Cookie"):
            try:
                jar.load(raw)
            except CookieError:
                continue
        return {name: morsel.value for name, morsel in jar.items()}

    def get_session(self, create: bool = False) -> Optional[Session]:
        if self._session is None and create:
            self._session = Session()
        return self._session

    def __repr__(self) -> str:
        return f"Request({self.method} {self.path})"


class Response:
    """Mutable response the handler fills in; ``body`` is a writable stream."""

    def __init__(self, status: int = 200, headers: Optional[Iterable[Tuple[str, str]]] = None) -> None:
        self.status = int(status)
        self.headers = headers if isinstance(headers, HeaderMap) else HeaderMap(headers)
        self._buffer = io.BytesIO()
        self.body: BinaryIO = self._buffer

    def add_header(self, name: str, value: str) -> None:
        self.headers.add(name, value)

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def write(self, data: bytes) -> int:
        return self.body.write(data)

    def getvalue(self) -> bytes:
        return self._buffer.getvalue()

    def __repr__(self) -> str:
        return f"Response({self.status})"
