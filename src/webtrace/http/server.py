from __future__ import annotations

import hmac
import io
import json
import os
import signal
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Optional, Tuple

from webtrace.config.settings import Settings
from webtrace.http.client import MANAGEMENT_KEY_HEADER
from webtrace.http.exchange import Request, Response
from webtrace.http.routes import is_loopback_host, management_route, parse_limit, split_target
from webtrace.observability.event_log import EventLogger, to_jsonable
from webtrace.trace.errors import DefaultErrorAttributes
from webtrace.trace.filter import Handler, WebRequestTraceFilter
from webtrace.trace.repository import InMemoryTraceRepository, Trace

DEFAULT_MAX_REQUEST_BODY = 10 * 1024 * 1024
_HOP_BY_HOP = {"transfer-encoding", "connection", "content-length"}


def trace_to_dict(trace: Trace) -> Dict[str, Any]:
    return {
        "id": trace.id,
        "timestamp": trace.timestamp.isoformat(),
        "info": to_jsonable(trace.info),
    }


def echo_handler(request: Request, response: Response) -> None:
    """Demo application: echoes the request back as JSON; ``/fail`` raises."""
    if request.path == "/fail":
        raise RuntimeError("requested failure")
    body = request.body.read()
    payload = {
        "method": request.method,
        "path": request.path,
        "query": request.query_string,
        "body": body.decode("utf-8", errors="replace"),
    }
    response.status = 200
    response.set_header("Content-Type", "application/json")
    response.write(json.dumps(payload).encode("utf-8"))


@dataclass
class TraceRuntime:
    settings: Settings
    handler: Handler = echo_handler
    repository: InMemoryTraceRepository = field(init=False)
    logger: EventLogger = field(init=False)
    trace_filter: WebRequestTraceFilter = field(init=False)

    def __post_init__(self) -> None:
        self.repository = InMemoryTraceRepository(capacity=self.settings.trace_max)
        self.logger = EventLogger(self.settings.log_dir, min_level=self.settings.log_level)
        self.trace_filter = WebRequestTraceFilter(
            self.repository,
            self.settings.includes,
            error_attributes=DefaultErrorAttributes(),
            max_payload_length=self.settings.max_payload,
            event_logger=self.logger,
        )

    def trace_events(self, limit: int = 0) -> List[Dict[str, Any]]:
        return [trace_to_dict(trace) for trace in self.repository.find_all(limit=limit)]

    def health_snapshot(self) -> Dict[str, Any]:
        return {"ok": True, "traces": len(self.repository)}

    def debug_payload(self, host: str, port: int) -> Dict[str, Any]:
        return {
            "status": "running",
            "host": host,
            "port": port,
            "base_url": f"http://{host}:{port}",
            "trace_max": self.repository.capacity,
            "trace_count": len(self.repository),
            "includes": sorted(item.value for item in self.settings.includes),
            "max_payload": self.settings.max_payload,
            "management_key_required": bool(self.settings.management_key),
            "pid": os.getpid(),
            "event_log_file": str(self.logger.path),
            "log_level": self.logger.min_level,
        }


class TraceHTTPServer(ThreadingHTTPServer):
    def __init__(self, server_address: Tuple[str, int], runtime: TraceRuntime):
        super().__init__(server_address, TraceRequestHandler)
        self.runtime = runtime

    def initiate_shutdown(self) -> None:
        threading.Thread(target=self.shutdown, daemon=True).start()


class TraceRequestHandler(BaseHTTPRequestHandler):
    server: TraceHTTPServer

    def log_message(self, _format: str, *_args: object) -> None:
        return

    def do_GET(self) -> None:  # noqa: N802
        self._handle_request()

    def do_POST(self) -> None:  # noqa: N802
        self._handle_request()

    def do_PUT(self) -> None:  # noqa: N802
        self._handle_request()

    def do_PATCH(self) -> None:  # noqa: N802
        self._handle_request()

    def do_DELETE(self) -> None:  # noqa: N802
        self._handle_request()

    def _handle_request(self) -> None:
        route = management_route(self.path)
        if route:
            if not self._authorize_management():
                self._send_json(401, {"error": "unauthorized management request"})
                return
            self._handle_management(route)
            return
        self._handle_traced()

    def _authorize_management(self) -> bool:
        expected = str(self.server.runtime.settings.management_key or "")
        if not expected:
            return True
        provided = str(self.headers.get(MANAGEMENT_KEY_HEADER) or "")
        return hmac.compare_digest(provided, expected)

    def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
        raw = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _read_body(self) -> Optional[bytes]:
        raw_length = self.headers.get("Content-Length", "0")
        try:
            length = int(raw_length)
        except (ValueError, OverflowError):
            self._send_json(400, {"error": "invalid content length"})
            return None
        if length < 0:
            self._send_json(400, {"error": "invalid content length"})
            return None
        if length == 0:
            return b""
        if length > DEFAULT_MAX_REQUEST_BODY:
            self._send_json(413, {"error": "request body too large"})
            return None
        return self.rfile.read(length)

    def _handle_management(self, route: str) -> None:
        host, port = self.server.server_address[:2]
        runtime = self.server.runtime
        _path, query = split_target(self.path)
        if route == "trace":
            self._send_json(200, {"traces": runtime.trace_events(limit=parse_limit(query))})
            return
        if route == "debug":
            self._send_json(200, runtime.debug_payload(host=str(host), port=int(port)))
            return
        if route == "health":
            self._send_json(200, runtime.health_snapshot())
            return
        self._send_json(404, {"error": "unknown management route"})

    def _build_request(self, body: bytes) -> Request:
        path, query = split_target(self.path)
        return Request(
            self.command,
            path,
            query_string=query,
            headers=self.headers.items(),
            body=io.BytesIO(body),
            remote_addr=self.client_address[0] if self.client_address else None,
        )

    def _handle_traced(self) -> None:
        runtime = self.server.runtime
        body = self._read_body()
        if body is None:
            return
        request = self._build_request(body)
        response = Response()
        try:
            runtime.trace_filter(request, response, runtime.handler)
        except Exception as exc:  # noqa: BLE001
            runtime.logger.write(
                level="ERROR",
                event="server.handler_failed",
                message="handler raised",
                method=request.method,
                path=request.path,
                error=str(exc),
            )
            self._send_json(500, {"error": "internal server error"})
            return
        self._send_response(response)

    def _send_response(self, response: Response) -> None:
        payload = response.getvalue()
        self.send_response(response.status)
        for name, value in response.headers.items_flat():
            if name.lower() in _HOP_BY_HOP:
                continue
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if payload:
            self.wfile.write(payload)


def run_trace_server(settings: Settings, handler: Optional[Handler] = None) -> None:
    if not is_loopback_host(settings.host) and not settings.allow_non_loopback:
        raise ValueError("non-loopback bind blocked; use --allow-non-loopback to override")

    runtime = TraceRuntime(settings=settings, handler=handler or echo_handler)
    server = TraceHTTPServer((settings.host, settings.port), runtime)
    bound_host, bound_port = server.server_address[:2]
    runtime.logger.write(
        level="INFO",
        event="server.started",
        message="trace server started",
        host=bound_host,
        port=bound_port,
        trace_max=settings.trace_max,
        includes=settings.include_names,
    )

    stop_requested = False

    def _stop(_signum: int, _frame: object) -> None:
        nonlocal stop_requested
        if stop_requested:
            return
        stop_requested = True
        server.initiate_shutdown()

    previous_sigterm = signal.getsignal(signal.SIGTERM)
    previous_sigint = signal.getsignal(signal.SIGINT)
    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    try:
        server.serve_forever(poll_interval=0.5)
    finally:
        server.server_close()
        signal.signal(signal.SIGTERM, previous_sigterm)
        signal.signal(signal.SIGINT, previous_sigint)
        runtime.logger.write(
            level="INFO",
            event="server.stopped",
            message="trace server stopped",
            host=bound_host,
            port=bound_port,
        )
