from __future__ import annotations

import datetime as dt
import time
from typing import Any, ClassVar, Dict, List, Optional, Set, Tuple

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from webtrace.http.client import fetch_json

MAX_ROWS = 20


def _parse_timestamp(value: object) -> Optional[dt.datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return dt.datetime.fromisoformat(value)
    except ValueError:
        return None


def _format_age(value: object, now: Optional[dt.datetime] = None) -> str:
    """Format an ISO timestamp as relative age like '2s ago', '1m ago'."""
    stamp = _parse_timestamp(value)
    if stamp is None:
        return "-"
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=dt.timezone.utc)
    current = now or dt.datetime.now(dt.timezone.utc)
    delta = (current - stamp).total_seconds()
    if delta < 0:
        return "future"
    if delta < 60:
        return f"{int(delta)}s ago"
    if delta < 3600:
        return f"{int(delta / 60)}m ago"
    if delta < 86400:
        return f"{int(delta / 3600)}h ago"
    return f"{int(delta / 86400)}d ago"


def trim_preview(value: object, width: int = 40) -> str:
    raw = str(value or "").strip()
    compact = " ".join(raw.split())
    if not compact:
        return "-"
    if len(compact) > width:
        return f"{compact[:width]}..."
    return compact


def response_status(trace: Dict[str, Any]) -> str:
    info = trace.get("info") or {}
    headers = info.get("headers") if isinstance(info, dict) else None
    response = headers.get("response") if isinstance(headers, dict) else None
    if isinstance(response, dict) and response.get("status") is not None:
        return str(response["status"])
    error = info.get("error") if isinstance(info, dict) else None
    if isinstance(error, dict) and error.get("status") is not None:
        return str(error["status"])
    return "-"


def order_traces_latest_first(traces: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    def _key(trace: Dict[str, Any]) -> Tuple[int, str]:
        trace_id = trace.get("id")
        return (trace_id if isinstance(trace_id, int) else -1, str(trace.get("timestamp") or ""))

    return sorted(traces, key=_key, reverse=True)


def trace_line(trace: Dict[str, Any], now: Optional[dt.datetime] = None) -> Tuple[str, str, str, str, str]:
    info = trace.get("info") or {}
    age = _format_age(trace.get("timestamp"), now=now)
    method = str(info.get("method") or "-")
    path = trim_preview(info.get("path"), width=40)
    query = info.get("query")
    if query:
        path = trim_preview(f"{info.get('path')}?{query}", width=40)
    taken = info.get("timeTaken")
    time_taken = f"{taken}ms" if isinstance(taken, int) else "-"
    return age, method, path, response_status(trace), time_taken


def _status_style(status: str) -> str:
    try:
        code = int(status)
    except (ValueError, TypeError):
        return "white"
    if 200 <= code < 300:
        return "green"
    if 400 <= code < 500:
        return "yellow"
    if code >= 500:
        return "red"
    return "white"


class HighlightTracker:
    """Tracks newly appeared traces and highlights them for a short window."""

    HIGHLIGHT_SECONDS: ClassVar[float] = 5.0

    def __init__(self) -> None:
        self._seen_ids: Set[int] = set()
        self._highlight_until: Dict[int, float] = {}
        self._initialized = False

    def update(self, traces: List[Dict[str, Any]]) -> Set[int]:
        current_time = time.time()
        current_ids = {int(trace["id"]) for trace in traces if isinstance(trace.get("id"), int)}

        if not self._initialized:
            self._initialized = True
            self._seen_ids = current_ids
            return set()

        for trace_id in current_ids - self._seen_ids:
            self._highlight_until[trace_id] = current_time + self.HIGHLIGHT_SECONDS

        for trace_id in list(self._highlight_until.keys()):
            if trace_id not in current_ids or current_time > self._highlight_until[trace_id]:
                self._highlight_until.pop(trace_id, None)

        self._seen_ids = current_ids
        return set(self._highlight_until.keys())


def build_trace_table(traces: List[Dict[str, Any]], highlight_ids: Optional[Set[int]] = None) -> Table:
    highlight_ids = highlight_ids or set()
    table = Table(show_header=True, header_style="bold")
    table.add_column("AGE", style="cyan", no_wrap=True)
    table.add_column("METHOD", style="white", no_wrap=True)
    table.add_column("PATH", style="white")
    table.add_column("S", style="white", no_wrap=True)
    table.add_column("TIME", style="dim", no_wrap=True)
    now = dt.datetime.now(dt.timezone.utc)
    for trace in order_traces_latest_first(traces)[:MAX_ROWS]:
        age, method, path, status, time_taken = trace_line(trace, now=now)
        style = "bold" if trace.get("id") in highlight_ids else None
        table.add_row(age, method, path, Text(status, style=_status_style(status)), time_taken, style=style)
    return table


def _build_view(
    traces: List[Dict[str, Any]],
    *,
    highlight_ids: Set[int],
    base_url: str,
    last_error: Optional[str] = None,
) -> Panel:
    title = f"WEBTRACE | {base_url} | latest-first | showing={min(len(traces), MAX_ROWS)}"
    body: Any = build_trace_table(traces, highlight_ids) if traces else Text("no traces")
    if last_error:
        body = Panel(Text(f"error: {last_error}", style="red"), title="Trace Error", expand=True)
    return Panel(body, title=title, expand=True)


def fetch_traces(
    *,
    base_url: str,
    limit: int = 0,
    extra_headers: Optional[Dict[str, str]] = None,
) -> List[Dict[str, Any]]:
    path = "/trace"
    if limit > 0:
        path = f"/trace?limit={limit}"
    payload = fetch_json(base_url=base_url, path=path, headers=extra_headers, timeout=2.0)
    traces_raw = payload.get("traces", [])
    if not isinstance(traces_raw, list):
        return []
    return [item for item in traces_raw if isinstance(item, dict)]


def run_trace_tui(
    *,
    base_url: str,
    interval: float = 1.0,
    limit: int = 0,
    extra_headers: Optional[Dict[str, str]] = None,
) -> None:
    console = Console()
    tracker = HighlightTracker()
    last_error: Optional[str] = None

    with Live(console=console, auto_refresh=False, screen=False) as live:
        while True:
            try:
                traces = fetch_traces(base_url=base_url, limit=limit, extra_headers=extra_headers)
                highlight_ids = tracker.update(traces)
                last_error = None
            except Exception as exc:  # noqa: BLE001
                traces = []
                highlight_ids = set()
                last_error = str(exc)

            live.update(
                _build_view(traces, highlight_ids=highlight_ids, base_url=base_url, last_error=last_error),
                refresh=True,
            )
            time.sleep(max(0.1, interval))
