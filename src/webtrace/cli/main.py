from __future__ import annotations

import argparse
import json
import sys
from typing import Optional

from rich.console import Console
from rich.table import Table

from webtrace import __version__
from webtrace.config.settings import Settings, build_settings
from webtrace.http.client import fetch_json, management_headers
from webtrace.http.server import run_trace_server
from webtrace.observability.event_log import EventLogger, tail_lines
from webtrace.observability.tui import build_trace_table, fetch_traces, run_trace_tui


def _add_runtime_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--log-dir", default=None)
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--management-key", default=None)


def _add_trace_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--trace-max", type=int, default=None, help="number of traces kept in memory")
    parser.add_argument(
        "--include",
        default=None,
        help="comma separated trace includes, e.g. request_body,response_body or `all`",
    )
    parser.add_argument("--max-payload", type=int, default=None, help="captured body budget in bytes")
    parser.add_argument("--allow-non-loopback", action="store_true", default=None)
    parser.add_argument("--log-level", default=None, help="minimum event log level: debug, info, warn, error")


def _settings_from_args(args: argparse.Namespace) -> Settings:
    return build_settings(
        log_dir=getattr(args, "log_dir", None),
        host=getattr(args, "host", None),
        port=getattr(args, "port", None),
        trace_max=getattr(args, "trace_max", None),
        include=getattr(args, "include", None),
        max_payload=getattr(args, "max_payload", None),
        management_key=getattr(args, "management_key", None),
        allow_non_loopback=getattr(args, "allow_non_loopback", None),
        log_level=getattr(args, "log_level", None),
    )


def handle_serve(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    print(f"Trace server listening on {settings.base_url} (includes: {settings.include_names})")
    print("Next: run `webtrace trace` in another shell")
    run_trace_server(settings)
    return 0


def handle_trace(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    headers = management_headers(settings.management_key)
    try:
        fetch_json(base_url=settings.base_url, path="/health", headers=headers, timeout=2.0)
    except Exception:
        print("Trace server not running. Run `webtrace serve` first.", file=sys.stderr)
        return 1
    try:
        run_trace_tui(
            base_url=settings.base_url,
            interval=max(0.1, float(args.interval)),
            limit=max(0, int(args.limit)),
            extra_headers=headers,
        )
    except KeyboardInterrupt:
        return 0
    return 0


def handle_dump(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    headers = management_headers(settings.management_key)
    try:
        traces = fetch_traces(base_url=settings.base_url, limit=max(0, int(args.limit)), extra_headers=headers)
    except Exception as exc:
        print(f"Failed to read /trace: {exc}", file=sys.stderr)
        return 1
    if bool(args.json):
        print(json.dumps({"traces": traces}, ensure_ascii=False, indent=2))
        return 0
    if not traces:
        print("No traces recorded")
        return 0
    table = build_trace_table(traces)
    table.title = f"webtrace | {settings.base_url}"
    Console().print(table)
    return 0


def handle_debug(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    try:
        payload = fetch_json(
            base_url=settings.base_url,
            path="/debug",
            headers=management_headers(settings.management_key),
            timeout=2.0,
        )
    except Exception as exc:
        print(f"Failed to read /debug: {exc}", file=sys.stderr)
        return 1
    table = Table(title="webtrace server")
    table.add_column("Field")
    table.add_column("Value")
    for key in sorted(payload.keys()):
        table.add_row(key, str(payload.get(key)))
    Console().print(table)
    return 0


def handle_logs(args: argparse.Namespace) -> int:
    settings = _settings_from_args(args)
    lines = tail_lines(EventLogger(settings.log_dir).path, limit=max(1, int(args.lines)))
    if not lines:
        print("No logs found")
        return 0
    for line in lines:
        print(line)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="webtrace: in-memory HTTP request/response tracing",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    serve_parser = sub.add_parser(
        "serve",
        help="run the demo echo server with tracing",
        formatter_class=argparse.RawTextHelpFormatter,
        epilog=(
            "Examples:\n"
            "  webtrace serve --port 8765\n"
            "  webtrace serve --include all --max-payload 4096\n"
        ),
    )
    _add_runtime_options(serve_parser)
    _add_trace_options(serve_parser)
    serve_parser.set_defaults(handler=handle_serve)

    trace_parser = sub.add_parser("trace", help="live trace view")
    _add_runtime_options(trace_parser)
    trace_parser.add_argument("--interval", type=float, default=1.0)
    trace_parser.add_argument("--limit", type=int, default=0)
    trace_parser.set_defaults(handler=handle_trace)

    dump_parser = sub.add_parser("dump", help="print recorded traces once")
    _add_runtime_options(dump_parser)
    dump_parser.add_argument("--limit", type=int, default=0)
    dump_parser.add_argument("--json", action="store_true", help="machine-readable output")
    dump_parser.set_defaults(handler=handle_dump)

    debug_parser = sub.add_parser("debug", help="show server runtime details")
    _add_runtime_options(debug_parser)
    debug_parser.set_defaults(handler=handle_debug)

    logs_parser = sub.add_parser("logs", help="tail the event log")
    _add_runtime_options(logs_parser)
    logs_parser.add_argument("--lines", type=int, default=120)
    logs_parser.set_defaults(handler=handle_logs)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2
    try:
        return int(handler(args))
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 2
