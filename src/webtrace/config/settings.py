from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Optional

from webtrace.observability.event_log import DEFAULT_LOG_LEVEL, normalize_level
from webtrace.trace.include import DEFAULT_INCLUDES, Include, format_includes, parse_includes

DEFAULT_LOG_DIR = "~/.webtrace"
DEFAULT_ENV_FILE = ".env"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_TRACE_MAX = 100
DEFAULT_MAX_PAYLOAD = 1024

ENV_LOG_DIR = "WEBTRACE_LOG_DIR"
ENV_ENV_FILE = "WEBTRACE_ENV_FILE"
ENV_HOST = "WEBTRACE_HOST"
ENV_PORT = "WEBTRACE_PORT"
ENV_TRACE_MAX = "WEBTRACE_TRACE_MAX"
ENV_INCLUDE = "WEBTRACE_INCLUDE"
ENV_MAX_PAYLOAD = "WEBTRACE_MAX_PAYLOAD"
ENV_MANAGEMENT_KEY = "WEBTRACE_MANAGEMENT_KEY"
ENV_ALLOW_NON_LOOPBACK = "WEBTRACE_ALLOW_NON_LOOPBACK"
ENV_LOG_LEVEL = "WEBTRACE_LOG_LEVEL"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def resolve_path(path: str) -> Path:
    return Path(os.path.expanduser(path))


def env_file_path(log_dir: str) -> Path:
    explicit = os.environ.get(ENV_ENV_FILE)
    if explicit:
        return resolve_path(explicit)
    return resolve_path(log_dir) / DEFAULT_ENV_FILE


def parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in _TRUE_VALUES


def parse_port(value: Optional[str], default: int = 0) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    if not (0 <= parsed <= 65535):
        return default
    return parsed


def parse_positive_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return parsed


def load_env_file(path: Path) -> Dict[str, str]:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (FileNotFoundError, OSError):
        return {}
    data: Dict[str, str] = {}
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        if key:
            data[key] = value
    return data


@dataclass(frozen=True)
class Settings:
    log_dir: str
    host: str
    port: int
    trace_max: int
    includes: FrozenSet[Include]
    max_payload: int
    management_key: Optional[str]
    allow_non_loopback: bool
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def include_names(self) -> str:
        return format_includes(self.includes)


def build_settings(
    *,
    log_dir: Optional[str] = None,
    host: Optional[str] = None,
    port: Optional[int] = None,
    trace_max: Optional[int] = None,
    includes: Optional[Iterable[Include]] = None,
    include: Optional[str] = None,
    max_payload: Optional[int] = None,
    management_key: Optional[str] = None,
    allow_non_loopback: Optional[bool] = None,
    log_level: Optional[str] = None,
) -> Settings:
    """Resolve settings: explicit arguments, then environment, then env file."""
    initial_log_dir = log_dir or os.environ.get(ENV_LOG_DIR) or DEFAULT_LOG_DIR
    env_path = env_file_path(str(resolve_path(initial_log_dir)))
    merged = dict(load_env_file(env_path))
    merged.update(os.environ)

    resolved_log_dir = str(resolve_path(log_dir or merged.get(ENV_LOG_DIR) or initial_log_dir))
    resolved_host = (host or merged.get(ENV_HOST) or DEFAULT_HOST).strip() or DEFAULT_HOST

    if port is None:
        resolved_port = parse_port(merged.get(ENV_PORT), default=DEFAULT_PORT)
    else:
        resolved_port = max(0, int(port))

    if trace_max is None:
        resolved_trace_max = parse_positive_int(merged.get(ENV_TRACE_MAX), default=DEFAULT_TRACE_MAX)
    else:
        resolved_trace_max = max(1, int(trace_max))

    if includes is not None:
        resolved_includes = frozenset(includes)
    else:
        resolved_includes = parse_includes(include if include is not None else merged.get(ENV_INCLUDE), DEFAULT_INCLUDES)

    if max_payload is None:
        resolved_max_payload = parse_positive_int(merged.get(ENV_MAX_PAYLOAD), default=DEFAULT_MAX_PAYLOAD)
    else:
        resolved_max_payload = max(0, int(max_payload))

    raw_key = management_key if management_key is not None else merged.get(ENV_MANAGEMENT_KEY)
    resolved_key = str(raw_key or "").strip() or None

    if allow_non_loopback is None:
        resolved_allow_non_loopback = parse_bool(merged.get(ENV_ALLOW_NON_LOOPBACK), default=False)
    else:
        resolved_allow_non_loopback = bool(allow_non_loopback)

    resolved_log_level = normalize_level(log_level or merged.get(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL)

    return Settings(
        log_dir=resolved_log_dir,
        host=resolved_host,
        port=resolved_port,
        trace_max=resolved_trace_max,
        includes=resolved_includes,
        max_payload=resolved_max_payload,
        management_key=resolved_key,
        allow_non_loopback=resolved_allow_non_loopback,
        log_level=resolved_log_level,
    )
