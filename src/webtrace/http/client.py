from __future__ import annotations

import json
from typing import Any, Dict, Optional
from urllib.request import Request, urlopen

MANAGEMENT_KEY_HEADER = "X-Management-Key"


def management_headers(management_key: Optional[str]) -> Dict[str, str]:
    key = str(management_key or "").strip()
    if not key:
        return {}
    return {MANAGEMENT_KEY_HEADER: key}


def fetch_json(
    *,
    base_url: str,
    path: str,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 2.0,
) -> Dict[str, Any]:
    req_headers = {"Accept": "application/json"}
    if headers:
        req_headers.update(headers)
    req = Request(url=f"{base_url}{path}", method=method, headers=req_headers)
    with urlopen(req, timeout=timeout) as resp:
        data = resp.read()
    if not data:
        return {}
    return json.loads(data.decode("utf-8"))
