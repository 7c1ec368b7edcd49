"""Discovery helpers for the CDP HTTP endpoint (/json/*)."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import URLError
from urllib.request import urlopen


class HttpClientError(Exception):
    pass


def http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from URL."""
    try:
        with urlopen(url, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (TimeoutError, URLError) as exc:
        raise HttpClientError(str(exc)) from exc
    except json.JSONDecodeError as exc:
        raise HttpClientError(f"Invalid JSON from {url}: {exc}") from exc


def browser_ws_url(port: int, *, host: str = "127.0.0.1", timeout: float = 2.0) -> str:
    """Return the browser-level webSocketDebuggerUrl for a running Chrome."""
    info = http_get_json(f"http://{host}:{port}/json/version", timeout=timeout)
    ws_url = info.get("webSocketDebuggerUrl") if isinstance(info, dict) else None
    if not isinstance(ws_url, str) or not ws_url:
        raise HttpClientError(f"No webSocketDebuggerUrl on {host}:{port}")
    return ws_url
