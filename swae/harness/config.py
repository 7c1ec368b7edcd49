from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BINARY_CANDIDATES: list[str] = [
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/local/bin/chromium",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/opt/google/chrome/chrome",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    # Snap builds ignore --user-data-dir; keep them last.
    "/snap/bin/chromium",
]

_TRUTHY = {"1", "true", "yes", "on"}


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass
class HarnessConfig:
    binary_path: str
    profile_path: str
    cdp_port: int = 9222
    headless: bool = True
    window_size: tuple[int, int] = (640, 320)
    extra_flags: list[str] = field(default_factory=list)
    navigation_timeout: float = 10.0
    state_timeout: float = 10.0
    rpc_timeout: float = 5.0
    ignore_fractional_request_ids: bool = False
    log_versions: bool = False

    @classmethod
    def detect_binary(cls) -> str:
        env_path = os.environ.get("SWAE_BINARY")
        if env_path:
            return expand_path(env_path)
        for candidate in DEFAULT_BINARY_CANDIDATES:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
        return shutil.which("google-chrome") or shutil.which("chromium") or "google-chrome"

    @staticmethod
    def parse_window_size(raw: str | None, default: tuple[int, int] = (640, 320)) -> tuple[int, int]:
        if not raw:
            return default
        parts = [p.strip() for p in raw.replace("x", ",").split(",") if p.strip()]
        if len(parts) != 2:
            return default
        try:
            width, height = int(parts[0]), int(parts[1])
        except ValueError:
            return default
        if width <= 0 or height <= 0:
            return default
        return width, height

    @classmethod
    def from_env(cls) -> HarnessConfig:
        profile = expand_path(os.environ.get("SWAE_PROFILE", "~/.cache/swae/profile"))
        port = int(os.environ.get("SWAE_PORT", "9222"))
        flags_raw = os.environ.get("SWAE_FLAGS", "")
        extra_flags = [flag.strip() for flag in flags_raw.split(",") if flag.strip()]
        return cls(
            binary_path=cls.detect_binary(),
            profile_path=profile,
            cdp_port=port,
            headless=_env_flag("SWAE_HEADLESS", True),
            window_size=cls.parse_window_size(os.environ.get("SWAE_WINDOW_SIZE")),
            extra_flags=extra_flags,
            navigation_timeout=_env_float("SWAE_NAVIGATION_TIMEOUT", 10.0),
            state_timeout=_env_float("SWAE_STATE_TIMEOUT", 10.0),
            rpc_timeout=_env_float("SWAE_RPC_TIMEOUT", 5.0),
            ignore_fractional_request_ids=_env_flag("SWAE_IGNORE_FRACTIONAL_REQUEST_IDS", False),
            log_versions=_env_flag("SWAE_LOG_VERSIONS", False),
        )
