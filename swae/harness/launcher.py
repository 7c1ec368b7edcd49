from __future__ import annotations

import contextlib
import logging
import socket
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from .config import HarnessConfig, expand_path
from .http_client import HttpClientError, browser_ws_url

logger = logging.getLogger("swae.harness.launcher")


@dataclass
class LaunchResult:
    command: list[str]
    started: bool
    message: str
    log_path: str | None = None
    log_tail: str | None = None


def _tail_text(path: str | None, max_chars: int = 4000) -> str | None:
    if not path:
        return None
    p = Path(path)
    if not p.exists():
        return None
    raw = p.read_text(encoding="utf-8", errors="replace")
    return raw if len(raw) <= max_chars else raw[-max_chars:]


class BrowserLauncher:
    """Spawns a headless Chrome with remote debugging for one test session."""

    def __init__(self, config: HarnessConfig | None = None) -> None:
        self.config = config or HarnessConfig.from_env()
        self.process: subprocess.Popen | None = None

    def build_launch_command(self, extra: list[str] | None = None) -> list[str]:
        width, height = self.config.window_size
        flags = [
            f"--remote-debugging-port={self.config.cdp_port}",
            f"--user-data-dir={expand_path(self.config.profile_path)}",
            "--remote-allow-origins=*",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-gpu",
            "--hide-scrollbars",
            "--mute-audio",
            f"--window-size={width},{height}",
        ]
        if self.config.headless:
            flags.append("--headless=new")
        flags.extend(self.config.extra_flags)
        if extra:
            flags.extend(extra)
        return [self.config.binary_path, *flags]

    def _port_available(self, timeout: float = 0.2) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            try:
                return sock.connect_ex(("127.0.0.1", self.config.cdp_port)) != 0
            except OSError:
                return False

    def cdp_ready(self, timeout: float = 0.4) -> bool:
        """Return True if the CDP HTTP endpoint responds."""
        try:
            browser_ws_url(self.config.cdp_port, timeout=timeout)
        except HttpClientError:
            return False
        return True

    def ensure_running(self, timeout: float = 5.0) -> LaunchResult:
        if self.cdp_ready():
            return LaunchResult([], False, "Chrome already listening on CDP port")
        if not self._port_available():
            return LaunchResult([], False, f"Port {self.config.cdp_port} already in use")

        with contextlib.suppress(OSError):
            Path(expand_path(self.config.profile_path)).mkdir(parents=True, exist_ok=True)

        cmd = self.build_launch_command()
        log_dir = Path(tempfile.gettempdir()) / "swae-logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = str(log_dir / f"chrome_launch_{int(time.time() * 1000)}.log")
        try:
            with open(log_path, "ab", buffering=0) as log_fh:
                self.process = subprocess.Popen(
                    cmd, stdout=log_fh, stderr=log_fh, stdin=subprocess.DEVNULL, start_new_session=True
                )
        except OSError as exc:
            return LaunchResult(cmd, False, str(exc), log_path=log_path, log_tail=_tail_text(log_path))

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.cdp_ready():
                logger.info("Chrome launched on CDP port %s", self.config.cdp_port)
                return LaunchResult(cmd, True, "Chrome launched", log_path=log_path)
            if self.process.poll() is not None:
                break
            time.sleep(0.1)
        self.stop()
        return LaunchResult(cmd, False, "Chrome launch timed out", log_path=log_path, log_tail=_tail_text(log_path))

    def stop(self, *, timeout: float = 2.0) -> bool:
        """Stop the launcher-owned Chrome process."""
        proc = self.process
        if proc is None:
            return False
        if proc.poll() is None:
            with contextlib.suppress(OSError):
                proc.terminate()
            try:
                proc.wait(timeout=max(0.1, float(timeout)))
            except subprocess.TimeoutExpired:
                with contextlib.suppress(OSError):
                    proc.kill()
        self.process = None
        return True

    @staticmethod
    def find_free_port() -> int:
        with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
            s.bind(("127.0.0.1", 0))
            return s.getsockname()[1]
