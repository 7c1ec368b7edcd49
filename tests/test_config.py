from __future__ import annotations

import pytest

from swae.harness.config import HarnessConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "SWAE_BINARY",
        "SWAE_PROFILE",
        "SWAE_PORT",
        "SWAE_HEADLESS",
        "SWAE_WINDOW_SIZE",
        "SWAE_FLAGS",
        "SWAE_NAVIGATION_TIMEOUT",
        "SWAE_STATE_TIMEOUT",
        "SWAE_RPC_TIMEOUT",
        "SWAE_IGNORE_FRACTIONAL_REQUEST_IDS",
        "SWAE_LOG_VERSIONS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_from_env_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SWAE_BINARY", "/opt/chrome/chrome")
    cfg = HarnessConfig.from_env()
    assert cfg.binary_path == "/opt/chrome/chrome"
    assert cfg.profile_path.endswith("/.cache/swae/profile")
    assert cfg.cdp_port == 9222
    assert cfg.headless is True
    assert cfg.window_size == (640, 320)
    assert cfg.extra_flags == []
    assert cfg.navigation_timeout == 10.0
    assert cfg.state_timeout == 10.0
    assert cfg.rpc_timeout == 5.0
    assert cfg.ignore_fractional_request_ids is False
    assert cfg.log_versions is False


def test_from_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SWAE_BINARY", "~/bin/chrome")
    monkeypatch.setenv("SWAE_PROFILE", "/tmp/p")
    monkeypatch.setenv("SWAE_PORT", "9333")
    monkeypatch.setenv("SWAE_HEADLESS", "0")
    monkeypatch.setenv("SWAE_WINDOW_SIZE", "1280x720")
    monkeypatch.setenv("SWAE_FLAGS", "--enable-logging, --v=1,,")
    monkeypatch.setenv("SWAE_NAVIGATION_TIMEOUT", "2.5")
    monkeypatch.setenv("SWAE_STATE_TIMEOUT", "-1")
    monkeypatch.setenv("SWAE_RPC_TIMEOUT", "soon")
    monkeypatch.setenv("SWAE_IGNORE_FRACTIONAL_REQUEST_IDS", "yes")
    monkeypatch.setenv("SWAE_LOG_VERSIONS", "on")

    cfg = HarnessConfig.from_env()
    assert not cfg.binary_path.startswith("~")
    assert cfg.profile_path == "/tmp/p"
    assert cfg.cdp_port == 9333
    assert cfg.headless is False
    assert cfg.window_size == (1280, 720)
    assert cfg.extra_flags == ["--enable-logging", "--v=1"]
    assert cfg.navigation_timeout == 2.5
    assert cfg.state_timeout == 10.0
    assert cfg.rpc_timeout == 5.0
    assert cfg.ignore_fractional_request_ids is True
    assert cfg.log_versions is True


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("800,600", (800, 600)),
        ("800x600", (800, 600)),
        ("800", (640, 320)),
        ("a,b", (640, 320)),
        ("0x600", (640, 320)),
        (None, (640, 320)),
    ],
)
def test_parse_window_size(raw: str | None, expected: tuple[int, int]) -> None:
    assert HarnessConfig.parse_window_size(raw) == expected
