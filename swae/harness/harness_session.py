"""
Test session runner.

TestSession.run(test) launches a browser, connects to it over CDP, builds an
ApplicationEnvironment around the fixture server, runs the test coroutine
and resets the server afterwards. A browser the launcher started is stopped
when the run ends; one that was already listening on the CDP port is reused
and left running.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from .app_env import ApplicationEnvironment
from .cdp import CdpConnection
from .config import HarnessConfig
from .errors import HarnessError
from .http_client import browser_ws_url
from .launcher import BrowserLauncher
from .server_api import TestServerApi

logger = logging.getLogger("swae.harness.session")

S = TypeVar("S", bound=TestServerApi)

TestFn = Callable[[ApplicationEnvironment[Any]], Awaitable[None]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class TestSession(Generic[S]):
    __test__ = False

    def __init__(
        self,
        test_server: S | Awaitable[S],
        config: HarnessConfig | None = None,
        *,
        launcher: BrowserLauncher | None = None,
    ) -> None:
        self.config = config or HarnessConfig.from_env()
        self.launcher = launcher or BrowserLauncher(self.config)
        self._server_source = test_server
        self._server: S | None = None

    async def get_test_server(self) -> S:
        if self._server is None:
            self._server = await _maybe_await(self._server_source)
        return self._server

    async def connect(self) -> CdpConnection:
        """Ensure a browser is running and connect to it; stop it again on failure."""
        try:
            result = await asyncio.to_thread(self.launcher.ensure_running)
            if result.started:
                logger.info("%s (%s)", result.message, " ".join(result.command))
            elif not self.launcher.cdp_ready():
                raise HarnessError(f"Browser not reachable: {result.message}\n{result.log_tail or ''}".rstrip())
            ws_url = await asyncio.to_thread(browser_ws_url, self.config.cdp_port)
            return await CdpConnection.connect(ws_url, timeout=self.config.rpc_timeout)
        except Exception:
            await asyncio.to_thread(self.launcher.stop)
            raise

    async def run(self, test: TestFn) -> None:
        server = await self.get_test_server()
        connection = await self.connect()
        try:
            app = await ApplicationEnvironment.build(connection, server, self.config)
            try:
                await test(app)
            finally:
                await app.close()
        finally:
            await connection.close()
            await asyncio.to_thread(self.launcher.stop)
        await _maybe_await(server.reset())

    async def close(self) -> None:
        server = await self.get_test_server()
        await _maybe_await(server.close())
