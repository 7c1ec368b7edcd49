"""Browser-wide test environment: tabs, their clients, the fixture server."""

from __future__ import annotations

import logging
from typing import Any, Generic, TypeVar

from .cdp import CdpConnection
from .client_env import ClientEnvironment
from .config import HarnessConfig
from .errors import HarnessError
from .server_api import TestServerApi
from .worker_session import WorkerSessionRegistry

logger = logging.getLogger("swae.harness.app_env")

S = TypeVar("S", bound=TestServerApi)


class ApplicationEnvironment(Generic[S]):
    def __init__(self, connection: CdpConnection, test_server: S, config: HarnessConfig | None = None) -> None:
        self.connection = connection
        self.config = config or HarnessConfig.from_env()
        self.workers = WorkerSessionRegistry(connection)
        self._test_server = test_server
        self._clients: dict[str, ClientEnvironment] = {}
        # Tabs in the order this environment attached to them (oldest first).
        self._tab_order: list[str] = []
        self._active: ClientEnvironment | None = None

    @classmethod
    async def build(
        cls, connection: CdpConnection, test_server: S, config: HarnessConfig | None = None
    ) -> ApplicationEnvironment[S]:
        app = cls(connection, test_server, config)
        tabs = await app.get_tabs()
        if tabs:
            initial_id = str(tabs[0]["targetId"])
        else:
            res = await connection.send("Target.createTarget", {"url": "about:blank"})
            initial_id = str(res["targetId"])
        await app._build_client_env(initial_id)
        await app._activate_tab(initial_id)
        return app

    async def get_tabs(self) -> list[dict[str, Any]]:
        res = await self.connection.send("Target.getTargets")
        infos = res.get("targetInfos")
        if not isinstance(infos, list):
            return []
        return [info for info in infos if isinstance(info, dict) and info.get("type") == "page"]

    def get_active_tab_client(self) -> ClientEnvironment:
        if self._active is None:
            raise HarnessError("No active tab")
        return self._active

    def get_test_server(self) -> S:
        return self._test_server

    async def new_tab(self, url: str = "about:blank") -> ClientEnvironment:
        res = await self.connection.send("Target.createTarget", {"url": url})
        return await self._build_client_env(str(res["targetId"]))

    async def open_tab_by_id(self, target_id: str) -> ClientEnvironment:
        return await self._activate_tab(target_id)

    async def open_tab_by_index(self, index: int) -> ClientEnvironment | None:
        """Activate the tab at `index`, counting from the oldest tab."""
        if 0 <= index < len(self._tab_order):
            return await self.open_tab_by_id(self._tab_order[index])
        return None

    async def open_last_tab(self) -> ClientEnvironment | None:
        if self._tab_order:
            return await self.open_tab_by_id(self._tab_order[-1])
        return None

    async def open_and_activate_tab(self) -> ClientEnvironment:
        client = await self.new_tab()
        await self.open_last_tab()
        return client

    async def _build_client_env(self, target_id: str) -> ClientEnvironment:
        session = await self.connection.attach(target_id)
        client = await ClientEnvironment.build(session, self._test_server.root_url, self.config, workers=self.workers)
        self._clients[target_id] = client
        if target_id not in self._tab_order:
            self._tab_order.append(target_id)
        return client

    async def _activate_tab(self, target_id: str) -> ClientEnvironment:
        client = self._clients.get(target_id)
        if client is None:
            client = await self._build_client_env(target_id)
        await self.connection.send("Target.activateTarget", {"targetId": target_id})
        self._active = client
        return client

    async def close(self) -> None:
        for client in list(self._clients.values()):
            await client.close()
            await client.session.detach()
        self._clients.clear()
        self._tab_order.clear()
        self._active = None
        await self.workers.close()
