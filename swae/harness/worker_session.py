"""Secondary CDP sessions for service worker execution contexts."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress

from .cdp import CdpConnection, CdpSession
from .errors import CdpError

logger = logging.getLogger("swae.harness.worker_session")


class ServiceWorkerEnvironment:
    """A service worker target session with the Network domain enabled."""

    def __init__(self, session: CdpSession) -> None:
        self.session = session

    @property
    def target_id(self) -> str | None:
        return self.session.target_id

    @classmethod
    async def build(cls, session: CdpSession) -> ServiceWorkerEnvironment:
        instance = cls(session)
        await session.send("Network.enable", {})
        return instance

    async def close(self) -> None:
        with suppress(CdpError):
            await self.session.send("Network.disable")
        await self.session.detach()


class WorkerSessionRegistry:
    """Creates at most one ServiceWorkerEnvironment per worker target id.

    `attach()` is synchronous so it can be called from inside an event
    handler; the attach itself runs as a task on the current loop.
    """

    def __init__(self, connection: CdpConnection) -> None:
        self._connection = connection
        self._tasks: dict[str, asyncio.Task[ServiceWorkerEnvironment]] = {}
        self._envs: dict[str, ServiceWorkerEnvironment] = {}

    def attach(self, target_id: str) -> asyncio.Task[ServiceWorkerEnvironment]:
        task = self._tasks.get(target_id)
        if task is not None:
            return task
        task = asyncio.get_running_loop().create_task(self._attach(target_id), name=f"swae-worker-{target_id}")
        task.add_done_callback(self._log_failure)
        self._tasks[target_id] = task
        return task

    async def _attach(self, target_id: str) -> ServiceWorkerEnvironment:
        session = await self._connection.attach(target_id)
        env = await ServiceWorkerEnvironment.build(session)
        self._envs[target_id] = env
        logger.debug("Worker session ready for target %s", target_id)
        return env

    @staticmethod
    def _log_failure(task: asyncio.Task[ServiceWorkerEnvironment]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Attaching to service worker target failed: %s", exc)

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._tasks

    def get(self, target_id: str) -> ServiceWorkerEnvironment | None:
        return self._envs.get(target_id)

    async def wait(self, target_id: str) -> ServiceWorkerEnvironment:
        task = self._tasks.get(target_id)
        if task is None:
            raise KeyError(target_id)
        return await task

    async def close(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        envs = list(self._envs.values())
        self._tasks.clear()
        self._envs.clear()
        for env in envs:
            await env.close()


__all__ = ["ServiceWorkerEnvironment", "WorkerSessionRegistry"]
