"""
One browser tab under test.

ClientEnvironment wires a page session's CDP events into a FrameStore and a
ServiceWorkerState and exposes the test-facing calls:

- navigate / load: navigate the main frame (commit-only vs full-load)
- evaluate: run JS in the page
- register_service_worker / wait_for_service_worker_registration
- emulate_offline / turn_off_emulate_offline
- skip_waiting: activate a waiting worker
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlparse

from .cdp import CdpSession
from .config import HarnessConfig
from .errors import CdpError, EvaluationError
from .frames import FrameStore, ResponseRecord
from .transitions import TransitionValidator
from .worker_session import WorkerSessionRegistry
from .worker_state import ServiceWorkerState

logger = logging.getLogger("swae.harness.client_env")

_DOMAINS = ("Page", "ServiceWorker", "IndexedDB", "Network")


@dataclass(slots=True)
class NavigateResult:
    network_result: ResponseRecord | None
    responses: list[ResponseRecord] = field(default_factory=list)
    body: dict[str, Any] | None = None

    @property
    def text(self) -> str:
        if not self.body:
            return ""
        raw = self.body.get("body")
        if not isinstance(raw, str):
            return ""
        if self.body.get("base64Encoded"):
            return base64.b64decode(raw).decode(errors="replace")
        return raw


def is_absolute_url(url: str) -> bool:
    return urlparse(url).scheme in ("http", "https")


def pick_document_response(
    responses: list[ResponseRecord], *, loader_id: str | None = None, url: str | None = None
) -> ResponseRecord | None:
    """Pick the main document response out of a navigation's responses."""
    if not responses:
        return None
    if loader_id:
        for record in responses:
            if record.request_id == loader_id:
                return record
    for record in responses:
        if record.resource_type == "Document":
            return record
    if url:
        for record in responses:
            if record.url == url:
                return record
    return responses[0]


class ClientEnvironment:
    def __init__(
        self,
        session: CdpSession,
        root_url: str,
        config: HarnessConfig | None = None,
        *,
        workers: WorkerSessionRegistry | None = None,
    ) -> None:
        self.session = session
        self.root_url = root_url
        self.config = config or HarnessConfig.from_env()
        self.workers = workers

        self.frame_store = FrameStore(
            timeout=self.config.navigation_timeout,
            ignore_fractional_request_ids=self.config.ignore_fractional_request_ids,
        )
        self.validator = TransitionValidator()
        self.sw_state = ServiceWorkerState(
            session,
            attach_worker=workers.attach if workers is not None else None,
            timeout=self.config.state_timeout,
            validator=self.validator,
            log_versions=self.config.log_versions,
        )

        session.on("Network.requestWillBeSent", self.frame_store.handle_request_will_be_sent)
        session.on("Network.responseReceived", self.frame_store.handle_response_received)
        session.on("Page.frameNavigated", self.frame_store.handle_frame_navigated)
        session.on("Page.lifecycleEvent", self.frame_store.handle_lifecycle_event)
        session.on("Page.loadEventFired", self.frame_store.handle_load_event_fired)
        session.on("ServiceWorker.workerVersionUpdated", self.sw_state.handle_version_updated)
        session.on("ServiceWorker.workerErrorReported", self.sw_state.handle_error_reported)

    @property
    def target_id(self) -> str | None:
        return self.session.target_id

    @classmethod
    async def build(
        cls,
        session: CdpSession,
        root_url: str,
        config: HarnessConfig | None = None,
        *,
        workers: WorkerSessionRegistry | None = None,
    ) -> ClientEnvironment:
        instance = cls(session, root_url, config, workers=workers)
        await asyncio.gather(*(session.send(f"{domain}.enable", {}) for domain in _DOMAINS))
        await session.send("Page.setLifecycleEventsEnabled", {"enabled": True})
        return instance

    async def close(self) -> None:
        results = await asyncio.gather(
            *(self.session.send(f"{domain}.disable") for domain in _DOMAINS), return_exceptions=True
        )
        for domain, res in zip(_DOMAINS, results):
            if isinstance(res, Exception):
                logger.debug("%s.disable failed: %s", domain, res)

    def get_absolute_url(self, target_url: str) -> str:
        if is_absolute_url(target_url):
            return target_url
        return urljoin(self.root_url, target_url)

    async def main_frame_id(self) -> str:
        tree = await self.session.send("Page.getFrameTree")
        frame = (tree.get("frameTree") or {}).get("frame") or {}
        frame_id = frame.get("id")
        if not isinstance(frame_id, str) or not frame_id:
            raise CdpError("Page.getFrameTree returned no main frame id", method="Page.getFrameTree")
        return frame_id

    async def navigate(self, target_url: str | None = None, *, wait_for_load: bool = False) -> NavigateResult:
        """Navigate the main frame and return its document response and body.

        With wait_for_load=False this returns once the browser commits to the
        new document; with True it waits for the load event and every request
        the frame issued.
        """
        url = self.get_absolute_url(target_url) if target_url else self.root_url
        frame_id = await self.main_frame_id()

        pending = self.frame_store.start(frame_id, wait_for_load)
        try:
            res = await self.session.send("Page.navigate", {"url": url})
        except Exception:
            pending.cancel()
            raise
        error_text = res.get("errorText")
        if isinstance(error_text, str) and error_text:
            pending.cancel()
            raise CdpError(f"Navigation to {url} failed: {error_text}", method="Page.navigate")

        responses = await pending
        document = pick_document_response(responses, loader_id=res.get("loaderId"), url=url)
        body = None
        if document is not None:
            body = await self.session.send("Network.getResponseBody", {"requestId": document.request_id})
        return NavigateResult(document, responses, body)

    async def load(self, target_url: str | None = None) -> NavigateResult:
        return await self.navigate(target_url, wait_for_load=True)

    async def evaluate(self, expression: str) -> Any:
        """Evaluate `expression` in the page, awaiting promises, returning the value."""
        res = await self.session.send(
            "Runtime.evaluate",
            {"expression": expression, "awaitPromise": True, "returnByValue": True},
        )
        details = res.get("exceptionDetails")
        if isinstance(details, dict):
            exception = details.get("exception") if isinstance(details.get("exception"), dict) else {}
            message = exception.get("description") or details.get("text") or "Evaluation failed"
            raise EvaluationError(str(message), details)
        result = res.get("result")
        return result.get("value") if isinstance(result, dict) else None

    async def register_service_worker(self, script_url: str = "/sw.js", scope: str | None = None) -> str | None:
        options = f", {json.dumps({'scope': scope})}" if scope else ""
        return await self.evaluate(
            f"navigator.serviceWorker.register({json.dumps(script_url)}{options}).then((r) => r.scope)"
        )

    async def wait_for_service_worker_registration(self) -> dict[str, Any] | None:
        return await self.evaluate(
            "navigator.serviceWorker.ready"
            ".then(() => navigator.serviceWorker.getRegistration())"
            ".then((r) => r ? {scope: r.scope, active: r.active ? r.active.scriptURL : null} : null)"
        )

    async def skip_waiting(self, scope_url: str | None = None) -> None:
        await self.sw_state.skip_waiting(scope_url or self.root_url)

    async def _emulate_network(self, offline: bool) -> None:
        await self.session.send(
            "Network.emulateNetworkConditions",
            {"offline": offline, "latency": 0, "downloadThroughput": -1, "uploadThroughput": -1},
        )

    async def emulate_offline(self) -> None:
        await self._emulate_network(True)

    async def turn_off_emulate_offline(self) -> None:
        await self._emulate_network(False)


__all__ = ["ClientEnvironment", "NavigateResult", "is_absolute_url", "pick_document_response"]
