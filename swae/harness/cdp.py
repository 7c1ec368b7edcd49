"""Async CDP transport.

One browser-level WebSocket carries every target: page and worker targets are
attached in flat mode (Target.attachToTarget flatten=true) and addressed by
sessionId. A single reader task resolves command futures and dispatches
events, in arrival order, to handlers registered per (sessionId, method).
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from .errors import CdpError

logger = logging.getLogger("swae.harness.cdp")

EventHandler = Callable[[dict[str, Any]], Any]


def _import_websockets():
    try:
        import websockets

        return websockets
    except ImportError as exc:
        raise RuntimeError(
            "The CDP transport requires the 'websockets' Python package (pip install websockets)."
        ) from exc


class CdpConnection:
    """Browser-level CDP WebSocket connection."""

    def __init__(self, ws: Any, *, timeout: float = 5.0) -> None:
        self.ws = ws
        self.timeout = timeout
        self._next_id = 1
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._handlers: dict[tuple[str | None, str], list[EventHandler]] = {}
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

    @classmethod
    async def connect(cls, ws_url: str, *, timeout: float = 5.0) -> CdpConnection:
        websockets = _import_websockets()
        ws = await websockets.connect(ws_url, max_size=None, ping_interval=None)
        conn = cls(ws, timeout=timeout)
        conn.start()
        return conn

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._reader is not None:
            return
        self._reader = asyncio.get_running_loop().create_task(self._read_loop(), name="swae-cdp-reader")

    async def _read_loop(self) -> None:
        try:
            async for raw in self.ws:
                self.dispatch(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.debug("CDP reader stopped: %s", exc)
        finally:
            self._closed = True
            self._fail_pending(CdpError("CDP connection closed"))

    def _fail_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(exc)

    def dispatch(self, raw: str | bytes | dict[str, Any]) -> None:
        """Route one incoming message to its command future or event handlers."""
        if isinstance(raw, dict):
            data = raw
        else:
            try:
                data = json.loads(raw)
            except (TypeError, ValueError):
                logger.debug("Dropping non-JSON CDP frame")
                return
        if not isinstance(data, dict):
            return

        msg_id = data.get("id")
        if isinstance(msg_id, int):
            fut = self._pending.pop(msg_id, None)
            if fut is None or fut.done():
                return
            error = data.get("error")
            if isinstance(error, dict):
                fut.set_exception(
                    CdpError(
                        str(error.get("message") or error),
                        method=getattr(fut, "cdp_method", None),
                        code=error.get("code") if isinstance(error.get("code"), int) else None,
                    )
                )
            else:
                result = data.get("result")
                fut.set_result(result if isinstance(result, dict) else {})
            return

        method = data.get("method")
        if not isinstance(method, str):
            return
        params = data.get("params")
        if not isinstance(params, dict):
            params = {}
        session_id = data.get("sessionId") if isinstance(data.get("sessionId"), str) else None
        for handler in list(self._handlers.get((session_id, method), ())):
            try:
                handler(params)
            except Exception:  # noqa: BLE001
                # One broken handler must not stop the reader.
                logger.exception("CDP handler for %s failed", method)

    def on(self, method: str, handler: EventHandler, *, session_id: str | None = None) -> None:
        self._handlers.setdefault((session_id, method), []).append(handler)

    def off(self, method: str, handler: EventHandler, *, session_id: str | None = None) -> None:
        handlers = self._handlers.get((session_id, method))
        if not handlers:
            return
        with suppress(ValueError):
            handlers.remove(handler)
        if not handlers:
            del self._handlers[(session_id, method)]

    def drop_session_handlers(self, session_id: str) -> None:
        for key in [k for k in self._handlers if k[0] == session_id]:
            del self._handlers[key]

    async def send(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a CDP command and wait for its result."""
        if self._closed:
            raise CdpError("CDP connection closed", method=method)

        msg_id = self._next_id
        self._next_id += 1
        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params
        if session_id:
            msg["sessionId"] = session_id

        fut: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        fut.cdp_method = method  # type: ignore[attr-defined]
        self._pending[msg_id] = fut
        try:
            await self.ws.send(json.dumps(msg))
        except Exception as exc:  # noqa: BLE001
            self._pending.pop(msg_id, None)
            raise CdpError(f"CDP send failed for {method}: {exc}", method=method) from exc

        wait = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(fut, timeout=wait)
        except asyncio.TimeoutError as exc:
            raise CdpError(f"CDP response timed out: {method}", method=method) from exc
        finally:
            self._pending.pop(msg_id, None)

    def session(self, session_id: str, *, target_id: str | None = None) -> CdpSession:
        return CdpSession(self, session_id, target_id=target_id)

    async def attach(self, target_id: str) -> CdpSession:
        """Attach to a target in flat mode and return its session."""
        res = await self.send("Target.attachToTarget", {"targetId": target_id, "flatten": True})
        session_id = res.get("sessionId")
        if not isinstance(session_id, str) or not session_id:
            raise CdpError(f"Target.attachToTarget returned no sessionId for {target_id}", method="Target.attachToTarget")
        logger.debug("Attached to target %s (session %s)", target_id, session_id)
        return self.session(session_id, target_id=target_id)

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await self._reader
            self._reader = None
        self._closed = True
        self._fail_pending(CdpError("CDP connection closed"))
        with suppress(Exception):
            await self.ws.close()


class CdpSession:
    """Session-scoped view over a CdpConnection."""

    def __init__(self, connection: CdpConnection, session_id: str, *, target_id: str | None = None) -> None:
        self.connection = connection
        self.session_id = session_id
        self.target_id = target_id

    async def send(
        self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None
    ) -> dict[str, Any]:
        return await self.connection.send(method, params, session_id=self.session_id, timeout=timeout)

    def on(self, method: str, handler: EventHandler) -> None:
        self.connection.on(method, handler, session_id=self.session_id)

    def off(self, method: str, handler: EventHandler) -> None:
        self.connection.off(method, handler, session_id=self.session_id)

    async def detach(self) -> None:
        self.connection.drop_session_handlers(self.session_id)
        if self.connection.closed:
            return
        with suppress(CdpError):
            await self.connection.send("Target.detachFromTarget", {"sessionId": self.session_id})


__all__ = ["CdpConnection", "CdpSession", "EventHandler"]
