"""Per-frame navigation tracking.

A FrameNavigation aggregates the network responses and page-lifecycle events
that belong to one navigation attempt of one frame and settles a single
completion future:

- commit-only (wait_for_load=False): settles on Page.frameNavigated for the
  frame, with whatever responses arrived so far.
- full-load (wait_for_load=True): settles once the load event fired for the
  frame AND every request seen via Network.requestWillBeSent got a response.

FrameStore keeps the current navigation per frame id and routes CDP events.
Starting a new navigation for a frame replaces the reference; the previous
one is not cancelled and still settles or times out on its own.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from .timeout import add_timeout

logger = logging.getLogger("swae.harness.frames")

DEFAULT_NAVIGATION_TIMEOUT = 10.0


@dataclass(slots=True)
class ResponseRecord:
    request_id: str
    url: str
    frame_id: str | None
    response: dict[str, Any] = field(default_factory=dict)
    resource_type: str | None = None
    loader_id: str | None = None

    @classmethod
    def from_event(cls, params: dict[str, Any]) -> ResponseRecord:
        """Build from Network.responseReceived params."""
        resp = params.get("response")
        if not isinstance(resp, dict):
            resp = {}
        frame_id = params.get("frameId")
        rtype = params.get("type")
        loader_id = params.get("loaderId")
        return cls(
            request_id=str(params.get("requestId") or ""),
            url=str(resp.get("url") or ""),
            frame_id=frame_id if isinstance(frame_id, str) and frame_id else None,
            response=resp,
            resource_type=rtype if isinstance(rtype, str) else None,
            loader_id=loader_id if isinstance(loader_id, str) and loader_id else None,
        )

    @property
    def status(self) -> int | None:
        status = self.response.get("status")
        try:
            return int(status) if status is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def from_service_worker(self) -> bool:
        return bool(self.response.get("fromServiceWorker"))


def is_fractional_request_id(request_id: str) -> bool:
    return "." in (request_id or "")


class FrameNavigation:
    """One in-flight navigation of one frame."""

    def __init__(self, frame_id: str, *, wait_for_load: bool, timeout: float = DEFAULT_NAVIGATION_TIMEOUT) -> None:
        self.frame_id = frame_id
        self.wait_for_load = wait_for_load
        self.responses: list[ResponseRecord] = []
        self.outstanding: set[str] = set()
        self.committed = False
        self.load_fired = False

        self._result: asyncio.Future[list[ResponseRecord]] = asyncio.get_running_loop().create_future()
        self.completion = add_timeout(
            self._result,
            f"Response timeout: frame {frame_id} did not finish navigating within {timeout:g}s",
            timeout,
        )

    @property
    def settled(self) -> bool:
        return self._result.done()

    def on_request_will_be_sent(self, request_id: str) -> None:
        if self.settled:
            return
        self.outstanding.add(request_id)

    def on_network_response(self, record: ResponseRecord) -> None:
        if self.settled:
            return
        self.responses.append(record)
        self.outstanding.discard(record.request_id)
        self._resolve_if_complete()

    def on_navigation_complete(self) -> None:
        if self.settled:
            return
        self.committed = True
        if not self.wait_for_load:
            self._settle()

    def on_load_event(self) -> None:
        if self.settled:
            return
        self.load_fired = True
        self._resolve_if_complete()

    def _resolve_if_complete(self) -> None:
        if self.load_fired and not self.outstanding:
            self._settle()

    def _settle(self) -> None:
        self._result.set_result(list(self.responses))


class FrameStore:
    """Tracks the current navigation of every frame and routes CDP events to it."""

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_NAVIGATION_TIMEOUT,
        ignore_fractional_request_ids: bool = False,
    ) -> None:
        self.timeout = timeout
        self.ignore_fractional_request_ids = ignore_fractional_request_ids
        self._frames: dict[str, FrameNavigation] = {}
        self._last_frame_id: str | None = None

    def start(self, frame_id: str, wait_for_load: bool = False) -> asyncio.Future[list[ResponseRecord]]:
        nav = FrameNavigation(frame_id, wait_for_load=wait_for_load, timeout=self.timeout)
        self._frames[frame_id] = nav
        self._last_frame_id = frame_id
        return nav.completion

    def get(self, frame_id: str) -> FrameNavigation | None:
        return self._frames.get(frame_id)

    def on_request_will_be_sent(self, request_id: str, frame_id: str) -> None:
        if self._drop(request_id):
            return
        nav = self._frames.get(frame_id)
        if nav is not None:
            nav.on_request_will_be_sent(request_id)

    def on_network_response(self, record: ResponseRecord) -> None:
        if self._drop(record.request_id):
            return
        if record.frame_id is None:
            return
        nav = self._frames.get(record.frame_id)
        if nav is not None:
            nav.on_network_response(record)

    def on_navigation_complete(self, frame_id: str) -> None:
        nav = self._frames.get(frame_id)
        if nav is not None:
            nav.on_navigation_complete()

    def on_load_event(self, frame_id: str | None = None) -> None:
        """Mark the load event for `frame_id`.

        Without a frame id (Page.loadEventFired carries none) the event goes to
        the navigation started most recently.
        """
        key = frame_id if frame_id is not None else self._last_frame_id
        if key is None:
            return
        nav = self._frames.get(key)
        if nav is not None:
            nav.on_load_event()

    def _drop(self, request_id: str) -> bool:
        if self.ignore_fractional_request_ids and is_fractional_request_id(request_id):
            logger.debug("Ignoring fractional request id %s", request_id)
            return True
        return False

    # CDP event adapters

    def handle_request_will_be_sent(self, params: dict[str, Any]) -> None:
        request_id = params.get("requestId")
        frame_id = params.get("frameId")
        if not isinstance(request_id, str) or not isinstance(frame_id, str) or not frame_id:
            logger.debug("Network.requestWillBeSent without frameId ignored (requestId=%s)", request_id)
            return
        self.on_request_will_be_sent(request_id, frame_id)

    def handle_response_received(self, params: dict[str, Any]) -> None:
        record = ResponseRecord.from_event(params)
        if record.frame_id is None:
            logger.debug("Network.responseReceived without frameId ignored (requestId=%s)", record.request_id)
            return
        self.on_network_response(record)

    def handle_frame_navigated(self, params: dict[str, Any]) -> None:
        frame = params.get("frame")
        frame_id = frame.get("id") if isinstance(frame, dict) else None
        if isinstance(frame_id, str) and frame_id:
            self.on_navigation_complete(frame_id)

    def handle_lifecycle_event(self, params: dict[str, Any]) -> None:
        if params.get("name") != "load":
            return
        frame_id = params.get("frameId")
        if isinstance(frame_id, str) and frame_id:
            self.on_load_event(frame_id)

    def handle_load_event_fired(self, params: dict[str, Any]) -> None:  # noqa: ARG002
        self.on_load_event()


__all__ = ["FrameNavigation", "FrameStore", "ResponseRecord", "is_fractional_request_id"]
