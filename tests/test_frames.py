from __future__ import annotations

import asyncio

import pytest

from swae.harness.errors import WaitTimeoutError
from swae.harness.frames import FrameStore, ResponseRecord, is_fractional_request_id


def _record(request_id: str, frame_id: str = "F1", url: str = "http://localhost/") -> ResponseRecord:
    return ResponseRecord(request_id=request_id, url=url, frame_id=frame_id, response={"status": 200, "url": url})


async def _tick() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


def test_commit_only_resolves_on_frame_navigated_with_responses_so_far() -> None:
    async def _main() -> None:
        store = FrameStore()
        pending = store.start("F1", wait_for_load=False)
        store.on_request_will_be_sent("doc", "F1")
        store.on_request_will_be_sent("img", "F1")
        store.on_network_response(_record("doc"))
        store.on_navigation_complete("F1")
        # Arrives after the commit; must not leak into the settled result.
        store.on_network_response(_record("img"))

        responses = await pending
        assert [r.request_id for r in responses] == ["doc"]
        assert store.get("F1").responses == responses

    asyncio.run(_main())


def test_commit_only_resolves_without_any_network_events() -> None:
    async def _main() -> None:
        store = FrameStore()
        pending = store.start("F1")
        store.on_navigation_complete("F1")
        assert await pending == []

    asyncio.run(_main())


def test_full_load_waits_for_load_and_outstanding_requests() -> None:
    async def _main() -> None:
        store = FrameStore()
        pending = store.start("F1", wait_for_load=True)
        store.on_request_will_be_sent("doc", "F1")
        store.on_network_response(_record("doc"))
        store.on_navigation_complete("F1")
        store.on_request_will_be_sent("script", "F1")
        store.on_load_event("F1")
        await _tick()
        assert not pending.done()

        store.on_network_response(_record("script"))
        responses = await pending
        assert [r.request_id for r in responses] == ["doc", "script"]

    asyncio.run(_main())


def test_full_load_does_not_settle_on_responses_before_load() -> None:
    async def _main() -> None:
        store = FrameStore()
        pending = store.start("F1", wait_for_load=True)
        store.on_request_will_be_sent("doc", "F1")
        store.on_network_response(_record("doc"))
        store.on_navigation_complete("F1")
        await _tick()
        assert not pending.done()
        store.on_load_event("F1")
        assert len(await pending) == 1

    asyncio.run(_main())


def test_load_event_is_scoped_to_its_frame() -> None:
    async def _main() -> None:
        store = FrameStore()
        first = store.start("F1", wait_for_load=True)
        second = store.start("F2", wait_for_load=True)
        store.on_load_event("F2")
        assert await second == []
        await _tick()
        assert not first.done()
        store.on_load_event("F1")
        assert await first == []

    asyncio.run(_main())


def test_unscoped_load_event_goes_to_most_recent_navigation() -> None:
    async def _main() -> None:
        store = FrameStore()
        first = store.start("F1", wait_for_load=True)
        second = store.start("F2", wait_for_load=True)
        store.on_load_event()
        assert await second == []
        await _tick()
        assert not first.done()

    asyncio.run(_main())


def test_replaced_navigation_is_orphaned_and_times_out_independently() -> None:
    async def _main() -> None:
        store = FrameStore(timeout=0.05)
        old = store.start("F1")
        new = store.start("F1")
        store.on_navigation_complete("F1")
        assert await new == []
        with pytest.raises(WaitTimeoutError, match="Response timeout"):
            await old

    asyncio.run(_main())


def test_navigation_timeout_names_the_frame() -> None:
    async def _main() -> None:
        store = FrameStore(timeout=0.02)
        pending = store.start("FRAME-9", wait_for_load=True)
        with pytest.raises(WaitTimeoutError) as info:
            await pending
        assert "FRAME-9" in str(info.value)
        # Late events for a timed-out navigation are ignored.
        store.on_network_response(_record("late", frame_id="FRAME-9"))
        assert store.get("FRAME-9").responses == []

    asyncio.run(_main())


def test_events_for_unknown_frames_are_ignored() -> None:
    async def _main() -> None:
        store = FrameStore()
        store.on_request_will_be_sent("r1", "nope")
        store.on_network_response(_record("r1", frame_id="nope"))
        store.on_navigation_complete("nope")
        store.on_load_event("nope")
        store.on_load_event()
        assert store.get("nope") is None

    asyncio.run(_main())


def test_fractional_request_ids_are_kept_by_default() -> None:
    async def _main() -> None:
        store = FrameStore()
        pending = store.start("F1")
        store.on_network_response(_record("1000.12"))
        store.on_navigation_complete("F1")
        assert [r.request_id for r in await pending] == ["1000.12"]

    asyncio.run(_main())


def test_fractional_request_ids_dropped_when_enabled() -> None:
    async def _main() -> None:
        store = FrameStore(ignore_fractional_request_ids=True)
        pending = store.start("F1", wait_for_load=True)
        store.on_request_will_be_sent("1000.12", "F1")
        store.on_request_will_be_sent("LOADER", "F1")
        store.on_network_response(_record("1000.12"))
        store.on_network_response(_record("LOADER"))
        store.on_load_event("F1")
        assert [r.request_id for r in await pending] == ["LOADER"]

    asyncio.run(_main())
    assert is_fractional_request_id("12.3")
    assert not is_fractional_request_id("A1B2")


def test_cdp_adapters_route_events_and_skip_missing_frame_ids() -> None:
    async def _main() -> None:
        store = FrameStore()
        pending = store.start("F1", wait_for_load=True)
        store.handle_request_will_be_sent({"requestId": "doc", "frameId": "F1"})
        # Worker-originated traffic has no frameId.
        store.handle_request_will_be_sent({"requestId": "sw-fetch"})
        store.handle_response_received({"requestId": "sw-fetch", "response": {"url": "http://localhost/sw"}})
        store.handle_response_received(
            {
                "requestId": "doc",
                "frameId": "F1",
                "type": "Document",
                "response": {"url": "http://localhost/", "status": 200, "fromServiceWorker": True},
            }
        )
        store.handle_frame_navigated({"frame": {"id": "F1", "url": "http://localhost/"}})
        store.handle_lifecycle_event({"frameId": "F1", "name": "DOMContentLoaded"})
        await _tick()
        assert not pending.done()
        store.handle_lifecycle_event({"frameId": "F1", "name": "load"})

        (doc,) = await pending
        assert doc.resource_type == "Document"
        assert doc.status == 200
        assert doc.from_service_worker is True

    asyncio.run(_main())


def test_load_event_fired_adapter_uses_most_recent_frame() -> None:
    async def _main() -> None:
        store = FrameStore()
        pending = store.start("F1", wait_for_load=True)
        store.handle_load_event_fired({"timestamp": 1.0})
        assert await pending == []

    asyncio.run(_main())
