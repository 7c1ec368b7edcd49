"""Optional lifecycle-order checks layered over ServiceWorkerState.

The tracker records whatever the browser reports. TransitionValidator watches
the same snapshots and flags transitions that go against the service worker
lifecycle order, without changing what the tracker records.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import UnexpectedTransitionError
from .worker_state import VERSION_STATUSES, WorkerVersion

logger = logging.getLogger("swae.harness.transitions")

_ORDER = {status: index for index, status in enumerate(VERSION_STATUSES)}


@dataclass(frozen=True, slots=True)
class UnexpectedTransition:
    version_id: str
    previous: str
    current: str

    def __str__(self) -> str:
        return f"version {self.version_id}: {self.previous} -> {self.current}"


def is_expected_transition(previous: str, current: str) -> bool:
    if previous == current:
        return True
    if previous == "redundant":
        return False
    if previous == "new":
        return current == "installing"
    if current == "redundant":
        return True
    if previous not in _ORDER or current not in _ORDER:
        return False
    # Batched snapshots may skip intermediate states, but never go back.
    return _ORDER[current] > _ORDER[previous]


class TransitionValidator:
    def __init__(self, *, strict: bool = False) -> None:
        self.strict = strict
        self.violations: list[UnexpectedTransition] = []
        self._last_status: dict[str, str] = {}

    def observe(self, version: WorkerVersion) -> UnexpectedTransition | None:
        previous = self._last_status.get(version.version_id)
        self._last_status[version.version_id] = version.status
        if previous is None or is_expected_transition(previous, version.status):
            return None

        violation = UnexpectedTransition(version.version_id, previous, version.status)
        self.violations.append(violation)
        logger.warning("Unexpected service worker transition: %s", violation)
        if self.strict:
            raise UnexpectedTransitionError(f"Unexpected service worker transition: {violation}")
        return violation

    def reset(self) -> None:
        self.violations.clear()
        self._last_status.clear()


__all__ = ["TransitionValidator", "UnexpectedTransition", "is_expected_transition"]
