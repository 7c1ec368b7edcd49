"""Service worker lifecycle tracking.

ServiceWorkerState is a passive recorder over ServiceWorker.workerVersionUpdated
batches. It keeps:

- every version snapshot by version id,
- a state history keyed by VersionIdentity (exact key plus a version-less
  wildcard key), overwritten with the most recent matching snapshot,
- one-shot listeners keyed the same way, used by wait_for_state(),
- the uncaught worker errors reported since the last ensure_no_errors().

It never validates transitions; see transitions.TransitionValidator for that.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from .errors import HarnessError, NoActiveWorkerError, UnexpectedTransitionError, WorkerRuntimeError
from .timeout import add_timeout, settled

if TYPE_CHECKING:
    from .cdp import CdpSession
    from .transitions import TransitionValidator

logger = logging.getLogger("swae.harness.worker_state")

VERSION_STATUSES = ("new", "installing", "installed", "activating", "activated", "redundant")
RUNNING_STATUSES = ("stopped", "starting", "running", "stopping")

DEFAULT_STATE_TIMEOUT = 10.0


@dataclass(frozen=True, slots=True)
class VersionIdentity:
    """(version, status, running status) key.

    `version=None` is a wildcard matching any version with the same status and
    running status. Equality and hashing are structural, so an empty-string
    version id never collides with the wildcard.
    """

    status: str
    version: str | None = None
    running_status: str | None = None

    @property
    def is_wildcard(self) -> bool:
        return self.version is None

    def for_wait(self) -> VersionIdentity:
        if self.running_status is None:
            return replace(self, running_status="running")
        return self

    def wildcard(self) -> VersionIdentity:
        return replace(self, version=None)

    def matches(self, version: WorkerVersion) -> bool:
        if self.status != version.status:
            return False
        if self.version is not None and self.version != version.version_id:
            return False
        return self.running_status is None or self.running_status == version.running_status

    def describe(self) -> str:
        who = f"version {self.version}" if self.version is not None else "any version"
        running = self.running_status or "any running status"
        return f"{who} to be {self.status} ({running})"


@dataclass(slots=True)
class WorkerVersion:
    version_id: str
    registration_id: str
    script_url: str
    status: str
    running_status: str
    controlled_clients: list[str] = field(default_factory=list)
    target_id: str | None = None

    @classmethod
    def from_cdp(cls, data: dict[str, Any]) -> WorkerVersion:
        """Build from one entry of ServiceWorker.workerVersionUpdated `versions`."""
        clients = data.get("controlledClients")
        target_id = data.get("targetId")
        return cls(
            version_id=str(data.get("versionId") or ""),
            registration_id=str(data.get("registrationId") or ""),
            script_url=str(data.get("scriptURL") or ""),
            status=str(data.get("status") or ""),
            running_status=str(data.get("runningStatus") or ""),
            controlled_clients=[str(c) for c in clients] if isinstance(clients, list) else [],
            target_id=target_id if isinstance(target_id, str) and target_id else None,
        )

    @property
    def identity(self) -> VersionIdentity:
        return VersionIdentity(self.status, version=self.version_id, running_status=self.running_status)


@dataclass(slots=True)
class WorkerError:
    message: str
    version_id: str | None = None
    registration_id: str | None = None
    source_url: str | None = None
    line_number: int | None = None
    column_number: int | None = None

    @classmethod
    def from_cdp(cls, params: dict[str, Any]) -> WorkerError:
        """Build from ServiceWorker.workerErrorReported params."""
        raw = params.get("errorMessage")
        if not isinstance(raw, dict):
            raw = {"errorMessage": raw}

        def _int(value: Any) -> int | None:
            return value if isinstance(value, int) else None

        def _str(value: Any) -> str | None:
            return str(value) if value not in (None, "") else None

        return cls(
            message=str(raw.get("errorMessage") or ""),
            version_id=_str(raw.get("versionId")),
            registration_id=_str(raw.get("registrationId")),
            source_url=_str(raw.get("sourceURL")),
            line_number=_int(raw.get("lineNumber")),
            column_number=_int(raw.get("columnNumber")),
        )

    def __str__(self) -> str:
        where = ""
        if self.source_url:
            where = f" ({self.source_url}"
            if self.line_number is not None:
                where += f":{self.line_number}"
            where += ")"
        return f"{self.message}{where}"


VersionListener = Callable[[WorkerVersion], Any]
ErrorCallback = Callable[[WorkerError], Any]


class ServiceWorkerState:
    """Observed service worker versions for one page session."""

    def __init__(
        self,
        session: CdpSession | None = None,
        *,
        attach_worker: Callable[[str], Any] | None = None,
        timeout: float = DEFAULT_STATE_TIMEOUT,
        validator: TransitionValidator | None = None,
        log_versions: bool = False,
    ) -> None:
        self._session = session
        self._attach_worker = attach_worker
        self.timeout = timeout
        self.validator = validator
        self.log_versions = log_versions

        self._versions: dict[str, WorkerVersion] = {}
        self._history: dict[VersionIdentity, WorkerVersion] = {}
        self._listeners: dict[VersionIdentity, list[VersionListener]] = {}
        self._known_targets: set[str] = set()
        self._active: WorkerVersion | None = None
        self._last_installed: WorkerVersion | None = None

        self._errors: list[WorkerError] = []
        self._error_callbacks: list[ErrorCallback] = []

    # ─────────────────────────────────────────────────────────────────────
    # Recording
    # ─────────────────────────────────────────────────────────────────────

    def handle_version_updated(self, params: dict[str, Any]) -> None:
        versions = params.get("versions")
        if not isinstance(versions, list):
            return
        batch = [WorkerVersion.from_cdp(data) for data in versions if isinstance(data, dict)]
        for version in batch:
            self._record(version)
        self._validate(batch)

    def record_version(self, version: WorkerVersion) -> None:
        self._record(version)
        self._validate([version])

    def _validate(self, batch: list[WorkerVersion]) -> None:
        """Run the validator over a recorded batch; in strict mode raise the first violation."""
        if self.validator is None:
            return
        first: UnexpectedTransitionError | None = None
        for version in batch:
            try:
                self.validator.observe(version)
            except UnexpectedTransitionError as exc:
                if first is None:
                    first = exc
        if first is not None:
            raise first

    def _record(self, version: WorkerVersion) -> None:
        if self.log_versions:
            logger.info(
                "Service worker version %s: %s/%s (target=%s)",
                version.version_id,
                version.status,
                version.running_status,
                version.target_id,
            )

        self._versions[version.version_id] = version
        identity = version.identity
        self._history[identity] = version
        self._history[identity.wildcard()] = version

        if version.target_id is not None and version.target_id not in self._known_targets:
            self._known_targets.add(version.target_id)
            if self._attach_worker is not None:
                self._attach_worker(version.target_id)

        if version.running_status == "running":
            if version.status == "activated":
                self._active = version
            elif version.status == "installed":
                self._last_installed = version

        self._notify(identity, version)

    def _notify(self, identity: VersionIdentity, version: WorkerVersion) -> None:
        fired: list[VersionListener] = []
        for key in (identity, identity.wildcard()):
            fired.extend(self._listeners.pop(key, ()))
        if not fired:
            return
        # Deferred so the listener sees the fully recorded state.
        loop = asyncio.get_running_loop()
        for listener in fired:
            loop.call_soon(listener, version)

    def _listen(self, identity: VersionIdentity, listener: VersionListener) -> None:
        self._listeners.setdefault(identity, []).append(listener)

    def _unlisten(self, identity: VersionIdentity, listener: VersionListener) -> None:
        listeners = self._listeners.get(identity)
        if not listeners:
            return
        if listener in listeners:
            listeners.remove(listener)
        if not listeners:
            del self._listeners[identity]

    def listener_count(self, identity: VersionIdentity | None = None) -> int:
        if identity is not None:
            return len(self._listeners.get(identity.for_wait(), ()))
        return sum(len(v) for v in self._listeners.values())

    # ─────────────────────────────────────────────────────────────────────
    # Waiting
    # ─────────────────────────────────────────────────────────────────────

    def wait_for_state(self, identity: VersionIdentity, timeout: float | None = None) -> asyncio.Future[WorkerVersion]:
        key = identity.for_wait()
        existing = self._history.get(key)
        if existing is not None:
            return settled(existing)

        fut: asyncio.Future[WorkerVersion] = asyncio.get_running_loop().create_future()

        def _listener(version: WorkerVersion) -> None:
            if not fut.done():
                fut.set_result(version)

        self._listen(key, _listener)
        return add_timeout(
            fut,
            f"Waiting for service worker {key.describe()} timed out",
            self.timeout if timeout is None else timeout,
            on_timeout=lambda: self._unlisten(key, _listener),
        )

    def wait_for_installed(self, version: str | None = None, timeout: float | None = None) -> asyncio.Future[WorkerVersion]:
        if version is None and self._last_installed is not None:
            return settled(self._last_installed)
        return self.wait_for_state(VersionIdentity("installed", version=version), timeout=timeout)

    def wait_for_activated(self, version: str | None = None, timeout: float | None = None) -> asyncio.Future[WorkerVersion]:
        if version is None and self._active is not None:
            return settled(self._active)
        return self.wait_for_state(VersionIdentity("activated", version=version), timeout=timeout)

    # ─────────────────────────────────────────────────────────────────────
    # Queries & commands
    # ─────────────────────────────────────────────────────────────────────

    def get_active(self) -> WorkerVersion:
        if self._active is None:
            raise NoActiveWorkerError(
                "Error calling get_active(): there is no active worker yet. Try using wait_for_activated()"
            )
        return self._active

    def get_last_installed(self) -> WorkerVersion | None:
        return self._last_installed

    def get_version(self, version_id: str) -> WorkerVersion | None:
        return self._versions.get(str(version_id))

    @property
    def versions(self) -> dict[str, WorkerVersion]:
        return dict(self._versions)

    def history(self, identity: VersionIdentity) -> WorkerVersion | None:
        return self._history.get(identity.for_wait())

    async def skip_waiting(self, scope_url: str = "/") -> None:
        if self._session is None:
            raise HarnessError("skip_waiting() needs a CDP session")
        await self._session.send("ServiceWorker.skipWaiting", {"scopeURL": scope_url})

    # ─────────────────────────────────────────────────────────────────────
    # Errors
    # ─────────────────────────────────────────────────────────────────────

    def handle_error_reported(self, params: dict[str, Any]) -> None:
        err = WorkerError.from_cdp(params)
        logger.warning("Service worker error: %s", err)
        self._errors.append(err)

    def catch_errors(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    @property
    def pending_errors(self) -> list[WorkerError]:
        return list(self._errors)

    def ensure_no_errors(self) -> None:
        if self._error_callbacks:
            # Errors not yet delivered stay queued if a callback raises.
            while self._errors:
                err = self._errors.pop(0)
                for callback in self._error_callbacks:
                    callback(err)
            return
        errors, self._errors = self._errors, []
        if errors:
            raise WorkerRuntimeError(
                f"Service worker reported {len(errors)} uncaught error(s); first: {errors[0]}",
                errors,
            )


__all__ = [
    "RUNNING_STATUSES",
    "VERSION_STATUSES",
    "ServiceWorkerState",
    "VersionIdentity",
    "WorkerError",
    "WorkerVersion",
]
