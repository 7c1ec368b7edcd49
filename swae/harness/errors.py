from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    pass


class WaitTimeoutError(HarnessError, TimeoutError):
    """A guarded wait ran past its deadline."""


class NoActiveWorkerError(HarnessError):
    pass


class CdpError(HarnessError):
    def __init__(self, message: str, *, method: str | None = None, code: int | None = None) -> None:
        super().__init__(message)
        self.method = method
        self.code = code


class EvaluationError(HarnessError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class WorkerRuntimeError(HarnessError):
    """Raised by ensure_no_errors() when uncaught worker errors were queued."""

    def __init__(self, message: str, errors: list[Any] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class UnexpectedTransitionError(HarnessError):
    pass


class DiskError(HarnessError):
    pass
