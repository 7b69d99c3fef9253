"""Cooperative cancellation for a scan."""

from typing import Optional

from afterburn.utils.guards import AfterburnError


class ScanTimeoutError(AfterburnError):
    """The scan ran past its wall-clock limit."""

    def __init__(self, timeout_seconds: float, stage: Optional[str] = None):
        self.timeout_seconds = timeout_seconds
        self.stage = stage
        where = f" before {stage}" if stage else ""
        super().__init__(f"Scan timed out after {timeout_seconds:g}s{where}")


class CancellationToken:
    """
    Set once when the scan deadline passes.

    Work in flight is not interrupted; callers check the token between
    stages.
    """

    def __init__(self, timeout_seconds: float = 0):
        self.timeout_seconds = timeout_seconds
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self._cancelled:
            raise ScanTimeoutError(self.timeout_seconds, stage)
