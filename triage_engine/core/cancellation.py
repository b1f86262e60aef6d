"""Cooperative cancellation for batch prioritization.

A CancellationToken is passed through every pipeline stage. Stages call
``raise_if_cancelled()`` at their boundaries so a cancelled or expired
batch stops promptly without partially merging rule metadata.
"""

import threading
import time


class PrioritizationCancelledError(Exception):
    """Raised when a batch is cancelled or its deadline expires."""

    def __init__(self, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(f"Prioritization {reason}")

    def __reduce__(self):
        return (self.__class__, (self.reason,))


class CancellationToken:
    """Thread-safe cancellation signal with an optional deadline."""

    def __init__(self, timeout_seconds: float | None = None):
        self._event = threading.Event()
        self._deadline = (
            time.monotonic() + timeout_seconds if timeout_seconds is not None else None
        )

    def cancel(self) -> None:
        """Signal cancellation to every stage holding this token."""
        self._event.set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PrioritizationCancelledError("cancelled")
        if self.expired:
            raise PrioritizationCancelledError("deadline exceeded")
