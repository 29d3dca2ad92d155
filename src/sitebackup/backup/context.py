"""
Cooperative cancellation for long-running backup operations.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sitebackup.errors import OperationCancelledError


@dataclass
class OperationContext:
    """
    Cancellation signal and deadline threaded through an operation.

    The engine calls check() at its suspension points (between snapshot
    reads, between spooled chunks, between reload batches). A reload that
    is cancelled rolls its transaction back before the error surfaces.

    Attributes:
        cancel_event: Set by the caller to request cancellation.
        deadline: Absolute UTC time after which the operation is abandoned.
    """

    cancel_event: threading.Event | None = None
    deadline: datetime | None = None

    @classmethod
    def with_timeout(
        cls,
        seconds: float,
        cancel_event: threading.Event | None = None,
    ) -> OperationContext:
        """Create a context whose deadline is `seconds` from now."""
        return cls(
            cancel_event=cancel_event,
            deadline=datetime.now(UTC) + timedelta(seconds=seconds),
        )

    @property
    def cancelled(self) -> bool:
        """True once cancellation was requested or the deadline passed."""
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self.deadline is not None and datetime.now(UTC) >= self.deadline

    def check(self, phase: str) -> None:
        """
        Raise if the operation should stop.

        Args:
            phase: Phase name recorded on the raised error.

        Raises:
            OperationCancelledError: If cancelled or past the deadline.
        """
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise OperationCancelledError(f"Operation cancelled during {phase}", phase=phase)
        if self.deadline is not None and datetime.now(UTC) >= self.deadline:
            raise OperationCancelledError(f"Deadline exceeded during {phase}", phase=phase)
