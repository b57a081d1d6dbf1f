"""External cancellation and deadline signal for graph operations."""

from __future__ import annotations

import threading
import time

from dagstore.graph.errors import OperationCancelledError


class CancelToken:
    """Cancellation signal shared between a caller and a running operation.

    A token is cancelled either explicitly via :meth:`cancel` (from any
    thread) or implicitly once its monotonic ``deadline`` has passed.
    Operations poll it between steps; they never block on it.
    """

    def __init__(self, deadline: float | None = None) -> None:
        self._event = threading.Event()
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> CancelToken:
        """Create a token that expires *seconds* from now."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self, step: str, *, write_attempted: bool = False) -> None:
        """Raise :class:`OperationCancelledError` if the token has fired.

        Args:
            step: Name of the step about to run, for the error message.
            write_attempted: Whether a write transaction is open at this point.
        """
        if self.cancelled:
            raise OperationCancelledError(step, write_attempted=write_attempted)
