"""Cooperative cancellation for build sessions."""

from __future__ import annotations

import threading

from prd_refinery.agent.errors import PipelineCancelled


class CancellationToken:
    """Flag checked by the pipeline between suspension points."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = "Pipeline cancelled."

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation; safe to call from a signal handler."""
        if reason:
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Return whether cancellation was requested."""
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise PipelineCancelled when cancellation was requested."""
        if self._event.is_set():
            raise PipelineCancelled(self._reason)
