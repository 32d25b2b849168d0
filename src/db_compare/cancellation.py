"""Cooperative cancellation for comparison runs.

A ``CancellationToken`` is created per comparison run and threaded through
extraction, definition caching and diffing.  Starting a new run cancels the
previous token so a superseded run stops at its next checkpoint instead of
racing with the newer one.

Usage:
    token = CancellationToken()
    snapshot = await introspector.introspect(token)

    # elsewhere
    token.cancel()
"""

from db_compare.errors import ComparisonCancelledError


class CancellationToken:
    """Flag checked at checkpoints between units of work."""

    def __init__(self) -> None:
        self._cancelled = False
        self._reason = "Comparison was cancelled"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str | None = None) -> None:
        """Mark the token cancelled.  Idempotent."""
        self._cancelled = True
        if reason:
            self._reason = reason

    def raise_if_cancelled(self) -> None:
        """Raise ``ComparisonCancelledError`` if ``cancel()`` was called."""
        if self._cancelled:
            raise ComparisonCancelledError(self._reason)


def check_cancelled(token: CancellationToken | None) -> None:
    """Checkpoint helper that tolerates a missing token."""
    if token is not None:
        token.raise_if_cancelled()
