"""
Cooperative cancellation for long audit and repair runs.

Workers check the token between items, never in the middle of one, so a
started download finishes and a started mutation is never left half done.
"""


class CancellationToken:
    """Flag shared between the caller and the workers of one run."""

    def __init__(self):
        self._cancelled = False
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled
