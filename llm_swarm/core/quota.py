"""
Quota gate.

Checks the ledger's remaining prompts before any gateway call. The
check is optimistic: it reads the remaining count but reserves nothing,
so two overlapping calls can together exceed the window's limit.
"""

from datetime import timedelta
from typing import Protocol


class RemainingQuota(Protocol):
    window_duration: timedelta

    def get_remaining(self) -> int:
        ...


class QuotaExceeded(Exception):
    """Raised when a request does not fit in the current window."""
    def __init__(self, message: str, remaining: int, requested: int):
        super().__init__(message)
        self.remaining = remaining
        self.requested = requested

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.remaining)


class QuotaGate:
    """Rejects oversized requests before dispatch."""

    def __init__(self, ledger: RemainingQuota):
        self.ledger = ledger

    def _window_hours(self) -> str:
        hours = self.ledger.window_duration.total_seconds() / 3600
        return f"{hours:g}"

    def check_query(self) -> int:
        """Admit a single prompt.

        Returns:
            Prompts remaining before the call

        Raises:
            QuotaExceeded: If the window is exhausted
        """
        remaining = self.ledger.get_remaining()
        if remaining <= 0:
            raise QuotaExceeded(
                f"Rate limit: 0 prompts remaining in current "
                f"{self._window_hours()}-hour window. Try again later.",
                remaining=remaining,
                requested=1
            )
        return remaining

    def check_batch(self, task_count: int) -> int:
        """Admit a whole batch or nothing.

        Args:
            task_count: Number of tasks in the batch

        Returns:
            Prompts remaining before the batch

        Raises:
            QuotaExceeded: If fewer prompts remain than tasks requested
        """
        remaining = self.ledger.get_remaining()
        if remaining < task_count:
            shortfall = task_count - remaining
            raise QuotaExceeded(
                f"Rate limit: Only {remaining} prompts remaining but {task_count} "
                f"requested ({shortfall} short). Reduce batch size or wait for "
                f"window reset.",
                remaining=remaining,
                requested=task_count
            )
        return remaining
