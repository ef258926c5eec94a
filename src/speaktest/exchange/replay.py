"""Bounded replay allowance for a question's prompt."""


class ReplayBudget:
    """Decrementing counter gating prompt replays."""

    def __init__(self, allowance: int) -> None:
        """Initialize the budget.

        Args:
            allowance: Number of replays permitted (non-negative)
        """
        if allowance < 0:
            raise ValueError(f"Replay allowance must not be negative, got {allowance}")
        self._allowance = allowance
        self._used = 0

    @property
    def allowance(self) -> int:
        """Total replays permitted."""
        return self._allowance

    @property
    def used(self) -> int:
        """Replays consumed."""
        return self._used

    @property
    def remaining(self) -> int:
        """Replays left."""
        return self._allowance - self._used

    def try_consume(self) -> bool:
        """Take one replay if any remain.

        Returns:
            True if granted; False leaves the counter unchanged.
        """
        if self._used >= self._allowance:
            return False
        self._used += 1
        return True


__all__ = ["ReplayBudget"]
