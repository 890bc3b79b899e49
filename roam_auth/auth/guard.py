"""
Processing Guard

De-duplicates reconciliation work: at most one in-flight reconciliation per
user id, and none at all for the user id already confirmed current.
"""

from typing import Optional, Set


class ProcessingGuard:
    """
    Tracks in-flight and last successfully processed user ids.

    ``epoch`` increases on every ``reset``. A reconciliation records the epoch
    it started in and checks ``is_current`` before committing, so work that
    outlived a sign-out is discarded instead of resurrecting the identity.
    """

    def __init__(self):
        self._in_flight: Set[str] = set()
        self._last_processed: Optional[str] = None
        self._epoch = 0

    @property
    def last_processed(self) -> Optional[str]:
        return self._last_processed

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def in_flight(self) -> frozenset:
        return frozenset(self._in_flight)

    def is_in_flight(self, user_id: str) -> bool:
        return user_id in self._in_flight

    def try_begin(self, user_id: str) -> bool:
        """
        Claim ``user_id`` for reconciliation.

        Returns:
            False if it is already in flight or already current, True otherwise
        """
        if user_id in self._in_flight or user_id == self._last_processed:
            return False
        self._in_flight.add(user_id)
        return True

    def complete(self, user_id: str, success: bool) -> None:
        """Release ``user_id``; only a success marks it as current."""
        self._in_flight.discard(user_id)
        if success:
            self._last_processed = user_id

    def is_current(self, user_id: str, epoch: int) -> bool:
        """Check that a run started at ``epoch`` for ``user_id`` has not been superseded."""
        return epoch == self._epoch and user_id in self._in_flight

    def forget_last_processed(self) -> None:
        """Drop the current marker without touching in-flight work."""
        self._last_processed = None

    def reset(self) -> None:
        self._in_flight.clear()
        self._last_processed = None
        self._epoch += 1

    def __repr__(self) -> str:
        return (
            f"ProcessingGuard(in_flight={sorted(self._in_flight)}, "
            f"last_processed={self._last_processed!r}, epoch={self._epoch})"
        )
