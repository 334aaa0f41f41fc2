"""
Deadline tracking for an English auction.

The deadline only moves forward. A bid landing inside the extension window
pushes it out by one window; this can repeat for as long as late bids keep
arriving, so there is no upper bound on how far the deadline can move.
"""

from dataclasses import dataclass

from openbid.utils.logger import get_logger

logger = get_logger("deadline")


@dataclass
class DeadlineTracker:
    """
    Start time, current deadline and the one-way ended flag.

    Attributes:
        start_time: When bidding opened
        deadline: Current closing time (non-decreasing)
        extension_window: Seconds added by a late bid
        ended: Set once by finalization
    """
    start_time: int
    deadline: int
    extension_window: int
    ended: bool = False

    @classmethod
    def starting_at(cls, start_time: int, duration: int, extension_window: int) -> "DeadlineTracker":
        return cls(
            start_time=start_time,
            deadline=start_time + duration,
            extension_window=extension_window,
        )

    def is_active(self, now: int) -> bool:
        """Whether bids and partial refunds are accepted."""
        return now < self.deadline and not self.ended

    def is_finalizable(self, now: int) -> bool:
        """Whether settlement may run (subject to the one-shot check)."""
        return now >= self.deadline or self.ended

    def time_remaining(self, now: int) -> int:
        if self.ended:
            return 0
        return max(0, self.deadline - now)

    def maybe_extend(self, now: int) -> bool:
        """
        Push the deadline out if `now` is within the extension window.

        Returns:
            True if the deadline moved
        """
        if self.deadline - now <= self.extension_window:
            self.deadline += self.extension_window
            logger.info(f"Deadline extended to {self.deadline} (bid at {now})")
            return True
        return False

    def mark_ended(self) -> None:
        self.ended = True
