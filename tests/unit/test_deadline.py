"""
Unit tests for deadline tracking.

Tests cover:
1. Active / finalizable windows
2. Late-bid extension
3. Repeated (unbounded) extension
4. Manual and system time sources
"""

import pytest

from openbid.core.auction import DeadlineTracker
from openbid.core.timesource import ManualTimeSource, SystemTimeSource


@pytest.fixture
def tracker():
    return DeadlineTracker.starting_at(start_time=0, duration=604800, extension_window=600)


class TestWindows:
    """Tests for active/finalizable predicates."""

    def test_initial_deadline(self, tracker):
        assert tracker.start_time == 0
        assert tracker.deadline == 604800
        assert not tracker.ended

    def test_active_before_deadline(self, tracker):
        assert tracker.is_active(0)
        assert tracker.is_active(604799)
        assert not tracker.is_finalizable(604799)

    def test_inactive_at_deadline(self, tracker):
        """Deadline itself is already closed."""
        assert not tracker.is_active(604800)
        assert tracker.is_finalizable(604800)

    def test_ended_overrides_time(self, tracker):
        tracker.mark_ended()
        assert not tracker.is_active(10)
        assert tracker.is_finalizable(10)

    def test_time_remaining(self, tracker):
        assert tracker.time_remaining(604000) == 800
        assert tracker.time_remaining(700000) == 0
        tracker.mark_ended()
        assert tracker.time_remaining(0) == 0


class TestExtension:
    """Tests for late-bid deadline extension."""

    def test_no_extension_outside_window(self, tracker):
        assert not tracker.maybe_extend(604199)
        assert tracker.deadline == 604800

    def test_extension_at_window_edge(self, tracker):
        """deadline - now == window still extends."""
        assert tracker.maybe_extend(604200)
        assert tracker.deadline == 605400

    def test_extension_adds_window_to_deadline(self, tracker):
        """The window is added to the deadline, not to now."""
        tracker.maybe_extend(604795)
        assert tracker.deadline == 604800 + 600

    def test_repeated_extension_is_unbounded(self, tracker):
        """Late bids keep pushing the deadline with no cap."""
        now = 604799
        for _ in range(50):
            previous = tracker.deadline
            assert tracker.maybe_extend(now)
            assert tracker.deadline == previous + 600
            now = tracker.deadline - 1

        assert tracker.deadline == 604800 + 50 * 600

    def test_deadline_never_decreases(self, tracker):
        seen = [tracker.deadline]
        for now in (0, 604000, 604300, 604900, 605000, 605500):
            tracker.maybe_extend(now)
            seen.append(tracker.deadline)
        assert seen == sorted(seen)


class TestTimeSource:
    def test_manual_set_and_advance(self):
        clock = ManualTimeSource(10)
        clock.set(20)
        assert clock.now() == 20
        assert clock.advance(5) == 25

    def test_manual_rejects_going_backwards(self):
        clock = ManualTimeSource(10)
        with pytest.raises(ValueError):
            clock.set(9)
        with pytest.raises(ValueError):
            clock.advance(-1)
        assert clock.now() == 10

    def test_system_time_is_integer(self):
        assert isinstance(SystemTimeSource().now(), int)
