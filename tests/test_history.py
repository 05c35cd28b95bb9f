"""Tests for the RollingHistory buffer."""

import pytest

from genrescope.core.history import RollingHistory


class TestRollingHistory:
    """Tests for count and age based eviction."""

    def test_capacity_never_exceeded(self):
        """Appending past capacity should evict the oldest entries."""
        history = RollingHistory(capacity=5)
        for i in range(12):
            history.append(i, float(i))
            assert len(history) <= 5

        assert history.values() == [7, 8, 9, 10, 11]
        assert history.is_full

    def test_horizon_expires_old_entries(self):
        """Entries older than the horizon should be dropped on append."""
        history = RollingHistory(capacity=100, horizon_ms=1000)
        history.append("a", 0.0)
        history.append("b", 500.0)
        history.append("c", 1200.0)

        assert history.values() == ["b", "c"]
        assert history.timestamps() == [500.0, 1200.0]

    def test_explicit_expire(self):
        """expire() should evict without adding anything."""
        history = RollingHistory(capacity=10, horizon_ms=100)
        history.append(1, 0.0)
        history.append(2, 50.0)

        history.expire(160.0)

        assert history.values() == []
        assert not history

    def test_recent_and_latest(self):
        """recent() returns the newest n values, oldest first."""
        history = RollingHistory(capacity=10)
        assert history.latest() is None
        assert history.recent(3) == []

        for i in range(6):
            history.append(i * 10, float(i))

        assert history.recent(3) == [30, 40, 50]
        assert history.recent(100) == [0, 10, 20, 30, 40, 50]
        assert history.recent(0) == []
        assert history.latest() == 50

    def test_clear(self):
        history = RollingHistory(capacity=3)
        history.append(1, 0.0)
        history.clear()

        assert len(history) == 0

    def test_iterates_timestamped_pairs(self):
        history = RollingHistory(capacity=3)
        history.append("x", 5.0)
        history.append("y", 6.0)

        assert list(history) == [(5.0, "x"), (6.0, "y")]

    def test_invalid_capacity(self):
        """Capacity below one should be rejected."""
        with pytest.raises(ValueError):
            RollingHistory(capacity=0)
