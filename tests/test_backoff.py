"""Tests for the bind retry backoff."""

import pytest

from claude_island.hooks.backoff import ReconnectionBackoff


def no_jitter(low: float, high: float) -> float:
    return 0.0


class TestReconnectionBackoff:
    def test_delays_double_then_stop(self) -> None:
        backoff = ReconnectionBackoff(rand=no_jitter)

        delays = [backoff.next_delay() for _ in range(6)]

        assert delays == [0.5, 1.0, 2.0, 4.0, 8.0, None]
        assert backoff.exhausted

    def test_delay_is_capped(self) -> None:
        backoff = ReconnectionBackoff(base_delay=1.0, max_delay=3.0, max_attempts=4, rand=no_jitter)
        assert [backoff.next_delay() for _ in range(4)] == [1.0, 2.0, 3.0, 3.0]

    def test_jitter_is_at_most_thirty_percent(self) -> None:
        calls = []

        def upper_bound(low: float, high: float) -> float:
            calls.append((low, high))
            return high

        backoff = ReconnectionBackoff(base_delay=2.0, rand=upper_bound)

        assert backoff.next_delay() == pytest.approx(2.6)
        assert calls == [(0, pytest.approx(0.6))]

    def test_reset(self) -> None:
        backoff = ReconnectionBackoff(max_attempts=1, rand=no_jitter)
        backoff.next_delay()
        assert backoff.next_delay() is None

        backoff.reset()

        assert backoff.current_attempt == 0
        assert backoff.next_delay() == 0.5
