"""Tests for inter-request pacing."""

import random

import pytest

from clinic_radar.ingestion.pacing import Pacer


class TestPacer:
    """Tests for Pacer."""

    def test_first_wait_is_free(self, clock) -> None:
        pacer = Pacer(3.0, clock=clock)
        assert pacer.wait() == 0.0
        assert clock.sleeps == []

    def test_waits_remaining_gap(self, clock) -> None:
        pacer = Pacer(3.0, clock=clock)
        pacer.mark()
        clock.advance(1.0)

        slept = pacer.wait()

        assert slept == pytest.approx(2.0)
        assert clock.sleeps == [pytest.approx(2.0)]
        assert pacer.total_waited == pytest.approx(2.0)

    def test_no_wait_when_gap_already_elapsed(self, clock) -> None:
        pacer = Pacer(3.0, clock=clock)
        pacer.mark()
        clock.advance(5.0)
        assert pacer.wait() == 0.0

    def test_jitter_stays_in_range(self, clock) -> None:
        pacer = Pacer(2.0, jitter=1.0, clock=clock, rng=random.Random(7))
        delays = [pacer.next_delay() for _ in range(50)]
        assert all(2.0 <= d <= 3.0 for d in delays)
        assert len(set(delays)) > 1

    def test_seeded_jitter_is_reproducible(self, clock) -> None:
        a = Pacer(1.0, jitter=1.0, clock=clock, rng=random.Random(42))
        b = Pacer(1.0, jitter=1.0, clock=clock, rng=random.Random(42))
        assert [a.next_delay() for _ in range(5)] == [b.next_delay() for _ in range(5)]

    def test_reset_forgets_last_mark(self, clock) -> None:
        pacer = Pacer(3.0, clock=clock)
        pacer.mark()
        pacer.reset()
        assert pacer.wait() == 0.0

    def test_negative_delay_rejected(self) -> None:
        with pytest.raises(ValueError):
            Pacer(-1.0)
