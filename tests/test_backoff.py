# tests/test_backoff.py
"""Tests for idle polling backoff."""
from __future__ import annotations

import pytest

from jobs.backoff import IdleBackoff


def test_default_sequence():
    backoff = IdleBackoff()
    delays = [backoff.next_delay() for _ in range(6)]
    assert delays[:4] == pytest.approx([2.0, 3.0, 4.5, 6.75])
    assert delays[4:] == [10.0, 10.0]


def test_never_exceeds_max_and_never_decreases():
    backoff = IdleBackoff(base_delay=0.5, growth_factor=3.0, max_steps=10, max_delay=7.0)
    delays = [backoff.next_delay() for _ in range(20)]
    assert delays == sorted(delays)
    assert max(delays) == 7.0


def test_max_steps_caps_growth_below_max_delay():
    backoff = IdleBackoff(base_delay=1.0, growth_factor=2.0, max_steps=2, max_delay=100.0)
    delays = [backoff.next_delay() for _ in range(5)]
    assert delays == [1.0, 2.0, 4.0, 4.0, 4.0]


def test_reset_starts_over():
    backoff = IdleBackoff()
    for _ in range(5):
        backoff.next_delay()
    backoff.reset()
    assert backoff.empty_polls == 0
    assert backoff.next_delay() == 2.0
