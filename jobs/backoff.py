# jobs/backoff.py
"""Idle polling backoff for the worker loop."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass
class IdleBackoff:
    """
    Bounded exponential delay between empty polls.

    With the defaults an idle worker polls after 2s, 3s, 4.5s, 6.75s,
    then every 10s. A claimed job resets the counter.
    """
    base_delay: float = 2.0
    growth_factor: float = 1.5
    max_steps: int = 4
    max_delay: float = 10.0
    empty_polls: int = 0

    def next_delay(self) -> float:
        self.empty_polls += 1
        exponent = min(self.empty_polls - 1, self.max_steps)
        return min(self.base_delay * self.growth_factor ** exponent, self.max_delay)

    def reset(self) -> None:
        self.empty_polls = 0
