"""Bounded exponential backoff with jitter for confirmation polling."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import timedelta


@dataclass(slots=True, frozen=True)
class BackoffPolicy:
    backoff_factor: float = 1.0
    max_backoff_wait: float = 30.0
    backoff_jitter: float = 0.25
    rng: random.Random = field(default_factory=random.Random, compare=False)

    def __post_init__(self) -> None:
        if self.backoff_factor <= 0:
            raise ValueError("backoff_factor must be positive")
        if self.max_backoff_wait < self.backoff_factor:
            raise ValueError("max_backoff_wait must be at least backoff_factor")
        if not 0 <= self.backoff_jitter <= 1:
            raise ValueError("backoff_jitter must be between 0 and 1")

    def base_delay(self, step: int) -> float:
        """Delay in seconds before jitter for the ``step``-th retry (0-based)."""
        # cap the exponent so huge step counts cannot overflow the float
        exponent = min(max(step, 0), 62)
        return min(self.max_backoff_wait, self.backoff_factor * (2**exponent))

    def delay(self, step: int) -> timedelta:
        base = self.base_delay(step)
        if self.backoff_jitter:
            spread = self.rng.uniform(1 - self.backoff_jitter, 1 + self.backoff_jitter)
            base *= spread
        return timedelta(seconds=min(max(base, 0.0), self.max_backoff_wait))
