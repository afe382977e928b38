from __future__ import annotations

import random
from datetime import timedelta

import pytest

from attestor.domain.reconciliation import BackoffPolicy


def test_base_delay_doubles_until_capped() -> None:
    policy = BackoffPolicy(backoff_factor=1.0, max_backoff_wait=30.0, backoff_jitter=0.0)

    assert [policy.base_delay(step) for step in range(7)] == [1, 2, 4, 8, 16, 30, 30]


def test_delay_without_jitter_is_exact() -> None:
    policy = BackoffPolicy(backoff_factor=0.5, max_backoff_wait=10.0, backoff_jitter=0.0)

    assert policy.delay(2) == timedelta(seconds=2)


def test_jitter_stays_within_bounds() -> None:
    policy = BackoffPolicy(
        backoff_factor=1.0, max_backoff_wait=30.0, backoff_jitter=0.25, rng=random.Random(7)
    )

    for step in range(10):
        base = policy.base_delay(step)
        delay = policy.delay(step).total_seconds()
        assert base * 0.75 <= delay <= min(base * 1.25, 30.0)


def test_jitter_is_reproducible_with_seeded_rng() -> None:
    first = BackoffPolicy(rng=random.Random(42))
    second = BackoffPolicy(rng=random.Random(42))

    assert [first.delay(n) for n in range(5)] == [second.delay(n) for n in range(5)]


def test_huge_steps_do_not_overflow() -> None:
    policy = BackoffPolicy(backoff_jitter=0.0)

    assert policy.delay(10_000) == timedelta(seconds=30)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"backoff_factor": 0},
        {"backoff_factor": 5.0, "max_backoff_wait": 1.0},
        {"backoff_jitter": 1.5},
    ],
)
def test_invalid_policies_are_rejected(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError):
        BackoffPolicy(**kwargs)  # type: ignore[arg-type]
