"""Deterministic exponential backoff for the bootstrap attempt loop.

There is a single bootstrapping client per cluster, so no jitter is applied.
Attempts are 1-indexed and attempt 1 is never preceded by a wait.

Examples
--------
>>> cfg = RetryConfig(max_attempts=6, initial_wait=10, max_wait=30)
>>> backoff_schedule(cfg)
[10, 20, 30, 30, 30]
>>> worst_case_wait(cfg)
120
"""

from __future__ import annotations

from gitops_bootstrap._auth_models import RetryConfig


def wait_before(attempt: int, config: RetryConfig) -> float:
    """Return the wait after failed ``attempt`` and before the next one.

    ``wait(n) = min(initial_wait * 2**(n - 1), max_wait)``. Doubling stops
    once the cap is reached, so large attempt numbers never overflow.

    Examples
    --------
    >>> wait_before(1, RetryConfig())
    10
    >>> wait_before(4, RetryConfig())
    30
    """
    if attempt < 1:
        msg = f"attempt numbers start at 1, got {attempt}"
        raise ValueError(msg)
    wait = config.initial_wait
    for _ in range(attempt - 1):
        if wait >= config.max_wait:
            break
        wait *= 2
    return min(wait, config.max_wait)


def backoff_schedule(config: RetryConfig) -> list[float]:
    """Return the waits that precede attempts ``2..max_attempts``."""
    return [wait_before(attempt, config) for attempt in range(1, config.max_attempts)]


def worst_case_wait(config: RetryConfig) -> float:
    """Return the total sleep before a retryable run gives up."""
    return sum(backoff_schedule(config))


__all__ = ["backoff_schedule", "wait_before", "worst_case_wait"]
