"""Retry decisions with capped exponential backoff.

The policy is a pure function of its configuration, the kind of the last
failure and the number of attempts already made against the current
provider. No jitter is applied, so the delay sequence for one failing call
is non-decreasing and never exceeds ``max_delay``.
"""

from dataclasses import dataclass

from .constants import ErrorKind
from .settings import RetryPolicyConfig


@dataclass(frozen=True)
class Retry:
    after: float


@dataclass(frozen=True)
class GiveUp:
    reason: str


RetryDecision = Retry | GiveUp


def backoff_delay(config: RetryPolicyConfig, attempts: int) -> float:
    """Delay in seconds before the retry that follows ``attempts`` attempts."""
    exponent = max(attempts - 1, 0)
    try:
        delay = config.base_delay * config.backoff_multiplier**exponent
    except OverflowError:
        return config.max_delay
    return min(config.max_delay, delay)


def decide(config: RetryPolicyConfig, kind: ErrorKind, attempts: int) -> RetryDecision:
    if kind not in config.retryable_error_kinds:
        return GiveUp(reason=f"{kind} is not retryable")
    # attempts counts the initial call, so max_retries=k allows k+1 calls.
    if attempts - 1 >= config.max_retries:
        return GiveUp(reason=f"retries exhausted after {attempts} attempts")
    return Retry(after=backoff_delay(config, attempts))
