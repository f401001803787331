"""
Retry delay curves for outbound attempts and event dispatch.

Randomness comes from an injectable random.Random so callers (and tests)
can pin the jitter.
"""

import random
from datetime import timedelta

MINUTE = 60
HOUR = 60 * MINUTE

BACKOFF_POLICIES = ("channel_schedule", "fixed", "exponential")


def apply_jitter(
    seconds: float,
    ratio: float = 0.2,
    floor_seconds: float = 10.0,
    rng: random.Random | None = None,
) -> float:
    """Spread a delay by +/- ratio, never below floor_seconds."""
    rng = rng or random
    delta = (rng.random() * 2 - 1) * seconds * ratio
    return max(floor_seconds, round(seconds + delta))


def channel_schedule_seconds(channel: str, attempt_number: int) -> int:
    """
    Delay after a failed attempt (1-based attempt_number).

    Voice retries once after 30 minutes; messaging channels back off
    5m, 30m, then 4h.
    """
    if channel == "voice":
        return 30 * MINUTE
    if attempt_number <= 1:
        return 5 * MINUTE
    if attempt_number == 2:
        return 30 * MINUTE
    return 4 * HOUR


class BackoffPolicy:
    """Configured outbound retry curve."""

    def __init__(
        self,
        policy: str = "channel_schedule",
        fixed_seconds: int = 300,
        base_seconds: int = 60,
        max_seconds: int = 4 * HOUR,
        jitter_ratio: float = 0.2,
        rng: random.Random | None = None,
    ):
        if policy not in BACKOFF_POLICIES:
            raise ValueError(f"Unknown backoff policy: {policy}")
        self.policy = policy
        self.fixed_seconds = fixed_seconds
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self.jitter_ratio = jitter_ratio
        self.rng = rng

    @classmethod
    def from_settings(cls, config: dict, rng: random.Random | None = None) -> "BackoffPolicy":
        return cls(rng=rng, **config)

    def base_delay(self, channel: str, attempt_number: int) -> int:
        if self.policy == "fixed":
            return self.fixed_seconds
        if self.policy == "exponential":
            return min(self.max_seconds, self.base_seconds * 2 ** max(0, attempt_number - 1))
        return channel_schedule_seconds(channel, attempt_number)

    def delay(self, channel: str, attempt_number: int) -> timedelta:
        seconds = apply_jitter(self.base_delay(channel, attempt_number), self.jitter_ratio, 10.0, self.rng)
        return timedelta(seconds=seconds)


DISPATCH_SCHEDULE_SECONDS = (10, 30, 2 * MINUTE, 10 * MINUTE)


def dispatch_delay(attempts: int, rng: random.Random | None = None) -> timedelta:
    """Delay before re-dispatching an event that has failed `attempts` times."""
    index = max(0, attempts - 1)
    seconds = DISPATCH_SCHEDULE_SECONDS[index] if index < len(DISPATCH_SCHEDULE_SECONDS) else HOUR
    return timedelta(seconds=apply_jitter(seconds, 0.2, 5.0, rng))
