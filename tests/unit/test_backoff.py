from datetime import timedelta

import pytest

from app.core.backoff import BackoffPolicy, apply_jitter, channel_schedule_seconds, dispatch_delay


class StubRandom:
    def __init__(self, value):
        self.value = value

    def random(self):
        return self.value


def test_channel_schedule():
    assert channel_schedule_seconds("sms", 1) == 5 * 60
    assert channel_schedule_seconds("whatsapp", 2) == 30 * 60
    assert channel_schedule_seconds("email", 3) == 4 * 60 * 60
    assert channel_schedule_seconds("voice", 1) == 30 * 60


def test_jitter_stays_within_ratio_and_floor():
    assert apply_jitter(300, 0.2, 10, StubRandom(1.0)) == 360
    assert apply_jitter(300, 0.2, 10, StubRandom(0.0)) == 240
    assert apply_jitter(5, 0.2, 10, StubRandom(0.5)) == 10


def test_fixed_and_exponential_policies():
    fixed = BackoffPolicy(policy="fixed", fixed_seconds=120, rng=StubRandom(0.5))
    exponential = BackoffPolicy(policy="exponential", base_seconds=60, max_seconds=300, rng=StubRandom(0.5))

    assert fixed.delay("sms", 3) == timedelta(seconds=120)
    assert exponential.delay("sms", 1) == timedelta(seconds=60)
    assert exponential.delay("sms", 3) == timedelta(seconds=240)
    assert exponential.delay("sms", 6) == timedelta(seconds=300)


def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        BackoffPolicy(policy="linear")


def test_dispatch_delay_schedule():
    rng = StubRandom(0.5)

    assert dispatch_delay(1, rng) == timedelta(seconds=10)
    assert dispatch_delay(2, rng) == timedelta(seconds=30)
    assert dispatch_delay(4, rng) == timedelta(seconds=600)
    assert dispatch_delay(9, rng) == timedelta(hours=1)
