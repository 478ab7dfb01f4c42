import asyncio

import pytest

from triageflow.utils.retry import compute_backoff, schedule_retry


def test_compute_backoff_grows_with_attempts():
    assert compute_backoff(1, base=2, jitter=0) == 2
    assert compute_backoff(3, base=2, jitter=0) == 8
    delay = compute_backoff(2, base=1.5, jitter=0.5)
    assert 2.25 <= delay <= 2.75


def test_zero_base_disables_backoff():
    assert compute_backoff(5, base=0, jitter=1.0) == 0.0


@pytest.mark.asyncio
async def test_schedule_retry_without_delay(monkeypatch):
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    await schedule_retry(3, base=0)
    await schedule_retry(1, base=2, jitter=0)

    assert sleeps == [2]
