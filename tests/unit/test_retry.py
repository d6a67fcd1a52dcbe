import pytest

from mailpilot.utils.retry import compute_backoff, schedule_retry


def test_compute_backoff_follows_fixed_schedule():
    schedule = (5.0, 15.0, 30.0)

    assert [compute_backoff(n, schedule) for n in (1, 2, 3)] == [5.0, 15.0, 30.0]
    assert compute_backoff(7, schedule) == 30.0
    assert compute_backoff(1, ()) == 0.0


@pytest.mark.asyncio
async def test_schedule_retry_sleeps_for_delay():
    slept = []

    async def fake_sleep(delay):
        slept.append(delay)

    delay = await schedule_retry(2, (1.0, 2.0), sleep=fake_sleep)

    assert delay == 2.0
    assert slept == [2.0]
