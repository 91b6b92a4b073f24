import anyio
import pytest

from wa_dashboard.shared.pacing import FixedIntervalPacer, NoPacing


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_rejects_non_positive_rate():
    with pytest.raises(ValueError):
        FixedIntervalPacer(0)


@pytest.mark.anyio
async def test_first_send_never_waits():
    clock = FakeClock()
    pacer = FixedIntervalPacer(2, clock=clock, sleep=clock.sleep)

    assert await pacer.wait() == 0
    assert clock.sleeps == []


@pytest.mark.anyio
async def test_back_to_back_sends_are_spaced_by_interval():
    clock = FakeClock()
    pacer = FixedIntervalPacer(2, clock=clock, sleep=clock.sleep)

    await pacer.wait()
    await pacer.wait()
    await pacer.wait()

    assert clock.sleeps == [pytest.approx(0.5), pytest.approx(0.5)]


@pytest.mark.anyio
async def test_idle_time_counts_toward_interval():
    clock = FakeClock()
    pacer = FixedIntervalPacer(1, clock=clock, sleep=clock.sleep)

    await pacer.wait()
    clock.now += 0.75
    delay = await pacer.wait()

    assert delay == pytest.approx(0.25)


@pytest.mark.anyio
async def test_concurrent_waiters_get_distinct_slots():
    clock = FakeClock()
    delays: list[float] = []

    async def frozen_sleep(seconds: float) -> None:
        clock.sleeps.append(seconds)
        await anyio.sleep(0)

    pacer = FixedIntervalPacer(4, clock=clock, sleep=frozen_sleep)

    async def send() -> None:
        delays.append(await pacer.wait())

    async with anyio.create_task_group() as tg:
        for _ in range(3):
            tg.start_soon(send)

    assert sorted(delays) == [0, pytest.approx(0.25), pytest.approx(0.5)]


@pytest.mark.anyio
async def test_no_pacing_returns_immediately():
    assert await NoPacing().wait() == 0.0
