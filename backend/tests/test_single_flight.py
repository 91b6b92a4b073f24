import anyio
import pytest

from wa_dashboard.shared.single_flight import SingleFlight


@pytest.mark.anyio
async def test_runs_and_returns_result():
    flight = SingleFlight("job")

    async def work(value):
        return value * 2

    outcome = await flight.run(work, 21)

    assert outcome.ran is True
    assert outcome.result == 42
    assert flight.running is False


@pytest.mark.anyio
async def test_overlapping_call_is_skipped_not_queued():
    flight = SingleFlight("job")
    release = anyio.Event()
    started = anyio.Event()
    calls = 0

    async def slow():
        nonlocal calls
        calls += 1
        started.set()
        await release.wait()
        return "done"

    results = []

    async def first():
        results.append(await flight.run(slow))

    async with anyio.create_task_group() as tg:
        tg.start_soon(first)
        await started.wait()
        skipped = await flight.run(slow)
        release.set()

    assert skipped.ran is False
    assert flight.skipped == 1
    assert calls == 1
    assert results[0].result == "done"


@pytest.mark.anyio
async def test_flag_is_released_after_failure():
    flight = SingleFlight("job")

    async def boom():
        raise RuntimeError("fail")

    with pytest.raises(RuntimeError):
        await flight.run(boom)

    assert flight.running is False

    async def ok():
        return 1

    assert (await flight.run(ok)).ran is True
