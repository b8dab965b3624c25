"""Tests for the timeout sweep background job behaviour."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from wheelapp.background_jobs import TimeoutSweepJob
from wheelapp.wheelbotmodel import SweepReport


async def _wait_for_condition(predicate, timeout=1.0, interval=0.01):
    """Utility helper to await a predicate with timeout handling."""

    end_time = asyncio.get_event_loop().time() + timeout
    while not predicate():
        if asyncio.get_event_loop().time() >= end_time:
            raise TimeoutError("Condition not met within timeout")
        await asyncio.sleep(interval)


def _build_model_mock(**sweep_kwargs) -> MagicMock:
    model = MagicMock()
    model.sweep = AsyncMock(**sweep_kwargs)
    return model


@pytest.mark.asyncio
async def test_run_once_returns_model_report():
    report = SweepReport(checked=2, timed_out=1, failed=0)
    model = _build_model_mock(return_value=report)
    job = TimeoutSweepJob(model, interval_seconds=0)

    assert await job.run_once() is report
    model.sweep.assert_awaited_once()


@pytest.mark.asyncio
async def test_loop_keeps_sweeping_until_stopped():
    model = _build_model_mock(return_value=SweepReport())
    job = TimeoutSweepJob(model, interval_seconds=0)

    await job.start()
    assert job.running
    await _wait_for_condition(lambda: model.sweep.await_count >= 3)
    await job.stop()

    assert not job.running
    calls = model.sweep.await_count
    await asyncio.sleep(0.02)
    assert model.sweep.await_count == calls


@pytest.mark.asyncio
async def test_failed_cycle_does_not_stop_the_loop():
    model = _build_model_mock(
        side_effect=[RuntimeError("redis down"), SweepReport(), SweepReport()]
        + [SweepReport()] * 50
    )
    job = TimeoutSweepJob(model, interval_seconds=0)

    await job.start()
    await _wait_for_condition(lambda: model.sweep.await_count >= 2)

    assert job.running
    await job.stop()


@pytest.mark.asyncio
async def test_start_is_idempotent_and_stop_without_start_is_safe():
    model = _build_model_mock(return_value=SweepReport())
    job = TimeoutSweepJob(model, interval_seconds=0.05)

    await job.stop()
    await job.start()
    first_task = job._task
    await job.start()

    assert job._task is first_task
    await job.stop()
    assert job._task is None
