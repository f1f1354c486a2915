"""Tests for BuildRegistry — one current build per remote name."""

import asyncio

import pytest

from stratus.services.builds import (
    BUILD_CANCELLED,
    BUILD_FAILED,
    BUILD_RUNNING,
    BUILD_SUCCEEDED,
    BuildRegistry,
)


async def _wait_for(event, value="done"):
    await event.wait()
    return value


async def _fail():
    await asyncio.sleep(0)
    raise RuntimeError("archive rejected")


@pytest.mark.asyncio
async def test_successful_build_records_output():
    registry = BuildRegistry()
    record = registry.start("app-1", asyncio.sleep(0, result="v3"))

    assert record.state == BUILD_RUNNING
    assert await record.task == "v3"
    await asyncio.sleep(0)

    assert record.state == BUILD_SUCCEEDED
    assert record.output == "v3"
    assert record.finished_at is not None
    assert registry.get("app-1") is record


@pytest.mark.asyncio
async def test_failed_build_records_error():
    registry = BuildRegistry()
    record = registry.start("app-1", _fail())

    with pytest.raises(RuntimeError):
        await record.task
    await asyncio.sleep(0)

    assert record.state == BUILD_FAILED
    assert "archive rejected" in record.output


@pytest.mark.asyncio
async def test_new_build_cancels_running_one():
    registry = BuildRegistry()
    gate = asyncio.Event()
    old = registry.start("app-1", _wait_for(gate, "old"))
    await asyncio.sleep(0)

    new = registry.start("app-1", _wait_for(gate, "new"))
    gate.set()

    assert await new.task == "new"
    await asyncio.sleep(0)
    assert old.task.cancelled()
    assert old.state == BUILD_CANCELLED
    assert new.state == BUILD_SUCCEEDED
    assert registry.get("app-1") is new


@pytest.mark.asyncio
async def test_builds_for_different_names_are_independent():
    registry = BuildRegistry()
    gate = asyncio.Event()
    a = registry.start("app-a", _wait_for(gate))
    b = registry.start("app-b", _wait_for(gate))
    gate.set()
    await asyncio.gather(a.task, b.task)
    await asyncio.sleep(0)
    assert a.state == b.state == BUILD_SUCCEEDED
    assert len(registry) == 2


@pytest.mark.asyncio
async def test_cleanup_and_shutdown():
    registry = BuildRegistry()
    gate = asyncio.Event()
    a = registry.start("app-a", _wait_for(gate))
    registry.start("app-b", _wait_for(gate))

    registry.cleanup("app-a")
    assert registry.get("app-a") is None
    await asyncio.sleep(0)
    assert a.task.cancelled()

    await registry.shutdown()
    assert len(registry) == 0
