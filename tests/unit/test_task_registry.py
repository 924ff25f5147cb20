"""Unit tests for TaskRegistry."""

import asyncio

import pytest

from devtrack.core.task_registry import TaskRegistry


@pytest.mark.asyncio
async def test_spawn_tracks_task():
    """Test that spawn() creates and tracks a task."""
    registry = TaskRegistry()
    ready = asyncio.Event()

    async def dummy_coro():
        await ready.wait()
        return "done"

    task = registry.spawn(dummy_coro(), name="test-task")

    assert registry.task_count() == 1
    assert not task.done()

    ready.set()
    assert await task == "done"


@pytest.mark.asyncio
async def test_completed_tasks_are_removed():
    registry = TaskRegistry()

    async def quick_coro():
        return "quick"

    task = registry.spawn(quick_coro(), name="quick-task")
    await task
    await asyncio.sleep(0)

    assert registry.task_count() == 0


@pytest.mark.asyncio
async def test_failed_task_is_logged_not_raised():
    registry = TaskRegistry()

    async def failing():
        raise ValueError("boom")

    registry.spawn(failing(), name="failing")
    await registry.drain()

    assert registry.task_count() == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_tasks():
    """Test that shutdown() cancels all pending tasks."""
    registry = TaskRegistry()
    blocker = asyncio.Event()

    async def long_coro():
        await blocker.wait()

    tasks = [registry.spawn(long_coro(), name=f"task-{i}") for i in range(3)]

    await registry.shutdown(timeout=0.1)

    assert all(task.cancelled() for task in tasks)
    assert registry.closed is True


@pytest.mark.asyncio
async def test_spawn_after_shutdown_raises():
    registry = TaskRegistry()
    await registry.shutdown()

    async def never():
        return None

    with pytest.raises(RuntimeError):
        registry.spawn(never(), name="late")


@pytest.mark.asyncio
async def test_drain_waits_for_tasks_spawned_by_tasks():
    registry = TaskRegistry()
    done = []

    async def child():
        done.append("child")

    async def parent():
        registry.spawn(child(), name="child")
        done.append("parent")

    registry.spawn(parent(), name="parent")
    await registry.drain()

    assert done == ["parent", "child"]
