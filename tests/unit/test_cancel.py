"""Unit tests for CancelScope."""

import asyncio

import pytest

from devtrack.core.cancel import CancelScope


def test_cancel_cascades_to_children():
    root = CancelScope(name="root")
    build = root.child("build")
    step = build.child("step")

    root.cancel()

    assert build.cancelled and step.cancelled


def test_cancelling_child_leaves_parent_alone():
    root = CancelScope()
    build = root.child()

    build.cancel()

    assert build.cancelled is True
    assert root.cancelled is False


def test_child_of_cancelled_parent_starts_cancelled():
    root = CancelScope()
    root.cancel()
    assert root.child().cancelled is True


def test_released_scope_is_not_cancelled_by_parent():
    root = CancelScope()
    build = root.child()

    build.release()
    root.cancel()

    assert build.cancelled is False


def test_on_cancel_runs_once():
    scope = CancelScope()
    calls = []
    scope.on_cancel(lambda: calls.append("cb"))

    scope.cancel()
    scope.cancel()

    assert calls == ["cb"]


def test_on_cancel_after_cancellation_runs_immediately():
    scope = CancelScope()
    scope.cancel()
    calls = []
    scope.on_cancel(lambda: calls.append("cb"))
    assert calls == ["cb"]


@pytest.mark.asyncio
async def test_wait_returns_when_cancelled():
    scope = CancelScope()
    waiter = asyncio.create_task(scope.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    scope.cancel()

    await asyncio.wait_for(waiter, timeout=0.5)


@pytest.mark.asyncio
async def test_wait_on_already_cancelled_scope():
    scope = CancelScope()
    scope.cancel()
    await asyncio.wait_for(scope.wait(), timeout=0.5)
