"""Tests for the one-shot confirmation gate."""

import asyncio

import pytest

from harvest.pipeline.gate import ConfirmationGate


class TestConfirmationGate:
    async def test_pending_until_resolved(self) -> None:
        gate = ConfirmationGate()
        assert gate.pending is True
        assert gate.decision is None
        assert gate.resolve(True) is True
        assert gate.pending is False
        assert gate.decision is True

    async def test_wait_returns_decision(self) -> None:
        gate = ConfirmationGate()
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0)
        assert not waiter.done()
        gate.resolve(False)
        assert await waiter is False

    async def test_first_resolution_wins(self) -> None:
        gate = ConfirmationGate()
        assert gate.resolve(True) is True
        assert gate.resolve(False) is False
        assert await gate.wait() is True

    async def test_cancelled_waiter_keeps_gate_usable(self) -> None:
        gate = ConfirmationGate()
        waiter = asyncio.create_task(gate.wait())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert gate.pending is True
        assert gate.resolve(True) is True

    def test_requires_running_loop(self) -> None:
        with pytest.raises(RuntimeError):
            ConfirmationGate()
