import asyncio

import pytest

from clinicflow.negotiation.locks import AppointmentLocks


class TestAppointmentLocks:
    @pytest.mark.asyncio
    async def test_same_id_is_serialized(self) -> None:
        locks = AppointmentLocks()
        events: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("a1"):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("first"), worker("second"))

        assert events == ["first-in", "first-out", "second-in", "second-out"]

    @pytest.mark.asyncio
    async def test_different_ids_do_not_block(self) -> None:
        locks = AppointmentLocks()
        inside = asyncio.Event()

        async def holder() -> None:
            async with locks.hold("a1"):
                await asyncio.wait_for(inside.wait(), timeout=1)

        async def other() -> None:
            async with locks.hold("a2"):
                inside.set()

        await asyncio.gather(holder(), other())

    @pytest.mark.asyncio
    async def test_registry_is_emptied_after_use(self) -> None:
        locks = AppointmentLocks()

        async with locks.hold("a1"):
            assert len(locks) == 1

        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_when_body_raises(self) -> None:
        locks = AppointmentLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("a1"):
                raise RuntimeError("boom")

        assert len(locks) == 0
        async with locks.hold("a1"):
            pass
