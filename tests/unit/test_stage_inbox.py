# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import pytest

from pipeline.frames import AudioFrame, TextFrame
from pipeline.inbox import DropReason, StageInbox


def make_frame(seq: int) -> AudioFrame:
    return AudioFrame(pcm_bytes=bytes([seq]) * 4)


# ---------------------------------------------------------------------
# FIFO
# ---------------------------------------------------------------------

def test_frames_come_out_in_arrival_order():
    async def run() -> list[bytes]:
        inbox = StageInbox(max_frames=8)
        for seq in range(3):
            assert inbox.put(make_frame(seq)) is None

        out: list[bytes] = []
        for _ in range(3):
            frame = await inbox.get()
            assert isinstance(frame, AudioFrame)
            out.append(frame.pcm_bytes)
        return out

    assert asyncio.run(run()) == [bytes([0]) * 4, bytes([1]) * 4, bytes([2]) * 4]


def test_get_waits_for_put():
    async def run() -> None:
        inbox = StageInbox(max_frames=2)
        getter = asyncio.create_task(inbox.get())
        await asyncio.sleep(0)
        assert not getter.done()

        inbox.put(TextFrame(text="late"))
        frame = await asyncio.wait_for(getter, timeout=1.0)
        assert isinstance(frame, TextFrame)
        assert frame.text == "late"

    asyncio.run(run())


# ---------------------------------------------------------------------
# Overflow behavior
# ---------------------------------------------------------------------

def test_overflow_drops_newest():
    inbox = StageInbox(max_frames=2)

    assert inbox.put(make_frame(1)) is None
    assert inbox.put(make_frame(2)) is None
    assert inbox.put(make_frame(3)) is DropReason.OVERFLOW

    assert inbox.drops.overflow == 1
    assert inbox.total_drops() == 1
    assert len(inbox) == 2


def test_rejects_non_positive_bound():
    with pytest.raises(ValueError):
        StageInbox(max_frames=0)


# ---------------------------------------------------------------------
# Close behavior
# ---------------------------------------------------------------------

def test_close_drains_then_ends():
    async def run() -> None:
        inbox = StageInbox(max_frames=4)
        inbox.put(make_frame(1))
        inbox.close()

        assert inbox.put(make_frame(2)) is DropReason.CLOSED
        assert await inbox.get() is not None
        assert await inbox.get() is None

    asyncio.run(run())


def test_close_wakes_waiting_consumer():
    async def run() -> None:
        inbox = StageInbox(max_frames=4)
        getter = asyncio.create_task(inbox.get())
        await asyncio.sleep(0)

        inbox.close()
        assert await asyncio.wait_for(getter, timeout=1.0) is None

    asyncio.run(run())


def test_overflow_and_closed_accounted_separately():
    inbox = StageInbox(max_frames=1)

    inbox.put(make_frame(1))
    inbox.put(make_frame(2))  # overflow
    inbox.close()
    inbox.put(make_frame(3))  # closed

    assert inbox.drops.overflow == 1
    assert inbox.drops.closed == 1
    assert inbox.total_drops() == 2
    assert inbox.clear() == 1
    assert inbox.snapshot() == {
        "frames": 0,
        "dropped_overflow": 1,
        "dropped_closed": 1,
        "dropped_total": 2,
    }
