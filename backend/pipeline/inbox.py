"""
Bounded per-stage frame inbox.

Requirements:
- FIFO, single consumer (the stage worker)
- put() never blocks the producer; the remote side gives no backpressure
- Explicit drop behavior with distinguishable reasons
  (overflow vs offered after close)
- close() lets the consumer drain what is already queued, then stop
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

from pipeline.frames import Frame


class DropReason(str, Enum):
    """
    Reason a frame was dropped at an inbox.
    """
    OVERFLOW = "overflow"
    CLOSED = "closed"


@dataclass
class DropCounters:
    """
    Drop counters for observability.
    """
    overflow: int = 0
    closed: int = 0


class StageInbox:
    """
    Bounded FIFO of frames waiting for one stage.

    Drop rules:
    - closed: drop every new frame
    - full: drop the NEW frame (queued frames are already causally ahead)
    """

    def __init__(self, *, max_frames: int) -> None:
        if max_frames <= 0:
            raise ValueError("max_frames must be > 0")

        self._max_frames: int = max_frames
        self._frames: Deque[Frame] = deque()
        self._ready = asyncio.Event()
        self._closed: bool = False
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def put(self, frame: Frame) -> Optional[DropReason]:
        """
        Offer a frame.

        Returns:
            None if enqueued, otherwise the reason it was dropped.
        """
        if self._closed:
            self.drops.closed += 1
            return DropReason.CLOSED

        if len(self._frames) >= self._max_frames:
            self.drops.overflow += 1
            return DropReason.OVERFLOW

        self._frames.append(frame)
        self._ready.set()
        return None

    async def get(self) -> Optional[Frame]:
        """
        Wait for the next frame.

        Returns None once the inbox is closed AND empty.
        """
        while not self._frames:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._frames.popleft()

    def close(self) -> None:
        """
        Stop accepting frames. Already-queued frames stay available to get().
        """
        self._closed = True
        self._ready.set()

    def clear(self) -> int:
        """
        Discard queued frames without counting them as drops.

        Used when stop() abandons a stage. Returns the number discarded.
        """
        n = len(self._frames)
        self._frames.clear()
        return n

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def closed(self) -> bool:
        return self._closed

    def total_drops(self) -> int:
        """
        Total frames dropped for any reason.
        """
        return self.drops.overflow + self.drops.closed

    def snapshot(self) -> dict[str, int]:
        """
        Lightweight snapshot for logging / metrics.
        """
        return {
            "frames": len(self._frames),
            "dropped_overflow": self.drops.overflow,
            "dropped_closed": self.drops.closed,
            "dropped_total": self.total_drops(),
        }
