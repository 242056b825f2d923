"""
Stage contract.

This module defines the *interface only*: no wiring, queues, tasks or
error reporting live here (see pipeline.pipeline).

Key invariants:
- A stage exposes one entry point per accepted frame kind
  (on_audio / on_text).
- Output is produced through the `emit` callback, zero, one or many times
  per input frame, possibly after awaiting a backend.
- A stage never calls the next stage directly and never sees the pipeline.
- Stages hold no shared mutable base state; the base class only supplies
  defaults and dispatch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, ClassVar

from pipeline.frames import AudioFrame, Frame, FrameKind, TextFrame


Emit = Callable[[Frame], Awaitable[None]]


@dataclass(frozen=True)
class StageDescriptor:
    """
    Declared input and output kinds of a stage.

    Used only to validate pipeline construction.
    """
    accepts: frozenset[FrameKind]
    produces: frozenset[FrameKind]

    @classmethod
    def of(
        cls,
        *,
        accepts: tuple[FrameKind, ...] = (),
        produces: tuple[FrameKind, ...] = (),
    ) -> StageDescriptor:
        return cls(accepts=frozenset(accepts), produces=frozenset(produces))

    def feeds(self, downstream: StageDescriptor) -> bool:
        """
        True if everything this stage can emit is accepted downstream.

        A stage that produces nothing cannot feed anything.
        """
        return bool(self.produces) and self.produces <= downstream.accepts


class Stage(ABC):
    """
    Abstract pipeline stage.

    Subclasses set `descriptor` and override the entry points for the kinds
    they accept. Entry points are only ever called by the pipeline driver,
    one frame at a time, in arrival order.

    Implementations are responsible for:
    - Transforming input frames and emitting output frames
    - Raising on failure (the driver drops the frame and reports)
    - Acquiring/releasing their own resources in start()/stop()

    Non-responsibilities:
    - No knowledge of neighbouring stages
    - No retries or timeouts owned by the pipeline
    - No lifecycle state
    """

    descriptor: ClassVar[StageDescriptor]

    @property
    def name(self) -> str:
        """Stable name used in logs and errors."""
        return type(self).__name__

    async def start(self) -> None:
        """Acquire resources. Called once by Pipeline.start()."""

    async def stop(self) -> None:
        """Release resources. Called at most once by Pipeline.stop()."""

    async def on_audio(self, frame: AudioFrame, emit: Emit) -> None:
        """Handle one inbound audio frame."""
        raise NotImplementedError(f"{self.name} does not accept AUDIO frames")

    async def on_text(self, frame: TextFrame, emit: Emit) -> None:
        """Handle one inbound text frame."""
        raise NotImplementedError(f"{self.name} does not accept TEXT frames")

    async def handle(self, frame: Frame, emit: Emit) -> None:
        """Dispatch a frame to the entry point for its kind."""
        if isinstance(frame, AudioFrame):
            await self.on_audio(frame, emit)
        else:
            await self.on_text(frame, emit)


class SourceStage(Stage):
    """
    A stage that originates frames instead of receiving them.

    The pipeline pumps frames() for as long as it runs; the iterator ending
    means the source is exhausted (e.g. the session went away).
    """

    @abstractmethod
    def frames(self) -> AsyncIterator[Frame]:
        """Continuous feed of inbound frames."""
        raise NotImplementedError
