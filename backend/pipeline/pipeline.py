"""
Linear stage pipeline for a single session.

Responsibilities:
- Validate that adjacent stages hand off compatible frame kinds
- Start every stage before any frame moves
- Wire each stage's emit callback to the next stage's inbox
- Run one worker task per stage (per-stage FIFO, stages run concurrently)
- Pump the source stage
- Contain per-frame failures and report them
- Drain, abandon and release everything on stop()

Non-responsibilities:
- No lifecycle state beyond started/stopping/stopped
- No session, meeting or membership knowledge
- No retries (a failed frame is dropped)

Shutdown model:
    stop() cancels the source pump, then walks the chain forward. Each
    inbox is closed and its worker is given until the shared grace deadline
    to finish what is queued. A worker still busy at the deadline is
    cancelled and its queued frames discarded before the next stage is
    closed, so nothing upstream can emit into a stage after it has been
    drained. Stage stop() hooks run last, once per distinct stage.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Sequence

from constants import (
    MIN_PIPELINE_STAGES,
    PIPELINE_STOP_GRACE_S,
    STAGE_INBOX_MAX_FRAMES,
)
from observability.logger import log_event
from pipeline.errors import (
    AlreadyStarted,
    IncompatibleFrame,
    IncompatibleStageChain,
    InvalidStageIndex,
    PipelineError,
    PipelineNotRunning,
    PipelineTooShort,
    StageProcessingError,
    TransportError,
)
from pipeline.frames import Frame, describe
from pipeline.inbox import StageInbox
from pipeline.stage import Emit, SourceStage, Stage


ErrorReporter = Callable[[PipelineError], None]


@dataclass
class _Slot:
    """Runtime bookkeeping for one position in the chain."""
    index: int
    stage: Stage
    inbox: StageInbox | None = None
    task: asyncio.Task[None] | None = None
    processed: int = 0
    failed: int = 0


class Pipeline:
    """
    Ordered, linear chain of stages plus the tasks that drive it.

    Construct with Pipeline.build(); the constructor does not validate.
    """

    def __init__(
        self,
        stages: Sequence[Stage],
        *,
        session_id: str | None = None,
        on_error: ErrorReporter | None = None,
        inbox_max_frames: int = STAGE_INBOX_MAX_FRAMES,
        stop_grace_s: float = PIPELINE_STOP_GRACE_S,
    ) -> None:
        self._session_id = session_id
        self._on_error = on_error
        self._stop_grace_s = stop_grace_s

        self._slots: list[_Slot] = [
            _Slot(index=i, stage=stage) for i, stage in enumerate(stages)
        ]
        for slot in self._slots[1:]:
            slot.inbox = StageInbox(max_frames=inbox_max_frames)

        self._pump_task: asyncio.Task[None] | None = None
        self._stop_task: asyncio.Future[None] | None = None
        self._start_settled: asyncio.Event | None = None

        self._started = False
        self._stopping = False
        self._stopped = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(
        cls,
        stages: Sequence[Stage],
        source_index: int = 0,
        sink_index: int = -1,
        *,
        session_id: str | None = None,
        on_error: ErrorReporter | None = None,
        inbox_max_frames: int = STAGE_INBOX_MAX_FRAMES,
        stop_grace_s: float = PIPELINE_STOP_GRACE_S,
    ) -> Pipeline:
        """
        Validate a stage chain and return an unstarted pipeline.

        Raises:
            PipelineTooShort: fewer than a source and a sink.
            InvalidStageIndex: source is not the first element (or is not a
                SourceStage), or sink is not the last element.
            IncompatibleStageChain: the first adjacent pair whose produced
                kinds are not accepted downstream.
        """
        stages = list(stages)
        n = len(stages)
        if n < MIN_PIPELINE_STAGES:
            raise PipelineTooShort(n, MIN_PIPELINE_STAGES)

        if sink_index < 0:
            sink_index += n
        if source_index != 0:
            raise InvalidStageIndex(f"source must be stage 0, got {source_index}")
        if sink_index != n - 1:
            raise InvalidStageIndex(f"sink must be stage {n - 1}, got {sink_index}")
        if not isinstance(stages[0], SourceStage):
            raise InvalidStageIndex(
                f"stage 0 ({stages[0].name}) is not a source stage"
            )

        for i in range(n - 1):
            up = stages[i].descriptor
            down = stages[i + 1].descriptor
            if not up.feeds(down):
                raise IncompatibleStageChain(
                    upstream_index=i,
                    upstream=stages[i].name,
                    downstream=stages[i + 1].name,
                    produces=up.produces,
                    accepts=down.accepts,
                )

        return cls(
            stages,
            session_id=session_id,
            on_error=on_error,
            inbox_max_frames=inbox_max_frames,
            stop_grace_s=stop_grace_s,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def stages(self) -> tuple[Stage, ...]:
        return tuple(slot.stage for slot in self._slots)

    @property
    def running(self) -> bool:
        return self._started and not self._stopping

    @property
    def stopped(self) -> bool:
        return self._stopped

    def index_of(self, stage: Stage) -> int:
        """Position of a stage (by identity). Raises ValueError if absent."""
        for slot in self._slots:
            if slot.stage is stage:
                return slot.index
        raise ValueError(f"{stage.name} is not part of this pipeline")

    def snapshot(self) -> list[dict[str, object]]:
        """Per-stage counters for logging / diagnostics."""
        out: list[dict[str, object]] = []
        for slot in self._slots:
            entry: dict[str, object] = {
                "index": slot.index,
                "stage": slot.stage.name,
                "processed": slot.processed,
                "failed": slot.failed,
            }
            if slot.inbox is not None:
                entry["inbox"] = slot.inbox.snapshot()
            out.append(entry)
        return out

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start stages, wire them, and begin pumping the source.

        Every stage's start() hook completes before any worker or the pump
        exists, so no stage sees a frame before its neighbours are ready.

        Raises:
            AlreadyStarted: on any call after the first.
            Whatever a stage start() hook raises; stages that had already
            started are stopped first and the pipeline is spent.
        """
        if self._started:
            raise AlreadyStarted("pipeline already started")
        self._started = True
        self._start_settled = asyncio.Event()

        started: list[Stage] = []
        try:
            for stage in self._distinct_stages():
                await stage.start()
                started.append(stage)
        except BaseException:
            self._stopping = True
            for stage in reversed(started):
                await self._stop_stage(stage, timeout_s=self._stop_grace_s)
            self._stopped = True
            self._start_settled.set()
            raise

        for slot in self._slots[1:]:
            slot.task = asyncio.create_task(
                self._work(slot),
                name=f"stage-{slot.index}-{slot.stage.name}",
            )
        self._pump_task = asyncio.create_task(self._pump(), name="stage-0-pump")

        log_event({
            "event_type": "PIPELINE_STARTED",
            "session_id": self._session_id,
            "stages": [slot.stage.name for slot in self._slots],
        })
        self._start_settled.set()

    async def stop(self, grace_s: float | None = None) -> None:
        """
        Stop accepting input, drain within the grace period, release stages.

        - No-op if start() was never called.
        - Called while start() is still running its stage hooks, waits for
          start() to finish first, then shuts down what it wired.
        - Idempotent: later (or concurrent) calls wait for the same shutdown.
        - Bounded by twice the grace period: one window to drain, one shared
          by the stage stop() hooks.
        """
        if not self._started:
            return
        if self._start_settled is not None and not self._start_settled.is_set():
            await self._start_settled.wait()
        if self._stop_task is None and self._stopped:
            # start() failed and already released what it had started
            return
        if self._stop_task is None:
            grace = self._stop_grace_s if grace_s is None else grace_s
            self._stop_task = asyncio.ensure_future(self._shutdown(grace))
        await asyncio.shield(self._stop_task)

    # ------------------------------------------------------------------
    # Side channel
    # ------------------------------------------------------------------

    def inject_at(self, stage_index: int, frame: Frame) -> bool:
        """
        Deliver a frame straight into a stage's inbox.

        Fire-and-forget: never awaits, never blocks the caller.

        Returns:
            True if queued, False if the inbox dropped it.

        Raises:
            PipelineNotRunning: not started, or stopping.
            InvalidStageIndex: out of range, or the source position.
            IncompatibleFrame: the target stage does not accept this kind.
        """
        if not self.running:
            raise PipelineNotRunning("cannot inject into a pipeline that is not running")

        n = len(self._slots)
        index = stage_index + n if stage_index < 0 else stage_index
        if not 0 < index < n:
            raise InvalidStageIndex(f"cannot inject at stage {stage_index}")

        slot = self._slots[index]
        if frame.kind not in slot.stage.descriptor.accepts:
            raise IncompatibleFrame(
                f"{slot.stage.name} does not accept {frame.kind.value} frames"
            )

        log_event({
            "event_type": "FRAME_INJECTED",
            "session_id": self._session_id,
            "stage": slot.stage.name,
            "stage_index": index,
            **describe(frame),
        })
        return self._deliver(slot, frame, origin="inject")

    # ------------------------------------------------------------------
    # Internal: wiring
    # ------------------------------------------------------------------

    def _distinct_stages(self) -> list[Stage]:
        seen: set[int] = set()
        out: list[Stage] = []
        for slot in self._slots:
            if id(slot.stage) not in seen:
                seen.add(id(slot.stage))
                out.append(slot.stage)
        return out

    def _make_emit(self, slot: _Slot) -> Emit:
        produces = slot.stage.descriptor.produces
        name = slot.stage.name
        downstream = (
            self._slots[slot.index + 1]
            if slot.index + 1 < len(self._slots)
            else None
        )

        async def emit(frame: Frame) -> None:
            if frame.kind not in produces:
                raise IncompatibleFrame(
                    f"{name} emitted {frame.kind.value}, "
                    f"declared {sorted(k.value for k in produces)}"
                )
            if downstream is None:
                log_event({
                    "event_type": "FRAME_DROPPED",
                    "session_id": self._session_id,
                    "stage": name,
                    "reason": "no_downstream",
                    **describe(frame),
                })
                return
            self._deliver(downstream, frame, origin=name)

        return emit

    def _deliver(self, slot: _Slot, frame: Frame, *, origin: str) -> bool:
        assert slot.inbox is not None
        reason = slot.inbox.put(frame)
        if reason is None:
            return True

        log_event({
            "event_type": "FRAME_DROPPED",
            "session_id": self._session_id,
            "stage": slot.stage.name,
            "stage_index": slot.index,
            "origin": origin,
            "reason": reason.value,
            **describe(frame),
        })
        return False

    def _report(self, slot: _Slot, error: PipelineError) -> None:
        log_event({
            "event_type": (
                "TRANSPORT_ERROR"
                if isinstance(error, TransportError)
                else "STAGE_PROCESSING_ERROR"
            ),
            "session_id": self._session_id,
            "stage": slot.stage.name,
            "stage_index": slot.index,
            "exception": type(error).__name__,
            "message": str(error),
        })
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "ERROR_REPORTER_FAILED",
                "session_id": self._session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    # ------------------------------------------------------------------
    # Internal: tasks
    # ------------------------------------------------------------------

    async def _work(self, slot: _Slot) -> None:
        """
        Drain one stage's inbox in FIFO order until it is closed and empty.

        A failing frame is dropped and reported; the loop continues.
        """
        assert slot.inbox is not None
        emit = self._make_emit(slot)

        while True:
            frame = await slot.inbox.get()
            if frame is None:
                return

            try:
                await slot.stage.handle(frame, emit)
                slot.processed += 1
            except TransportError as exc:
                slot.failed += 1
                self._report(slot, exc)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                slot.failed += 1
                self._report(
                    slot,
                    StageProcessingError(
                        stage=slot.stage.name,
                        frame_kind=frame.kind,
                        cause=exc,
                    ),
                )

    async def _pump(self) -> None:
        """
        Move frames from the source into stage 1 as fast as they arrive.

        The source gives no backpressure; stage 1's inbox drops on overflow.
        """
        source_slot = self._slots[0]
        source = source_slot.stage
        assert isinstance(source, SourceStage)
        produces = source.descriptor.produces
        downstream = self._slots[1]

        try:
            async for frame in source.frames():
                if self._stopping:
                    break
                if frame.kind not in produces:
                    source_slot.failed += 1
                    log_event({
                        "event_type": "FRAME_DROPPED",
                        "session_id": self._session_id,
                        "stage": source.name,
                        "reason": "undeclared_kind",
                        **describe(frame),
                    })
                    continue
                source_slot.processed += 1
                self._deliver(downstream, frame, origin=source.name)
        except TransportError as exc:
            source_slot.failed += 1
            self._report(source_slot, exc)
            return
        except Exception as exc:  # pylint: disable=broad-exception-caught
            source_slot.failed += 1
            self._report(source_slot, TransportError(f"source feed failed: {exc!r}"))
            return

        if not self._stopping:
            log_event({
                "event_type": "SOURCE_EXHAUSTED",
                "session_id": self._session_id,
                "stage": source.name,
                "frames": source_slot.processed,
            })
            self._report(source_slot, TransportError("source feed ended"))

    async def _shutdown(self, grace_s: float) -> None:
        self._stopping = True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace_s

        log_event({
            "event_type": "PIPELINE_STOPPING",
            "session_id": self._session_id,
            "grace_s": grace_s,
        })

        # The source feed has no natural end, so it is cancelled outright
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
        if self._pump_task is not None:
            await asyncio.gather(self._pump_task, return_exceptions=True)

        for slot in self._slots[1:]:
            assert slot.inbox is not None
            slot.inbox.close()
            task = slot.task
            if task is None:
                continue

            remaining = deadline - loop.time()
            if not task.done() and remaining > 0:
                await asyncio.wait({task}, timeout=remaining)

            if not task.done():
                discarded = slot.inbox.clear()
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                log_event({
                    "event_type": "STAGE_ABANDONED",
                    "session_id": self._session_id,
                    "stage": slot.stage.name,
                    "stage_index": slot.index,
                    "discarded_frames": discarded,
                })

        # stop() hooks share one release window of grace_s between them
        release_deadline = loop.time() + grace_s
        for stage in self._distinct_stages():
            await self._stop_stage(stage, timeout_s=release_deadline - loop.time())

        self._stopped = True
        log_event({
            "event_type": "PIPELINE_STOPPED",
            "session_id": self._session_id,
            "stages": self.snapshot(),
        })

    async def _stop_stage(self, stage: Stage, *, timeout_s: float) -> None:
        try:
            await asyncio.wait_for(stage.stop(), timeout=max(timeout_s, 0.01))
        except asyncio.TimeoutError:
            log_event({
                "event_type": "STAGE_STOP_TIMEOUT",
                "session_id": self._session_id,
                "stage": stage.name,
            })
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "STAGE_STOP_FAILED",
                "session_id": self._session_id,
                "stage": stage.name,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
