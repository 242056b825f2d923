"""
Session lifecycle controller.

Responsibilities:
- Own the lifecycle state of one meeting session
- Build endpoint + stages + pipeline on init(), atomically
- Join the meeting and subscribe to membership events
- Announce joins/leaves by injecting text at the synthesis stage
- Tear everything down on deinit(), idempotently
- Tear down on its own when the transport is lost

Non-responsibilities:
- No frame processing (stages do that)
- No HTTP / request parsing (server.routes does that)
- No provider selection (session.bootstrap does that)
"""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass

from constants import (
    ANNOUNCE_PARTICIPANT_JOINED,
    ANNOUNCE_PARTICIPANT_LEFT,
    PIPELINE_STOP_GRACE_S,
)
from observability.logger import log_event
from pipeline.errors import (
    AlreadyInitialized,
    InvalidAuthToken,
    PipelineError,
    TransportError,
)
from pipeline.frames import FrameKind, TextFrame
from pipeline.pipeline import Pipeline
from session.bootstrap import ConnectionFactory, SessionParams, StageFactory
from session.lifecycle import LifecycleState
from transport.base import MembershipEvent, MembershipEventKind, Participant, Unsubscribe
from transport.endpoint import TransportEndpoint


# ------------------------------------------------------------------
# Handle
# ------------------------------------------------------------------

@dataclass(frozen=True)
class SessionHandle:
    """
    What a successful init() produced.

    announce_index:
        Pipeline position that receives announcement text, or None when the
        chain has no stage after the source that accepts TEXT.
    """
    session_id: str
    meeting_id: str
    pipeline: Pipeline
    endpoint: TransportEndpoint
    announce_index: int | None


def announce_index_for(pipeline: Pipeline) -> int | None:
    """
    Last non-source position accepting TEXT.

    For source -> STT -> LLM -> TTS -> sink this is the TTS stage, so
    announcements skip transcription and the text processor.
    """
    stages = pipeline.stages
    for index in range(len(stages) - 1, 0, -1):
        if FrameKind.TEXT in stages[index].descriptor.accepts:
            return index
    return None


# ------------------------------------------------------------------
# SessionController
# ------------------------------------------------------------------

class SessionController:
    """
    One controller == one meeting session.

    State machine lives in session.lifecycle.LifecycleState. All transitions
    happen here.
    """

    def __init__(
        self,
        *,
        connection_factory: ConnectionFactory,
        stage_factory: StageFactory,
        stop_grace_s: float = PIPELINE_STOP_GRACE_S,
    ) -> None:
        self._connection_factory = connection_factory
        self._stage_factory = stage_factory
        self._stop_grace_s = stop_grace_s

        self._state = LifecycleState.UNINITIALIZED
        self._handle: SessionHandle | None = None
        self._unsubscribers: list[Unsubscribe] = []
        self._settled = asyncio.Event()
        self._settled.set()
        self._deinit_task: asyncio.Future[None] | None = None
        self._auto_deinit_task: asyncio.Task[None] | None = None
        self._error_counts: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def handle(self) -> SessionHandle | None:
        return self._handle

    @property
    def error_counts(self) -> dict[str, int]:
        return dict(self._error_counts)

    @property
    def participants(self) -> tuple[Participant, ...]:
        """Meeting roster; empty when no session is running."""
        handle = self._handle
        return handle.endpoint.participants if handle is not None else ()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(
        self,
        *,
        session_id: str,
        meeting_id: str,
        auth_token: str,
        callback_address: str = "",
        account_id: str = "",
        api_token: str = "",
    ) -> SessionHandle:
        """
        Build, start and join. All or nothing.

        Raises:
            AlreadyInitialized: not UNINITIALIZED. Nothing is touched.
            InvalidAuthToken: empty token. Nothing is built.
            Whatever construction, start or join raised; everything that
            had been created is released and the state returns to
            UNINITIALIZED.
        """
        if self._state is not LifecycleState.UNINITIALIZED:
            raise AlreadyInitialized(f"session is {self._state.value}")
        if not auth_token or not auth_token.strip():
            raise InvalidAuthToken("meeting auth token is required")

        params = SessionParams(
            session_id=session_id,
            meeting_id=meeting_id,
            auth_token=auth_token.strip(),
            callback_address=callback_address,
            account_id=account_id,
            api_token=api_token,
        )

        self._state = LifecycleState.INITIALIZING
        self._settled.clear()
        log_event({"event_type": "SESSION_INITIALIZING", **params.log_context()})

        endpoint: TransportEndpoint | None = None
        pipeline: Pipeline | None = None
        try:
            endpoint = TransportEndpoint(
                self._connection_factory(params),
                session_id=session_id,
            )
            stages = [endpoint.source, *self._stage_factory(params), endpoint.sink]
            pipeline = Pipeline.build(
                stages,
                0,
                len(stages) - 1,
                session_id=session_id,
                on_error=self._on_pipeline_error,
                stop_grace_s=self._stop_grace_s,
            )
            self._handle = SessionHandle(
                session_id=session_id,
                meeting_id=meeting_id,
                pipeline=pipeline,
                endpoint=endpoint,
                announce_index=announce_index_for(pipeline),
            )

            await pipeline.start()
            self._subscribe(endpoint)
            await endpoint.join()
        except BaseException as exc:
            await self._rollback(pipeline, endpoint)
            self._handle = None
            self._state = LifecycleState.UNINITIALIZED
            self._settled.set()
            log_event({
                "event_type": "SESSION_INIT_FAILED",
                **params.log_context(),
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            raise

        self._state = LifecycleState.RUNNING
        self._settled.set()
        log_event({
            "event_type": "SESSION_RUNNING",
            **params.log_context(),
            "stages": [stage.name for stage in pipeline.stages],
            "announce_index": self._handle.announce_index,
        })
        return self._handle

    async def deinit(self) -> None:
        """
        Stop the pipeline and leave the meeting.

        - No-op when UNINITIALIZED or TERMINATED.
        - While INITIALIZING, waits for init() to settle first.
        - Concurrent calls share one teardown.
        """
        if self._state is LifecycleState.INITIALIZING:
            await self._settled.wait()
        if self._state in (LifecycleState.UNINITIALIZED, LifecycleState.TERMINATED):
            return
        if self._deinit_task is None:
            self._deinit_task = asyncio.ensure_future(self._teardown())
        await asyncio.shield(self._deinit_task)

    # ------------------------------------------------------------------
    # Announcements
    # ------------------------------------------------------------------

    def speak(self, text: str) -> bool:
        """
        Queue text for synthesis without going through STT or the text
        processor. Never blocks.

        Returns True if the frame was queued.
        """
        handle = self._handle
        if handle is None or handle.announce_index is None:
            log_event({
                "event_type": "ANNOUNCEMENT_SKIPPED",
                "session_id": handle.session_id if handle else None,
                "reason": "no_pipeline" if handle is None else "no_text_stage",
            })
            return False

        try:
            return handle.pipeline.inject_at(handle.announce_index, TextFrame(text=text))
        except PipelineError as exc:
            log_event({
                "event_type": "ANNOUNCEMENT_FAILED",
                "session_id": handle.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return False

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _subscribe(self, endpoint: TransportEndpoint) -> None:
        self._unsubscribers.append(
            endpoint.subscribe(MembershipEventKind.PARTICIPANT_JOINED, self._on_membership)
        )
        self._unsubscribers.append(
            endpoint.subscribe(MembershipEventKind.PARTICIPANT_LEFT, self._on_membership)
        )

    def _unsubscribe_all(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()

    def _on_membership(self, event: MembershipEvent) -> None:
        log_event({
            "event_type": "SESSION_MEMBERSHIP_CHANGED",
            "session_id": self._handle.session_id if self._handle else None,
            "kind": event.kind.value,
            "participant_id": event.participant.participant_id,
            "roster_size": len(self.participants),
        })
        if event.kind is MembershipEventKind.PARTICIPANT_JOINED:
            template = ANNOUNCE_PARTICIPANT_JOINED
        else:
            template = ANNOUNCE_PARTICIPANT_LEFT
        self.speak(template.format(name=event.participant.name))

    def _on_pipeline_error(self, error: PipelineError) -> None:
        self._error_counts[type(error).__name__] += 1
        if not isinstance(error, TransportError):
            return

        handle = self._handle
        if (
            self._state is not LifecycleState.RUNNING
            or handle is None
            or handle.endpoint.is_active
        ):
            return
        if self._auto_deinit_task is not None:
            return

        log_event({
            "event_type": "SESSION_TRANSPORT_LOST",
            "session_id": handle.session_id,
            "message": str(error),
        })
        self._auto_deinit_task = asyncio.get_running_loop().create_task(
            self.deinit(),
            name=f"deinit-{handle.session_id}",
        )

    async def _rollback(
        self,
        pipeline: Pipeline | None,
        endpoint: TransportEndpoint | None,
    ) -> None:
        self._unsubscribe_all()
        if pipeline is not None:
            await pipeline.stop()
        if endpoint is not None:
            await endpoint.close()

    async def _teardown(self) -> None:
        handle = self._handle
        assert handle is not None

        self._state = LifecycleState.DEINITIALIZING
        log_event({
            "event_type": "SESSION_DEINITIALIZING",
            "session_id": handle.session_id,
        })

        self._unsubscribe_all()
        try:
            await handle.pipeline.stop()
        finally:
            await handle.endpoint.close()
            self._handle = None
            self._state = LifecycleState.TERMINATED
            log_event({
                "event_type": "SESSION_TERMINATED",
                "session_id": handle.session_id,
                "errors": dict(self._error_counts),
            })
