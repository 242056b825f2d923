"""
Duplex transport endpoint.

One live-session connection appears twice in a pipeline: as the source at
position 0 and as the sink at position N-1. Rather than putting the same
object in the chain twice, the endpoint hands out two thin role handles:

- TransportSource: a SourceStage that only yields inbound frames
- TransportSink:   a Stage that only forwards outbound frames

Both handles share the endpoint's connection. Each handle holds one
reference while started; the connection is left when the last reference is
released, so the session outlives whichever role stops first.

Outbound sends are serialized through one lock so concurrent writers never
interleave on the underlying connection.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from observability.logger import log_event
from pipeline.errors import TransportError
from pipeline.frames import AudioFrame, Frame, FrameKind
from pipeline.stage import Emit, SourceStage, Stage, StageDescriptor
from transport.base import (
    MembershipEventKind,
    MembershipHandler,
    Participant,
    SessionConnection,
    Unsubscribe,
)


class TransportEndpoint:
    """
    Owner of the shared connection plus its two pipeline-facing handles.
    """

    def __init__(self, connection: SessionConnection, *, session_id: str | None = None) -> None:
        self._connection = connection
        self._session_id = session_id
        self._send_lock = asyncio.Lock()
        self._refs = 0
        self._closed = False

        self.source = TransportSource(self)
        self.sink = TransportSink(self)

    # ------------------------------------------------------------------
    # Session-facing API (used by the controller)
    # ------------------------------------------------------------------

    @property
    def connection(self) -> SessionConnection:
        return self._connection

    @property
    def is_active(self) -> bool:
        return not self._closed and self._connection.is_active

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def participants(self) -> tuple[Participant, ...]:
        return self._connection.participants

    async def join(self) -> None:
        """Join the external session. Raises TransportError."""
        if self._closed:
            raise TransportError("endpoint is closed")
        try:
            await self._connection.join()
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(f"join failed: {exc!r}") from exc

        log_event({
            "event_type": "TRANSPORT_JOINED",
            "session_id": self._session_id,
        })

    def subscribe(self, kind: MembershipEventKind, handler: MembershipHandler) -> Unsubscribe:
        """Membership events go straight to the subscriber, never into the pipeline."""
        return self._connection.subscribe(kind, handler)

    async def send(self, frame: Frame) -> None:
        """
        Forward one outbound frame, one send at a time.

        Raises:
            TransportError if the endpoint is closed or the send fails.
            The endpoint stays usable either way.
        """
        if self._closed:
            raise TransportError("endpoint is closed")

        async with self._send_lock:
            try:
                await self._connection.send(frame)
            except TransportError:
                raise
            except Exception as exc:
                raise TransportError(f"send failed: {exc!r}") from exc

    async def close(self) -> None:
        """
        Leave the session. Idempotent.

        Normally reached through the last release(); also called directly
        when init fails before the handles were ever started.
        """
        if self._closed:
            return
        self._closed = True

        try:
            await self._connection.leave()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "TRANSPORT_LEAVE_FAILED",
                "session_id": self._session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        log_event({
            "event_type": "TRANSPORT_CLOSED",
            "session_id": self._session_id,
        })

    # ------------------------------------------------------------------
    # Reference counting (used by the role handles)
    # ------------------------------------------------------------------

    def acquire(self) -> None:
        if self._closed:
            raise TransportError("endpoint is closed")
        self._refs += 1

    async def release(self) -> None:
        if self._refs == 0:
            return
        self._refs -= 1
        if self._refs == 0:
            await self.close()


class TransportSource(SourceStage):
    """Inbound role: yields frames arriving from the session."""

    descriptor = StageDescriptor.of(produces=(FrameKind.AUDIO,))

    def __init__(self, endpoint: TransportEndpoint) -> None:
        self._endpoint = endpoint
        self._held = False

    async def start(self) -> None:
        self._endpoint.acquire()
        self._held = True

    async def stop(self) -> None:
        if self._held:
            self._held = False
            await self._endpoint.release()

    async def frames(self) -> AsyncIterator[Frame]:
        async for frame in self._endpoint.connection.receive():
            yield frame


class TransportSink(Stage):
    """Outbound role: forwards frames into the session."""

    descriptor = StageDescriptor.of(accepts=(FrameKind.AUDIO,))

    def __init__(self, endpoint: TransportEndpoint) -> None:
        self._endpoint = endpoint
        self._held = False

    async def start(self) -> None:
        self._endpoint.acquire()
        self._held = True

    async def stop(self) -> None:
        if self._held:
            self._held = False
            await self._endpoint.release()

    async def on_audio(self, frame: AudioFrame, emit: Emit) -> None:
        await self._endpoint.send(frame)
