"""
Session transport contract.

This module defines the boundary to the conferencing layer. The wire format
is owned by the concrete connection; nothing here knows about sockets.

Key invariants:
- One connection per session, shared by the source and sink roles
  (see transport.endpoint).
- Membership notifications are NOT frames. They are delivered to
  subscribers directly and never enter the pipeline.
- send() failures raise TransportError and leave the connection object
  usable (a later send may succeed, or fail again if the session is gone).
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable

from observability.logger import log_event
from pipeline.frames import Frame


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class MembershipEventKind(str, Enum):
    """Roster changes the conferencing layer reports."""

    PARTICIPANT_JOINED = "PARTICIPANT_JOINED"
    PARTICIPANT_LEFT = "PARTICIPANT_LEFT"


@dataclass(frozen=True)
class Participant:
    """A remote participant as reported by the meeting."""
    participant_id: str
    name: str


@dataclass(frozen=True)
class MembershipEvent:
    """One roster change."""
    kind: MembershipEventKind
    participant: Participant
    ts_ms: int = field(default_factory=_now_ms)


MembershipHandler = Callable[[MembershipEvent], None]
Unsubscribe = Callable[[], None]


class SessionConnection(ABC):
    """
    Abstract live-session connection.

    Implementations are responsible for:
    - Joining and leaving the external session
    - Yielding inbound frames from receive()
    - Writing outbound frames in send()
    - Calling _publish() for every membership notification

    The participant roster is kept here, updated from the published events.

    Non-responsibilities:
    - No serialization of concurrent sends (the endpoint does that)
    - No pipeline knowledge
    """

    def __init__(self) -> None:
        self._handlers: dict[MembershipEventKind, list[MembershipHandler]] = {
            kind: [] for kind in MembershipEventKind
        }
        self._roster: dict[str, Participant] = {}

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @abstractmethod
    async def join(self) -> None:
        """Join the external session. Raises TransportError on failure."""
        raise NotImplementedError

    @abstractmethod
    async def leave(self) -> None:
        """
        Leave the session and release the underlying connection.

        MUST be idempotent and MUST NOT raise for an already-closed session.
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def is_active(self) -> bool:
        """True while the external session is joined and usable."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    @abstractmethod
    async def send(self, frame: Frame) -> None:
        """Write one outbound frame. Raises TransportError on failure."""
        raise NotImplementedError

    @abstractmethod
    def receive(self) -> AsyncIterator[Frame]:
        """
        Continuous feed of inbound frames.

        Ends when the session ends. Raises TransportError on receive failure.
        """
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Membership events
    # ------------------------------------------------------------------

    @property
    def participants(self) -> tuple[Participant, ...]:
        """Current roster, in join order."""
        return tuple(self._roster.values())

    def subscribe(self, kind: MembershipEventKind, handler: MembershipHandler) -> Unsubscribe:
        """
        Register a handler for one event kind.

        Returns a callable that removes the handler; calling it twice is safe.
        """
        handlers = self._handlers[kind]
        handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return _unsubscribe

    def _publish(self, event: MembershipEvent) -> None:
        """
        Record the roster change, then deliver the event to every subscriber
        of its kind.

        A failing handler is logged and skipped; it never stops delivery to
        the remaining handlers or breaks the caller's receive loop.
        """
        participant = event.participant
        if event.kind is MembershipEventKind.PARTICIPANT_JOINED:
            self._roster[participant.participant_id] = participant
        else:
            self._roster.pop(participant.participant_id, None)

        for handler in list(self._handlers[event.kind]):
            try:
                handler(event)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "MEMBERSHIP_HANDLER_FAILED",
                    "kind": event.kind.value,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })
