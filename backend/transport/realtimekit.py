"""
RealtimeKit meeting connection over a media bridge WebSocket.

Core model:
- One WebSocket per meeting, opened on join() and closed on leave().
- Binary messages carry PCM16 mono 16kHz audio, both directions.
- Text messages carry JSON notifications from the bridge:
    {"type": "participantJoined", "participant": {"id": "...", "name": "..."}}
    {"type": "participantLeft",   "participant": {"id": "...", "name": "..."}}
  Unknown notification types are logged and ignored.
- Outbound text frames (if a pipeline ever routes text to the sink) are
  sent as {"type": "chat", "text": "..."}.

The bridge owns the meeting protocol itself; this class only adapts it to
SessionConnection.
"""

from __future__ import annotations

import asyncio
import json
import urllib.parse
from typing import Any, AsyncIterator, Callable

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from observability.logger import log_event
from pipeline.errors import TransportError
from pipeline.frames import AudioFrame, Frame
from transport.base import (
    MembershipEvent,
    MembershipEventKind,
    Participant,
    SessionConnection,
)


_NOTIFICATION_KINDS: dict[str, MembershipEventKind] = {
    "participantJoined": MembershipEventKind.PARTICIPANT_JOINED,
    "participantLeft": MembershipEventKind.PARTICIPANT_LEFT,
}


class RealtimeKitConnection(SessionConnection):
    """
    SessionConnection for one RealtimeKit meeting.

    Connection lifecycle:
    - join() connects and starts the receive loop.
    - The receive loop feeds an internal queue that receive() drains, so the
      pipeline can start pumping before the meeting is joined.
    - A closed socket ends receive() and flips is_active to False.
    """

    def __init__(
        self,
        *,
        meeting_id: str,
        auth_token: str,
        bridge_url: str,
        session_id: str | None = None,
        connect: Callable[..., Any] = ws_connect,
    ) -> None:
        super().__init__()
        self._meeting_id = meeting_id
        self._auth_token = auth_token
        self._bridge_url = bridge_url
        self._session_id = session_id
        self._connect = connect

        self._ws: ClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._inbound: asyncio.Queue[Frame | None] = asyncio.Queue()
        self._active = False

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    def _build_url(self) -> str:
        meeting = urllib.parse.quote(self._meeting_id, safe="")
        return f"{self._bridge_url.rstrip('/')}/meetings/{meeting}"

    async def join(self) -> None:
        if self._ws is not None:
            return

        headers = {"Authorization": f"Bearer {self._auth_token}"}
        try:
            self._ws = await self._connect(
                self._build_url(),
                additional_headers=headers,
                max_size=None,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise TransportError(f"could not join meeting {self._meeting_id}: {exc!r}") from exc

        self._active = True
        self._recv_task = asyncio.create_task(self._recv_loop(), name="rtk-recv")

        log_event({
            "event_type": "RTK_CONNECTED",
            "session_id": self._session_id,
            "meeting_id": self._meeting_id,
        })

    async def leave(self) -> None:
        ws = self._ws
        self._ws = None
        self._active = False

        rt = self._recv_task
        self._recv_task = None
        if rt is not None and not rt.done():
            rt.cancel()
            await asyncio.gather(rt, return_exceptions=True)

        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as exc:
                log_event({
                    "event_type": "RTK_CLOSE_FAILED",
                    "session_id": self._session_id,
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })

        # Unblock receive() if it is still waiting
        self._inbound.put_nowait(None)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def send(self, frame: Frame) -> None:
        ws = self._ws
        if ws is None or not self._active:
            raise TransportError("meeting not joined")

        payload: bytes | str
        if isinstance(frame, AudioFrame):
            payload = frame.pcm_bytes
        else:
            payload = json.dumps({"type": "chat", "text": frame.text})

        try:
            await ws.send(payload)
        except ConnectionClosed as exc:
            self._active = False
            raise TransportError(f"meeting connection closed: {exc!r}") from exc
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"send failed: {exc!r}") from exc

    async def receive(self) -> AsyncIterator[Frame]:
        while True:
            frame = await self._inbound.get()
            if frame is None:
                return
            yield frame

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _recv_loop(self) -> None:
        ws = self._ws
        assert ws is not None
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    if message:
                        self._inbound.put_nowait(AudioFrame(pcm_bytes=message))
                else:
                    self._handle_notification(message)
        except ConnectionClosed as exc:
            log_event({
                "event_type": "RTK_CONNECTION_CLOSED",
                "session_id": self._session_id,
                "message": str(exc),
            })
        finally:
            self._active = False
            self._inbound.put_nowait(None)

    def _handle_notification(self, raw: str) -> None:
        try:
            data = json.loads(raw)
            kind = _NOTIFICATION_KINDS.get(data.get("type"))
            if kind is None:
                log_event({
                    "event_type": "RTK_NOTIFICATION_IGNORED",
                    "session_id": self._session_id,
                    "type": data.get("type"),
                })
                return
            p = data["participant"]
            participant = Participant(
                participant_id=str(p["id"]),
                name=str(p.get("name") or p["id"]),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            log_event({
                "event_type": "RTK_NOTIFICATION_MALFORMED",
                "session_id": self._session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            return

        self._publish(MembershipEvent(kind=kind, participant=participant))
