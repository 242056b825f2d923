# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any

import pytest
from websockets.exceptions import ConnectionClosedOK, InvalidURI

from fakes import wait_until
from pipeline.errors import TransportError
from pipeline.frames import AudioFrame, Frame, TextFrame
from transport.base import MembershipEvent, MembershipEventKind
from transport.realtimekit import RealtimeKitConnection


class FakeWebSocket:
    """Async-iterable stand-in for a websockets ClientConnection."""

    def __init__(self) -> None:
        self.sent: list[Any] = []
        self.closed = False
        self.fail_send = False
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    def push(self, message: Any) -> None:
        self._incoming.put_nowait(message)

    def hang_up(self) -> None:
        self._incoming.put_nowait(None)

    async def send(self, payload: Any) -> None:
        if self.fail_send:
            raise ConnectionClosedOK(None, None)
        self.sent.append(payload)

    async def close(self) -> None:
        self.closed = True
        self.hang_up()

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


class FakeConnect:
    def __init__(self, ws: FakeWebSocket | None = None, error: Exception | None = None) -> None:
        self.ws = ws or FakeWebSocket()
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.ws


def make_conn(connect: FakeConnect) -> RealtimeKitConnection:
    return RealtimeKitConnection(
        meeting_id="bbb/123",
        auth_token="tok",
        bridge_url="wss://bridge.test/",
        session_id="bbb/123",
        connect=connect,
    )


def test_join_dials_meeting_url_with_bearer_token():
    async def run() -> None:
        connect = FakeConnect()
        conn = make_conn(connect)

        await conn.join()
        assert conn.is_active

        url, kwargs = connect.calls[0]
        assert url == "wss://bridge.test/meetings/bbb%2F123"
        assert kwargs["additional_headers"] == {"Authorization": "Bearer tok"}
        await conn.leave()
        assert connect.ws.closed
        assert not conn.is_active

    asyncio.run(run())


def test_join_failure_raises_transport_error():
    async def run() -> None:
        conn = make_conn(FakeConnect(error=InvalidURI("nope", "bad uri")))
        with pytest.raises(TransportError):
            await conn.join()
        assert not conn.is_active

    asyncio.run(run())


def test_binary_messages_become_audio_frames():
    async def run() -> None:
        connect = FakeConnect()
        conn = make_conn(connect)
        await conn.join()

        connect.ws.push(b"\x01\x02")
        connect.ws.push(b"")
        connect.ws.push(b"\x03\x04")
        connect.ws.hang_up()

        frames: list[Frame] = [frame async for frame in conn.receive()]
        assert [f.pcm_bytes for f in frames] == [b"\x01\x02", b"\x03\x04"]  # type: ignore[union-attr]
        assert not conn.is_active

    asyncio.run(run())


def test_notifications_update_roster_and_publish():
    async def run() -> None:
        connect = FakeConnect()
        conn = make_conn(connect)
        seen: list[MembershipEvent] = []
        conn.subscribe(MembershipEventKind.PARTICIPANT_JOINED, seen.append)
        conn.subscribe(MembershipEventKind.PARTICIPANT_LEFT, seen.append)
        await conn.join()

        connect.ws.push(json.dumps({"type": "participantJoined", "participant": {"id": "p1", "name": "Ada"}}))
        connect.ws.push(json.dumps({"type": "recordingStarted"}))
        connect.ws.push("{not json")
        connect.ws.push(json.dumps({"type": "participantJoined", "participant": {"id": "p2"}}))
        await wait_until(lambda: len(seen) == 2)
        assert {p.name for p in conn.participants} == {"Ada", "p2"}

        connect.ws.push(json.dumps({"type": "participantLeft", "participant": {"id": "p1", "name": "Ada"}}))
        await wait_until(lambda: len(seen) == 3)

        assert [e.kind for e in seen] == [
            MembershipEventKind.PARTICIPANT_JOINED,
            MembershipEventKind.PARTICIPANT_JOINED,
            MembershipEventKind.PARTICIPANT_LEFT,
        ]
        assert [p.participant_id for p in conn.participants] == ["p2"]
        await conn.leave()

    asyncio.run(run())


def test_send_audio_as_binary_and_text_as_chat():
    async def run() -> None:
        connect = FakeConnect()
        conn = make_conn(connect)
        await conn.join()

        await conn.send(AudioFrame(pcm_bytes=b"\x09\x00"))
        await conn.send(TextFrame(text="hello"))

        assert connect.ws.sent[0] == b"\x09\x00"
        assert json.loads(connect.ws.sent[1]) == {"type": "chat", "text": "hello"}
        await conn.leave()

    asyncio.run(run())


def test_send_before_join_or_after_close_fails():
    async def run() -> None:
        connect = FakeConnect()
        conn = make_conn(connect)

        with pytest.raises(TransportError):
            await conn.send(AudioFrame(pcm_bytes=b"\x00"))

        await conn.join()
        connect.ws.fail_send = True
        with pytest.raises(TransportError):
            await conn.send(AudioFrame(pcm_bytes=b"\x00"))
        assert not conn.is_active
        await conn.leave()

    asyncio.run(run())


def test_leave_is_idempotent():
    async def run() -> None:
        conn = make_conn(FakeConnect())
        await conn.leave()
        await conn.join()
        await conn.leave()
        await conn.leave()
        assert not conn.is_active

    asyncio.run(run())
