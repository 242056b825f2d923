"""
Backend latency measurement.

Every call a stage makes to an inference backend is wrapped in timed().
One call produces exactly one METRIC_TIMER event, whether it succeeded or
raised; nothing is aggregated in-process.

Event shape:
    {
      "event_type": "METRIC_TIMER",
      "metric": "stt_backend_ms",
      "value_ms": 412,
      "ok": true,
      "session_id": "...",
      "stage": "stt",
      "details": {...}
    }

Durations come from perf_counter_ns (monotonic); ts_ms is wall clock and is
added by the logger.
"""

from __future__ import annotations

import itertools
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from observability.logger import log_event


@dataclass
class Measurement:
    """One in-flight backend call."""
    metric: str
    session_id: str | None
    stage: str | None
    details: dict[str, Any] = field(default_factory=dict)
    started_ns: int = field(default_factory=time.perf_counter_ns)


_ids = itertools.count(1)
_in_flight: dict[int, Measurement] = {}


def begin(
    metric: str,
    *,
    session_id: str | None = None,
    stage: str | None = None,
    details: dict[str, Any] | None = None,
) -> int:
    """
    Open a measurement and return its token.

    Prefer timed(); a token from begin() must reach end() in a finally block.
    """
    token = next(_ids)
    _in_flight[token] = Measurement(
        metric=metric,
        session_id=session_id,
        stage=stage,
        details=dict(details or {}),
    )
    return token


def end(token: int, *, ok: bool = True) -> int | None:
    """
    Close a measurement and emit it.

    Returns the duration in ms, or None for an unknown (or already closed)
    token.
    """
    m = _in_flight.pop(token, None)
    if m is None:
        return None

    value_ms = (time.perf_counter_ns() - m.started_ns) // 1_000_000
    log_event({
        "event_type": "METRIC_TIMER",
        "metric": m.metric,
        "value_ms": value_ms,
        "ok": ok,
        "session_id": m.session_id,
        "stage": m.stage,
        "details": m.details,
    })
    return value_ms


def in_flight() -> int:
    """Measurements opened but not yet closed."""
    return len(_in_flight)


@contextmanager
def timed(
    metric: str,
    *,
    session_id: str | None = None,
    stage: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure the enclosed block.

    Yields the event's details dict so the caller can record facts only
    known after the call (result sizes and the like):

        with timed("tts_backend_ms", session_id=sid, stage="tts") as info:
            audio = await client.run_audio(model, payload)
            info["bytes"] = len(audio)

    An exception inside the block is re-raised after the event is emitted
    with ok=False.
    """
    token = begin(metric, session_id=session_id, stage=stage, details=details)
    ok = False
    try:
        yield _in_flight[token].details
        ok = True
    finally:
        end(token, ok=ok)
