# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger, metrics


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_json_lines", True)
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    payload: dict[str, Any] = {
        "ts_ms": 1,
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    assert json.loads(captured[0]) == payload


def test_log_event_adds_timestamp(captured: list[str]) -> None:
    logger.log_event({"event_type": "TEST"})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "TEST"
    assert isinstance(decoded["ts_ms"], int)


def test_unserializable_event_falls_back(captured: list[str]) -> None:
    logger.log_event({"event_type": "TEST", "blob": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert "blob" in decoded["original_event_repr"]


def test_plain_format(captured: list[str], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logger, "_json_lines", False)

    logger.log_event({"ts_ms": 5, "event_type": "PIPELINE_STARTED", "session_id": "m1"})

    assert captured == ["PIPELINE_STARTED ts_ms=5 session_id='m1'"]


# ---------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------

def test_timed_emits_one_metric(captured: list[str]) -> None:
    with metrics.timed("stt_backend_ms", session_id="m1", stage="stt", details={"n": 1}) as info:
        info["chars"] = 12

    assert len(captured) == 1
    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "METRIC_TIMER"
    assert decoded["metric"] == "stt_backend_ms"
    assert decoded["ok"] is True
    assert decoded["session_id"] == "m1"
    assert decoded["stage"] == "stt"
    assert decoded["details"] == {"n": 1, "chars": 12}
    assert decoded["value_ms"] >= 0


def test_timed_reports_failure_and_never_leaks(captured: list[str]) -> None:
    before = metrics.in_flight()

    with pytest.raises(RuntimeError):
        with metrics.timed("tts_backend_ms"):
            raise RuntimeError("boom")

    assert metrics.in_flight() == before
    decoded = json.loads(captured[0])
    assert decoded["metric"] == "tts_backend_ms"
    assert decoded["ok"] is False


def test_end_is_single_shot(captured: list[str]) -> None:
    token = metrics.begin("llm_backend_ms")
    assert metrics.end(token) is not None
    assert metrics.end(token) is None
    assert len(captured) == 1
