"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests, swappable later)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_json_lines: bool = True


def configure(*, json_lines: bool) -> None:
    """
    Select the line format.

    json_lines=False switches to a `EVENT_TYPE key=value ...` line, which is
    easier to read in a terminal during local development.
    """
    global _json_lines  # pylint: disable=global-statement
    _json_lines = json_lines


def _format_plain(event: Mapping[str, Any]) -> str:
    head = str(event.get("event_type", "EVENT"))
    parts = [
        f"{key}={value!r}"
        for key, value in event.items()
        if key != "event_type"
    ]
    return " ".join([head, *parts])


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single event line to stdout.

    The caller is responsible for:
    - Supplying a fully-formed event dict
    - Including event_type, session_id, stage, etc.

    This function:
    - Adds ts_ms if the caller did not
    - Serializes to JSON
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    if "ts_ms" not in event:
        event = {"ts_ms": time.time_ns() // 1_000_000, **event}

    if not _json_lines:
        _print(_format_plain(event))
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback, logging must never crash the pipeline
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
