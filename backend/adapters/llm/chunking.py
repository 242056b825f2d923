"""
Pure sentence splitting for streamed replies.

Streamed LLM deltas are accumulated in a buffer; whenever the buffer holds
one or more complete sentences they are split off and sent downstream so
speech synthesis can start before the reply is finished.

This module contains NO side effects and NO timing primitives.

Rules:
- A sentence ends at a break char followed by whitespace. A break char at
  the very end of the buffer only counts when final=True (the next delta
  could still turn "3." into "3.5").
- Sentences shorter than REPLY_MIN_SENTENCE_CHARS are merged into the next
  one, so "Hi." is not synthesized on its own.
- Text with no boundary is force-split once it exceeds REPLY_HARD_CAP_CHARS,
  preferring the last space before the cap.
- No empty sentences are ever returned.
"""

from __future__ import annotations

from constants import (
    REPLY_HARD_CAP_CHARS,
    REPLY_MIN_SENTENCE_CHARS,
    REPLY_SENTENCE_BREAK_CHARS,
)


def split_sentences(buffer: str, *, final: bool = False) -> tuple[list[str], str]:
    """
    Split complete sentences off the front of `buffer`.

    Returns:
        (sentences, remainder). Sentences are stripped; remainder is the raw
        unsent tail (empty when final=True).
    """
    sentences: list[str] = []
    start = 0
    n = len(buffer)

    for i, ch in enumerate(buffer):
        if ch not in REPLY_SENTENCE_BREAK_CHARS:
            continue
        at_end = i + 1 == n
        if at_end and not final:
            continue
        if not at_end and not buffer[i + 1].isspace():
            continue

        candidate = buffer[start:i + 1].strip()
        if len(candidate) >= REPLY_MIN_SENTENCE_CHARS:
            sentences.append(candidate)
            start = i + 1

    remainder = buffer[start:]

    while len(remainder.strip()) > REPLY_HARD_CAP_CHARS:
        remainder = remainder.lstrip()
        cut = remainder.rfind(" ", 0, REPLY_HARD_CAP_CHARS)
        if cut <= 0:
            cut = REPLY_HARD_CAP_CHARS
        sentences.append(remainder[:cut].strip())
        remainder = remainder[cut:]

    if final:
        tail = remainder.strip()
        if tail:
            sentences.append(tail)
        remainder = ""

    return sentences, remainder
