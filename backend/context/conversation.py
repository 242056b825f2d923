"""
Conversation context management.

Responsibilities:
- Store ordered user/assistant turns for one session
- Enforce truncation rules:
  - Max MAX_CONTEXT_TURNS turns OR max MAX_CONTEXT_CHARS characters
    (whichever is hit first)
  - Drop oldest turns until constraints are satisfied
  - Allow a single oversized turn (with warning)
- Render chat messages for the text processor

Non-responsibilities:
- No backend calls
- No prompt authoring
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Literal

from constants import MAX_CONTEXT_CHARS, MAX_CONTEXT_TURNS
from observability.logger import log_event


Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class Turn:
    """Single conversation turn."""
    role: Role
    text: str
    turn_id: int


class ConversationContext:
    """
    Bounded, chronological turn history owned by the text processor stage.

    Invariants:
    - Turns are stored in chronological order
    - turn_id is monotonic; ids of dropped turns are never reused
    - _chars always equals the summed length of the stored turns
    """

    def __init__(
        self,
        session_id: str | None = None,
        *,
        max_turns: int = MAX_CONTEXT_TURNS,
        max_chars: int = MAX_CONTEXT_CHARS,
    ) -> None:
        self._session_id = session_id
        self._max_turns = max_turns
        self._max_chars = max_chars
        self._turns: Deque[Turn] = deque()
        self._chars = 0
        self._next_turn_id = 0

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def char_count(self) -> int:
        return self._chars

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add(self, role: Role, text: str) -> Turn:
        """Append a turn, then drop from the front until within limits."""
        turn = Turn(role=role, text=text, turn_id=self._next_turn_id)
        self._next_turn_id += 1
        self._turns.append(turn)
        self._chars += len(text)

        while len(self._turns) > 1 and self._over_limit():
            self._drop_oldest()

        if self._over_limit():
            log_event({
                "event_type": "CONTEXT_SINGLE_TURN_OVERSIZED",
                "session_id": self._session_id,
                "turn_id": turn.turn_id,
                "char_count": len(text),
            })
        return turn

    def clear(self) -> None:
        self._turns.clear()
        self._chars = 0

    def messages(self, system_prompt: str | None = None) -> list[dict[str, str]]:
        """
        Chat messages for an OpenAI-style completion call, oldest first,
        led by a system message when a prompt is given.
        """
        head = [{"role": "system", "content": system_prompt}] if system_prompt else []
        return head + [{"role": t.role, "content": t.text} for t in self._turns]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _over_limit(self) -> bool:
        return len(self._turns) > self._max_turns or self._chars > self._max_chars

    def _drop_oldest(self) -> None:
        dropped = self._turns.popleft()
        self._chars -= len(dropped.text)
        log_event({
            "event_type": "CONTEXT_TURN_DROPPED",
            "session_id": self._session_id,
            "turn_id": dropped.turn_id,
            "role": dropped.role,
            "char_count": len(dropped.text),
        })
