"""
Session lifecycle states.

Rules:
- This enum defines ONLY the lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are owned exclusively by SessionController.
"""

from __future__ import annotations

from enum import Enum


class LifecycleState(str, Enum):
    """
    UNINITIALIZED --init--> INITIALIZING --(pipeline started, meeting joined)-->
    RUNNING --deinit--> DEINITIALIZING --(pipeline stopped)--> TERMINATED

    A failed init returns to UNINITIALIZED.
    """

    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZING = "INITIALIZING"
    RUNNING = "RUNNING"
    DEINITIALIZING = "DEINITIALIZING"
    TERMINATED = "TERMINATED"
