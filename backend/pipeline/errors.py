"""
Pipeline error taxonomy.

- ValidationError: malformed construction or injection, rejected up front
- StageProcessingError: one frame failed inside one stage, recovered locally
- TransportError: send/receive/join failure on the live session
- LifecycleError: operation not valid in the current lifecycle state
"""

from __future__ import annotations

from pipeline.frames import FrameKind


class PipelineError(Exception):
    """Base class for all pipeline errors."""


# -------------------------
# Validation
# -------------------------

class ValidationError(PipelineError):
    """Pipeline construction or injection request is malformed."""


class PipelineTooShort(ValidationError):
    """Fewer stages than a source and a sink."""

    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(f"pipeline needs at least {minimum} stages, got {length}")
        self.length = length
        self.minimum = minimum


class InvalidStageIndex(ValidationError):
    """A stage index does not point where the caller says it does."""


class IncompatibleStageChain(ValidationError):
    """
    An adjacent pair of stages cannot be wired.

    upstream_index is the position of the producing stage; the consuming
    stage sits at upstream_index + 1.
    """

    def __init__(
        self,
        *,
        upstream_index: int,
        upstream: str,
        downstream: str,
        produces: frozenset[FrameKind],
        accepts: frozenset[FrameKind],
    ) -> None:
        super().__init__(
            f"stage {upstream_index} ({upstream}) produces "
            f"{sorted(k.value for k in produces)} but stage {upstream_index + 1} "
            f"({downstream}) accepts {sorted(k.value for k in accepts)}"
        )
        self.upstream_index = upstream_index
        self.upstream = upstream
        self.downstream = downstream
        self.produces = produces
        self.accepts = accepts


class IncompatibleFrame(ValidationError):
    """A frame was offered to a stage that does not accept its kind."""


# -------------------------
# Runtime
# -------------------------

class StageProcessingError(PipelineError):
    """
    A single frame's transformation failed.

    The frame is dropped; the stage keeps accepting subsequent frames.
    """

    def __init__(self, *, stage: str, frame_kind: FrameKind, cause: BaseException) -> None:
        super().__init__(f"{stage} failed on {frame_kind.value} frame: {cause!r}")
        self.stage = stage
        self.frame_kind = frame_kind
        self.cause = cause


class BackendError(PipelineError):
    """An inference backend answered with an error."""

    def __init__(self, backend: str, status_code: int, detail: str = "") -> None:
        super().__init__(f"{backend} returned HTTP {status_code}: {detail[:200]}")
        self.backend = backend
        self.status_code = status_code


class TransportError(PipelineError):
    """Send/receive/join failure on the live external session."""


# -------------------------
# Lifecycle
# -------------------------

class LifecycleError(PipelineError):
    """Operation rejected in the current lifecycle state. No side effects."""


class AlreadyStarted(LifecycleError):
    """Pipeline.start() called more than once."""


class PipelineNotRunning(LifecycleError):
    """Frame injection attempted while the pipeline is not running."""


class AlreadyInitialized(LifecycleError):
    """Session controller init() called outside UNINITIALIZED."""


class InvalidAuthToken(LifecycleError):
    """init() called without a usable meeting auth token."""
