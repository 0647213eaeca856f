# histeq/errors.py
from __future__ import annotations
from typing import List, Optional


class EqualizationError(Exception):
    """Base class for every failure raised by the equalization core."""


class InputError(EqualizationError):
    """The image cannot be equalized (channel count, geometry or sample type)."""


class BackendError(EqualizationError):
    """
    Raised when the compute backend rejects an allocation, a transfer
    or a kernel launch.

    Args:
        operation: Backend primitive that failed ("allocate", "write", ...).
        message: Diagnostic text reported by the backend.
        code: Backend error code (torch exception class name).
    """

    def __init__(self, operation: str, message: str, code: Optional[str] = None):
        self.operation = operation
        self.message = message
        self.code = code
        detail = f"{operation} failed: {message}"
        if code:
            detail = f"{detail} [{code}]"
        super().__init__(detail)


class CompileError(EqualizationError):
    """The kernel program failed to build. The build log is kept verbatim."""

    def __init__(self, build_log: str):
        self.build_log = build_log
        super().__init__(f"Kernel program build failed:\n{build_log}")


class StageError(EqualizationError):
    """One channel pipeline aborted while running *stage*."""

    def __init__(self, channel: str, stage: str, cause: Exception):
        self.channel = channel
        self.stage = stage
        self.cause = cause
        super().__init__(f"channel {channel!r} failed in stage {stage!r}: {cause}")


class PipelineError(EqualizationError):
    """
    The image as a whole failed. Holds one StageError per failed channel;
    no partial output is ever attached.
    """

    def __init__(self, failures: List[StageError]):
        if not failures:
            raise ValueError("PipelineError needs at least one failure")
        self.failures = list(failures)
        lines = "; ".join(str(f) for f in self.failures)
        super().__init__(f"Equalization failed: {lines}")

    @property
    def stage(self) -> str:
        return self.failures[0].stage

    @property
    def channel(self) -> str:
        return self.failures[0].channel
