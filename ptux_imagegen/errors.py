"""Error taxonomy for image builds.

Every failure surfaced by the pipeline is one of:

- ConfigurationError: bad or missing parameters, pre-existing outputs,
  unreadable template. Raised before any side effect.
- StageIOError: a filesystem operation (create, copy, truncate) failed.
- ExternalToolError: an invoked tool exited non-zero, timed out or could
  not be started.
- BuildInterruptedError: the run received a termination signal.

Each carries a stable ``code`` for programmatic handling.
"""

from __future__ import annotations

import signal

from ptux_imagegen.types import Stage


class ImageGenError(Exception):
    """Base error for image generation."""

    def __init__(self, message: str, code: str = "imagegen_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(ImageGenError):
    """Raised when build parameters cannot be resolved or validated."""

    def __init__(self, message: str, code: str = "configuration_error") -> None:
        super().__init__(message, code=code)


class StageIOError(ImageGenError):
    """Raised when a filesystem operation inside a stage fails."""

    def __init__(
        self,
        message: str,
        stage: Stage | None = None,
        code: str = "io_error",
    ) -> None:
        super().__init__(message, code=code)
        self.stage = stage


class ExternalToolError(ImageGenError):
    """Raised when an external tool fails or cannot be run."""

    def __init__(
        self,
        message: str,
        tool: str,
        exit_code: int | None = None,
        output: str = "",
        code: str = "tool_failed",
    ) -> None:
        super().__init__(message, code=code)
        self.tool = tool
        self.exit_code = exit_code
        self.output = output

    def __str__(self) -> str:
        if not self.output.strip():
            return self.message
        return f"{self.message}\n{self.output.rstrip()}"


class BuildInterruptedError(ImageGenError):
    """Raised from a signal handler when the run is interrupted."""

    def __init__(self, signum: int) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        super().__init__(f"Build interrupted by {name}", code="interrupted")
        self.signum = signum

    @property
    def exit_status(self) -> int:
        """Conventional shell exit status for a signal-terminated process."""
        return 128 + self.signum


__all__ = [
    "BuildInterruptedError",
    "ConfigurationError",
    "ExternalToolError",
    "ImageGenError",
    "StageIOError",
]
