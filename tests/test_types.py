"""Tests for shared types and the error taxonomy."""

import signal

from ptux_imagegen.errors import (
    BuildInterruptedError,
    ConfigurationError,
    ExternalToolError,
    ImageGenError,
    StageIOError,
)
from ptux_imagegen.types import InvocationMode, RunState, Stage


class TestEnums:
    """Test enum definitions."""

    def test_run_state_values(self) -> None:
        assert [s.value for s in RunState] == [
            "idle",
            "workspace_allocated",
            "stages_running",
            "succeeded",
            "failed",
            "interrupted",
            "torn_down",
        ]

    def test_invocation_mode_values(self) -> None:
        assert InvocationMode("standalone") is InvocationMode.STANDALONE
        assert InvocationMode("helper") is InvocationMode.HELPER

    def test_stage_order(self) -> None:
        assert [s.value for s in Stage] == [
            "bootstrap",
            "archive",
            "embed",
            "manifest",
            "allocate",
            "partition",
            "format",
        ]


class TestErrors:
    """Test error taxonomy."""

    def test_hierarchy(self) -> None:
        for cls in (ConfigurationError, StageIOError, ExternalToolError):
            assert issubclass(cls, ImageGenError)
        assert issubclass(BuildInterruptedError, ImageGenError)

    def test_codes(self) -> None:
        assert ConfigurationError("bad").code == "configuration_error"
        assert StageIOError("bad").code == "io_error"
        assert ExternalToolError("bad", tool="tar").code == "tool_failed"

    def test_stage_io_error_carries_stage(self) -> None:
        err = StageIOError("disk full", stage=Stage.ALLOCATE)
        assert err.stage is Stage.ALLOCATE

    def test_external_tool_error_surfaces_output(self) -> None:
        err = ExternalToolError(
            "sfdisk failed with exit code 1",
            tool="sfdisk",
            exit_code=1,
            output="sfdisk: cannot open ptux.img\n",
        )
        assert str(err) == "sfdisk failed with exit code 1\nsfdisk: cannot open ptux.img"

    def test_external_tool_error_without_output(self) -> None:
        err = ExternalToolError("tar failed", tool="tar")
        assert str(err) == "tar failed"

    def test_interrupted_exit_status(self) -> None:
        err = BuildInterruptedError(signal.SIGINT)
        assert err.exit_status == 130
        assert "SIGINT" in err.message
        assert err.code == "interrupted"
