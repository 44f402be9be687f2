"""Shared type definitions for ptux_imagegen.

This module contains enums and dataclasses shared across subpackages
to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class RunState(str, Enum):
    """Lifecycle state of a single image build run."""

    IDLE = "idle"
    WORKSPACE_ALLOCATED = "workspace_allocated"
    STAGES_RUNNING = "stages_running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INTERRUPTED = "interrupted"
    TORN_DOWN = "torn_down"


class InvocationMode(str, Enum):
    """How this run was invoked.

    A helper run is started by another orchestrating process that wants
    to reuse the bootstrapped root directory and templated config, so the
    workspace survives teardown.
    """

    STANDALONE = "standalone"
    HELPER = "helper"


class Stage(str, Enum):
    """Build stages, in execution order."""

    BOOTSTRAP = "bootstrap"
    ARCHIVE = "archive"
    EMBED = "embed"
    MANIFEST = "manifest"
    ALLOCATE = "allocate"
    PARTITION = "partition"
    FORMAT = "format"


@dataclass
class ArtifactInfo:
    """Information about a retained build artifact."""

    filename: str
    path: str
    size_bytes: int
    sha256: str
    kind: str


__all__ = [
    "ArtifactInfo",
    "InvocationMode",
    "RunState",
    "Stage",
]
