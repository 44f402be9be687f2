"""Build service module.

This module provides the high-level build API:
- build_image(): Main entry point - allocate workspace, run stages, tear down

Either all three artifacts (image, archive, manifest) are produced, or
none is left behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from ptux_imagegen.builds.pipeline import Toolchain, default_toolchain, run_stages
from ptux_imagegen.builds.workspace import BuildWorkspace, build_workspace
from ptux_imagegen.config import load_settings
from ptux_imagegen.types import InvocationMode, Stage

if TYPE_CHECKING:
    from ptux_imagegen.config import BuildConfig, Settings

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Result of a successful image build.

    Attributes:
        image_path: Partitioned disk image.
        archive_path: Compressed root filesystem archive.
        manifest_path: Installed package listing.
        stages: Stages that ran, in order.
        started_at: Build start time.
        finished_at: Build finish time.
        workspace: Workspace left for the caller (helper invocations only).
    """

    image_path: Path
    archive_path: Path
    manifest_path: Path
    started_at: datetime
    finished_at: datetime
    stages: list[Stage] = field(default_factory=list)
    workspace: BuildWorkspace | None = None

    @property
    def artifact_paths(self) -> tuple[Path, Path, Path]:
        return (self.image_path, self.archive_path, self.manifest_path)


def build_image(
    config: BuildConfig,
    toolchain: Toolchain | None = None,
    settings: Settings | None = None,
    mode: InvocationMode | None = None,
) -> BuildResult:
    """Build the disk image, archive and manifest for a configuration.

    Args:
        config: Resolved build configuration.
        toolchain: Collaborators; subprocess adapters from settings if None.
        settings: Application settings (tool commands, tmp_dir, mode).
        mode: Invocation mode; overrides settings.invocation_mode.

    Returns:
        BuildResult describing the retained artifacts.

    Raises:
        StageIOError: If a filesystem operation fails.
        ExternalToolError: If an external tool fails.
        BuildInterruptedError: If the run is interrupted by a signal.
    """
    if settings is None:
        settings = load_settings()
    if toolchain is None:
        toolchain = default_toolchain(settings)
    if mode is None:
        mode = settings.invocation_mode

    logger.info(
        "Building %s for %s (%s, %s, %d MB)",
        config.output_image,
        config.target_package,
        config.distribution_codename,
        config.rootfs_type,
        config.filesystem_size_mb,
    )
    started_at = datetime.now(timezone.utc)

    with build_workspace(config, mode=mode, tmp_dir=settings.tmp_dir) as lifecycle:
        workspace = lifecycle.active_workspace
        stages = run_stages(config, workspace, toolchain)
        kept = workspace if lifecycle.keeps_workspace else None

    finished_at = datetime.now(timezone.utc)
    duration = (finished_at - started_at).total_seconds()
    logger.info("Build of %s succeeded in %.1fs", config.output_image, duration)

    return BuildResult(
        image_path=config.output_image,
        archive_path=config.archive_path,
        manifest_path=config.manifest_path,
        started_at=started_at,
        finished_at=finished_at,
        stages=stages,
        workspace=kept,
    )


__all__ = ["BuildResult", "build_image"]
