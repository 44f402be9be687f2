"""Ordered build stages.

Stages run strictly in order and the first failure aborts the run:

    bootstrap -> archive -> [embed] -> manifest -> allocate -> partition -> format

The archive is taken before the optional embed step so it never contains
itself. Cleanup of partial outputs is the workspace lifecycle's job; this
module only raises.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from ptux_imagegen.builds.geometry import compute_geometry
from ptux_imagegen.builds.tools import (
    Archiver,
    Bootstrapper,
    CopyIn,
    DpkgManifestGenerator,
    Formatter,
    FsOperation,
    GuestfishFormatter,
    MakeDirectory,
    MakeFilesystem,
    ManifestGenerator,
    Mount,
    MultistrapBootstrapper,
    Partitioner,
    SfdiskPartitioner,
    TarArchiver,
    Unmount,
)
from ptux_imagegen.errors import StageIOError
from ptux_imagegen.types import Stage

if TYPE_CHECKING:
    from ptux_imagegen.builds.workspace import BuildWorkspace
    from ptux_imagegen.config import BuildConfig, Settings

logger = logging.getLogger(__name__)

BOOT_PARTITION = 1
ROOT_PARTITION = 2
BOOT_FSTYPE = "vfat"


@dataclass
class Toolchain:
    """The external collaborators used by the stages."""

    bootstrapper: Bootstrapper
    archiver: Archiver
    manifest_generator: ManifestGenerator
    partitioner: Partitioner
    formatter: Formatter


def default_toolchain(settings: Settings) -> Toolchain:
    """Build the subprocess-backed toolchain from settings."""
    timeout = settings.tool_timeout
    return Toolchain(
        bootstrapper=MultistrapBootstrapper(settings.multistrap_command, timeout),
        archiver=TarArchiver(settings.tar_command, timeout),
        manifest_generator=DpkgManifestGenerator(settings.dpkg_query_command, timeout),
        partitioner=SfdiskPartitioner(settings.sfdisk_command, timeout),
        formatter=GuestfishFormatter(settings.guestfish_command, timeout),
    )


def plan_filesystem(config: BuildConfig, root_dir: Path) -> list[FsOperation]:
    """Plan the format & populate operations for a bootstrapped tree.

    The root partition gets its own copy of /boot before the boot
    partition is mounted over it; the full tree is then copied with the
    boot partition mounted, so both partitions are populated.
    """
    entries = tuple(sorted(root_dir.iterdir()))
    boot_dir = root_dir / "boot"

    ops: list[FsOperation] = [
        MakeFilesystem(BOOT_PARTITION, BOOT_FSTYPE),
        MakeFilesystem(ROOT_PARTITION, config.rootfs_type),
        Mount(ROOT_PARTITION, "/"),
        MakeDirectory("/boot"),
    ]
    if boot_dir.is_dir():
        ops.append(CopyIn((boot_dir,), "/"))
    ops.append(Mount(BOOT_PARTITION, "/boot"))
    if entries:
        ops.append(CopyIn(entries, "/"))
    ops.extend([Unmount("/boot"), Unmount("/")])
    return ops


def allocate_image(path: Path, size_bytes: int) -> None:
    """Create a sparse image file of the given size.

    Raises:
        StageIOError: If the file exists or cannot be created.
    """
    try:
        with path.open("xb") as f:
            f.truncate(size_bytes)
    except OSError as e:
        raise StageIOError(
            f"Failed to allocate image {path}: {e}",
            stage=Stage.ALLOCATE,
        ) from e


def _embed_archive(archive_path: Path, root_dir: Path) -> None:
    try:
        shutil.copy2(archive_path, root_dir / archive_path.name)
    except OSError as e:
        raise StageIOError(
            f"Failed to embed {archive_path} into {root_dir}: {e}",
            stage=Stage.EMBED,
        ) from e


def _write_manifest(manifest_path: Path, text: str) -> None:
    try:
        with manifest_path.open("x", encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        raise StageIOError(
            f"Failed to write manifest {manifest_path}: {e}",
            stage=Stage.MANIFEST,
        ) from e


def run_stages(
    config: BuildConfig,
    workspace: BuildWorkspace,
    toolchain: Toolchain,
) -> list[Stage]:
    """Run every build stage in order.

    Args:
        config: Resolved build configuration.
        workspace: Allocated workspace.
        toolchain: Collaborators to invoke.

    Returns:
        The stages that ran, in order.

    Raises:
        ExternalToolError: If a tool fails.
        StageIOError: If a filesystem operation fails.
    """
    completed: list[Stage] = []
    root_dir = workspace.root_dir
    geometry = compute_geometry(config)

    def _start(stage: Stage) -> None:
        logger.info("Stage %d: %s", len(completed) + 1, stage.value)

    _start(Stage.BOOTSTRAP)
    toolchain.bootstrapper.bootstrap(workspace.config_file, root_dir)
    completed.append(Stage.BOOTSTRAP)

    _start(Stage.ARCHIVE)
    toolchain.archiver.archive(root_dir, config.archive_path)
    completed.append(Stage.ARCHIVE)

    if config.embed_archive:
        _start(Stage.EMBED)
        _embed_archive(config.archive_path, root_dir)
        completed.append(Stage.EMBED)

    _start(Stage.MANIFEST)
    _write_manifest(config.manifest_path, toolchain.manifest_generator.generate(root_dir))
    completed.append(Stage.MANIFEST)

    _start(Stage.ALLOCATE)
    allocate_image(config.output_image, geometry.image_size_bytes)
    logger.info(
        "Allocated %s (%d bytes)", config.output_image, os.path.getsize(config.output_image)
    )
    completed.append(Stage.ALLOCATE)

    _start(Stage.PARTITION)
    toolchain.partitioner.write_table(config.output_image, geometry.partitions)
    completed.append(Stage.PARTITION)

    _start(Stage.FORMAT)
    toolchain.formatter.apply(config.output_image, plan_filesystem(config, root_dir))
    completed.append(Stage.FORMAT)

    return completed


__all__ = [
    "Toolchain",
    "allocate_image",
    "default_toolchain",
    "plan_filesystem",
    "run_stages",
]
