"""Disk geometry for the two-partition SD-card layout."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ptux_imagegen.config import BuildConfig

BYTES_PER_MB = 1024 * 1024

# MBR partition type codes
FAT32_LBA_TYPE = "c"
LINUX_TYPE = "83"


@dataclass(frozen=True)
class PartitionSpec:
    """One partition table entry.

    Attributes:
        size: Size in partition table writer units, or None for the remainder.
        type_code: MBR partition type code.
        bootable: Whether the bootable flag is set.
    """

    size: int | None
    type_code: str
    bootable: bool = False


@dataclass(frozen=True)
class DiskGeometry:
    """Image size and ordered partition table."""

    image_size_bytes: int
    partitions: tuple[PartitionSpec, ...]


def image_size_bytes(filesystem_size_mb: int) -> int:
    """Convert the filesystem size to the image allocation size in bytes."""
    return filesystem_size_mb * BYTES_PER_MB


def compute_geometry(config: BuildConfig) -> DiskGeometry:
    """Compute the image geometry for a build.

    The boot partition size is passed through untouched in the partition
    writer's own units; no alignment against the byte-sized image is done.
    """
    return DiskGeometry(
        image_size_bytes=image_size_bytes(config.filesystem_size_mb),
        partitions=(
            PartitionSpec(
                size=config.boot_partition_size,
                type_code=FAT32_LBA_TYPE,
                bootable=True,
            ),
            PartitionSpec(size=None, type_code=LINUX_TYPE),
        ),
    )


__all__ = [
    "BYTES_PER_MB",
    "DiskGeometry",
    "PartitionSpec",
    "compute_geometry",
    "image_size_bytes",
]
