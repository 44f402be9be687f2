"""Description of retained build artifacts.

This module handles:
- Computing checksums of the image, archive and manifest
- Classifying them for machine-readable output
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ptux_imagegen.types import ArtifactInfo

if TYPE_CHECKING:
    from ptux_imagegen.builds.service import BuildResult

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 1024 * 1024  # 1 MiB

KIND_BY_SUFFIX = {
    ".img": "disk_image",
    ".tgz": "rootfs_archive",
    ".manifest": "manifest",
}


def classify_artifact(filename: str) -> str:
    """Classify an artifact by its file extension."""
    return KIND_BY_SUFFIX.get(Path(filename).suffix.lower(), "other")


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def describe_artifacts(result: BuildResult) -> list[ArtifactInfo]:
    """Describe the artifacts of a finished build.

    The image is always classified as disk_image, even when its name
    carries another extension.
    """
    infos: list[ArtifactInfo] = []
    for path in result.artifact_paths:
        kind = (
            "disk_image" if path == result.image_path else classify_artifact(path.name)
        )
        info = ArtifactInfo(
            filename=path.name,
            path=str(path),
            size_bytes=path.stat().st_size,
            sha256=compute_file_hash(path),
            kind=kind,
        )
        logger.debug("Artifact %s (kind=%s, size=%d)", path, kind, info.size_bytes)
        infos.append(info)
    return infos


__all__ = [
    "HASH_CHUNK_SIZE",
    "classify_artifact",
    "compute_file_hash",
    "describe_artifacts",
]
