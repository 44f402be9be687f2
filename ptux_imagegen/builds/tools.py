"""External tool collaborators and their subprocess adapters.

This module handles:
- Collaborator protocols (bootstrapper, archiver, manifest generator,
  partition table writer, filesystem formatter)
- Scripted filesystem operations consumed by the formatter
- Running tools with subprocess and classifying failures
- Concrete adapters for multistrap, tar, dpkg-query, sfdisk and guestfish

Every adapter call blocks until the tool exits; a non-zero exit status is
an ExternalToolError carrying the tool's diagnostic output.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Union

from ptux_imagegen.builds.geometry import PartitionSpec
from ptux_imagegen.errors import ExternalToolError

logger = logging.getLogger(__name__)

# guestfish names the first attached disk /dev/sda
GUESTFISH_DISK = "/dev/sda"


@dataclass
class ToolResult:
    """Result of a successful tool invocation.

    Attributes:
        command: The command that was executed.
        exit_code: Process exit code.
        stdout: Captured standard output.
        stderr: Captured standard error.
    """

    command: str
    exit_code: int
    stdout: str
    stderr: str


def run_tool(
    argv: Sequence[str],
    input_text: str | None = None,
    timeout: int | None = None,
) -> ToolResult:
    """Run an external tool and wait for it to finish.

    Args:
        argv: Command and arguments.
        input_text: Optional text fed to the tool's stdin.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        ToolResult for a zero exit status.

    Raises:
        ExternalToolError: If the tool cannot be started, times out or
            exits non-zero.
    """
    cmd = [str(a) for a in argv]
    cmd_str = shlex.join(cmd)
    tool = Path(cmd[0]).name
    logger.info("Executing: %s", cmd_str)

    try:
        result = subprocess.run(
            cmd,
            input=input_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise ExternalToolError(
            f"{tool} timed out after {timeout} seconds",
            tool=tool,
            exit_code=-1,
            code="tool_timeout",
        ) from e
    except OSError as e:
        raise ExternalToolError(
            f"Failed to execute {tool}: {e}",
            tool=tool,
            code="tool_unreachable",
        ) from e

    if result.stdout:
        logger.debug("%s stdout: %s", tool, result.stdout.strip())
    if result.stderr:
        logger.debug("%s stderr: %s", tool, result.stderr.strip())

    if result.returncode != 0:
        logger.error("%s failed with exit code %d", tool, result.returncode)
        raise ExternalToolError(
            f"{tool} failed with exit code {result.returncode}: {cmd_str}",
            tool=tool,
            exit_code=result.returncode,
            output=result.stderr or result.stdout or "",
        )

    return ToolResult(
        command=cmd_str,
        exit_code=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
    )


# Scripted filesystem operations


@dataclass(frozen=True)
class MakeFilesystem:
    """Create a filesystem of ``fstype`` on partition ``partition`` (1-based)."""

    partition: int
    fstype: str


@dataclass(frozen=True)
class Mount:
    partition: int
    mountpoint: str


@dataclass(frozen=True)
class MakeDirectory:
    path: str


@dataclass(frozen=True)
class CopyIn:
    """Copy local files or directories (recursively) into a mounted directory."""

    sources: tuple[Path, ...]
    destination: str


@dataclass(frozen=True)
class Unmount:
    mountpoint: str


FsOperation = Union[MakeFilesystem, Mount, MakeDirectory, CopyIn, Unmount]


# Collaborator protocols


class Bootstrapper(Protocol):
    """Materializes a root filesystem tree from a config file."""

    def bootstrap(self, config_file: Path, root_dir: Path) -> None: ...


class Archiver(Protocol):
    """Writes a compressed tarball of a directory tree."""

    def archive(self, source_dir: Path, archive_path: Path) -> None: ...


class ManifestGenerator(Protocol):
    """Lists the packages installed in a root filesystem tree."""

    def generate(self, root_dir: Path) -> str: ...


class Partitioner(Protocol):
    """Writes a partition table into a disk image."""

    def write_table(
        self, image_path: Path, partitions: Sequence[PartitionSpec]
    ) -> None: ...


class Formatter(Protocol):
    """Applies scripted filesystem operations to a disk image."""

    def apply(self, image_path: Path, operations: Sequence[FsOperation]) -> None: ...


# Subprocess adapters


@dataclass
class MultistrapBootstrapper:
    command: str = "multistrap"
    timeout: int | None = None

    def bootstrap(self, config_file: Path, root_dir: Path) -> None:
        run_tool(
            [self.command, "-f", str(config_file), "-d", str(root_dir)],
            timeout=self.timeout,
        )


@dataclass
class TarArchiver:
    command: str = "tar"
    timeout: int | None = None

    def archive(self, source_dir: Path, archive_path: Path) -> None:
        run_tool(
            [
                self.command,
                "-C",
                str(source_dir),
                "-czf",
                str(archive_path.absolute()),
                ".",
            ],
            timeout=self.timeout,
        )


@dataclass
class DpkgManifestGenerator:
    """Query the dpkg database of a bootstrapped tree without chrooting."""

    command: str = "dpkg-query"
    timeout: int | None = None

    def generate(self, root_dir: Path) -> str:
        admindir = root_dir / "var" / "lib" / "dpkg"
        result = run_tool(
            [
                self.command,
                f"--admindir={admindir}",
                "-W",
                "-f",
                "${Package} ${Version}\\n",
            ],
            timeout=self.timeout,
        )
        return result.stdout


def compose_sfdisk_script(partitions: Sequence[PartitionSpec]) -> str:
    """Compose an sfdisk input script for a DOS partition table.

    Args:
        partitions: Ordered partition entries; size None uses the remainder.

    Returns:
        Script text for sfdisk's stdin.
    """
    lines = ["label: dos", ""]
    for part in partitions:
        size = "" if part.size is None else str(part.size)
        line = f",{size},{part.type_code}"
        if part.bootable:
            line += ",*"
        lines.append(line)
    return "\n".join(lines) + "\n"


@dataclass
class SfdiskPartitioner:
    command: str = "sfdisk"
    timeout: int | None = None

    def write_table(self, image_path: Path, partitions: Sequence[PartitionSpec]) -> None:
        script = compose_sfdisk_script(partitions)
        logger.debug("sfdisk script:\n%s", script)
        run_tool([self.command, str(image_path)], input_text=script, timeout=self.timeout)


def _gf_quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _gf_device(partition: int) -> str:
    return f"{GUESTFISH_DISK}{partition}"


def compose_guestfish_script(operations: Sequence[FsOperation]) -> str:
    """Render filesystem operations as a guestfish script.

    Raises:
        TypeError: If an operation type is unknown.
    """
    lines = ["run"]
    for op in operations:
        if isinstance(op, MakeFilesystem):
            lines.append(f"mkfs {_gf_quote(op.fstype)} {_gf_device(op.partition)}")
        elif isinstance(op, Mount):
            lines.append(f"mount {_gf_device(op.partition)} {_gf_quote(op.mountpoint)}")
        elif isinstance(op, MakeDirectory):
            lines.append(f"mkdir-p {_gf_quote(op.path)}")
        elif isinstance(op, CopyIn):
            sources = " ".join(_gf_quote(str(s)) for s in op.sources)
            lines.append(f"copy-in {sources} {_gf_quote(op.destination)}")
        elif isinstance(op, Unmount):
            lines.append(f"umount {_gf_quote(op.mountpoint)}")
        else:
            raise TypeError(f"Unknown filesystem operation: {op!r}")
    return "\n".join(lines) + "\n"


@dataclass
class GuestfishFormatter:
    command: str = "guestfish"
    timeout: int | None = None

    def apply(self, image_path: Path, operations: Sequence[FsOperation]) -> None:
        script = compose_guestfish_script(operations)
        logger.debug("guestfish script:\n%s", script)
        run_tool(
            [self.command, "--rw", "-a", str(image_path)],
            input_text=script,
            timeout=self.timeout,
        )


__all__ = [
    "Archiver",
    "Bootstrapper",
    "CopyIn",
    "DpkgManifestGenerator",
    "Formatter",
    "FsOperation",
    "GuestfishFormatter",
    "MakeDirectory",
    "MakeFilesystem",
    "ManifestGenerator",
    "Mount",
    "MultistrapBootstrapper",
    "Partitioner",
    "SfdiskPartitioner",
    "TarArchiver",
    "ToolResult",
    "Unmount",
    "compose_guestfish_script",
    "compose_sfdisk_script",
    "run_tool",
]
