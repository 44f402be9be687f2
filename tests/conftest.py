"""Shared fixtures: bootstrap templates and in-memory fake collaborators.

The fakes stand in for multistrap, tar, dpkg-query, sfdisk and guestfish
so the pipeline can be exercised without root privileges or the tools.
"""

import os
import tarfile
from pathlib import Path

import pytest

from ptux_imagegen.builds.pipeline import Toolchain
from ptux_imagegen.config import BuildConfig
from ptux_imagegen.errors import ExternalToolError

TEMPLATE_TEXT = """[General]
arch=armhf
directory=
cleanup=true
noauth=true
unpack=true
debootstrap=Debian Ptux
aptsources=Debian Ptux

[Debian]
packages=apt
source=http://deb.debian.org/debian
keyring=debian-archive-keyring
suite=@DIST@

[Ptux]
packages=@DEVICE@-bsp
source=http://ptux.example.org/debian
suite=@DIST@
"""

MANIFEST_TEXT = "apt 2.6.1\nbase-files 12.4\nbeagle-bsp 1.0\n"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host PTUX_* variables out of the tests."""
    for key in list(os.environ):
        if key.startswith("PTUX_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def template_file(tmp_path) -> Path:
    """Create a bootstrap config template."""
    path = tmp_path / "templates" / "multistrap.conf.in"
    path.parent.mkdir()
    path.write_text(TEMPLATE_TEXT)
    return path


@pytest.fixture
def workdir(tmp_path, monkeypatch) -> Path:
    """Run from an empty output directory."""
    out = tmp_path / "out"
    out.mkdir()
    monkeypatch.chdir(out)
    return out


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    """Parent directory for build workspaces."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def build_config(template_file, workdir) -> BuildConfig:
    """A small build configuration writing into workdir."""
    return BuildConfig(
        target_package="beagle",
        bootstrap_template=template_file,
        filesystem_size_mb=4,
        output_image=workdir / "ptux.img",
    )


class FakeBootstrapper:
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.config_text: str | None = None
        self.root_dir: Path | None = None

    def bootstrap(self, config_file: Path, root_dir: Path) -> None:
        self.events.append("bootstrap")
        self.config_text = config_file.read_text()
        self.root_dir = root_dir
        (root_dir / "boot").mkdir()
        (root_dir / "boot" / "uImage").write_bytes(b"kernel")
        (root_dir / "etc").mkdir()
        (root_dir / "etc" / "hostname").write_text("beagle\n")
        (root_dir / "var" / "lib" / "dpkg").mkdir(parents=True)


class FakeArchiver:
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.members: list[str] = []

    def archive(self, source_dir: Path, archive_path: Path) -> None:
        self.events.append("archive")
        with tarfile.open(archive_path, "x:gz") as tar:
            tar.add(source_dir, arcname=".")
        with tarfile.open(archive_path, "r:gz") as tar:
            self.members = tar.getnames()


class FakeManifestGenerator:
    def __init__(self, events: list[str]) -> None:
        self.events = events

    def generate(self, root_dir: Path) -> str:
        self.events.append("manifest")
        return MANIFEST_TEXT


class FakePartitioner:
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.partitions: list = []
        self.image_size: int | None = None

    def write_table(self, image_path: Path, partitions) -> None:
        self.events.append("partition")
        self.partitions = list(partitions)
        self.image_size = image_path.stat().st_size


class FakeFormatter:
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.operations: list = []

    def apply(self, image_path: Path, operations) -> None:
        self.events.append("format")
        self.operations = list(operations)


class FailingTool:
    """Collaborator whose every call fails like a tool exiting non-zero."""

    def __init__(self, tool: str) -> None:
        self.tool = tool

    def _fail(self, *args, **kwargs):
        raise ExternalToolError(
            f"{self.tool} failed with exit code 1",
            tool=self.tool,
            exit_code=1,
            output=f"{self.tool}: something went wrong",
        )

    bootstrap = archive = generate = write_table = apply = _fail


@pytest.fixture
def events() -> list[str]:
    return []


@pytest.fixture
def toolchain(events) -> Toolchain:
    """A toolchain of working fakes sharing one event log."""
    return Toolchain(
        bootstrapper=FakeBootstrapper(events),
        archiver=FakeArchiver(events),
        manifest_generator=FakeManifestGenerator(events),
        partitioner=FakePartitioner(events),
        formatter=FakeFormatter(events),
    )
