"""Configuration settings and build parameter resolution for ptux_imagegen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

The environment is read exactly once, when settings are loaded. The
resulting BuildConfig is immutable and is the only configuration the
pipeline sees.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ptux_imagegen.errors import ConfigurationError
from ptux_imagegen.types import InvocationMode

# Boot partition size, in the units the partition table writer expects.
BOOT_PARTITION_SIZE = 352816

DEFAULT_OUTPUT_IMAGE = "ptux.img"
ARCHIVE_SUFFIX = ".tgz"
MANIFEST_SUFFIX = ".manifest"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the PTUX_ prefix.
    CLI flags override these by being passed as init arguments.
    """

    model_config = SettingsConfigDict(
        env_prefix="PTUX_",
        extra="ignore",
    )

    # Build parameters
    target_package: str | None = Field(
        default=None,
        description="Base package / device identifier to bootstrap",
    )
    bootstrap_template: Path | None = Field(
        default=None,
        description="Path to the bootstrap configuration template",
    )
    distribution_codename: str = Field(
        default="unstable",
        description="Distribution codename substituted into the template",
    )
    rootfs_type: str = Field(
        default="ext4",
        description="Filesystem type of the root partition",
    )
    filesystem_size_mb: int = Field(
        default=1024,
        ge=1,
        description="Total image size in megabytes",
    )
    output_image: Path = Field(
        default=Path(DEFAULT_OUTPUT_IMAGE),
        description="Output disk image path",
    )
    embed_archive: bool = Field(
        default=False,
        description="Copy the root filesystem archive into the image root",
    )

    # Operational modes
    invocation_mode: InvocationMode = Field(
        default=InvocationMode.STANDALONE,
        description="helper keeps the workspace for the calling process",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Temporary directory for workspaces (uses system default if not set)",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # External tools
    multistrap_command: str = Field(
        default="multistrap",
        description="Root filesystem bootstrapper executable",
    )
    tar_command: str = Field(default="tar", description="Archiver executable")
    dpkg_query_command: str = Field(
        default="dpkg-query",
        description="Package manifest generator executable",
    )
    sfdisk_command: str = Field(
        default="sfdisk",
        description="Partition table writer executable",
    )
    guestfish_command: str = Field(
        default="guestfish",
        description="Filesystem formatter/populator executable",
    )
    tool_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for each external tool in seconds (None = no timeout)",
    )


class TemplateSettings(BaseSettings):
    """The template location alone, for print-config mode.

    Unrelated PTUX_* variables are ignored rather than validated.
    """

    model_config = SettingsConfigDict(
        env_prefix="PTUX_",
        extra="ignore",
    )

    bootstrap_template: Path | None = None


class BuildConfig(BaseModel):
    """Fully resolved parameters of one image build."""

    model_config = ConfigDict(frozen=True)

    target_package: str
    bootstrap_template: Path
    distribution_codename: str = "unstable"
    rootfs_type: str = "ext4"
    filesystem_size_mb: int = Field(default=1024, ge=1)
    boot_partition_size: int = BOOT_PARTITION_SIZE
    output_image: Path = Path(DEFAULT_OUTPUT_IMAGE)
    embed_archive: bool = False

    @property
    def archive_path(self) -> Path:
        """Root filesystem archive, named after the image stem."""
        return self.output_image.with_suffix(ARCHIVE_SUFFIX)

    @property
    def manifest_path(self) -> Path:
        """Package manifest, named after the image stem."""
        return self.output_image.with_suffix(MANIFEST_SUFFIX)

    @property
    def output_paths(self) -> tuple[Path, Path, Path]:
        return (self.output_image, self.archive_path, self.manifest_path)


def load_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Load settings, layering explicit overrides over the environment.

    Args:
        overrides: Explicit parameters; entries whose value is None are
            treated as not supplied.

    Returns:
        Settings instance.

    Raises:
        ConfigurationError: If a value cannot be parsed or validated.
    """
    explicit = {k: v for k, v in (overrides or {}).items() if v is not None}
    try:
        return Settings(**explicit)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid setting: {e}",
            code="invalid_setting",
        ) from None


def _require_template(template: Path | None) -> Path:
    if template is None or not str(template).strip():
        raise ConfigurationError(
            "No bootstrap config template given (use -c or PTUX_BOOTSTRAP_TEMPLATE)",
            code="missing_template",
        )
    if not template.is_file() or not os.access(template, os.R_OK):
        raise ConfigurationError(
            f"Bootstrap config template is not readable: {template}",
            code="template_unreadable",
        )
    return template


def read_template(template: Path | None = None) -> bytes:
    """Return the raw bytes of the bootstrap template.

    Used by print-config mode. Only the template location is resolved
    (explicit path, else PTUX_BOOTSTRAP_TEMPLATE); no other setting is
    read or validated, and nothing else is touched.

    Args:
        template: Explicit template path, overriding the environment.

    Raises:
        ConfigurationError: If no template is configured or it is unreadable.
    """
    if template is None:
        template = TemplateSettings().bootstrap_template
    template = _require_template(template)
    try:
        return template.read_bytes()
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read bootstrap config template {template}: {e}",
            code="template_unreadable",
        ) from e


def resolve_build_config(
    overrides: Mapping[str, Any] | None = None,
    settings: Settings | None = None,
) -> BuildConfig:
    """Resolve and validate the parameters of one build.

    Args:
        overrides: Explicit build parameters (highest precedence). Ignored
            when ``settings`` is given.
        settings: Already loaded settings.

    Returns:
        Immutable BuildConfig.

    Raises:
        ConfigurationError: If a required field is missing, the template is
            unreadable, the output names are unusable, or an output file
            already exists.
    """
    if settings is None:
        settings = load_settings(overrides)

    target_package = (settings.target_package or "").strip()
    if not target_package:
        raise ConfigurationError(
            "No target package given (positional argument or PTUX_TARGET_PACKAGE)",
            code="missing_target_package",
        )

    template = _require_template(settings.bootstrap_template)

    output_image = settings.output_image
    if not output_image.name:
        raise ConfigurationError(
            f"Output image path has no file name: {output_image}",
            code="invalid_output",
        )

    config = BuildConfig(
        target_package=target_package,
        bootstrap_template=template,
        distribution_codename=settings.distribution_codename,
        rootfs_type=settings.rootfs_type,
        filesystem_size_mb=settings.filesystem_size_mb,
        output_image=output_image,
        embed_archive=settings.embed_archive,
    )

    # image, archive and manifest must be three distinct files
    if len(set(config.output_paths)) < len(config.output_paths):
        raise ConfigurationError(
            f"Output image {output_image} collides with its archive or manifest "
            f"(avoid the {ARCHIVE_SUFFIX} and {MANIFEST_SUFFIX} suffixes)",
            code="invalid_output",
        )

    for path in config.output_paths:
        if path.exists() or path.is_symlink():
            raise ConfigurationError(
                f"Output file already exists: {path}",
                code="output_exists",
            )

    return config


__all__ = [
    "BOOT_PARTITION_SIZE",
    "BuildConfig",
    "Settings",
    "TemplateSettings",
    "load_settings",
    "read_template",
    "resolve_build_config",
]
