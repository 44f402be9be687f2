"""Thin CLI wrapper for ptux_imagegen.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from ptux_imagegen import __version__
from ptux_imagegen.config import load_settings, read_template, resolve_build_config
from ptux_imagegen.errors import BuildInterruptedError, ConfigurationError, ImageGenError
from ptux_imagegen.types import InvocationMode

app = typer.Typer(
    name="ptux-imagegen",
    help="Build a bootable SD-card image, root filesystem archive and package manifest",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ptux-imagegen version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


@app.command()
def build(
    ctx: typer.Context,
    target_package: Annotated[
        str | None,
        typer.Argument(
            help="Base package / device to build for (e.g. beagle)",
            show_default=False,
        ),
    ] = None,
    print_config: Annotated[
        bool,
        typer.Option(
            "--print-config", "-C", help="Print the bootstrap config template and exit"
        ),
    ] = False,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Bootstrap config template"),
    ] = None,
    size: Annotated[
        int | None,
        typer.Option("--size", "-d", help="Filesystem size in megabytes"),
    ] = None,
    name: Annotated[
        Path | None,
        typer.Option("--name", "-n", help="Output image path (default ptux.img)"),
    ] = None,
    dist: Annotated[
        str | None,
        typer.Option("--dist", "-D", help="Distribution codename (default unstable)"),
    ] = None,
    fstype: Annotated[
        str | None,
        typer.Option("--fstype", "-f", help="Root filesystem type (default ext4)"),
    ] = None,
    embed_archive: Annotated[
        bool,
        typer.Option(
            "--embed-archive", "-z", help="Copy the root filesystem archive into the image"
        ),
    ] = False,
    invocation: Annotated[
        InvocationMode | None,
        typer.Option(
            "--invocation",
            case_sensitive=False,
            help="helper keeps the workspace for the calling process",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Build <name>.img, <name>.tgz and <name>.manifest for TARGET_PACKAGE.

    Options override PTUX_* environment variables, which override defaults.
    """
    from ptux_imagegen.builds.artifacts import describe_artifacts
    from ptux_imagegen.builds.service import build_image

    overrides = {
        "target_package": target_package,
        "bootstrap_template": config,
        "filesystem_size_mb": size,
        "output_image": name,
        "distribution_codename": dist,
        "rootfs_type": fstype,
        "embed_archive": True if embed_archive else None,
        "invocation_mode": invocation,
    }

    try:
        if print_config:
            typer.echo(read_template(config), nl=False)
            raise typer.Exit()
        settings = load_settings(overrides)
        build_config = resolve_build_config(settings=settings)
    except ConfigurationError as e:
        ctx.fail(e.message)

    configure_logging(settings.log_level)

    try:
        result = build_image(build_config, settings=settings)
    except BuildInterruptedError as e:
        err_console.print(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(code=e.exit_status) from None
    except ImageGenError as e:
        err_console.print(f"[red]Build failed: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = {
            "target_package": build_config.target_package,
            "stages": [s.value for s in result.stages],
            "artifacts": [
                {
                    "filename": a.filename,
                    "path": a.path,
                    "kind": a.kind,
                    "size_bytes": a.size_bytes,
                    "sha256": a.sha256,
                }
                for a in describe_artifacts(result)
            ],
            "workspace": {
                "root_dir": str(result.workspace.root_dir),
                "config_file": str(result.workspace.config_file),
            }
            if result.workspace
            else None,
        }
        console.print_json(json.dumps(output))
        return

    console.print("[green]✓ Build succeeded[/green]")
    console.print(f"  Image:    {result.image_path}")
    console.print(f"  Archive:  {result.archive_path}")
    console.print(f"  Manifest: {result.manifest_path}")
    if result.workspace:
        console.print(f"  Root dir: {result.workspace.root_dir}")
        console.print(f"  Config:   {result.workspace.config_file}")


if __name__ == "__main__":
    app()
