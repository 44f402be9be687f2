"""Bootstrap configuration templating.

The template is a bootstrapper config (multistrap format) containing two
placeholder tokens which are replaced literally and globally:

- ``@DEVICE@``: the target package / device name
- ``@DIST@``: the distribution codename

The result is written to a disposable, uniquely named file owned by the
build workspace.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from ptux_imagegen.errors import StageIOError

logger = logging.getLogger(__name__)

DEVICE_PLACEHOLDER = "@DEVICE@"
DIST_PLACEHOLDER = "@DIST@"


def substitute_placeholders(text: str, package: str, codename: str) -> str:
    """Replace the placeholder tokens in template text.

    Args:
        text: Template content.
        package: Value for the device placeholder.
        codename: Value for the distribution placeholder.

    Returns:
        Text with every occurrence of both tokens replaced.
    """
    return text.replace(DEVICE_PLACEHOLDER, package).replace(DIST_PLACEHOLDER, codename)


def render_template(
    template: Path,
    package: str,
    codename: str,
    directory: Path | None = None,
) -> Path:
    """Render a template into a new disposable file.

    Args:
        template: Path to the template.
        package: Target package name.
        codename: Distribution codename.
        directory: Where to create the file (system temp dir if None).

    Returns:
        Path to the rendered config file. The caller owns its removal.

    Raises:
        StageIOError: If the template cannot be read or the file cannot be
            written.
    """
    try:
        text = template.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise StageIOError(
            f"Failed to read bootstrap template {template}: {e}",
            code="template_error",
        ) from e

    rendered = substitute_placeholders(text, package, codename)

    try:
        fd, name = tempfile.mkstemp(
            prefix=f"ptux-{package}-",
            suffix=".conf",
            dir=directory,
        )
    except OSError as e:
        raise StageIOError(
            f"Failed to create templated config: {e}",
            code="template_error",
        ) from e

    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(rendered)
    except OSError as e:
        path.unlink(missing_ok=True)
        raise StageIOError(
            f"Failed to write templated config {path}: {e}",
            code="template_error",
        ) from e

    logger.debug("Rendered %s -> %s", template, path)
    return path


__all__ = [
    "DEVICE_PLACEHOLDER",
    "DIST_PLACEHOLDER",
    "render_template",
    "substitute_placeholders",
]
