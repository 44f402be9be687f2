"""Allow running as ``python -m ptux_imagegen``."""

from ptux_imagegen.cli import app

if __name__ == "__main__":
    app()
