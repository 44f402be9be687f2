"""ptux image generator - bootable SD-card images for two-stage-loader boards.

This package orchestrates a root filesystem bootstrapper, an archiver, a
package manifest generator, a partition table writer and a filesystem
populator into a single all-or-nothing image build.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
