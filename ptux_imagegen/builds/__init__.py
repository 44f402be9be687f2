"""Image build orchestration module.

This module handles:
- Templating the bootstrap configuration
- Partition geometry
- Running external tools (bootstrapper, archiver, manifest, sfdisk, guestfish)
- Ordered build stages
- Workspace lifecycle and all-or-nothing cleanup
"""

# Access submodules directly, e.g. ptux_imagegen.builds.service
