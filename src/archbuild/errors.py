"""Base exception for archbuild.

Every error raised by the build system derives from ArchBuildError so the CLI
can report configuration and build problems uniformly. The concrete error
classes live next to the components that raise them.
"""


class ArchBuildError(Exception):
    """Base exception for all archbuild errors."""

    pass
