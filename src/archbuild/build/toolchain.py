"""Toolchain abstraction.

This module defines the interface the build system uses to turn sources into
objects, archives, loadable modules and executables, and a GCC-compatible
implementation that drives the host (or cross) compiler through subprocess.
"""

import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from ..errors import ArchBuildError
from ..model import CompileMetadata, ToolchainSettings
from .archive_creator import ArchiveCreator
from .compilation_executor import CompilationExecutor


class ToolchainError(ArchBuildError):
    """Raised when a toolchain binary cannot be located."""
    pass


class Toolchain(ABC):
    """Interface for architecture toolchains.

    Implementations must be safe to call from several worker threads at once
    as long as the output paths differ.
    """

    @abstractmethod
    def compile(
        self,
        source: Path,
        output: Path,
        metadata: CompileMetadata,
        extra_flags: Optional[List[str]] = None
    ) -> Path:
        """Compile a single source file to an object file.

        Raises:
            CompilationError: If compilation fails
        """
        pass

    @abstractmethod
    def archive(self, objects: List[Path], output: Path) -> Path:
        """Create a static archive from object files.

        Raises:
            ArchiveError: If archiving fails
        """
        pass

    @abstractmethod
    def extract_object(self, archive: Path, member: str, dest_dir: Path) -> Path:
        """Extract one object file from a static archive.

        Raises:
            ArchiveError: If extraction fails
        """
        pass

    @abstractmethod
    def link(
        self,
        objects: List[Path],
        libraries: List[Path],
        output: Path,
        flags: Optional[List[str]] = None,
        shared: bool = False
    ) -> Path:
        """Link objects and archives into an executable or loadable module.

        Raises:
            LinkError: If linking fails
        """
        pass


class GccToolchain(Toolchain):
    """
    GCC-compatible toolchain (gcc, clang or a cross gcc plus ar).

    Example usage:
        toolchain = GccToolchain(ToolchainSettings(cc="arm-none-eabi-gcc",
                                                   ar="arm-none-eabi-ar"))
        obj = toolchain.compile(Path("app.c"), Path("build/app.o"), metadata)
        lib = toolchain.archive([obj], Path("build/libapp.a"))
    """

    def __init__(self, settings: ToolchainSettings, show_progress: bool = False):
        """
        Initialize toolchain.

        Args:
            settings: Architecture toolchain settings
            show_progress: Print each compile/link step
        """
        self.settings = settings
        self.executor = CompilationExecutor(show_progress=show_progress)
        self.archiver = ArchiveCreator(show_progress=show_progress)
        self._cc: Optional[Path] = None
        self._ar: Optional[Path] = None

    @staticmethod
    def _find_tool(name: str) -> Path:
        candidate = Path(name)
        if candidate.is_absolute() or len(candidate.parts) > 1:
            if not candidate.exists():
                raise ToolchainError(f"Tool not found: {candidate}")
            return candidate
        found = shutil.which(name)
        if not found:
            raise ToolchainError(f"Tool '{name}' not found in PATH. Ensure toolchain is installed.")
        return Path(found)

    @property
    def cc_path(self) -> Path:
        if self._cc is None:
            self._cc = self._find_tool(self.settings.cc)
        return self._cc

    @property
    def ar_path(self) -> Path:
        if self._ar is None:
            self._ar = self._find_tool(self.settings.ar)
        return self._ar

    def compile(self, source, output, metadata, extra_flags=None):
        flags = list(self.settings.cflags) + list(extra_flags or [])
        if "-fPIC" not in flags:
            # Objects may end up in a loadable module
            flags.append("-fPIC")
        return self.executor.compile_source(
            compiler_path=self.cc_path,
            source_path=source,
            output_path=output,
            compile_flags=flags,
            include_paths=metadata.include_paths,
            definitions=metadata.definitions,
        )

    def archive(self, objects, output):
        return self.archiver.create_archive(self.ar_path, output, objects)

    def extract_object(self, archive, member, dest_dir):
        return self.archiver.extract_member(self.ar_path, archive, member, dest_dir)

    def link(self, objects, libraries, output, flags=None, shared=False):
        link_flags = list(self.settings.ldflags) + list(flags or [])
        return self.executor.link(
            linker_path=self.cc_path,
            objects=objects,
            libraries=libraries,
            output_path=output,
            flags=link_flags,
            shared=shared,
        )
