"""Archive Creator.

This module handles creating static library archives (.a files) from compiled
object files, and extracting single objects back out of them, using the
archiver tool (ar).

Design:
    - Wraps ar command execution
    - Creates .a archives from object files
    - Extracts members (table objects are compiled as a one-object archive and
      pulled back out before conversion)
    - Provides clear error messages
"""

import subprocess
from pathlib import Path
from typing import List

from ..errors import ArchBuildError
from ..interrupt_utils import handle_keyboard_interrupt_properly
from .compilation_executor import COMMAND_TIMEOUT


class ArchiveError(ArchBuildError):
    """Raised when archive creation operations fail."""
    pass


class ArchiveCreator:
    """Creates static library archives from object files.

    This class handles:
    - Running archiver (ar) commands
    - Creating .a archives from object files
    - Extracting an object file from an archive
    """

    def __init__(self, show_progress: bool = False):
        """Initialize archive creator.

        Args:
            show_progress: Whether to show archive creation progress
        """
        self.show_progress = show_progress

    def create_archive(
        self,
        ar_path: Path,
        archive_path: Path,
        object_files: List[Path]
    ) -> Path:
        """Create static library archive from object files.

        Args:
            ar_path: Path to archiver tool (ar)
            archive_path: Path for output .a file
            object_files: List of object file paths to archive

        Returns:
            Path to generated archive file

        Raises:
            ArchiveError: If archive creation fails
        """
        if not object_files:
            raise ArchiveError(f"No object files provided for archive {archive_path.name}")

        archive_path.parent.mkdir(parents=True, exist_ok=True)
        # Members are appended, so stale ones from a previous build must go
        if archive_path.exists():
            archive_path.unlink()

        # 'qcs' flags: q=append (keeps members with equal names), c=create, s=index (ranlib)
        cmd = [str(ar_path), "qcs", str(archive_path)]
        cmd.extend([str(obj) for obj in object_files])

        if self.show_progress:
            print(f"Creating {archive_path.name} archive from {len(object_files)} object files...")

        self._run(cmd, archive_path.name, cwd=None)

        if not archive_path.exists():
            raise ArchiveError(f"Archive was not created: {archive_path}")

        return archive_path

    def extract_member(
        self,
        ar_path: Path,
        archive_path: Path,
        member: str,
        dest_dir: Path
    ) -> Path:
        """Extract one object file from an archive.

        Args:
            ar_path: Path to archiver tool (ar)
            archive_path: Archive to extract from
            member: Member name inside the archive (e.g., 'sample_tbl.o')
            dest_dir: Directory the member is extracted into

        Returns:
            Path to the extracted object

        Raises:
            ArchiveError: If extraction fails or the member is missing
        """
        if not archive_path.exists():
            raise ArchiveError(f"Archive not found: {archive_path}")

        dest_dir.mkdir(parents=True, exist_ok=True)
        cmd = [str(ar_path), "x", str(archive_path.resolve()), member]
        self._run(cmd, archive_path.name, cwd=dest_dir)

        extracted = dest_dir / member
        if not extracted.exists():
            raise ArchiveError(f"Member {member} not found in {archive_path.name}")
        return extracted

    def _run(self, cmd: List[str], archive_name: str, cwd) -> None:
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=COMMAND_TIMEOUT,
                cwd=str(cwd) if cwd is not None else None
            )

            if result.returncode != 0:
                error_msg = f"Archive operation failed for {archive_name}\n"
                error_msg += f"stderr: {result.stderr}\n"
                error_msg += f"stdout: {result.stdout}"
                raise ArchiveError(error_msg)

        except subprocess.TimeoutExpired as e:
            raise ArchiveError(f"Archive operation timeout for {archive_name}") from e
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except Exception as e:
            if isinstance(e, ArchiveError):
                raise
            raise ArchiveError(f"Failed to run archiver for {archive_name}: {e}") from e
