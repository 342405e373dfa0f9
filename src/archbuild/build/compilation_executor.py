"""Compilation Executor.

This module handles executing compile and link commands via subprocess with
support for response files and proper error handling.

Design:
    - Wraps subprocess.run for compiler and linker invocations
    - Generates one response file per object for include paths (avoids command
      line length limits and keeps parallel compilations independent)
    - Provides clear error messages for compilation failures
"""

import subprocess
from pathlib import Path
from typing import List, Optional

from ..errors import ArchBuildError
from ..interrupt_utils import handle_keyboard_interrupt_properly

COMMAND_TIMEOUT = 60


class CompilationError(ArchBuildError):
    """Raised when compilation operations fail."""
    pass


class LinkError(ArchBuildError):
    """Raised when linking operations fail."""
    pass


class CompilationExecutor:
    """Executes compilation commands with response file support.

    This class handles:
    - Running compiler subprocess commands
    - Generating response files for include paths
    - Running link commands for executables and loadable modules
    - Handling errors with clear messages
    """

    def __init__(self, show_progress: bool = False):
        """Initialize compilation executor.

        Args:
            show_progress: Whether to show compilation progress
        """
        self.show_progress = show_progress

    def compile_source(
        self,
        compiler_path: Path,
        source_path: Path,
        output_path: Path,
        compile_flags: List[str],
        include_paths: List[Path],
        definitions: Optional[List[str]] = None
    ) -> Path:
        """Compile a single source file.

        Args:
            compiler_path: Path to compiler executable
            source_path: Path to source file
            output_path: Path for output object file
            compile_flags: Compilation flags
            include_paths: Include directory paths
            definitions: Preprocessor definitions (NAME or NAME=VALUE)

        Returns:
            Path to generated object file

        Raises:
            CompilationError: If compilation fails
        """
        if not source_path.exists():
            raise CompilationError(f"Source file not found: {source_path}")

        output_path.parent.mkdir(parents=True, exist_ok=True)

        include_flags = [f"-I{str(inc).replace(chr(92), '/')}" for inc in include_paths]
        response_file = self._write_response_file(output_path, include_flags)

        cmd = [str(compiler_path)]
        cmd.extend(compile_flags)
        cmd.extend(f"-D{definition}" for definition in (definitions or []))
        cmd.append(f"@{response_file}")
        cmd.extend(['-c', str(source_path)])
        cmd.extend(['-o', str(output_path)])

        if self.show_progress:
            print(f"Compiling {source_path.name}...")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=COMMAND_TIMEOUT
            )

            if result.returncode != 0:
                error_msg = f"Compilation failed for {source_path.name}\n"
                error_msg += f"stderr: {result.stderr}\n"
                error_msg += f"stdout: {result.stdout}"
                raise CompilationError(error_msg)

            if self.show_progress and result.stderr:
                print(result.stderr)

            return output_path

        except subprocess.TimeoutExpired as e:
            raise CompilationError(f"Compilation timeout for {source_path.name}") from e
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except Exception as e:
            if isinstance(e, CompilationError):
                raise
            raise CompilationError(f"Failed to compile {source_path.name}: {e}") from e

    def link(
        self,
        linker_path: Path,
        objects: List[Path],
        libraries: List[Path],
        output_path: Path,
        flags: Optional[List[str]] = None,
        shared: bool = False
    ) -> Path:
        """Link objects and static archives into an executable or module.

        Archives are wrapped in a --start-group/--end-group pair so that
        archive order does not matter for mutual references.

        Args:
            linker_path: Path to the compiler driver used for linking
            objects: Object files
            libraries: Static archives
            output_path: Output file
            flags: Additional linker flags
            shared: Produce a loadable module instead of an executable

        Returns:
            Path to the linked artifact

        Raises:
            LinkError: If linking fails
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = [str(linker_path)]
        if shared:
            cmd.append('-shared')
        cmd.extend(['-o', str(output_path)])
        cmd.extend(str(obj) for obj in objects)
        if libraries:
            cmd.append('-Wl,--start-group')
            cmd.extend(str(lib) for lib in libraries)
            cmd.append('-Wl,--end-group')
        cmd.extend(flags or [])

        if self.show_progress:
            print(f"Linking {output_path.name}...")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=COMMAND_TIMEOUT
            )

            if result.returncode != 0:
                error_msg = f"Linking failed for {output_path.name}\n"
                error_msg += f"stderr: {result.stderr}\n"
                error_msg += f"stdout: {result.stdout}"
                raise LinkError(error_msg)

            return output_path

        except subprocess.TimeoutExpired as e:
            raise LinkError(f"Linking timeout for {output_path.name}") from e
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except Exception as e:
            if isinstance(e, LinkError):
                raise
            raise LinkError(f"Failed to link {output_path.name}: {e}") from e

    def _write_response_file(self, output_path: Path, include_flags: List[str]) -> Path:
        """Write include paths to a response file next to the object.

        Args:
            output_path: Object file the response file belongs to
            include_flags: List of -I include flags

        Returns:
            Path to generated response file
        """
        response_file = output_path.with_suffix(output_path.suffix + ".rsp")
        response_file.parent.mkdir(parents=True, exist_ok=True)

        with open(response_file, 'w') as f:
            f.write('\n'.join(include_flags))

        return response_file
