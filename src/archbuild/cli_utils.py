"""CLI utility functions for archbuild.

This module provides common utilities used across CLI commands including:
- Mission detection (mission.ini) and architecture validation
- Error handling and formatting
- Log file setup
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from archbuild.config import MISSION_FILE, MissionConfig, MissionConfigError
from archbuild.errors import ArchBuildError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_file: Path, verbose: bool = False) -> None:
    """Send log records to a rotating log file in the build root.

    Args:
        log_file: Log file path
        verbose: Also log to the console
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(logging.INFO)

    if verbose:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console_handler)

    file_handler = RotatingFileHandler(
        str(log_file),
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=3,
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)


class MissionDetector:
    """Handles mission and architecture detection from mission.ini."""

    @staticmethod
    def detect_architectures(project_dir: Path, architecture: Optional[str] = None) -> List[str]:
        """Validate or list architecture names from mission.ini.

        Args:
            project_dir: Project directory containing mission.ini
            architecture: Optional explicit architecture name

        Returns:
            Architecture names to process

        Raises:
            FileNotFoundError: If mission.ini doesn't exist
            MissionConfigError: If the architecture is unknown or no target is declared
        """
        ini_path = project_dir / MISSION_FILE
        if not ini_path.exists():
            raise FileNotFoundError(f"{MISSION_FILE} not found in {project_dir}")

        config = MissionConfig(ini_path)
        mission = config.get_mission_settings()
        known = []
        for name in config.get_target_names():
            arch = config.get_target(name, mission).architecture
            if arch not in known:
                known.append(arch)

        if not known:
            raise MissionConfigError(f"No targets found in {MISSION_FILE}")
        if architecture is None:
            return known
        if architecture not in known:
            raise MissionConfigError(
                f"Architecture '{architecture}' has no targets in {MISSION_FILE} "
                f"(known: {', '.join(known)})"
            )
        return [architecture]


class ErrorFormatter:
    """Formats and displays error messages with ANSI color codes."""

    # ANSI color codes
    RED = "\033[1;31m"
    GREEN = "\033[1;32m"
    YELLOW = "\033[1;33m"
    RESET = "\033[0m"

    @staticmethod
    def print_error(title: str, message: str) -> None:
        """Print formatted error message.

        Args:
            title: Error title (e.g., "Build failed")
            message: Error message details
        """
        print()
        print(f"{ErrorFormatter.RED}✗ {title}{ErrorFormatter.RESET}")
        print()
        print(message)
        print()

    @staticmethod
    def print_success(message: str) -> None:
        print()
        print(f"{ErrorFormatter.GREEN}✓ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def print_warning(message: str) -> None:
        print()
        print(f"{ErrorFormatter.YELLOW}✗ {message}{ErrorFormatter.RESET}")

    @staticmethod
    def handle_file_not_found(error: FileNotFoundError) -> None:
        """Handle FileNotFoundError with standard formatting."""
        ErrorFormatter.print_error("Error: File not found", str(error))
        print(f"Make sure you're in a mission directory with a {MISSION_FILE} file.")
        sys.exit(1)

    @staticmethod
    def handle_build_error(error: ArchBuildError) -> None:
        """Handle configuration and structural build errors."""
        ErrorFormatter.print_error(f"Error: {type(error).__name__}", str(error))
        sys.exit(1)

    @staticmethod
    def handle_keyboard_interrupt() -> None:
        """Handle KeyboardInterrupt with standard formatting."""
        ErrorFormatter.print_warning("Build interrupted")
        sys.exit(130)  # Standard exit code for SIGINT

    @staticmethod
    def handle_unexpected_error(error: Exception, verbose: bool = False) -> None:
        """Handle unexpected errors with standard formatting.

        Args:
            error: The exception to handle
            verbose: Whether to print traceback
        """
        message = f"{type(error).__name__}: {error}"
        ErrorFormatter.print_error("Unexpected error", message)

        if verbose:
            import traceback

            print("Traceback:")
            print(traceback.format_exc())

        sys.exit(1)


class BannerFormatter:
    """Formats and displays banner messages with borders."""

    DEFAULT_WIDTH = 80
    DEFAULT_BORDER_CHAR = "="

    @staticmethod
    def format_banner(message: str, width: int = DEFAULT_WIDTH, border_char: str = DEFAULT_BORDER_CHAR) -> str:
        """Format a centered banner message with top and bottom borders."""
        border = border_char * width
        lines = [border]
        for line in message.split("\n"):
            lines.append(" " * ((width - len(line)) // 2) + line)
        lines.append(border)
        return "\n".join(lines)

    @staticmethod
    def print_banner(message: str, width: int = DEFAULT_WIDTH) -> None:
        print()
        print(BannerFormatter.format_banner(message, width=width))


class PathValidator:
    """Validates project paths and directories."""

    @staticmethod
    def validate_project_dir(project_dir: Path) -> None:
        """Validate that project directory exists and is a directory.

        Raises:
            SystemExit: If path doesn't exist or isn't a directory
        """
        if not project_dir.exists():
            print(f"{ErrorFormatter.RED}✗ Error: Path does not exist: {project_dir}{ErrorFormatter.RESET}")
            sys.exit(2)
        if not project_dir.is_dir():
            print(f"{ErrorFormatter.RED}✗ Error: Path is not a directory: {project_dir}{ErrorFormatter.RESET}")
            sys.exit(2)
