"""Staging of built artifacts into per-target install trees.

Every InstallAction copies one built file to one destination. All actions
are checked before anything is copied, so a collision never leaves a
half-staged tree behind.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from ..errors import ArchBuildError
from ..model import InstallAction


class InstallError(ArchBuildError):
    """Raised when an artifact cannot be staged."""

    pass


class InstallCollisionError(InstallError):
    """Raised when two different files would be installed to the same path."""

    def __init__(self, destination: Path, first: InstallAction, second: InstallAction):
        self.destination = destination
        self.first = first
        self.second = second
        super().__init__(
            f"Install collision at {destination}: {first.source} ({first.unit}, {first.target}) "
            f"and {second.source} ({second.unit}, {second.target})"
        )


@dataclass
class InstallResult:
    """Result of an install run."""

    installed: List[Path] = field(default_factory=list)
    skipped_duplicates: int = 0


class Installer:
    """
    Copies built artifacts to their install destinations.

    Example usage:
        installer = Installer(verbose=True)
        result = installer.install(plan.install_actions)
        print(f"Installed {len(result.installed)} files")
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def check(self, actions: List[InstallAction]) -> List[InstallAction]:
        """
        Check actions for collisions and drop exact repeats.

        Returns:
            Actions with duplicates removed, in original order

        Raises:
            InstallCollisionError: If two actions install different files to one path
        """
        by_destination: Dict[Path, InstallAction] = {}
        unique = []
        for action in actions:
            existing = by_destination.get(action.destination)
            if existing is None:
                by_destination[action.destination] = action
                unique.append(action)
            elif Path(existing.source) != Path(action.source):
                raise InstallCollisionError(action.destination, existing, action)
        return unique

    def install(self, actions: List[InstallAction]) -> InstallResult:
        """
        Stage all actions.

        Raises:
            InstallCollisionError: If two actions collide (nothing is copied)
            InstallError: If a source file is missing or cannot be copied
        """
        unique = self.check(actions)
        result = InstallResult(skipped_duplicates=len(actions) - len(unique))

        for action in unique:
            source = Path(action.source)
            if not source.exists():
                raise InstallError(f"Cannot install {action.unit} for {action.target}: {source} does not exist")
            action.destination.parent.mkdir(parents=True, exist_ok=True)
            try:
                shutil.copy2(source, action.destination)
            except OSError as e:
                raise InstallError(f"Failed to install {source} to {action.destination}: {e}") from e
            result.installed.append(action.destination)
            if self.verbose:
                print(f"  Installed {action.destination}")

        logging.info(f"Installed {len(result.installed)} files")
        return result
