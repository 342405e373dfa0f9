"""Filesystem layout for archbuild projects.

This module owns every path the build system derives from the project
directory, so no other component synthesizes directory names on its own.

Layout Structure:
    <project>/
    ├── mission.ini
    ├── <mission>_defs/               # Mission definitions (table/file overrides)
    │   ├── tables/
    │   └── <target>/tables/
    └── .archbuild/
        ├── build/
        │   ├── archbuild.log
        │   └── {arch}/
        │       ├── units/{unit}/     # Objects and archive/module per unit
        │       ├── tables/{target}_{unit}_{table}/
        │       ├── coverage/{test_name}/
        │       ├── headercheck/{unit}/
        │       └── targets/{target}/ # core-{target} executable
        └── exe/
            └── {target}/{install_subdir}/

The build root can be relocated with ARCHBUILD_BUILD_DIR and the staging
root with ARCHBUILD_INSTALL_DIR.
"""

import os
from pathlib import Path
from typing import Optional

from ..build.build_utils import safe_rmtree
from ..model import MissionSettings


class MissionLayout:
    """Computes build, scratch and staging paths for a mission."""

    def __init__(self, project_dir: Optional[Path] = None, mission: Optional[MissionSettings] = None):
        """Initialize layout.

        Args:
            project_dir: Project directory. If None, uses current directory.
            mission: Mission settings (mission defs/source dir locations)
        """
        if project_dir is None:
            project_dir = Path.cwd()
        self.project_dir = Path(project_dir).resolve()
        self.mission = mission if mission is not None else MissionSettings()

        build_env = os.environ.get("ARCHBUILD_BUILD_DIR")
        if build_env:
            self.build_root = Path(build_env).resolve()
        else:
            self.build_root = self.project_dir / ".archbuild" / "build"

        install_env = os.environ.get("ARCHBUILD_INSTALL_DIR")
        if install_env:
            self.install_root = Path(install_env).resolve()
        else:
            self.install_root = self.project_dir / ".archbuild" / "exe"

    def _project_path(self, path: Optional[Path], default: Path) -> Path:
        if path is None:
            return default
        path = Path(path)
        return path if path.is_absolute() else self.project_dir / path

    @property
    def mission_defs(self) -> Path:
        """Mission definitions directory (defaults to <project>/<name>_defs)."""
        return self._project_path(
            self.mission.mission_defs, self.project_dir / f"{self.mission.name}_defs"
        )

    @property
    def mission_source_dir(self) -> Path:
        """Mission source directory (defaults to the project directory)."""
        return self._project_path(self.mission.mission_source_dir, self.project_dir)

    @property
    def log_file(self) -> Path:
        return self.build_root / "archbuild.log"

    def get_arch_build_dir(self, arch: str) -> Path:
        return self.build_root / arch

    def get_unit_build_dir(self, arch: str, unit: str) -> Path:
        return self.get_arch_build_dir(arch) / "units" / unit

    def get_table_dir(self, arch: str, target: str, unit: str, table: str) -> Path:
        """Scratch directory for one (target, unit, table) conversion."""
        return self.get_arch_build_dir(arch) / "tables" / f"{target}_{unit}_{table}"

    def get_coverage_dir(self, arch: str, name: str) -> Path:
        return self.get_arch_build_dir(arch) / "coverage" / name

    def get_header_check_dir(self, arch: str, unit: str) -> Path:
        return self.get_arch_build_dir(arch) / "headercheck" / unit

    def get_target_build_dir(self, arch: str, target: str) -> Path:
        return self.get_arch_build_dir(arch) / "targets" / target

    def get_install_dir(self, target: str, subdir: str = "") -> Path:
        """Staging directory for a target ({target}/{subdir})."""
        base = self.install_root / target
        return base / subdir if subdir else base

    def clean_build(self, arch: Optional[str] = None) -> None:
        """Remove build artifacts for one architecture, or everything.

        Args:
            arch: Architecture name; None removes the whole build and staging trees
        """
        if arch is not None:
            safe_rmtree(self.get_arch_build_dir(arch))
            return
        safe_rmtree(self.build_root)
        safe_rmtree(self.install_root)
