"""
mission.ini configuration parser.

This module parses the mission configuration file, which declares every
unit, target and architecture of a mission, and loads those declarations
into a ModuleRegistry.
"""

import configparser
from pathlib import Path
from typing import Dict, List, Optional

from ..build.registry import ModuleRegistry
from ..build.resolver import MissingDependencyMetadataError
from ..errors import ArchBuildError
from ..model import (
    DEFAULT_INSTALL_SUBDIR,
    DEFAULT_UT_INSTALL_SUBDIR,
    Architecture,
    CoverageTestSpec,
    LinkType,
    MissionSettings,
    Target,
    ToolchainSettings,
    Unit,
    UnitKind,
)

MISSION_FILE = "mission.ini"


class MissionConfigError(ArchBuildError):
    """Exception raised for mission.ini configuration errors."""

    pass


def split_list(value: Optional[str]) -> List[str]:
    """
    Split a list-valued option.

    Items may be separated by whitespace, commas or newlines.

    Example:
        split_list("osal, psp\\n core_api") -> ['osal', 'psp', 'core_api']
    """
    if not value:
        return []
    return [item for item in value.replace(",", " ").split() if item]


class MissionConfig:
    """
    Parser for mission.ini configuration files.

    Section types:
        [mission]                  mission-wide settings
        [arch:<name>]              toolchain settings for an architecture
        [unit:<name>]              a buildable unit
        [coverage:<module>:<unit>] a coverage test of a unit
        [target:<name>]            a deployable target

    Example mission.ini:
        [mission]
        name = sample
        core_interfaces = core_api

        [unit:sample_app]
        kind = module
        source_root = apps/sample_app
        sources = fsw/src/sample_app.c
        depends = sample_lib

        [target:cpu1]
        architecture = native
        apps = sample_app

    Usage:
        config = MissionConfig(Path("mission.ini"))
        registry = config.load_registry()
    """

    UNIT_REQUIRED_FIELDS = {"kind"}
    TARGET_REQUIRED_FIELDS = {"architecture"}

    def __init__(self, ini_path: Path):
        """
        Initialize the parser with a mission.ini file.

        Raises:
            MissionConfigError: If the file doesn't exist or cannot be parsed
        """
        self.ini_path = Path(ini_path)
        self.project_dir = self.ini_path.resolve().parent

        if not self.ini_path.exists():
            raise MissionConfigError(f"Configuration file not found: {self.ini_path}")

        self.config = configparser.ConfigParser(
            allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
        )

        try:
            self.config.read(self.ini_path, encoding="utf-8")
        except configparser.Error as e:
            raise MissionConfigError(f"Failed to parse {self.ini_path}: {e}") from e

    def _sections(self, prefix: str) -> List[str]:
        return [s.split(":", 1)[1] for s in self.config.sections() if s.startswith(prefix + ":")]

    def _section(self, name: str) -> Dict[str, str]:
        try:
            return {key: value.strip() for key, value in self.config[name].items()}
        except configparser.Error as e:
            raise MissionConfigError(f"Invalid value in [{name}]: {e}") from e

    def _path(self, value: Optional[str]) -> Optional[Path]:
        if not value:
            return None
        path = Path(value)
        return path if path.is_absolute() else self.project_dir / path

    def get_unit_names(self) -> List[str]:
        return self._sections("unit")

    def get_target_names(self) -> List[str]:
        return self._sections("target")

    def get_architecture_names(self) -> List[str]:
        return self._sections("arch")

    def get_mission_settings(self) -> MissionSettings:
        """Parse the [mission] section (all keys optional)."""
        section = self._section("mission") if self.config.has_section("mission") else {}
        return MissionSettings(
            name=section.get("name", "mission"),
            mission_defs=self._path(section.get("mission_defs")),
            mission_source_dir=self._path(section.get("mission_source_dir")),
            install_subdir=section.get("install_subdir") or DEFAULT_INSTALL_SUBDIR,
            ut_install_subdir=section.get("ut_install_subdir") or DEFAULT_UT_INSTALL_SUBDIR,
            core_modules=split_list(section.get("core_modules")),
            core_interfaces=split_list(section.get("core_interfaces")),
        )

    def get_architecture(self, name: str) -> Architecture:
        """Parse an [arch:<name>] section."""
        section = self._section(f"arch:{name}")
        defaults = ToolchainSettings()
        settings = ToolchainSettings(
            cc=section.get("cc") or defaults.cc,
            ar=section.get("ar") or defaults.ar,
            cflags=split_list(section.get("cflags")),
            ldflags=split_list(section.get("ldflags")),
            table_tool=self._path(section.get("table_tool")),
        )
        if "coverage_compile_flags" in section:
            settings.coverage_compile_flags = split_list(section["coverage_compile_flags"])
        if "coverage_link_flags" in section:
            settings.coverage_link_flags = split_list(section["coverage_link_flags"])
        return Architecture(name=name, toolchain=settings)

    def get_unit(self, name: str) -> Unit:
        """
        Parse a [unit:<name>] section.

        Dependencies are returned in Unit.declared_dependencies but are only
        checked when loaded into a registry.

        Raises:
            MissionConfigError: If required fields are missing or invalid
        """
        section = self._section(f"unit:{name}")
        missing = self.UNIT_REQUIRED_FIELDS - set(section.keys())
        if missing:
            raise MissionConfigError(
                f"Unit '{name}' is missing required fields: {', '.join(sorted(missing))}"
            )

        try:
            kind = UnitKind.from_string(section["kind"])
            link_type = LinkType.from_string(section.get("link_type") or "static")
        except ValueError as e:
            raise MissionConfigError(f"Unit '{name}': {e}") from e

        def paths(key: str) -> List[Path]:
            return [Path(item) for item in split_list(section.get(key))]

        return Unit(
            name=name,
            kind=kind,
            sources=paths("sources"),
            declared_dependencies=split_list(section.get("depends")),
            link_type=link_type,
            source_root=self._path(section.get("source_root")) or self.project_dir,
            public_includes=paths("public_includes"),
            public_definitions=split_list(section.get("public_defines")),
            private_includes=paths("private_includes"),
            private_definitions=split_list(section.get("private_defines")),
            tables=paths("tables"),
            stub_sources=paths("stubs"),
            headers=paths("headers"),
        )

    def get_coverage_tests(self) -> List[CoverageTestSpec]:
        """Parse every [coverage:<module>:<unit>] section."""
        tests = []
        for key in self._sections("coverage"):
            parts = key.split(":")
            if len(parts) != 2 or not all(parts):
                raise MissionConfigError(
                    f"Invalid coverage section [coverage:{key}], expected [coverage:<module>:<unit>]"
                )
            section = self._section(f"coverage:{key}")
            sources_under_test = [Path(p) for p in split_list(section.get("sources_under_test"))]
            if not sources_under_test:
                raise MissionConfigError(f"Coverage test '{key}' has no sources_under_test")
            tests.append(CoverageTestSpec(
                module=parts[0],
                unit_name=parts[1],
                sources_under_test=sources_under_test,
                test_sources=[Path(p) for p in split_list(section.get("test_sources"))],
                override_includes=[Path(p) for p in split_list(section.get("override_includes"))],
            ))
        return tests

    def get_target(self, name: str, mission: MissionSettings) -> Target:
        """Parse a [target:<name>] section."""
        section = self._section(f"target:{name}")
        missing = self.TARGET_REQUIRED_FIELDS - set(section.keys())
        if missing:
            raise MissionConfigError(
                f"Target '{name}' is missing required fields: {', '.join(sorted(missing))}"
            )
        return Target(
            name=name,
            architecture=section["architecture"],
            unit_list=split_list(section.get("apps")),
            static_unit_list=split_list(section.get("static_apps")),
            install_subdir=section.get("install_subdir") or mission.install_subdir,
            file_list=split_list(section.get("files")),
            psp_modules=split_list(section.get("psp_modules")),
        )

    def load_registry(self) -> ModuleRegistry:
        """
        Build a frozen ModuleRegistry from the configuration.

        Units are registered first, then dependency edges are declared, then
        coverage tests are attached, then architectures and targets are added.

        Raises:
            MissionConfigError: If any declaration is invalid
            MissingDependencyMetadataError: If a unit depends on an undeclared unit
            DuplicateUnitError: If a target name is declared twice
        """
        mission = self.get_mission_settings()
        registry = ModuleRegistry(mission)

        pending = []
        for name in self.get_unit_names():
            unit = self.get_unit(name)
            pending.append((name, unit.declared_dependencies))
            unit.declared_dependencies = []
            registry.register(unit)

        # Edges are declared once every unit exists, so order in the file does not matter
        for name, dependencies in pending:
            for dep in dependencies:
                if not registry.has_unit(dep):
                    raise MissingDependencyMetadataError(
                        f"Unit '{name}' depends on '{dep}', which is not declared in {self.ini_path.name}"
                    )
                registry.declare_dependency(name, dep)

        for test in self.get_coverage_tests():
            if not registry.has_unit(test.module):
                raise MissionConfigError(
                    f"Coverage test '{test.module}:{test.unit_name}' refers to unknown unit '{test.module}'"
                )
            registry.get(test.module).coverage_tests.append(test)

        for arch_name in self.get_architecture_names():
            registry.add_architecture(self.get_architecture(arch_name))
        for target_name in self.get_target_names():
            registry.add_target(self.get_target(target_name, mission))

        registry.freeze()
        return registry
