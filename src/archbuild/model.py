"""
Data model for archbuild.

This module defines the declarative records the build system works with:
- Unit: a buildable library, executable, loadable module or table set
- Target: a deployable configuration (one CPU) bundling units
- Architecture: a toolchain-equivalence class grouping targets
- Artifacts produced while building (tables, coverage runners, installs)
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

DEFAULT_INSTALL_SUBDIR = "cf"
DEFAULT_UT_INSTALL_SUBDIR = "ut-bin"


class UnitKind(Enum):
    """Kind of buildable unit."""

    LIBRARY = "library"
    EXECUTABLE = "executable"
    MODULE = "module"
    TABLE = "table"

    @classmethod
    def from_string(cls, value: str) -> "UnitKind":
        """Convert string to UnitKind.

        Raises:
            ValueError: If the value does not name a unit kind
        """
        return cls(value.strip().lower())


class LinkType(Enum):
    """How a unit is linked on an architecture."""

    STATIC = "static"
    DYNAMIC = "dynamic"

    @classmethod
    def from_string(cls, value: str) -> "LinkType":
        return cls(value.strip().lower())


@dataclass
class CoverageTestSpec:
    """A coverage test declared for a unit.

    Attributes:
        module: Name of the unit the test belongs to
        unit_name: Name of the unit-under-test (one source group of the module)
        sources_under_test: Sources compiled with coverage instrumentation
        test_sources: Test-case sources linked into the runner
        override_includes: Include dirs applied to sources_under_test only
    """

    module: str
    unit_name: str
    sources_under_test: List[Path]
    test_sources: List[Path]
    override_includes: List[Path] = field(default_factory=list)


@dataclass
class Unit:
    """A named buildable thing.

    Paths in sources, tables, stub_sources, headers and the include lists are
    relative to source_root unless absolute.
    """

    name: str
    kind: UnitKind
    sources: List[Path] = field(default_factory=list)
    declared_dependencies: List[str] = field(default_factory=list)
    link_type: LinkType = LinkType.STATIC
    source_root: Optional[Path] = None
    public_includes: List[Path] = field(default_factory=list)
    public_definitions: List[str] = field(default_factory=list)
    private_includes: List[Path] = field(default_factory=list)
    private_definitions: List[str] = field(default_factory=list)
    tables: List[Path] = field(default_factory=list)
    stub_sources: List[Path] = field(default_factory=list)
    headers: List[Path] = field(default_factory=list)
    coverage_tests: List[CoverageTestSpec] = field(default_factory=list)

    def resolve_path(self, path: Path) -> Path:
        """Resolve a unit-relative path against the unit's source root."""
        path = Path(path)
        if path.is_absolute() or self.source_root is None:
            return path
        return self.source_root / path

    def source_paths(self) -> List[Path]:
        return [self.resolve_path(src) for src in self.sources]


@dataclass
class Target:
    """A deployable configuration (typically one processor).

    Attributes:
        name: Unique target name (e.g., 'cpu1')
        architecture: Name of the architecture the target is compiled for
        unit_list: Units loaded dynamically at runtime on this target
        static_unit_list: Units linked statically into the target executable
        install_subdir: Staging subdirectory under the target directory
        file_list: Extra files to stage for this target
        psp_modules: Platform support modules linked into the target executable
    """

    name: str
    architecture: str
    unit_list: List[str] = field(default_factory=list)
    static_unit_list: List[str] = field(default_factory=list)
    install_subdir: str = DEFAULT_INSTALL_SUBDIR
    file_list: List[str] = field(default_factory=list)
    psp_modules: List[str] = field(default_factory=list)

    def all_units(self) -> List[str]:
        """Dynamic units followed by static units, in declaration order."""
        return list(self.unit_list) + [u for u in self.static_unit_list if u not in self.unit_list]


@dataclass
class ToolchainSettings:
    """Toolchain settings shared by every target of an architecture."""

    cc: str = "gcc"
    ar: str = "ar"
    cflags: List[str] = field(default_factory=list)
    ldflags: List[str] = field(default_factory=list)
    table_tool: Optional[Path] = None
    coverage_compile_flags: List[str] = field(default_factory=lambda: ["-O0", "--coverage"])
    coverage_link_flags: List[str] = field(default_factory=lambda: ["--coverage"])


@dataclass
class Architecture:
    """Groups targets that must be built with identical toolchain settings."""

    name: str
    targets: List[str] = field(default_factory=list)
    toolchain: ToolchainSettings = field(default_factory=ToolchainSettings)


@dataclass
class CompileMetadata:
    """Include paths and compile definitions applied to a compilation."""

    include_paths: List[Path] = field(default_factory=list)
    definitions: List[str] = field(default_factory=list)

    def merged(self, other: "CompileMetadata") -> "CompileMetadata":
        """Return a copy extended by other, keeping first-seen order."""
        includes = list(self.include_paths)
        for inc in other.include_paths:
            if inc not in includes:
                includes.append(inc)
        definitions = list(self.definitions)
        for definition in other.definitions:
            if definition not in definitions:
                definitions.append(definition)
        return CompileMetadata(include_paths=includes, definitions=definitions)


@dataclass
class TableArtifact:
    """Binary table produced for one (target, unit, table) triple."""

    target: str
    unit: str
    table_name: str
    binary_path: Path


@dataclass
class CoverageTestUnit:
    """A coverage test runner assembled for one unit-under-test."""

    module: str
    test_name: str
    sources_under_test: List[Path]
    test_sources: List[Path] = field(default_factory=list)
    stub_replacements: List[str] = field(default_factory=list)
    override_includes: List[Path] = field(default_factory=list)


@dataclass
class InstallAction:
    """Copy one artifact into a target's staging tree."""

    unit: str
    target: str
    source: Path
    destination: Path


@dataclass
class MissionSettings:
    """Mission-wide settings from the [mission] section."""

    name: str = "mission"
    mission_defs: Optional[Path] = None
    mission_source_dir: Optional[Path] = None
    install_subdir: str = DEFAULT_INSTALL_SUBDIR
    ut_install_subdir: str = DEFAULT_UT_INSTALL_SUBDIR
    core_modules: List[str] = field(default_factory=list)
    core_interfaces: List[str] = field(default_factory=list)
