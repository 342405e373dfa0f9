"""Standalone compile check of public headers.

For each public header of a unit a one-line source file including only that
header is generated and compiled with the unit's interface include paths and
definitions. A header that needs something its users would have to include
first fails to compile.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List

from ..config.layout import MissionLayout
from .planner import ArchitecturePlan
from .registry import ModuleRegistry
from .toolchain import Toolchain

CHECK_SOURCE_TEMPLATE = '#include "{header}"\n'


@dataclass
class HeaderCheck:
    """One header to check."""

    unit: str
    header: Path
    source: Path
    output: Path


class HeaderChecker:
    """Generates and compiles header check sources for one architecture."""

    def __init__(self, registry: ModuleRegistry, layout: MissionLayout, toolchain: Toolchain):
        self.registry = registry
        self.layout = layout
        self.toolchain = toolchain

    def checks_for(self, plan: ArchitecturePlan, unit_name: str) -> List[HeaderCheck]:
        unit = self.registry.get(unit_name)
        work_dir = self.layout.get_header_check_dir(plan.name, unit_name)
        checks = []
        for header in unit.headers:
            stem = Path(header).name.replace(".", "_")
            checks.append(HeaderCheck(
                unit=unit_name,
                header=Path(header),
                source=work_dir / "src" / f"check_{stem}.c",
                output=work_dir / "obj" / f"check_{stem}.o",
            ))
        return checks

    def write_source(self, check: HeaderCheck) -> Path:
        check.source.parent.mkdir(parents=True, exist_ok=True)
        # Include by file name; the unit's public include dirs locate it
        check.source.write_text(CHECK_SOURCE_TEMPLATE.format(header=check.header.name), encoding="utf-8")
        return check.source

    def check(self, plan: ArchitecturePlan, check: HeaderCheck) -> Path:
        """
        Compile one header check.

        Raises:
            CompilationError: If the header does not compile on its own
        """
        self.write_source(check)
        return self.toolchain.compile(check.source, check.output, plan.build_plan.interface[check.unit])
