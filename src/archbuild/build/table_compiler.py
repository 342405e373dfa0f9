"""
Table compilation for archbuild.

A data table is a C source file that is compiled with its owning unit's
include paths and definitions, archived, extracted again, and passed to an
external converter (elf2cfetbl by default) that writes the binary table.

Which source file is used for a (target, table) pair is decided by an
ordered list of source strategies; the first one that names an existing file
wins. This lets a mission override a table per target or mission-wide
without modifying the owning unit.
"""

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from ..config.layout import MissionLayout
from ..errors import ArchBuildError
from ..interrupt_utils import handle_keyboard_interrupt_properly
from ..model import TableArtifact, Unit
from .compilation_executor import COMMAND_TIMEOUT
from .planner import ArchitecturePlan, TableJob
from .registry import ModuleRegistry
from .toolchain import Toolchain

DEFAULT_TABLE_TOOL = "elf2cfetbl"
TABLE_SOURCE_SUFFIX = ".c"
TABLE_BINARY_SUFFIX = ".tbl"


class MissingTableSourceError(ArchBuildError):
    """Raised when no source file exists for a table."""

    def __init__(self, unit: str, table_name: str, target: str, searched: List[Path]):
        self.unit = unit
        self.table_name = table_name
        self.target = target
        self.searched = list(searched)
        locations = "\n".join(f"  {path}" for path in self.searched)
        super().__init__(
            f"No source file for table {table_name} of unit {unit} on {target}; searched:\n{locations}"
        )


class TableConversionError(ArchBuildError):
    """Raised when the table converter fails or does not produce the expected file."""

    pass


@dataclass
class TableSourceRequest:
    """Inputs for table source selection."""

    target: str
    table_name: str
    declared_source: Path
    unit: Unit
    mission_defs: Path
    mission_source_dir: Path


@dataclass
class TableSourceStrategy:
    """One override level: returns a candidate path, or None if not applicable."""

    name: str
    locate: Callable[[TableSourceRequest], Optional[Path]]


def _absolute_declared(req: TableSourceRequest) -> Optional[Path]:
    return req.declared_source if req.declared_source.is_absolute() else None


def _target_file(req: TableSourceRequest) -> str:
    return f"{req.target}_{req.table_name}{TABLE_SOURCE_SUFFIX}"


def _default_file(req: TableSourceRequest) -> str:
    return f"{req.table_name}{TABLE_SOURCE_SUFFIX}"


# Priority order matters: first existing candidate wins
TABLE_SOURCE_STRATEGIES: List[TableSourceStrategy] = [
    TableSourceStrategy(
        "mission target override",
        lambda req: req.mission_defs / "tables" / _target_file(req),
    ),
    TableSourceStrategy(
        "mission source target override",
        lambda req: req.mission_source_dir / "tables" / _target_file(req),
    ),
    TableSourceStrategy(
        "mission per-target folder",
        lambda req: req.mission_defs / req.target / "tables" / _default_file(req),
    ),
    TableSourceStrategy(
        "mission default",
        lambda req: req.mission_defs / "tables" / _default_file(req),
    ),
    TableSourceStrategy(
        "mission source default",
        lambda req: req.mission_source_dir / "tables" / _default_file(req),
    ),
    TableSourceStrategy("absolute declared path", _absolute_declared),
    TableSourceStrategy(
        "unit source root",
        lambda req: req.unit.resolve_path(req.declared_source),
    ),
]


class TableSourceResolver:
    """
    Selects the source file for a table.

    Example usage:
        resolver = TableSourceResolver(layout)
        path, level = resolver.resolve(unit, "cpu1", Path("fsw/tables/power.c"))
        # level is the 1-based priority of the strategy that matched
    """

    def __init__(self, layout: MissionLayout, strategies: Optional[List[TableSourceStrategy]] = None):
        self.layout = layout
        self.strategies = strategies if strategies is not None else TABLE_SOURCE_STRATEGIES

    def resolve(self, unit: Unit, target: str, declared_source: Path) -> Tuple[Path, int]:
        """
        Resolve the table source for one target.

        Returns:
            Tuple of (source path, 1-based strategy level)

        Raises:
            MissingTableSourceError: If no strategy yields an existing file
        """
        declared_source = Path(declared_source)
        request = TableSourceRequest(
            target=target,
            table_name=declared_source.stem,
            declared_source=declared_source,
            unit=unit,
            mission_defs=self.layout.mission_defs,
            mission_source_dir=self.layout.mission_source_dir,
        )

        searched = []
        for level, strategy in enumerate(self.strategies, start=1):
            candidate = strategy.locate(request)
            if candidate is None:
                continue
            searched.append(candidate)
            if candidate.is_file():
                return candidate, level

        raise MissingTableSourceError(unit.name, request.table_name, target, searched)


class TableConverter:
    """Runs the external table conversion tool on a compiled table object."""

    def __init__(self, tool: Optional[Path] = None, show_progress: bool = False):
        self.tool = tool
        self.show_progress = show_progress

    def tool_path(self) -> Path:
        """
        Locate the converter.

        Raises:
            TableConversionError: If the tool cannot be found
        """
        if self.tool is not None:
            if not Path(self.tool).exists():
                raise TableConversionError(f"Table tool not found: {self.tool}")
            return Path(self.tool)
        found = shutil.which(DEFAULT_TABLE_TOOL)
        if not found:
            raise TableConversionError(f"Table tool '{DEFAULT_TABLE_TOOL}' not found in PATH")
        return Path(found)

    def convert(self, object_file: Path, work_dir: Path, expected_output: Path) -> Path:
        """
        Convert a table object into a binary table.

        The converter chooses its output file name from data embedded in the
        table source; only the expected name is checked afterwards.

        Raises:
            TableConversionError: If the tool fails or expected_output is absent
        """
        cmd = [str(self.tool_path()), str(object_file)]
        if self.show_progress:
            print(f"Converting {object_file.name} -> {expected_output.name}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=COMMAND_TIMEOUT,
                cwd=str(work_dir)
            )
        except subprocess.TimeoutExpired as e:
            raise TableConversionError(f"Table conversion timeout for {object_file.name}") from e
        except KeyboardInterrupt as ke:
            handle_keyboard_interrupt_properly(ke)
            raise  # Never reached, but satisfies type checker
        except OSError as e:
            raise TableConversionError(f"Failed to run table tool for {object_file.name}: {e}") from e

        if result.returncode != 0:
            raise TableConversionError(
                f"Table conversion failed for {object_file.name}\n"
                f"stderr: {result.stderr}\nstdout: {result.stdout}"
            )
        if not expected_output.exists():
            raise TableConversionError(
                f"Table tool did not produce {expected_output.name} from {object_file.name}; "
                "the output name embedded in the table source must match the table name"
            )
        return expected_output


class TableCompiler:
    """
    Builds binary tables, one independent job per (target, table).

    Example usage:
        compiler = TableCompiler(layout, toolchain, converter)
        for job in plan.table_jobs:
            artifact = compiler.build(plan, job)
    """

    def __init__(
        self,
        layout: MissionLayout,
        toolchain: Toolchain,
        converter: TableConverter,
        registry: ModuleRegistry,
        verbose: bool = False
    ):
        self.layout = layout
        self.toolchain = toolchain
        self.converter = converter
        self.registry = registry
        self.resolver = TableSourceResolver(layout)
        self.verbose = verbose

    def build(self, plan: ArchitecturePlan, job: TableJob) -> TableArtifact:
        """
        Build one table for one target.

        Steps: select source, compile with the owning unit's metadata,
        archive, extract the object, run the converter.

        Raises:
            MissingTableSourceError: If no table source exists
            CompilationError: If the table source does not compile
            ArchiveError: If archiving/extraction fails
            TableConversionError: If conversion fails
        """
        unit = self.registry.get(job.unit)
        source, _level = self.resolver.resolve(unit, job.target, job.declared_source)
        if self.verbose:
            print(f"NOTE: Selected {source} as source for {job.unit}.{job.table_name} on {job.target}")

        work_dir = self.layout.get_table_dir(plan.name, job.target, job.unit, job.table_name)
        work_dir.mkdir(parents=True, exist_ok=True)

        member = f"{source.stem}.o"
        obj = self.toolchain.compile(source, work_dir / "obj" / member, plan.metadata(job.unit))
        archive = self.toolchain.archive([obj], work_dir / f"lib{job.name}.a")
        extracted = self.toolchain.extract_object(archive, member, work_dir)

        binary = self.converter.convert(
            extracted, work_dir, work_dir / f"{job.table_name}{TABLE_BINARY_SUFFIX}"
        )
        return TableArtifact(
            target=job.target, unit=job.unit, table_name=job.table_name, binary_path=binary
        )
