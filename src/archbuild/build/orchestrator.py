"""
Build orchestration for archbuild missions.

This module coordinates a complete mission build, from parsing mission.ini
to staged per-target install trees:
- Configuration parsing and registry loading (mission.ini)
- Per-architecture planning (order, linkage, static closure, installs)
- Parallel construction of units, tables and core executables
- Staging of artifacts into the install tree

Every structural problem (unknown units, cycles, linkage conflicts, install
collisions) is raised before the first compiler invocation. Errors of
individual build actions are collected and reported in the BuildResult.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ..config import MISSION_FILE, MissionConfig, MissionLayout
from ..errors import ArchBuildError
from ..model import Architecture, InstallAction, LinkType, TableArtifact, UnitKind
from .coverage import CoverageTestOrchestrator, TestOutcome, TestRegistry, UT_ASSERT_LIBRARY
from .header_check import HeaderChecker
from .build_utils import object_path
from .installer import Installer
from .planner import ArchitectureBuildPlanner, ArchitecturePlan
from .registry import ModuleRegistry
from .scheduler import SUCCEEDED, ActionResult, BuildAction, BuildScheduler
from .table_compiler import TableCompiler, TableConverter
from .toolchain import GccToolchain, Toolchain

# Loadable modules resolve their symbols against the core executable
CORE_LINK_FLAGS = ["-Wl,--export-dynamic"]
TEST_MANIFEST = "tests.json"


class BuildOrchestratorError(ArchBuildError):
    """Exception raised for build orchestration errors."""
    pass


@dataclass
class BuildResult:
    """Result of a complete build, test or header check run."""

    success: bool
    results: Dict[str, ActionResult] = field(default_factory=dict)
    tables: List[TableArtifact] = field(default_factory=list)
    installed: List[Path] = field(default_factory=list)
    tests: List[TestOutcome] = field(default_factory=list)
    build_time: float = 0.0
    message: str = ""

    @property
    def failures(self) -> List[ActionResult]:
        return [r for r in self.results.values() if r.status != SUCCEEDED]


def _default_toolchain(architecture: Architecture, verbose: bool) -> Toolchain:
    return GccToolchain(architecture.toolchain, show_progress=verbose)


def _default_converter(architecture: Architecture, verbose: bool) -> TableConverter:
    return TableConverter(architecture.toolchain.table_tool, show_progress=verbose)


class BuildOrchestrator:
    """
    Orchestrates mission builds across all architectures.

    The phases are:
    1. Parse mission.ini and load the module registry
    2. Plan every requested architecture
    3. Check install actions for collisions
    4. Build units, tables and core executables in parallel
    5. Stage artifacts to <install root>/<target>/<install_subdir>/

    Example usage:
        orchestrator = BuildOrchestrator(jobs=8, verbose=True)
        result = orchestrator.build(Path("."), architecture="native")
        if not result.success:
            for failure in result.failures:
                print(failure.name, failure.error)
    """

    def __init__(
        self,
        jobs: Optional[int] = None,
        verbose: bool = False,
        show_progress: bool = False,
        toolchain_factory: Optional[Callable[[Architecture, bool], Toolchain]] = None,
        converter_factory: Optional[Callable[[Architecture, bool], TableConverter]] = None
    ):
        """
        Initialize orchestrator.

        Args:
            jobs: Parallel build actions (default: one per logical CPU)
            verbose: Print progress messages
            show_progress: Show a progress bar while building
            toolchain_factory: Creates the toolchain for an architecture
            converter_factory: Creates the table converter for an architecture
        """
        self.jobs = jobs
        self.verbose = verbose
        self.show_progress = show_progress
        self.toolchain_factory = toolchain_factory or _default_toolchain
        self.converter_factory = converter_factory or _default_converter

    def load(self, project_dir: Path) -> Tuple[ModuleRegistry, MissionLayout]:
        """
        Load the mission registry and layout.

        Raises:
            BuildOrchestratorError: If mission.ini is missing
            MissionConfigError: If mission.ini is invalid
        """
        ini_path = Path(project_dir) / MISSION_FILE
        if not ini_path.exists():
            raise BuildOrchestratorError(f"{MISSION_FILE} not found in {project_dir}")
        config = MissionConfig(ini_path)
        registry = config.load_registry()
        layout = MissionLayout(config.project_dir, registry.mission)
        return registry, layout

    def plan(
        self,
        project_dir: Path,
        architecture: Optional[str] = None
    ) -> Tuple[ModuleRegistry, MissionLayout, List[ArchitecturePlan]]:
        """
        Load the mission and plan the requested architectures.

        Raises:
            BuildOrchestratorError: If the requested architecture has no targets
            ArchBuildError: Any structural error found while planning
        """
        registry, layout = self.load(project_dir)
        if architecture is not None:
            names = [architecture]
            if not registry.targets_for_architecture(architecture):
                raise BuildOrchestratorError(f"Architecture '{architecture}' has no targets")
        else:
            names = [a.name for a in registry.architectures()]

        planner = ArchitectureBuildPlanner(registry, layout, verbose=self.verbose)
        plans = [planner.plan(name) for name in names]
        return registry, layout, plans

    def build(
        self,
        project_dir: Path,
        architecture: Optional[str] = None,
        clean: bool = False,
        tables: bool = True
    ) -> BuildResult:
        """
        Build and stage the mission.

        Args:
            project_dir: Directory containing mission.ini
            architecture: Build only this architecture (default: all)
            clean: Remove previous build output first
            tables: Build and stage data tables

        Returns:
            BuildResult; failed and skipped actions are listed in failures

        Raises:
            ArchBuildError: Structural errors, before anything is built
        """
        start_time = time.time()

        if self.verbose:
            print("[1/4] Planning architectures...")
        registry, layout, plans = self.plan(project_dir, architecture)

        installer = Installer(verbose=self.verbose)
        table_binaries = [] if tables else self._table_binaries(layout, plans)
        install_actions = [a for p in plans for a in p.install_actions if a.source not in table_binaries]
        unique_installs = installer.check(install_actions)

        if clean:
            if self.verbose:
                print("[2/4] Cleaning build directories...")
            for plan in plans:
                layout.clean_build(plan.name)
        elif self.verbose:
            print("[2/4] Reusing build directories...")

        if self.verbose:
            print("[3/4] Building...")
        scheduler = BuildScheduler(jobs=self.jobs, show_progress=self.show_progress)
        producers: Dict[Path, str] = {}
        for plan in plans:
            toolchain = self.toolchain_factory(plan.architecture, self.verbose)
            self._add_unit_actions(scheduler, registry, plan, toolchain, producers)
            self._add_core_actions(scheduler, plan, toolchain, producers)
            if tables:
                compiler = TableCompiler(
                    layout, toolchain, self.converter_factory(plan.architecture, self.verbose),
                    registry, verbose=self.verbose,
                )
                self._add_table_actions(scheduler, layout, plan, compiler, producers)

        if self.verbose:
            print("[4/4] Staging artifacts...")
        for action in unique_installs:
            producer = producers.get(Path(action.source))
            name = f"install:{action.destination.relative_to(layout.install_root)}"
            scheduler.add(BuildAction(
                name,
                lambda action=action: installer.install([action]).installed[0],
                deps=[producer] if producer else [],
            ))

        results = scheduler.run()
        result = BuildResult(success=all(r.succeeded for r in results.values()), results=results)
        for name, action_result in results.items():
            if not action_result.succeeded:
                continue
            if isinstance(action_result.value, TableArtifact):
                result.tables.append(action_result.value)
            elif name.startswith("install:"):
                result.installed.append(action_result.value)

        result.build_time = time.time() - start_time
        result.message = self._summary_message("Build", result)
        logging.info(result.message)
        return result

    @staticmethod
    def _table_binaries(layout: MissionLayout, plans: List[ArchitecturePlan]) -> List[Path]:
        return [
            layout.get_table_dir(plan.name, job.target, job.unit, job.table_name) / f"{job.table_name}.tbl"
            for plan in plans
            for job in plan.table_jobs
        ]

    def _add_unit_actions(
        self,
        scheduler: BuildScheduler,
        registry: ModuleRegistry,
        plan: ArchitecturePlan,
        toolchain: Toolchain,
        producers: Dict[Path, str]
    ) -> None:
        """One action per unit with a binary; dependents wait for their dependencies."""
        unit_actions: Dict[str, str] = {}
        for name in plan.order:
            artifact = plan.artifacts[name]
            if artifact is None:
                continue
            action_name = f"{plan.name}:{name}"
            deps = [unit_actions[d] for d in plan.build_plan.transitive_dependencies(name) if d in unit_actions]
            scheduler.add(BuildAction(
                action_name,
                lambda name=name: self._build_unit(registry, plan, toolchain, name),
                deps=deps,
            ))
            unit_actions[name] = action_name
            producers[artifact] = action_name

    def _build_unit(self, registry: ModuleRegistry, plan: ArchitecturePlan, toolchain: Toolchain, name: str) -> Path:
        unit = registry.get(name)
        artifact = plan.artifacts[name]
        obj_dir = artifact.parent / "obj"
        metadata = plan.metadata(name)
        objects = [
            toolchain.compile(src, object_path(obj_dir, src, unit.source_root), metadata)
            for src in unit.source_paths()
        ]

        if unit.kind == UnitKind.EXECUTABLE:
            libraries = [
                plan.artifacts[d] for d in plan.build_plan.transitive_dependencies(name)
                if plan.artifacts[d] is not None and plan.linkage[d] == LinkType.STATIC
            ]
            return toolchain.link(objects, libraries, artifact)
        if plan.linkage[name] == LinkType.DYNAMIC:
            return toolchain.link(objects, [], artifact, shared=True)
        return toolchain.archive(objects, artifact)

    def _add_core_actions(
        self,
        scheduler: BuildScheduler,
        plan: ArchitecturePlan,
        toolchain: Toolchain,
        producers: Dict[Path, str]
    ) -> None:
        """Link core-<target> from the target's static closure."""
        for target in plan.targets:
            closure = plan.static_closure[target.name]
            if not closure:
                continue
            exe = plan.executables[target.name]
            libraries = [plan.artifacts[name] for name in closure]
            action_name = f"{plan.name}:{exe.name}"
            scheduler.add(BuildAction(
                action_name,
                lambda exe=exe, libraries=libraries: toolchain.link([], libraries, exe, flags=CORE_LINK_FLAGS),
                deps=[f"{plan.name}:{name}" for name in closure],
            ))
            producers[exe] = action_name

    def _add_table_actions(
        self,
        scheduler: BuildScheduler,
        layout: MissionLayout,
        plan: ArchitecturePlan,
        compiler: TableCompiler,
        producers: Dict[Path, str]
    ) -> None:
        for job in plan.table_jobs:
            action_name = f"{plan.name}:table:{job.name}"
            scheduler.add(BuildAction(action_name, lambda job=job: compiler.build(plan, job)))
            binary = layout.get_table_dir(plan.name, job.target, job.unit, job.table_name) / f"{job.table_name}.tbl"
            producers[binary] = action_name

    def test(self, project_dir: Path, architecture: Optional[str] = None, run: bool = True) -> BuildResult:
        """
        Build stub libraries and coverage test runners, stage them, and run them.

        Args:
            project_dir: Directory containing mission.ini
            architecture: Test only this architecture (default: all)
            run: Run the registered tests after building

        Returns:
            BuildResult with build action results and test outcomes
        """
        start_time = time.time()
        registry, layout, plans = self.plan(project_dir, architecture)
        scheduler = BuildScheduler(jobs=self.jobs, show_progress=self.show_progress, description="Testing")
        installer = Installer(verbose=self.verbose)
        harnesses: Dict[str, TestRegistry] = {}

        for plan in plans:
            toolchain = self.toolchain_factory(plan.architecture, self.verbose)
            tests = TestRegistry()
            harnesses[plan.name] = tests
            coverage = CoverageTestOrchestrator(registry, layout, toolchain, tests, verbose=self.verbose)
            self._add_coverage_actions(scheduler, registry, layout, plan, coverage, installer)

        results = scheduler.run()
        result = BuildResult(success=all(r.succeeded for r in results.values()), results=results)

        for arch_name, tests in harnesses.items():
            tests.write_manifest(layout.get_arch_build_dir(arch_name) / "coverage" / TEST_MANIFEST)
            if not run:
                continue
            for outcome in tests.run_all():
                if self.verbose:
                    print(f"  {'PASS' if outcome.passed else 'FAIL'}  {arch_name}:{outcome.name}")
                result.tests.append(outcome)
                if not outcome.passed:
                    result.success = False

        result.build_time = time.time() - start_time
        result.message = self._summary_message("Test", result)
        logging.info(result.message)
        return result

    def _add_coverage_actions(
        self,
        scheduler: BuildScheduler,
        registry: ModuleRegistry,
        layout: MissionLayout,
        plan: ArchitecturePlan,
        coverage: CoverageTestOrchestrator,
        installer: Installer
    ) -> None:
        stub_actions: Dict[str, str] = {}
        for name in plan.order:
            unit = registry.get(name)
            if unit.stub_sources:
                action_name = f"{plan.name}:stubs:{name}"
                scheduler.add(BuildAction(
                    action_name,
                    lambda name=name, sources=list(unit.stub_sources): coverage.build_stub_library(plan, name, sources),
                ))
                stub_actions[name] = action_name

        ut_assert_deps = []
        if coverage.ut_assert_library(plan) is not None:
            ut_assert_action = f"{plan.name}:{UT_ASSERT_LIBRARY}"
            scheduler.add(BuildAction(ut_assert_action, lambda: coverage.build_ut_assert(plan)))
            ut_assert_deps.append(ut_assert_action)

        ut_subdir = registry.mission.ut_install_subdir
        for name in plan.order:
            for spec in registry.get(name).coverage_tests:
                if spec.override_includes:
                    coverage.add_unit_include(spec.module, spec.unit_name, spec.override_includes)
                description = coverage.describe(plan, spec)
                action_name = f"{plan.name}:{description.test_name}"
                deps = [stub_actions[d] for d in coverage.stub_replacements(plan, spec.module) if d in stub_actions]
                scheduler.add(BuildAction(
                    action_name,
                    lambda spec=spec: coverage.link_test(
                        plan, spec.module, spec.unit_name, spec.test_sources, spec.sources_under_test
                    ),
                    deps=deps + ut_assert_deps,
                ))

                runner_name = f"{description.test_name}-testrunner"
                runner = layout.get_coverage_dir(plan.name, description.test_name) / runner_name
                for target in plan.targets:
                    install = InstallAction(
                        unit=description.test_name,
                        target=target.name,
                        source=runner,
                        destination=layout.get_install_dir(target.name, ut_subdir) / runner_name,
                    )
                    scheduler.add(BuildAction(
                        f"install:{install.destination.relative_to(layout.install_root)}",
                        lambda install=install: installer.install([install]).installed[0],
                        deps=[action_name],
                    ))

    def check_headers(self, project_dir: Path, architecture: Optional[str] = None) -> BuildResult:
        """Compile every declared public header on its own."""
        start_time = time.time()
        registry, layout, plans = self.plan(project_dir, architecture)
        scheduler = BuildScheduler(jobs=self.jobs, show_progress=self.show_progress, description="Checking")

        for plan in plans:
            checker = HeaderChecker(registry, layout, self.toolchain_factory(plan.architecture, self.verbose))
            for name in plan.order:
                for check in checker.checks_for(plan, name):
                    scheduler.add(BuildAction(
                        f"{plan.name}:headercheck:{name}:{check.header.name}",
                        lambda checker=checker, plan=plan, check=check: checker.check(plan, check),
                    ))

        results = scheduler.run()
        result = BuildResult(success=all(r.succeeded for r in results.values()), results=results)
        result.build_time = time.time() - start_time
        result.message = self._summary_message("Header check", result)
        logging.info(result.message)
        return result

    @staticmethod
    def _summary_message(what: str, result: BuildResult) -> str:
        failed = len(result.failures)
        failed_tests = len([t for t in result.tests if not t.passed])
        if result.success:
            return f"{what} successful: {len(result.results)} actions in {result.build_time:.2f}s"
        parts = []
        if failed:
            parts.append(f"{failed} of {len(result.results)} actions failed or skipped")
        if failed_tests:
            parts.append(f"{failed_tests} of {len(result.tests)} tests failed")
        return f"{what} failed: {', '.join(parts)}"
