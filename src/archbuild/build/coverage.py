"""
Coverage test orchestration for archbuild.

A coverage test compiles the unit-under-test with coverage instrumentation,
links it with its test cases, the stub library of every dependency of the
owning module (stubs replace the real libraries at every edge) and the
ut_assert library, and registers the resulting runner with the test harness.

Naming:
    coverage-<module>-stubs               stub library of a module
    coverage-<module>-<unit>              registered test name
    coverage-<module>-<unit>-testrunner   runner executable
"""

import json
import logging
import subprocess
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config.layout import MissionLayout
from ..errors import ArchBuildError
from ..model import CompileMetadata, CoverageTestSpec, CoverageTestUnit
from .build_utils import object_path
from .planner import ArchitecturePlan
from .registry import ModuleRegistry
from .toolchain import Toolchain

UT_ASSERT_LIBRARY = "ut_assert"
TEST_TIMEOUT = 300


def stub_library_name(module: str) -> str:
    return f"coverage-{module}-stubs"


def coverage_test_name(module: str, unit: str) -> str:
    return f"coverage-{module}-{unit}"


class CoverageError(ArchBuildError):
    """Raised for invalid coverage test declarations."""

    pass


@dataclass
class RegisteredTest:
    """A test runner known to the harness."""

    name: str
    runner: Path
    working_dir: Path


@dataclass
class TestOutcome:
    """Result of running one registered test."""

    __test__ = False

    name: str
    passed: bool
    returncode: int
    output: str
    duration: float


class TestRegistry:
    """
    Test harness registry.

    Each runner is registered under a unique name and can be run and
    reported independently.
    """

    __test__ = False

    def __init__(self):
        self._tests: Dict[str, RegisteredTest] = {}
        self._lock = threading.Lock()

    def register(self, name: str, runner: Path, working_dir: Optional[Path] = None) -> RegisteredTest:
        """
        Register a runner.

        Raises:
            CoverageError: If the name is already registered for another runner
        """
        test = RegisteredTest(name=name, runner=runner, working_dir=working_dir or runner.parent)
        with self._lock:
            existing = self._tests.get(name)
            if existing is not None and existing.runner != runner:
                raise CoverageError(f"Test '{name}' is already registered for {existing.runner}")
            self._tests[name] = test
        return test

    def names(self) -> List[str]:
        return sorted(self._tests)

    def get(self, name: str) -> RegisteredTest:
        try:
            return self._tests[name]
        except KeyError:
            raise CoverageError(f"Test '{name}' is not registered") from None

    def run(self, name: str) -> TestOutcome:
        """Run one registered test; a missing runner counts as a failure."""
        test = self.get(name)
        start = time.time()
        if not test.runner.exists():
            return TestOutcome(name, False, -1, f"Runner not found: {test.runner}", 0.0)
        try:
            result = subprocess.run(
                [str(test.runner)],
                capture_output=True,
                text=True,
                timeout=TEST_TIMEOUT,
                cwd=str(test.working_dir)
            )
        except subprocess.TimeoutExpired:
            return TestOutcome(name, False, -1, "Test timed out", time.time() - start)
        except OSError as e:
            return TestOutcome(name, False, -1, f"Failed to start runner: {e}", time.time() - start)
        output = result.stdout + result.stderr
        return TestOutcome(name, result.returncode == 0, result.returncode, output, time.time() - start)

    def run_all(self) -> List[TestOutcome]:
        return [self.run(name) for name in self.names()]

    def write_manifest(self, path: Path) -> Path:
        """Write the registered tests to a JSON manifest."""
        path.parent.mkdir(parents=True, exist_ok=True)
        entries = []
        for name in self.names():
            entry = asdict(self._tests[name])
            entry["runner"] = str(entry["runner"])
            entry["working_dir"] = str(entry["working_dir"])
            entries.append(entry)
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"tests": entries}, f, indent=2)
        return path


class CoverageTestOrchestrator:
    """
    Builds stub libraries and coverage test runners for one architecture.

    Example usage:
        coverage = CoverageTestOrchestrator(registry, layout, toolchain, tests)
        coverage.build_stub_library(plan, "bus", [Path("ut-stubs/bus_stubs.c")])
        runner = coverage.link_test(plan, "sensor", "calibration",
                                    [Path("coveragetest_calibration.c")],
                                    [Path("fsw/src/calibration.c")])
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        layout: MissionLayout,
        toolchain: Toolchain,
        test_registry: TestRegistry,
        verbose: bool = False
    ):
        self.registry = registry
        self.layout = layout
        self.toolchain = toolchain
        self.test_registry = test_registry
        self.verbose = verbose
        self.stub_libraries: Dict[str, Path] = {}
        self._unit_includes: Dict[Tuple[str, str], List[Path]] = {}
        self._lock = threading.Lock()

    def _module_metadata(self, plan: ArchitecturePlan, module: str) -> CompileMetadata:
        if module in plan.build_plan:
            return plan.metadata(module)
        return CompileMetadata()

    def _resolve(self, module: str, path: Path) -> Path:
        if self.registry.has_unit(module):
            return self.registry.get(module).resolve_path(path)
        return Path(path)

    def _source_root(self, module: str) -> Optional[Path]:
        if self.registry.has_unit(module):
            return self.registry.get(module).source_root
        return None

    def stub_library_path(self, plan: ArchitecturePlan, module: str) -> Path:
        name = stub_library_name(module)
        return self.layout.get_coverage_dir(plan.name, name) / f"lib{name}.a"

    def build_stub_library(self, plan: ArchitecturePlan, module_name: str, stub_sources: List[Path]) -> Path:
        """
        Build coverage-<module>-stubs.

        The module does not need to exist; stub libraries may be declared
        standalone. When it does exist its compile metadata is used.

        Raises:
            CoverageError: If no stub sources are given
            CompilationError: If a stub source fails to compile
            ArchiveError: If archiving fails
        """
        if not stub_sources:
            raise CoverageError(f"No stub sources given for {stub_library_name(module_name)}")

        metadata = self._module_metadata(plan, module_name)
        output = self.stub_library_path(plan, module_name)
        source_root = self._source_root(module_name)
        objects = []
        for src in stub_sources:
            source = self._resolve(module_name, src)
            obj = object_path(output.parent / "obj", source, source_root)
            objects.append(self.toolchain.compile(source, obj, metadata))
        self.toolchain.archive(objects, output)

        with self._lock:
            self.stub_libraries[module_name] = output
        if self.verbose:
            print(f"      Built {output.name}")
        return output

    def add_unit_include(self, module_name: str, unit_name: str, override_dirs: List[Path]) -> None:
        """
        Add override include directories for one unit-under-test.

        They apply only to the sources under test, never to the test cases or
        the test framework.
        """
        key = (module_name, unit_name)
        dirs = self._unit_includes.setdefault(key, [])
        for d in override_dirs:
            resolved = self._resolve(module_name, d)
            if resolved not in dirs:
                dirs.append(resolved)

    def stub_replacements(self, plan: ArchitecturePlan, module_name: str) -> List[str]:
        """
        Stub libraries replacing the dependencies of a module.

        Every transitive dependency that has stub sources is replaced by its
        stub library; dependencies without stubs (interface-only units) are
        skipped.
        """
        if module_name not in plan.build_plan:
            return []
        replacements = []
        for dep in plan.build_plan.transitive_dependencies(module_name):
            unit = self.registry.get(dep)
            if unit.stub_sources or dep in self.stub_libraries:
                replacements.append(dep)
            elif unit.sources:
                logging.warning(
                    f"Coverage test of {module_name}: dependency {dep} has no stub library"
                )
        return replacements

    def describe(self, plan: ArchitecturePlan, spec: CoverageTestSpec) -> CoverageTestUnit:
        return CoverageTestUnit(
            module=spec.module,
            test_name=coverage_test_name(spec.module, spec.unit_name),
            sources_under_test=[self._resolve(spec.module, p) for p in spec.sources_under_test],
            test_sources=[self._resolve(spec.module, p) for p in spec.test_sources],
            stub_replacements=[stub_library_name(d) for d in self.stub_replacements(plan, spec.module)],
            override_includes=[self._resolve(spec.module, p) for p in spec.override_includes],
        )

    def ut_assert_library(self, plan: ArchitecturePlan) -> Optional[Path]:
        """Archive of the ut_assert unit when it is declared, else None (linked as -lut_assert)."""
        if not self.registry.has_unit(UT_ASSERT_LIBRARY):
            return None
        return self.layout.get_coverage_dir(plan.name, UT_ASSERT_LIBRARY) / f"lib{UT_ASSERT_LIBRARY}.a"

    def build_ut_assert(self, plan: ArchitecturePlan) -> Path:
        """Build the declared ut_assert unit as a static library for test runners."""
        output = self.ut_assert_library(plan)
        if output is None:
            raise CoverageError(f"Unit '{UT_ASSERT_LIBRARY}' is not declared")
        unit = self.registry.get(UT_ASSERT_LIBRARY)
        metadata = self._module_metadata(plan, UT_ASSERT_LIBRARY)
        objects = [
            self.toolchain.compile(src, object_path(output.parent / "obj", src, unit.source_root), metadata)
            for src in unit.source_paths()
        ]
        return self.toolchain.archive(objects, output)

    def link_test(
        self,
        plan: ArchitecturePlan,
        module_name: str,
        unit_name: str,
        test_sources: List[Path],
        sources_under_test: List[Path]
    ) -> Path:
        """
        Build and register coverage-<module>-<unit>-testrunner.

        Raises:
            CoverageError: If no sources under test are given
            CompilationError: If compilation fails
            LinkError: If linking fails
        """
        if not sources_under_test:
            raise CoverageError(f"No sources under test for {coverage_test_name(module_name, unit_name)}")

        test_name = coverage_test_name(module_name, unit_name)
        work_dir = self.layout.get_coverage_dir(plan.name, test_name)
        settings = plan.architecture.toolchain
        module_metadata = self._module_metadata(plan, module_name)
        source_root = self._source_root(module_name)

        # Override includes come first so they shadow the standard headers
        overrides = CompileMetadata(include_paths=list(self._unit_includes.get((module_name, unit_name), [])))
        object_metadata = overrides.merged(module_metadata)

        objects = []
        for src in sources_under_test:
            source = self._resolve(module_name, src)
            objects.append(self.toolchain.compile(
                source, object_path(work_dir / "object", source, source_root), object_metadata,
                extra_flags=settings.coverage_compile_flags,
            ))
        for src in test_sources:
            source = self._resolve(module_name, src)
            objects.append(self.toolchain.compile(
                source, object_path(work_dir / "testcases", source, source_root), module_metadata,
            ))

        libraries = [self.stub_library_path(plan, dep) for dep in self.stub_replacements(plan, module_name)]
        flags = list(settings.coverage_link_flags)
        ut_assert = self.ut_assert_library(plan)
        if ut_assert is not None:
            libraries.append(ut_assert)
        else:
            flags.append(f"-l{UT_ASSERT_LIBRARY}")

        runner = self.toolchain.link(objects, libraries, work_dir / f"{test_name}-testrunner", flags=flags)
        self.test_registry.register(test_name, runner, work_dir)
        logging.info(f"Registered coverage test {test_name}: {runner}")
        return runner
