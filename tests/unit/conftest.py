"""
Shared fixtures for archbuild unit tests.

FakeToolchain records every call and writes placeholder output files, so
builds can run end to end without a compiler.
"""

import threading
import time
from pathlib import Path
from textwrap import dedent

import pytest

from archbuild.build.compilation_executor import CompilationError, LinkError
from archbuild.build.table_compiler import TableConversionError, TableConverter
from archbuild.build.toolchain import Toolchain


class FakeToolchain(Toolchain):
    """Recording toolchain; compiles of sources named in fail_sources raise."""

    def __init__(self, fail_sources=(), fail_links=(), delay=0.0):
        self.fail_sources = set(fail_sources)
        self.fail_links = set(fail_links)
        self.delay = delay
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    @staticmethod
    def _touch(path, content):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    def compile(self, source, output, metadata, extra_flags=None):
        self._record('compile', Path(source), Path(output), metadata, list(extra_flags or []))
        if self.delay:
            time.sleep(self.delay)
        if Path(source).name in self.fail_sources:
            raise CompilationError(f"Compilation failed for {Path(source).name}")
        return self._touch(output, f"object of {source}")

    def archive(self, objects, output):
        self._record('archive', [Path(o) for o in objects], Path(output))
        return self._touch(output, "archive")

    def extract_object(self, archive, member, dest_dir):
        self._record('extract', Path(archive), member, Path(dest_dir))
        return self._touch(Path(dest_dir) / member, "extracted")

    def link(self, objects, libraries, output, flags=None, shared=False):
        self._record('link', [Path(o) for o in objects], [Path(lib) for lib in libraries],
                     Path(output), list(flags or []), shared)
        if Path(output).name in self.fail_links:
            raise LinkError(f"Linking failed for {Path(output).name}")
        return self._touch(output, "linked")

    def calls_of(self, kind):
        return [call for call in self.calls if call[0] == kind]

    def compiled_sources(self):
        return [call[1].name for call in self.calls_of('compile')]

    def link_of(self, name):
        for call in self.calls_of('link'):
            if call[3].name == name:
                return call
        raise AssertionError(f"{name} was not linked")


class FakeConverter(TableConverter):
    """Writes the expected table unless the table name is in wrong_names."""

    def __init__(self, wrong_names=()):
        super().__init__(tool=None)
        self.wrong_names = set(wrong_names)
        self.converted = []

    def convert(self, object_file, work_dir, expected_output):
        self.converted.append(Path(object_file))
        if expected_output.stem in self.wrong_names:
            (Path(work_dir) / "other_name.tbl").write_text("table")
            raise TableConversionError(f"Table tool did not produce {expected_output.name}")
        expected_output.write_text("table")
        return expected_output


@pytest.fixture
def fake_toolchain():
    return FakeToolchain()


@pytest.fixture
def fake_converter():
    return FakeConverter()


@pytest.fixture(autouse=True)
def isolated_build_dirs(monkeypatch):
    """Keep ARCHBUILD_* overrides from the environment out of the tests."""
    monkeypatch.delenv('ARCHBUILD_BUILD_DIR', raising=False)
    monkeypatch.delenv('ARCHBUILD_INSTALL_DIR', raising=False)


@pytest.fixture
def write_mission(tmp_path):
    """Write mission.ini (and any source files it names) into tmp_path."""
    def _write(content, files=()):
        for rel in files:
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("/* source */\n")
        ini = tmp_path / "mission.ini"
        ini.write_text(dedent(content))
        return ini
    return _write


SAMPLE_MISSION = """
    [mission]
    name = sample
    core_modules = osal
    core_interfaces = core_api

    [arch:native]
    cc = gcc
    ar = ar

    [unit:core_api]
    kind = library
    source_root = core_api
    public_includes = inc

    [unit:osal]
    kind = library
    source_root = osal
    sources = src/osal.c
    public_includes = inc
    stubs = ut-stubs/osal_stubs.c

    [unit:bus]
    kind = library
    source_root = bus
    sources = src/bus.c
    public_includes = inc
    public_defines = BUS_ENABLED
    stubs = ut-stubs/bus_stubs.c

    [unit:sensor]
    kind = module
    source_root = sensor
    sources = src/sensor.c src/calibration.c
    private_includes = src
    depends = bus
    tables = tables/sensor_tbl.c

    [unit:telemetry]
    kind = module
    source_root = telemetry
    sources = src/telemetry.c
    depends = bus

    [coverage:sensor:calibration]
    sources_under_test = src/calibration.c
    test_sources = unit-test/coveragetest_calibration.c
    override_includes = unit-test/override_inc

    [target:cpu1]
    architecture = native
    apps = sensor telemetry
    files = startup.scr

    [target:cpu2]
    architecture = native
    apps = telemetry
    """

SAMPLE_FILES = [
    "osal/src/osal.c",
    "osal/ut-stubs/osal_stubs.c",
    "bus/src/bus.c",
    "bus/ut-stubs/bus_stubs.c",
    "sensor/src/sensor.c",
    "sensor/src/calibration.c",
    "sensor/tables/sensor_tbl.c",
    "sensor/unit-test/coveragetest_calibration.c",
    "telemetry/src/telemetry.c",
    "sample_defs/startup.scr",
]


@pytest.fixture
def sample_mission(write_mission):
    """A two-target mission on one architecture; returns the project dir."""
    ini = write_mission(SAMPLE_MISSION, SAMPLE_FILES)
    return ini.parent


@pytest.fixture
def make_toolchain():
    """Factory for FakeToolchain with failure injection."""
    return FakeToolchain


@pytest.fixture
def make_converter():
    """Factory for FakeConverter with conversion failures."""
    return FakeConverter
