"""
Unit tests for table source selection and table compilation.
"""

import subprocess
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from archbuild.build.planner import ArchitectureBuildPlanner
from archbuild.build.table_compiler import (
    MissingTableSourceError,
    TableCompiler,
    TableConversionError,
    TableConverter,
    TableSourceResolver,
)
from archbuild.config import MissionConfig, MissionLayout
from archbuild.model import MissionSettings, Unit, UnitKind


class TestTableSourceResolver:
    """Test suite for the seven-level table source override."""

    @pytest.fixture
    def layout(self, tmp_path):
        return MissionLayout(tmp_path, MissionSettings(name='sample', mission_source_dir=Path('mission_src')))

    @pytest.fixture
    def unit(self, tmp_path):
        return Unit(name='sensor', kind=UnitKind.MODULE, source_root=tmp_path / 'sensor')

    @staticmethod
    def _create(path):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text('/* table */')
        return path

    def test_unit_default_is_last_resort(self, layout, unit, tmp_path):
        source = self._create(tmp_path / 'sensor' / 'tables' / 'power.c')
        path, level = TableSourceResolver(layout).resolve(unit, 'cpu1', Path('tables/power.c'))

        assert path == source
        assert level == 7

    def test_target_override_beats_mission_default(self, layout, unit, tmp_path):
        """Level 1 (defs/tables/<target>_<name>.c) wins over level 4 (defs/tables/<name>.c)."""
        defs = tmp_path / 'sample_defs' / 'tables'
        override = self._create(defs / 'cpu1_power.c')
        self._create(defs / 'power.c')
        self._create(tmp_path / 'sensor' / 'tables' / 'power.c')
        resolver = TableSourceResolver(layout)

        path, level = resolver.resolve(unit, 'cpu1', Path('tables/power.c'))
        assert (path, level) == (override, 1)

        path, level = resolver.resolve(unit, 'cpu2', Path('tables/power.c'))
        assert (path, level) == (defs / 'power.c', 4)

    @pytest.mark.parametrize('relative, expected_level', [
        ('sample_defs/tables/cpu1_power.c', 1),
        ('mission_src/tables/cpu1_power.c', 2),
        ('sample_defs/cpu1/tables/power.c', 3),
        ('sample_defs/tables/power.c', 4),
        ('mission_src/tables/power.c', 5),
    ])
    def test_each_mission_level(self, layout, unit, tmp_path, relative, expected_level):
        expected = self._create(tmp_path / relative)
        path, level = TableSourceResolver(layout).resolve(unit, 'cpu1', Path('tables/power.c'))
        assert (path, level) == (expected, expected_level)

    def test_absolute_declared_path(self, layout, unit, tmp_path):
        source = self._create(tmp_path / 'elsewhere' / 'power.c')
        path, level = TableSourceResolver(layout).resolve(unit, 'cpu1', source)
        assert (path, level) == (source, 6)

    def test_missing_everywhere(self, layout, unit):
        """No candidate exists: the error names unit, table and every location searched."""
        with pytest.raises(MissingTableSourceError) as exc_info:
            TableSourceResolver(layout).resolve(unit, 'cpu1', Path('tables/power.c'))

        error = exc_info.value
        assert error.unit == 'sensor'
        assert error.table_name == 'power'
        assert len(error.searched) == 6  # relative declared path skips the absolute level
        assert 'power' in str(error) and 'sensor' in str(error)


class TestTableConverter:
    """Test suite for TableConverter."""

    @pytest.fixture
    def tool(self, tmp_path):
        tool = tmp_path / 'elf2cfetbl'
        tool.write_text('#!/bin/sh\n')
        return tool

    def test_convert_runs_tool_in_work_dir(self, tool, tmp_path):
        expected = tmp_path / 'power.tbl'

        def fake_run(cmd, **kwargs):
            expected.write_text('binary')
            return Mock(returncode=0, stdout='', stderr='')

        with patch('subprocess.run', side_effect=fake_run) as mock_run:
            result = TableConverter(tool).convert(tmp_path / 'power.o', tmp_path, expected)

        assert result == expected
        assert mock_run.call_args[0][0] == [str(tool), str(tmp_path / 'power.o')]
        assert mock_run.call_args[1]['cwd'] == str(tmp_path)

    def test_output_name_mismatch(self, tool, tmp_path):
        """The tool succeeds but writes a different file name."""
        with patch('subprocess.run', return_value=Mock(returncode=0, stdout='', stderr='')):
            with pytest.raises(TableConversionError, match='power.tbl'):
                TableConverter(tool).convert(tmp_path / 'power.o', tmp_path, tmp_path / 'power.tbl')

    def test_tool_failure(self, tool, tmp_path):
        with patch('subprocess.run', return_value=Mock(returncode=1, stdout='', stderr='bad table')):
            with pytest.raises(TableConversionError, match='bad table'):
                TableConverter(tool).convert(tmp_path / 'power.o', tmp_path, tmp_path / 'power.tbl')

    def test_tool_timeout(self, tool, tmp_path):
        with patch('subprocess.run', side_effect=subprocess.TimeoutExpired('elf2cfetbl', 60)):
            with pytest.raises(TableConversionError, match='timeout'):
                TableConverter(tool).convert(tmp_path / 'power.o', tmp_path, tmp_path / 'power.tbl')

    def test_missing_tool(self, tmp_path):
        with pytest.raises(TableConversionError, match='not found'):
            TableConverter(tmp_path / 'nope').tool_path()


class TestTableCompiler:
    """Test suite for TableCompiler."""

    @pytest.fixture
    def planned(self, sample_mission):
        config = MissionConfig(sample_mission / 'mission.ini')
        registry = config.load_registry()
        layout = MissionLayout(config.project_dir, registry.mission)
        plan = ArchitectureBuildPlanner(registry, layout).plan('native')
        return registry, layout, plan

    def test_build_steps(self, planned, fake_toolchain, fake_converter):
        """compile -> archive -> extract -> convert, in the table scratch dir."""
        registry, layout, plan = planned
        job = plan.table_jobs[0]
        compiler = TableCompiler(layout, fake_toolchain, fake_converter, registry)

        artifact = compiler.build(plan, job)

        work_dir = layout.get_table_dir('native', 'cpu1', 'sensor', 'sensor_tbl')
        assert [call[0] for call in fake_toolchain.calls] == ['compile', 'archive', 'extract']
        compile_call = fake_toolchain.calls[0]
        assert compile_call[1] == layout.project_dir / 'sensor' / 'tables' / 'sensor_tbl.c'
        assert compile_call[3] == plan.metadata('sensor')
        assert fake_toolchain.calls[1][2] == work_dir / 'libcpu1_sensor_sensor_tbl.a'
        assert artifact.binary_path == work_dir / 'sensor_tbl.tbl'
        assert artifact.binary_path.exists()
        assert (artifact.target, artifact.unit, artifact.table_name) == ('cpu1', 'sensor', 'sensor_tbl')

    def test_build_uses_override(self, planned, fake_toolchain, fake_converter, capsys):
        registry, layout, plan = planned
        override = layout.mission_defs / 'tables' / 'cpu1_sensor_tbl.c'
        override.parent.mkdir(parents=True)
        override.write_text('/* override */')
        compiler = TableCompiler(layout, fake_toolchain, fake_converter, registry, verbose=True)

        compiler.build(plan, plan.table_jobs[0])

        assert fake_toolchain.calls[0][1] == override
        assert f'NOTE: Selected {override} as source for sensor.sensor_tbl on cpu1' in capsys.readouterr().out
