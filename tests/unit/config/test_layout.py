"""
Unit tests for MissionLayout.
"""

from pathlib import Path

from archbuild.config import MissionLayout
from archbuild.model import MissionSettings


class TestMissionLayout:
    """Test suite for MissionLayout."""

    def test_default_roots(self, tmp_path):
        layout = MissionLayout(tmp_path)

        root = tmp_path.resolve()
        assert layout.build_root == root / '.archbuild' / 'build'
        assert layout.install_root == root / '.archbuild' / 'exe'
        assert layout.log_file == root / '.archbuild' / 'build' / 'archbuild.log'

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv('ARCHBUILD_BUILD_DIR', str(tmp_path / 'out'))
        monkeypatch.setenv('ARCHBUILD_INSTALL_DIR', str(tmp_path / 'stage'))

        layout = MissionLayout(tmp_path / 'project')

        assert layout.build_root == (tmp_path / 'out').resolve()
        assert layout.install_root == (tmp_path / 'stage').resolve()

    def test_arch_paths(self, tmp_path):
        layout = MissionLayout(tmp_path)
        arch = layout.build_root / 'arm'

        assert layout.get_unit_build_dir('arm', 'bus') == arch / 'units' / 'bus'
        assert layout.get_table_dir('arm', 'cpu1', 'sensor', 'sensor_tbl') == arch / 'tables' / 'cpu1_sensor_sensor_tbl'
        assert layout.get_coverage_dir('arm', 'coverage-bus-stubs') == arch / 'coverage' / 'coverage-bus-stubs'
        assert layout.get_header_check_dir('arm', 'bus') == arch / 'headercheck' / 'bus'
        assert layout.get_target_build_dir('arm', 'cpu1') == arch / 'targets' / 'cpu1'

    def test_install_dir(self, tmp_path):
        layout = MissionLayout(tmp_path)

        assert layout.get_install_dir('cpu1') == layout.install_root / 'cpu1'
        assert layout.get_install_dir('cpu1', 'cf') == layout.install_root / 'cpu1' / 'cf'

    def test_mission_dirs(self, tmp_path):
        layout = MissionLayout(tmp_path, MissionSettings(name='sample'))

        assert layout.mission_defs == tmp_path.resolve() / 'sample_defs'
        assert layout.mission_source_dir == tmp_path.resolve()

    def test_mission_dirs_configured(self, tmp_path):
        mission = MissionSettings(mission_defs=Path('defs'), mission_source_dir=tmp_path / 'src')
        layout = MissionLayout(tmp_path, mission)

        assert layout.mission_defs == tmp_path.resolve() / 'defs'
        assert layout.mission_source_dir == tmp_path / 'src'

    def test_clean_one_architecture(self, tmp_path):
        layout = MissionLayout(tmp_path)
        for arch in ('arm', 'native'):
            (layout.get_unit_build_dir(arch, 'bus')).mkdir(parents=True)

        layout.clean_build('arm')

        assert not layout.get_arch_build_dir('arm').exists()
        assert layout.get_arch_build_dir('native').exists()

    def test_clean_everything(self, tmp_path):
        layout = MissionLayout(tmp_path)
        layout.get_unit_build_dir('arm', 'bus').mkdir(parents=True)
        layout.get_install_dir('cpu1', 'cf').mkdir(parents=True)

        layout.clean_build()

        assert not layout.build_root.exists()
        assert not layout.install_root.exists()
