"""Checks on the packaging and pytest settings at the repository root."""

import re
from pathlib import Path

from archbuild import __version__

ROOT = Path(__file__).resolve().parents[2]


class TestPackaging:
    """Tests for setup.py and the pytest settings in setup.cfg."""

    def test_setup_version_matches_package(self):
        setup_py = (ROOT / "setup.py").read_text()

        assert "exec(" not in setup_py
        assert re.search(r'version="([^"]+)"', setup_py).group(1) == __version__

    def test_build_directory_is_collected(self, request):
        """tests/unit/build holds the build system tests and must not be skipped."""
        assert "build" not in request.config.getini("norecursedirs")

    def test_testpaths(self, request):
        assert request.config.getini("testpaths") == ["tests"]
