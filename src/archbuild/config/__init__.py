"""Configuration parsing and filesystem layout for archbuild."""

from .ini_parser import MISSION_FILE, MissionConfig, MissionConfigError, split_list
from .layout import MissionLayout

__all__ = [
    "MISSION_FILE",
    "MissionConfig",
    "MissionConfigError",
    "MissionLayout",
    "split_list",
]
