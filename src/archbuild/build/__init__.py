"""
Build system components for archbuild.

This module provides the build system implementation including:
- Unit registry and dependency resolution
- Per-architecture build planning
- Parallel action scheduling
- Compilation, archiving and linking through the toolchain

The orchestrator is imported from archbuild.build.orchestrator directly.
"""

from .registry import (
    DuplicateUnitError,
    ModuleRegistry,
    ModuleRegistryError,
    RegistryFrozenError,
    UnknownUnitError,
)
from .resolver import BuildPlan, CyclicDependencyError, DependencyResolver, MissingDependencyMetadataError
from .scheduler import ActionResult, BuildAction, BuildScheduler

__all__ = [
    'ActionResult',
    'BuildAction',
    'BuildPlan',
    'BuildScheduler',
    'CyclicDependencyError',
    'DependencyResolver',
    'DuplicateUnitError',
    'MissingDependencyMetadataError',
    'ModuleRegistry',
    'ModuleRegistryError',
    'RegistryFrozenError',
    'UnknownUnitError',
]
