"""
Dependency resolution for archbuild.

This module orders the units referenced by one architecture so that every
dependency is built before its dependents, detects dependency cycles, and
propagates public (interface) include paths and compile definitions along
dependency edges.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from ..model import CompileMetadata, Unit
from .registry import ModuleRegistry, ModuleRegistryError, UnknownUnitError


class CyclicDependencyError(ModuleRegistryError):
    """Raised when the dependency graph contains a cycle.

    Attributes:
        cycle: Closed path of unit names; first and last entries are equal
    """

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cyclic dependency detected: {' -> '.join(self.cycle)}")


class MissingDependencyMetadataError(UnknownUnitError):
    """Raised when a unit references a dependency that is not declared."""

    pass


@dataclass
class BuildPlan:
    """
    Dependency-ordered units for one architecture.

    Attributes:
        architecture: Architecture name
        order: Unit names; every dependency precedes its dependents
        dependencies: Effective direct dependencies per unit
        metadata: Include paths/definitions used to compile each unit
        interface: Public include paths/definitions each unit exports
    """

    architecture: str
    order: List[str]
    dependencies: Dict[str, List[str]] = field(default_factory=dict)
    metadata: Dict[str, CompileMetadata] = field(default_factory=dict)
    interface: Dict[str, CompileMetadata] = field(default_factory=dict)

    def __contains__(self, name: str) -> bool:
        return name in self.dependencies

    def transitive_dependencies(self, name: str) -> List[str]:
        """All direct and indirect dependencies of a unit, in plan order."""
        seen = set()
        pending = list(self.dependencies.get(name, []))
        while pending:
            dep = pending.pop()
            if dep in seen:
                continue
            seen.add(dep)
            pending.extend(self.dependencies.get(dep, []))
        return [unit for unit in self.order if unit in seen]


class DependencyResolver:
    """
    Topologically orders units with a depth-first search.

    Roots are visited in registry declaration order and dependencies in the
    order they were declared, so identical input always yields an identical
    plan. Mission core interfaces are implicit dependencies of every unit
    outside the core (core modules, core interfaces and PSP modules).

    Example usage:
        resolver = DependencyResolver(registry)
        plan = resolver.resolve(["sensor", "telemetry"], architecture="arm")
        for name in plan.order:
            print(name, plan.metadata[name].include_paths)
    """

    def __init__(self, registry: ModuleRegistry):
        self.registry = registry

    def core_units(self) -> Set[str]:
        """Mission core modules, core interfaces and every target's PSP modules."""
        mission = self.registry.mission
        core = set(mission.core_modules) | set(mission.core_interfaces)
        for target in self.registry.targets():
            core.update(target.psp_modules)
        return core

    def effective_dependencies(self, unit: Unit) -> List[str]:
        """Declared dependencies plus implicit core interface dependencies."""
        deps = list(unit.declared_dependencies)
        if unit.name not in self.core_units():
            for iface in self.registry.mission.core_interfaces:
                if iface not in deps:
                    deps.append(iface)
        return deps

    def resolve(self, unit_names: Iterable[str], architecture: str = "") -> BuildPlan:
        """
        Build the dependency-ordered plan for a set of units.

        Dependencies of the requested units are pulled in even when they are
        not requested explicitly.

        Args:
            unit_names: Units referenced by the architecture
            architecture: Architecture name recorded in the plan

        Returns:
            BuildPlan with order and propagated metadata

        Raises:
            UnknownUnitError: If a requested unit is not registered
            MissingDependencyMetadataError: If a dependency is not registered
            CyclicDependencyError: If the dependency graph has a cycle
        """
        requested = list(dict.fromkeys(unit_names))
        for name in requested:
            self.registry.get(name)

        declared = self.registry.unit_names()
        roots = sorted(requested, key=declared.index)

        order: List[str] = []
        dependencies: Dict[str, List[str]] = {}
        done = set()
        stack: List[str] = []

        def visit(name: str, parent: Optional[str]) -> None:
            if name in done:
                return
            if name in stack:
                cycle = stack[stack.index(name):] + [name]
                raise CyclicDependencyError(cycle)
            if not self.registry.has_unit(name):
                raise MissingDependencyMetadataError(
                    f"Unit '{parent}' depends on '{name}', which is not declared"
                )

            unit = self.registry.get(name)
            deps = self.effective_dependencies(unit)
            stack.append(name)
            for dep in deps:
                visit(dep, name)
            stack.pop()

            dependencies[name] = deps
            done.add(name)
            order.append(name)

        for root in roots:
            visit(root, None)

        plan = BuildPlan(architecture=architecture, order=order, dependencies=dependencies)
        self._propagate_metadata(plan)
        return plan

    def _propagate_metadata(self, plan: BuildPlan) -> None:
        """
        Fill plan.metadata and plan.interface.

        Public properties flow to dependents transitively, private ones only
        apply to the unit itself. Plan order guarantees that every dependency
        has been processed first.
        """
        for name in plan.order:
            unit = self.registry.get(name)
            public = CompileMetadata(
                include_paths=[unit.resolve_path(p) for p in unit.public_includes],
                definitions=list(unit.public_definitions),
            )
            private = CompileMetadata(
                include_paths=[unit.resolve_path(p) for p in unit.private_includes],
                definitions=list(unit.private_definitions),
            )

            interface = public
            for dep in plan.dependencies[name]:
                interface = interface.merged(plan.interface[dep])

            plan.interface[name] = interface
            plan.metadata[name] = interface.merged(private)
