"""
Module registry for archbuild.

The registry stores every declared Unit, Target and Architecture together
with the dependency edges between units. It is populated once during the
declarative phase (normally by MissionConfig) and then frozen; the resolver
and planner only read from it.
"""

from typing import Dict, Iterable, List, Optional

from ..errors import ArchBuildError
from ..model import Architecture, MissionSettings, Target, Unit


class ModuleRegistryError(ArchBuildError):
    """Exception raised for registry misuse."""

    pass


class DuplicateUnitError(ModuleRegistryError):
    """Raised when a unit or target name is declared twice."""

    pass


class UnknownUnitError(ModuleRegistryError):
    """Raised when a unit or target name is not registered."""

    pass


class RegistryFrozenError(ModuleRegistryError):
    """Raised when registering after the declarative phase is over."""

    pass


class ModuleRegistry:
    """
    Stores declared build units and their dependency edges.

    Declaration order is preserved; the dependency resolver relies on it as
    the tie-break between units with no ordering relationship.

    Example usage:
        registry = ModuleRegistry()
        registry.register(Unit(name="bus", kind=UnitKind.LIBRARY))
        registry.register(Unit(name="sensor", kind=UnitKind.MODULE))
        registry.declare_dependency("sensor", "bus")
        registry.freeze()
    """

    def __init__(self, mission: Optional[MissionSettings] = None):
        self.mission = mission if mission is not None else MissionSettings()
        self._units: Dict[str, Unit] = {}
        self._targets: Dict[str, Target] = {}
        self._architectures: Dict[str, Architecture] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """End the declarative phase; further registration raises."""
        self._frozen = True

    def _check_mutable(self, what: str) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot {what}: registry is frozen (all declarations must precede resolution)"
            )

    # Units

    def register(self, unit: Unit) -> Unit:
        """
        Register a unit.

        Args:
            unit: Unit to register

        Returns:
            The registered unit

        Raises:
            DuplicateUnitError: If a unit with the same name already exists
            RegistryFrozenError: If the registry is frozen
        """
        self._check_mutable(f"register unit '{unit.name}'")
        if unit.name in self._units:
            raise DuplicateUnitError(f"Unit '{unit.name}' is already registered")

        # Normalize declared dependencies: ordered, no duplicates
        deduped: List[str] = []
        for dep in unit.declared_dependencies:
            if dep not in deduped:
                deduped.append(dep)
        unit.declared_dependencies = deduped

        self._units[unit.name] = unit
        return unit

    def get(self, name: str) -> Unit:
        """
        Get a registered unit by name.

        Raises:
            UnknownUnitError: If no such unit is registered
        """
        try:
            return self._units[name]
        except KeyError:
            raise UnknownUnitError(f"Unit '{name}' is not registered") from None

    def has_unit(self, name: str) -> bool:
        return name in self._units

    def units(self) -> List[Unit]:
        """All registered units in declaration order."""
        return list(self._units.values())

    def unit_names(self) -> List[str]:
        return list(self._units.keys())

    def declaration_index(self, name: str) -> int:
        """Position of a unit in declaration order."""
        return self.unit_names().index(name)

    def declare_dependency(self, unit_name: str, dependency_name: str) -> None:
        """
        Declare that unit_name depends on dependency_name.

        Declaring the same dependency twice is a no-op.

        Raises:
            UnknownUnitError: If either endpoint is not registered
            RegistryFrozenError: If the registry is frozen
        """
        self._check_mutable(f"declare dependency {unit_name} -> {dependency_name}")
        unit = self.get(unit_name)
        self.get(dependency_name)
        if dependency_name not in unit.declared_dependencies:
            unit.declared_dependencies.append(dependency_name)

    def dependencies_of(self, name: str) -> List[str]:
        return list(self.get(name).declared_dependencies)

    def dependents_of(self, name: str) -> List[str]:
        """Units declaring a direct dependency on name, in declaration order."""
        return [u.name for u in self._units.values() if name in u.declared_dependencies]

    # Targets and architectures

    def add_target(self, target: Target) -> Target:
        """
        Register a target and attach it to its architecture.

        The architecture is created on first use.

        Raises:
            DuplicateUnitError: If the target name is already used
        """
        self._check_mutable(f"add target '{target.name}'")
        if target.name in self._targets:
            raise DuplicateUnitError(f"Target '{target.name}' is already registered")
        self._targets[target.name] = target

        arch = self._architectures.get(target.architecture)
        if arch is None:
            arch = Architecture(name=target.architecture)
            self._architectures[arch.name] = arch
        if target.name not in arch.targets:
            arch.targets.append(target.name)
        return target

    def add_architecture(self, architecture: Architecture) -> Architecture:
        """Register architecture settings, merging with targets already attached."""
        self._check_mutable(f"add architecture '{architecture.name}'")
        existing = self._architectures.get(architecture.name)
        if existing is not None:
            for tgt in existing.targets:
                if tgt not in architecture.targets:
                    architecture.targets.append(tgt)
        self._architectures[architecture.name] = architecture
        return architecture

    def get_target(self, name: str) -> Target:
        try:
            return self._targets[name]
        except KeyError:
            raise UnknownUnitError(f"Target '{name}' is not registered") from None

    def targets(self) -> List[Target]:
        return list(self._targets.values())

    def get_architecture(self, name: str) -> Architecture:
        try:
            return self._architectures[name]
        except KeyError:
            raise UnknownUnitError(f"Architecture '{name}' is not registered") from None

    def architectures(self) -> List[Architecture]:
        """Architectures that have at least one target, in declaration order."""
        return [arch for arch in self._architectures.values() if arch.targets]

    def targets_for_architecture(self, arch_name: str) -> List[Target]:
        arch = self.get_architecture(arch_name)
        return [self._targets[name] for name in arch.targets]

    def units_for_architecture(self, arch_name: str) -> List[str]:
        """
        Unit names referenced by any target of an architecture.

        Includes mission core interfaces and core modules, followed by each
        target's PSP modules, static units and dynamic units. Order is the
        first reference; names are not checked against the registry here.
        """
        names: List[str] = []

        def add(items: Iterable[str]) -> None:
            for item in items:
                if item not in names:
                    names.append(item)

        add(self.mission.core_interfaces)
        add(self.mission.core_modules)
        targets = self.targets_for_architecture(arch_name)
        for target in targets:
            add(target.psp_modules)
        for target in targets:
            add(target.static_unit_list)
        for target in targets:
            add(target.unit_list)
        return names
