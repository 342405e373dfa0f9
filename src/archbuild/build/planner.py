"""
Architecture build planning for archbuild.

For one architecture the planner:
1. Checks that every unit referenced by the architecture's targets exists
2. Resolves the dependency-ordered BuildPlan
3. Decides static vs dynamic linkage per unit
4. Computes which targets each unit is installed to, and the static closure
   linked into each target's core executable
5. Lists table builds per (target, table) and every install action

The planner runs once per architecture, single-threaded, before any
construction starts.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..config.layout import MissionLayout
from ..errors import ArchBuildError
from ..model import (
    Architecture,
    CompileMetadata,
    InstallAction,
    LinkType,
    Target,
    Unit,
    UnitKind,
)
from .registry import ModuleRegistry
from .resolver import BuildPlan, DependencyResolver, MissingDependencyMetadataError

PSP_MODULE_DEFINITION = "_CFE_PSP_MODULE_"


class ConflictingLinkageError(ArchBuildError):
    """Raised when a unit is listed as both static and dynamic on one architecture."""

    pass


class DuplicateTableError(ArchBuildError):
    """Raised when two table sources of one unit share a table name."""

    pass


@dataclass
class TableJob:
    """One table to build for one target.

    Attributes:
        target: Target name
        unit: Owning unit name
        table_name: Table name (declared file name without extension)
        declared_source: Table source path as declared by the unit
    """

    target: str
    unit: str
    table_name: str
    declared_source: Path

    @property
    def name(self) -> str:
        return f"{self.target}_{self.unit}_{self.table_name}"


@dataclass
class ArchitecturePlan:
    """Everything needed to build and stage one architecture."""

    architecture: Architecture
    build_plan: BuildPlan
    targets: List[Target]
    linkage: Dict[str, LinkType] = field(default_factory=dict)
    install_targets: Dict[str, List[str]] = field(default_factory=dict)
    static_closure: Dict[str, List[str]] = field(default_factory=dict)
    artifacts: Dict[str, Optional[Path]] = field(default_factory=dict)
    executables: Dict[str, Path] = field(default_factory=dict)
    table_jobs: List[TableJob] = field(default_factory=list)
    install_actions: List[InstallAction] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.architecture.name

    @property
    def order(self) -> List[str]:
        return self.build_plan.order

    def metadata(self, unit: str) -> CompileMetadata:
        return self.build_plan.metadata[unit]


class ArchitectureBuildPlanner:
    """
    Builds an ArchitecturePlan from a frozen registry.

    Example usage:
        planner = ArchitectureBuildPlanner(registry, layout)
        plan = planner.plan("arm")
        for action in plan.install_actions:
            print(action.unit, "->", action.destination)
    """

    def __init__(self, registry: ModuleRegistry, layout: MissionLayout, verbose: bool = False):
        self.registry = registry
        self.layout = layout
        self.verbose = verbose
        self.resolver = DependencyResolver(registry)

    def plan(self, arch_name: str) -> ArchitecturePlan:
        """
        Plan one architecture.

        Raises:
            UnknownUnitError: If the architecture is not registered
            MissingDependencyMetadataError: If a referenced unit is not declared
            CyclicDependencyError: If the dependency graph has a cycle
            ConflictingLinkageError: If a unit is both static and dynamic
            DuplicateTableError: If a unit declares two tables with one name
        """
        architecture = self.registry.get_architecture(arch_name)
        targets = self.registry.targets_for_architecture(arch_name)
        referenced = self.registry.units_for_architecture(arch_name)

        self._check_declared(arch_name, referenced, targets)
        build_plan = self.resolver.resolve(referenced, architecture=arch_name)

        plan = ArchitecturePlan(architecture=architecture, build_plan=build_plan, targets=targets)
        self._apply_psp_definitions(plan)
        plan.linkage = self._decide_linkage(plan)
        plan.install_targets = self._compute_install_targets(plan)
        plan.static_closure = self._compute_static_closure(plan)
        plan.artifacts = {name: self.artifact_path(plan, name) for name in plan.order}
        plan.executables = {
            target.name: self.layout.get_target_build_dir(arch_name, target.name) / f"core-{target.name}"
            for target in targets
        }
        plan.table_jobs = self._compute_table_jobs(plan)
        plan.install_actions = self._compute_install_actions(plan)

        logging.info(
            f"Planned architecture {arch_name}: {len(plan.order)} units, "
            f"{len(targets)} targets, {len(plan.table_jobs)} tables"
        )
        return plan

    def _check_declared(self, arch_name: str, referenced: List[str], targets: List[Target]) -> None:
        for name in referenced:
            if self.registry.has_unit(name):
                continue
            users = [t.name for t in targets if name in t.all_units() or name in t.psp_modules]
            where = f"target(s) {', '.join(users)}" if users else "the mission core module list"
            raise MissingDependencyMetadataError(
                f"Unit '{name}' referenced by {where} on architecture '{arch_name}' is not declared"
            )

    def _apply_psp_definitions(self, plan: ArchitecturePlan) -> None:
        psp_modules = {m for t in plan.targets for m in t.psp_modules}
        for name in psp_modules:
            plan.build_plan.metadata[name] = plan.build_plan.metadata[name].merged(
                CompileMetadata(definitions=[PSP_MODULE_DEFINITION])
            )

    def _decide_linkage(self, plan: ArchitecturePlan) -> Dict[str, LinkType]:
        """
        A unit in any target's dynamic list is a loadable module; a unit in a
        static list (static apps, PSP modules, mission core modules) is static.
        Anything else keeps its declared link type.
        """
        dynamic: Dict[str, List[str]] = {}
        static: Dict[str, List[str]] = {}
        mission = self.registry.mission
        for name in list(mission.core_modules) + list(mission.core_interfaces):
            static.setdefault(name, []).append("mission core")
        for target in plan.targets:
            for name in target.unit_list:
                dynamic.setdefault(name, []).append(target.name)
            for name in list(target.static_unit_list) + list(target.psp_modules):
                static.setdefault(name, []).append(target.name)

        for name in dynamic:
            if name in static:
                raise ConflictingLinkageError(
                    f"Unit '{name}' on architecture '{plan.name}' is dynamic on "
                    f"{', '.join(dynamic[name])} but static on {', '.join(static[name])}"
                )

        linkage = {}
        for name in plan.order:
            if name in dynamic:
                linkage[name] = LinkType.DYNAMIC
            elif name in static:
                linkage[name] = LinkType.STATIC
            else:
                linkage[name] = self.registry.get(name).link_type
        return linkage

    def _compute_install_targets(self, plan: ArchitecturePlan) -> Dict[str, List[str]]:
        """Targets that reference each unit directly, in target order."""
        install_targets: Dict[str, List[str]] = {name: [] for name in plan.order}
        for target in plan.targets:
            for name in target.all_units() + list(target.psp_modules):
                if target.name not in install_targets[name]:
                    install_targets[name].append(target.name)
        return install_targets

    def _compute_static_closure(self, plan: ArchitecturePlan) -> Dict[str, List[str]]:
        """
        Static units linked into each target's core executable.

        Includes mission core modules, the target's PSP modules and static
        units, and every static unit any of the target's units depends on.
        """
        closure: Dict[str, List[str]] = {}
        mission = self.registry.mission
        for target in plan.targets:
            roots = list(mission.core_modules) + list(target.psp_modules) + target.all_units()
            members = set()
            for root in roots:
                for name in [root] + plan.build_plan.transitive_dependencies(root):
                    if plan.linkage[name] == LinkType.STATIC and self._has_binary(name):
                        members.add(name)
            closure[target.name] = [name for name in plan.order if name in members]
        return closure

    def _has_binary(self, name: str) -> bool:
        unit = self.registry.get(name)
        return unit.kind != UnitKind.TABLE and bool(unit.sources)

    def artifact_path(self, plan: ArchitecturePlan, name: str) -> Optional[Path]:
        """
        Output file of a unit, or None for units without a binary.

        Loadable modules are named after the unit without a 'lib' prefix.
        """
        if not self._has_binary(name):
            return None
        unit: Unit = self.registry.get(name)
        build_dir = self.layout.get_unit_build_dir(plan.name, name)
        if unit.kind == UnitKind.EXECUTABLE:
            return build_dir / name
        if plan.linkage[name] == LinkType.DYNAMIC:
            return build_dir / f"{name}.so"
        return build_dir / f"lib{name}.a"

    def _compute_table_jobs(self, plan: ArchitecturePlan) -> List[TableJob]:
        """
        One job per (target, table).

        Tables are built for the targets that reference the owning unit; a
        unit that no target references directly (only reached as a dependency
        or core module) gets its tables built for every target.
        """
        jobs = []
        all_targets = [t.name for t in plan.targets]
        for name in plan.order:
            unit = self.registry.get(name)
            if not unit.tables:
                continue
            table_targets = plan.install_targets.get(name) or all_targets
            seen: Dict[str, Path] = {}
            for table in unit.tables:
                table_name = Path(table).stem
                if table_name in seen:
                    raise DuplicateTableError(
                        f"Unit '{name}' declares table '{table_name}' twice "
                        f"({seen[table_name]} and {table})"
                    )
                seen[table_name] = Path(table)
                for target in table_targets:
                    jobs.append(TableJob(
                        target=target,
                        unit=name,
                        table_name=table_name,
                        declared_source=Path(table),
                    ))
        return jobs

    def _compute_install_actions(self, plan: ArchitecturePlan) -> List[InstallAction]:
        """
        Install actions for loadable modules, executables, core executables,
        tables and per-target files.

        Static libraries are not staged; they are linked into core-<target>.
        """
        actions: List[InstallAction] = []
        targets = {t.name: t for t in plan.targets}

        for name in plan.order:
            artifact = plan.artifacts[name]
            if artifact is None:
                continue
            unit = self.registry.get(name)
            if plan.linkage[name] != LinkType.DYNAMIC and unit.kind != UnitKind.EXECUTABLE:
                continue
            for target_name in plan.install_targets[name]:
                target = targets[target_name]
                actions.append(InstallAction(
                    unit=name,
                    target=target_name,
                    source=artifact,
                    destination=self.layout.get_install_dir(target_name, target.install_subdir) / artifact.name,
                ))

        for target in plan.targets:
            if plan.static_closure[target.name]:
                exe = plan.executables[target.name]
                actions.append(InstallAction(
                    unit=exe.name,
                    target=target.name,
                    source=exe,
                    destination=self.layout.get_install_dir(target.name) / exe.name,
                ))

        for job in plan.table_jobs:
            target = targets[job.target]
            actions.append(InstallAction(
                unit=job.unit,
                target=job.target,
                source=self.layout.get_table_dir(plan.name, job.target, job.unit, job.table_name)
                / f"{job.table_name}.tbl",
                destination=self.layout.get_install_dir(job.target, target.install_subdir)
                / f"{job.table_name}.tbl",
            ))

        for target in plan.targets:
            actions.extend(self._file_install_actions(target))
        return actions

    def resolve_install_file(self, target: Target, filename: str) -> Optional[Path]:
        """
        Locate a per-target file; first match wins.

        Search order: <defs>/<target>/<file>, <defs>/<target>_<file>, <defs>/<file>.
        Symlinks are followed.
        """
        defs = self.layout.mission_defs
        for candidate in (
            defs / target.name / filename,
            defs / f"{target.name}_{filename}",
            defs / filename,
        ):
            if candidate.exists():
                return candidate.resolve()
        return None

    def _file_install_actions(self, target: Target) -> List[InstallAction]:
        actions = []
        for filename in target.file_list:
            source = self.resolve_install_file(target, filename)
            if source is None:
                print(f"WARNING: Install file {filename} for {target.name} not found")
                logging.warning(f"Install file {filename} for {target.name} not found")
                continue
            if self.verbose:
                print(f"NOTE: Selected {source} as source for {filename} on {target.name}")
            actions.append(InstallAction(
                unit=filename,
                target=target.name,
                source=source,
                destination=self.layout.get_install_dir(target.name, target.install_subdir) / filename,
            ))
        return actions
