"""Build utilities for archbuild.

This module provides small filesystem helpers used when cleaning build trees
and printers for plans and end-of-build summaries.
"""

import os
import shutil
import stat
import time
from pathlib import Path
from typing import Any, Callable, List, Optional


def remove_readonly(func: Callable[[str], None], path: str, excinfo: Any) -> None:
    """
    Error handler for shutil.rmtree on Windows.

    Read-only files cannot be deleted on Windows; clear the read-only bit and
    retry the operation.
    """
    os.chmod(path, stat.S_IWRITE)
    func(path)


def safe_rmtree(path: Path, max_retries: int = 3) -> None:
    """
    Safely remove a directory tree.

    Args:
        path: Path to directory to remove
        max_retries: Maximum number of retry attempts for locked files

    Raises:
        OSError: If directory cannot be removed after all retries
    """
    if not path.exists():
        return

    for attempt in range(max_retries):
        try:
            shutil.rmtree(path, onerror=remove_readonly)
            return
        except OSError as e:
            if attempt < max_retries - 1:
                # Files might be temporarily locked
                time.sleep(0.5)
            else:
                raise OSError(
                    f"Failed to remove directory {path} after {max_retries} attempts: {e}"
                ) from e


def object_path(obj_dir: Path, source: Path, source_root: Optional[Path] = None) -> Path:
    """
    Object file for a source under obj_dir.

    Sources below source_root keep their relative directory, so 'a/util.c'
    and 'b/util.c' compile to different objects. Other sources keep only
    their file name.
    """
    source = Path(source)
    if source_root is not None and source.is_relative_to(source_root):
        relative = source.relative_to(source_root)
    else:
        relative = Path(source.name)
    return obj_dir / relative.with_suffix(".o")


class BuildSummaryPrinter:
    """Prints the per-action outcome table at the end of a build."""

    @staticmethod
    def print_summary(results: List[Any]) -> None:
        """
        Print build action results grouped by status.

        Args:
            results: ActionResult objects from the scheduler
        """
        succeeded = [r for r in results if r.status == "succeeded"]
        failed = [r for r in results if r.status == "failed"]
        skipped = [r for r in results if r.status == "skipped"]

        print("Build Summary:")
        print(f"  Succeeded: {len(succeeded):5d}")
        print(f"  Failed:    {len(failed):5d}")
        print(f"  Skipped:   {len(skipped):5d}")

        for result in failed:
            print(f"  FAILED  {result.name}: {result.error}")
        for result in skipped:
            print(f"  SKIPPED {result.name} (blocked by {', '.join(result.blocked_by)})")


class PlanPrinter:
    """Prints an architecture plan: build order, linkage, tables and installs."""

    @staticmethod
    def format_plan(plan: Any, install_root: Optional[Path] = None) -> List[str]:
        """
        Format an ArchitecturePlan as text lines.

        Args:
            plan: ArchitecturePlan to describe
            install_root: Shown relative to this directory when given
        """
        def shown(path: Path) -> str:
            if install_root is not None:
                try:
                    return str(path.relative_to(install_root))
                except ValueError:
                    pass
            return str(path)

        lines = [f"Architecture: {plan.name}"]
        lines.append(f"  Targets: {', '.join(t.name for t in plan.targets)}")
        lines.append("  Build order:")
        for index, name in enumerate(plan.order, start=1):
            linkage = plan.linkage[name].value
            artifact = plan.artifacts.get(name)
            suffix = f" -> {artifact.name}" if artifact is not None else ""
            lines.append(f"    {index:3d}. {name} ({linkage}){suffix}")
        for target in plan.targets:
            closure = plan.static_closure.get(target.name, [])
            if closure:
                lines.append(f"  core-{target.name}: {', '.join(closure)}")
        if plan.table_jobs:
            lines.append("  Tables:")
            for job in plan.table_jobs:
                lines.append(f"    {job.target}: {job.unit}.{job.table_name}")
        lines.append("  Install:")
        for action in plan.install_actions:
            lines.append(f"    {action.source.name} -> {shown(action.destination)}")
        return lines

    @staticmethod
    def print_plan(plan: Any, install_root: Optional[Path] = None) -> None:
        for line in PlanPrinter.format_plan(plan, install_root):
            print(line)
