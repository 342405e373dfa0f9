"""
Command-line interface for archbuild.

This module provides the `archbuild` CLI tool for planning, building,
testing and header-checking multi-architecture missions.
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from archbuild import __version__
from archbuild.build.build_utils import BuildSummaryPrinter, PlanPrinter
from archbuild.build.orchestrator import BuildOrchestrator, BuildResult
from archbuild.cli_utils import (
    BannerFormatter,
    ErrorFormatter,
    MissionDetector,
    PathValidator,
    setup_logging,
)
from archbuild.config import MissionLayout
from archbuild.errors import ArchBuildError


@dataclass
class PlanArgs:
    """Arguments for the plan command."""

    project_dir: Path
    architecture: Optional[str] = None
    verbose: bool = False


@dataclass
class BuildArgs:
    """Arguments for the build command."""

    project_dir: Path
    architecture: Optional[str] = None
    jobs: Optional[int] = None
    clean: bool = False
    tables: bool = True
    verbose: bool = False


@dataclass
class TestArgs:
    """Arguments for the test command."""

    __test__ = False

    project_dir: Path
    architecture: Optional[str] = None
    jobs: Optional[int] = None
    run: bool = True
    verbose: bool = False


def _start_logging(project_dir: Path, verbose: bool) -> None:
    setup_logging(MissionLayout(project_dir).log_file, verbose=verbose)


def _report(result: BuildResult, what: str) -> None:
    if result.failures or result.tests:
        print()
        BuildSummaryPrinter.print_summary(list(result.results.values()))
    if result.success:
        ErrorFormatter.print_success(f"{what} successful!")
        print(f"Time: {result.build_time:.2f}s")
        sys.exit(0)
    ErrorFormatter.print_error(f"{what} failed!", result.message)
    sys.exit(1)


def plan_command(args: PlanArgs) -> None:
    """Print the build plan of each architecture.

    Examples:
        archbuild plan                   # Plan all architectures
        archbuild plan -a native         # Plan one architecture
    """
    try:
        MissionDetector.detect_architectures(args.project_dir, args.architecture)
        orchestrator = BuildOrchestrator(verbose=args.verbose)
        _registry, layout, plans = orchestrator.plan(args.project_dir, args.architecture)
        for plan in plans:
            BannerFormatter.print_banner(f"Architecture {plan.name}")
            PlanPrinter.print_plan(plan, layout.install_root)
        sys.exit(0)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except ArchBuildError as e:
        ErrorFormatter.handle_build_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def build_command(args: BuildArgs) -> None:
    """Build and stage all targets.

    Examples:
        archbuild build                  # Build every architecture
        archbuild build -a native -j 8   # Build one architecture with 8 jobs
        archbuild build --clean          # Clean build
        archbuild build --no-tables      # Skip data tables
    """
    print(f"archbuild v{__version__}")
    print()

    try:
        architectures = MissionDetector.detect_architectures(args.project_dir, args.architecture)
        _start_logging(args.project_dir, args.verbose)
        print(f"Building architecture(s): {', '.join(architectures)}...")

        orchestrator = BuildOrchestrator(jobs=args.jobs, verbose=args.verbose, show_progress=not args.verbose)
        result = orchestrator.build(
            project_dir=args.project_dir,
            architecture=args.architecture,
            clean=args.clean,
            tables=args.tables,
        )
        if result.success:
            print(f"Installed {len(result.installed)} files, {len(result.tables)} tables")
        _report(result, "Build")

    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except ArchBuildError as e:
        ErrorFormatter.handle_build_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def test_command(args: TestArgs) -> None:
    """Build coverage test runners and run them.

    Examples:
        archbuild test                   # Build and run all coverage tests
        archbuild test --no-run          # Only build and stage the runners
    """
    print(f"archbuild v{__version__}")
    print()

    try:
        MissionDetector.detect_architectures(args.project_dir, args.architecture)
        _start_logging(args.project_dir, args.verbose)

        orchestrator = BuildOrchestrator(jobs=args.jobs, verbose=args.verbose, show_progress=not args.verbose)
        result = orchestrator.test(args.project_dir, args.architecture, run=args.run)
        for outcome in result.tests:
            if not outcome.passed:
                ErrorFormatter.print_error(f"Test failed: {outcome.name}", outcome.output)
        if result.tests:
            passed = len([t for t in result.tests if t.passed])
            print(f"Tests: {passed}/{len(result.tests)} passed")
        _report(result, "Test")

    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except ArchBuildError as e:
        ErrorFormatter.handle_build_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def check_headers_command(args: PlanArgs) -> None:
    """Compile each public header standalone.

    Examples:
        archbuild check-headers
    """
    try:
        MissionDetector.detect_architectures(args.project_dir, args.architecture)
        _start_logging(args.project_dir, args.verbose)
        orchestrator = BuildOrchestrator(verbose=args.verbose)
        result = orchestrator.check_headers(args.project_dir, args.architecture)
        _report(result, "Header check")

    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except ArchBuildError as e:
        ErrorFormatter.handle_build_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Mission directory containing mission.ini (default: current directory)",
    )
    parser.add_argument(
        "-a",
        "--architecture",
        default=None,
        help="Architecture to process (default: all)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="archbuild",
        description="archbuild - multi-architecture mission build orchestrator",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"archbuild {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    plan_parser = subparsers.add_parser("plan", help="Show build order, linkage and install actions")
    _add_common_arguments(plan_parser)

    build_parser = subparsers.add_parser("build", help="Build and stage all targets")
    _add_common_arguments(build_parser)
    build_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Parallel build actions (default: number of CPUs)",
    )
    build_parser.add_argument(
        "-c",
        "--clean",
        action="store_true",
        help="Clean build artifacts before building",
    )
    build_parser.add_argument(
        "--no-tables",
        action="store_true",
        help="Do not build or stage data tables",
    )

    test_parser = subparsers.add_parser("test", help="Build and run coverage tests")
    _add_common_arguments(test_parser)
    test_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Parallel build actions (default: number of CPUs)",
    )
    test_parser.add_argument(
        "--no-run",
        action="store_true",
        help="Build and stage test runners without running them",
    )

    check_parser = subparsers.add_parser("check-headers", help="Compile each public header standalone")
    _add_common_arguments(check_parser)

    return parser


def main() -> None:
    """archbuild - multi-architecture mission build orchestrator."""
    parser = create_parser()
    parsed_args = parser.parse_args()

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    PathValidator.validate_project_dir(parsed_args.project_dir)

    if parsed_args.command == "plan":
        plan_command(PlanArgs(
            project_dir=parsed_args.project_dir,
            architecture=parsed_args.architecture,
            verbose=parsed_args.verbose,
        ))
    elif parsed_args.command == "build":
        build_command(BuildArgs(
            project_dir=parsed_args.project_dir,
            architecture=parsed_args.architecture,
            jobs=parsed_args.jobs,
            clean=parsed_args.clean,
            tables=not parsed_args.no_tables,
            verbose=parsed_args.verbose,
        ))
    elif parsed_args.command == "test":
        test_command(TestArgs(
            project_dir=parsed_args.project_dir,
            architecture=parsed_args.architecture,
            jobs=parsed_args.jobs,
            run=not parsed_args.no_run,
            verbose=parsed_args.verbose,
        ))
    elif parsed_args.command == "check-headers":
        check_headers_command(PlanArgs(
            project_dir=parsed_args.project_dir,
            architecture=parsed_args.architecture,
            verbose=parsed_args.verbose,
        ))


if __name__ == "__main__":
    main()
