"""
Parallel build action scheduler.

Build work is expressed as a graph of named actions, each with the names of
the actions it depends on. The scheduler runs every action whose
dependencies have succeeded on a thread pool, as many at a time as there are
workers.

Design:
- An action starts only after all of its dependencies succeeded
- A failed action marks every action that transitively depends on it as
  skipped; independent actions keep running
- Ctrl-C cancels everything that has not started and re-raises
"""

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

import psutil
from tqdm import tqdm

from ..errors import ArchBuildError

SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"


class SchedulerError(ArchBuildError):
    """Raised for malformed action graphs."""

    pass


@dataclass
class BuildAction:
    """A unit of build work.

    Attributes:
        name: Unique action name
        func: Callable run on a worker thread; its return value is kept
        deps: Names of actions that must succeed first
    """

    name: str
    func: Callable[[], Any]
    deps: List[str] = field(default_factory=list)


@dataclass
class ActionResult:
    """Outcome of one action."""

    name: str
    status: str
    error: Optional[BaseException] = None
    blocked_by: List[str] = field(default_factory=list)
    value: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


def default_jobs() -> int:
    """Number of parallel jobs when none is requested: one per logical CPU."""
    return psutil.cpu_count(logical=True) or 1


class BuildScheduler:
    """
    Runs a graph of BuildActions in dependency order on a thread pool.

    Example usage:
        scheduler = BuildScheduler(jobs=4)
        scheduler.add(BuildAction("osal", build_osal))
        scheduler.add(BuildAction("sample_app", build_app, deps=["osal"]))
        results = scheduler.run()
        if all(r.succeeded for r in results.values()):
            print("done")
    """

    def __init__(self, jobs: Optional[int] = None, show_progress: bool = False, description: str = "Building"):
        self.jobs = jobs if jobs and jobs > 0 else default_jobs()
        self.show_progress = show_progress
        self.description = description
        self._actions: Dict[str, BuildAction] = {}

    def add(self, action: BuildAction) -> BuildAction:
        """
        Add an action.

        Raises:
            SchedulerError: If an action with the same name already exists
        """
        if action.name in self._actions:
            raise SchedulerError(f"Duplicate build action: {action.name}")
        self._actions[action.name] = action
        return action

    def __contains__(self, name: str) -> bool:
        return name in self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def _validate(self) -> None:
        for action in self._actions.values():
            for dep in action.deps:
                if dep not in self._actions:
                    raise SchedulerError(f"Action '{action.name}' depends on unknown action '{dep}'")

        # Kahn's algorithm; anything left over is on a cycle
        remaining = {name: len(set(a.deps)) for name, a in self._actions.items()}
        dependents = self._dependents()
        ready = [name for name, count in remaining.items() if count == 0]
        visited = 0
        while ready:
            name = ready.pop()
            visited += 1
            for dependent in dependents[name]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
        if visited != len(self._actions):
            stuck = sorted(name for name, count in remaining.items() if count > 0)
            raise SchedulerError(f"Build actions form a cycle: {', '.join(stuck)}")

    def _dependents(self) -> Dict[str, Set[str]]:
        dependents: Dict[str, Set[str]] = {name: set() for name in self._actions}
        for action in self._actions.values():
            for dep in set(action.deps):
                dependents[dep].add(action.name)
        return dependents

    def run(self) -> Dict[str, ActionResult]:
        """
        Run all actions.

        Returns:
            ActionResult per action name, in insertion order

        Raises:
            SchedulerError: If the graph references unknown actions or has a cycle
            KeyboardInterrupt: If interrupted; pending actions are cancelled
        """
        self._validate()
        dependents = self._dependents()
        waiting = {name: set(a.deps) for name, a in self._actions.items()}
        results: Dict[str, ActionResult] = {}
        running: Dict[Future, str] = {}

        progress = tqdm(total=len(self._actions), desc=self.description, unit="action",
                        disable=not self.show_progress)

        def skip_dependents(name: str, root: str) -> None:
            for dependent in dependents[name]:
                if dependent in results:
                    if root not in results[dependent].blocked_by:
                        results[dependent].blocked_by.append(root)
                    continue
                results[dependent] = ActionResult(dependent, SKIPPED, blocked_by=[root])
                progress.update(1)
                skip_dependents(dependent, root)

        executor = ThreadPoolExecutor(max_workers=self.jobs)
        try:
            def submit_ready() -> None:
                for name, deps in waiting.items():
                    if name in results or name in running.values() or deps:
                        continue
                    running[executor.submit(self._actions[name].func)] = name

            submit_ready()
            while running:
                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    try:
                        value = future.result()
                    except Exception as e:
                        results[name] = ActionResult(name, FAILED, error=e)
                        progress.update(1)
                        skip_dependents(name, name)
                        continue
                    results[name] = ActionResult(name, SUCCEEDED, value=value)
                    progress.update(1)
                    for dependent in dependents[name]:
                        waiting[dependent].discard(name)
                submit_ready()
        except KeyboardInterrupt:
            for future in running:
                future.cancel()
            executor.shutdown(wait=False, cancel_futures=True)
            progress.close()
            raise
        executor.shutdown(wait=True)
        progress.close()

        return {name: results[name] for name in self._actions}
