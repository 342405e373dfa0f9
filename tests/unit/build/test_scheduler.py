"""
Unit tests for BuildScheduler.
"""

import threading
import time

import pytest

from archbuild.build.scheduler import (
    FAILED,
    SKIPPED,
    SUCCEEDED,
    BuildAction,
    BuildScheduler,
    SchedulerError,
    default_jobs,
)


class TestBuildScheduler:
    """Test suite for BuildScheduler."""

    def test_dependencies_run_first(self):
        finished = []
        lock = threading.Lock()

        def action(name):
            def run():
                with lock:
                    finished.append(name)
                return name
            return run

        scheduler = BuildScheduler(jobs=4)
        scheduler.add(BuildAction('app', action('app'), deps=['lib_a', 'lib_b']))
        scheduler.add(BuildAction('lib_a', action('lib_a'), deps=['base']))
        scheduler.add(BuildAction('lib_b', action('lib_b'), deps=['base']))
        scheduler.add(BuildAction('base', action('base')))

        results = scheduler.run()

        assert all(r.status == SUCCEEDED for r in results.values())
        assert finished[0] == 'base'
        assert finished[-1] == 'app'
        assert results['app'].value == 'app'
        assert list(results) == ['app', 'lib_a', 'lib_b', 'base']

    def test_failure_skips_dependents_only(self):
        """A failed action blocks its dependents; independent work continues."""
        def fail():
            raise RuntimeError('compile error')

        scheduler = BuildScheduler(jobs=2)
        scheduler.add(BuildAction('bus', fail))
        scheduler.add(BuildAction('sensor', lambda: 'sensor', deps=['bus']))
        scheduler.add(BuildAction('sensor_test', lambda: 'test', deps=['sensor']))
        scheduler.add(BuildAction('telemetry', lambda: 'telemetry'))

        results = scheduler.run()

        assert results['bus'].status == FAILED
        assert str(results['bus'].error) == 'compile error'
        assert results['sensor'].status == SKIPPED
        assert results['sensor'].blocked_by == ['bus']
        assert results['sensor_test'].status == SKIPPED
        assert results['sensor_test'].blocked_by == ['bus']
        assert results['telemetry'].status == SUCCEEDED

    def test_independent_actions_run_concurrently(self):
        barrier = threading.Barrier(2, timeout=5)

        def wait_for_peer():
            barrier.wait()
            return True

        scheduler = BuildScheduler(jobs=2)
        scheduler.add(BuildAction('table_cpu1', wait_for_peer))
        scheduler.add(BuildAction('table_cpu2', wait_for_peer))

        results = scheduler.run()

        assert all(r.succeeded for r in results.values())

    def test_jobs_limit_concurrency(self):
        running = []
        peak = []
        lock = threading.Lock()

        def work():
            with lock:
                running.append(1)
                peak.append(len(running))
            time.sleep(0.02)
            with lock:
                running.pop()

        scheduler = BuildScheduler(jobs=2)
        for index in range(6):
            scheduler.add(BuildAction(f'unit{index}', work))
        scheduler.run()

        assert max(peak) <= 2

    def test_duplicate_action(self):
        scheduler = BuildScheduler(jobs=1)
        scheduler.add(BuildAction('a', lambda: None))
        with pytest.raises(SchedulerError):
            scheduler.add(BuildAction('a', lambda: None))

    def test_unknown_dependency(self):
        scheduler = BuildScheduler(jobs=1)
        scheduler.add(BuildAction('a', lambda: None, deps=['ghost']))
        with pytest.raises(SchedulerError, match='ghost'):
            scheduler.run()

    def test_cycle_detected_before_running(self):
        ran = []
        scheduler = BuildScheduler(jobs=1)
        scheduler.add(BuildAction('a', lambda: ran.append('a'), deps=['b']))
        scheduler.add(BuildAction('b', lambda: ran.append('b'), deps=['a']))

        with pytest.raises(SchedulerError, match='cycle'):
            scheduler.run()
        assert ran == []

    def test_default_jobs_from_cpu_count(self, monkeypatch):
        monkeypatch.setattr('psutil.cpu_count', lambda logical=True: 6)
        assert default_jobs() == 6
        assert BuildScheduler().jobs == 6

    def test_empty_graph(self):
        assert BuildScheduler(jobs=1).run() == {}
