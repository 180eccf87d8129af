"""Tests for bounded-concurrency scheduling (seedhunt/scheduler.py)."""

import random
import threading
import time
import unittest
from collections import Counter

from seedhunt.errors import RunTerminated, TriageError, TrialLaunchError
from seedhunt.scheduler import Scheduler
from seedhunt.seeds import CappedSeedSource, ListSeedSource, RandomSeedSource
from seedhunt.types import AbnormalExit, LaunchError, Success, TimedOut


class FakeRunner:
    """Stands in for TrialRunner, recording how many trials overlap."""

    def __init__(self, outcomes=None, delay=0.01):
        self.outcomes = outcomes or {}
        self.delay = delay
        self.lock = threading.Lock()
        self.running = 0
        self.max_running = 0
        self.seen = Counter()
        self.commit_ids = set()

    def run(self, seed, commit_id=None):
        with self.lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            self.seen[seed] += 1
            self.commit_ids.add(commit_id)
        try:
            action = self.outcomes.get(seed)
            if action is None:
                time.sleep(self.delay * random.random())
            if isinstance(action, BaseException):
                raise action
            if action is not None:
                return action
            return Success(seed=seed)
        finally:
            with self.lock:
                self.running -= 1


class TestSchedulerConcurrency(unittest.TestCase):
    """Test the concurrency bound and completion accounting."""

    def test_never_exceeds_concurrency_limit(self):
        for concurrency in (1, 2, 5, 16):
            runner = FakeRunner()
            scheduler = Scheduler(lambda: runner, concurrency=concurrency)
            scheduler.run(ListSeedSource(list(range(40))))
            self.assertLessEqual(runner.max_running, concurrency)
            self.assertGreaterEqual(runner.max_running, 1)

    def test_every_seed_runs_exactly_once(self):
        runner = FakeRunner()
        seeds = list(range(50))
        progress = Scheduler(lambda: runner, concurrency=7).run(ListSeedSource(seeds))
        self.assertEqual(runner.seen, Counter(seeds))
        self.assertEqual(progress.completed, 50)
        self.assertEqual(progress.dispatched, 50)
        self.assertEqual(progress.total, 50)
        self.assertEqual(progress.successes, 50)

    def test_duplicate_seeds_each_run(self):
        runner = FakeRunner()
        progress = Scheduler(lambda: runner, concurrency=3).run(ListSeedSource([4, 4, 4]))
        self.assertEqual(runner.seen[4], 3)
        self.assertEqual(progress.completed, 3)

    def test_empty_source(self):
        runner = FakeRunner()
        progress = Scheduler(lambda: runner).run(ListSeedSource([]))
        self.assertEqual(progress.completed, 0)

    def test_capped_random_source(self):
        runner = FakeRunner(delay=0)
        source = CappedSeedSource(RandomSeedSource(random.Random(5)), 25)
        progress = Scheduler(lambda: runner, concurrency=4).run(source)
        self.assertEqual(progress.completed, 25)
        self.assertEqual(sum(runner.seen.values()), 25)

    def test_commit_id_passed_to_trials(self):
        runner = FakeRunner()
        Scheduler(lambda: runner, commit_id="deadbeef").run(ListSeedSource([1, 2]))
        self.assertEqual(runner.commit_ids, {"deadbeef"})

    def test_invalid_concurrency(self):
        with self.assertRaises(ValueError):
            Scheduler(lambda: FakeRunner(), concurrency=0)

    def test_progress_logged(self):
        runner = FakeRunner()
        with self.assertLogs("seedhunt.scheduler", level="INFO") as logs:
            Scheduler(lambda: runner, concurrency=2).run(ListSeedSource([1, 2, 3]))
        self.assertTrue(any("[3/3]" in line for line in logs.output))

    def test_unbounded_progress_uses_infinity(self):
        runner = FakeRunner(delay=0)
        source = RandomSeedSource(random.Random(1))
        scheduler = Scheduler(lambda: runner, concurrency=1)
        # An unbounded source only ends through an error; use a launch error to stop it.
        original_run = runner.run
        calls = {"n": 0}

        def run(seed, commit_id=None):
            calls["n"] += 1
            if calls["n"] == 3:
                return LaunchError(seed=seed, cause="gone")
            return original_run(seed, commit_id)

        runner.run = run
        with self.assertLogs("seedhunt.scheduler", level="INFO") as logs:
            with self.assertRaises(TrialLaunchError):
                scheduler.run(source)
        self.assertTrue(any("/∞]" in line for line in logs.output))


class TestSchedulerOutcomes(unittest.TestCase):
    """Test how trial outcomes and errors affect the run."""

    def test_failures_and_timeouts_do_not_stop_the_run(self):
        runner = FakeRunner(
            outcomes={3: AbnormalExit(seed=3, exit_code=1), 5: TimedOut(seed=5)}
        )
        progress = Scheduler(lambda: runner, concurrency=2).run(ListSeedSource(list(range(10))))
        self.assertEqual(progress.completed, 10)
        self.assertEqual(progress.failures, 1)
        self.assertEqual(progress.timeouts, 1)
        self.assertEqual(progress.successes, 8)
        self.assertEqual(progress.faulty_seeds, [3])

    def test_fail_fast_raises_run_terminated(self):
        runner = FakeRunner(outcomes={9: AbnormalExit(seed=9, exit_code=2)})
        scheduler = Scheduler(lambda: runner, concurrency=1, fail_fast=True)
        with self.assertRaises(RunTerminated) as ctx:
            scheduler.run(ListSeedSource(list(range(10))))
        self.assertEqual(ctx.exception.seed, 9)
        self.assertEqual(ctx.exception.exit_code, 1)
        # Seeds are consumed from the end, so seed 9 is the first one run.
        self.assertLess(sum(runner.seen.values()), 10)

    def test_run_terminated_from_trial_stops_immediately(self):
        runner = FakeRunner(outcomes={9: RunTerminated(seed=9, reason="no tracker")})
        scheduler = Scheduler(lambda: runner, concurrency=1)
        with self.assertRaises(RunTerminated):
            scheduler.run(ListSeedSource(list(range(10))))
        self.assertEqual(scheduler.progress.completed, 1)

    def test_faulty_seed_that_ended_run_is_counted(self):
        terminated = RunTerminated(seed=9, reason="no tracker")
        terminated.outcome = AbnormalExit(seed=9, exit_code=1)
        runner = FakeRunner(outcomes={9: terminated})
        scheduler = Scheduler(lambda: runner, concurrency=1)
        with self.assertRaises(RunTerminated):
            scheduler.run(ListSeedSource(list(range(10))))
        self.assertEqual(scheduler.progress.failures, 1)
        self.assertEqual(scheduler.progress.faulty_seeds, [9])

    def test_faulty_seed_with_triage_error_is_counted(self):
        error = TriageError("trace.json:1: malformed log record")
        error.outcome = AbnormalExit(seed=3, exit_code=2)
        runner = FakeRunner(outcomes={3: error})
        scheduler = Scheduler(lambda: runner, concurrency=2)
        with self.assertRaises(TriageError):
            scheduler.run(ListSeedSource([1, 2, 3]))
        self.assertEqual(scheduler.progress.faulty_seeds, [3])
        self.assertEqual(scheduler.progress.completed, 1 + scheduler.progress.successes)

    def test_launch_error_aborts_after_draining(self):
        runner = FakeRunner(outcomes={19: LaunchError(seed=19, cause="No such file")})
        scheduler = Scheduler(lambda: runner, concurrency=4)
        with self.assertRaises(TrialLaunchError) as ctx:
            scheduler.run(ListSeedSource(list(range(20))))
        self.assertEqual(ctx.exception.seed, 19)
        progress = scheduler.progress
        self.assertEqual(progress.completed, progress.dispatched)
        self.assertLess(progress.dispatched, 20)
        self.assertEqual(progress.launch_errors, 1)

    def test_worker_exception_aborts_after_draining(self):
        runner = FakeRunner(outcomes={19: TriageError("bad record")})
        scheduler = Scheduler(lambda: runner, concurrency=3)
        with self.assertRaises(TriageError):
            scheduler.run(ListSeedSource(list(range(20))))
        self.assertEqual(scheduler.progress.completed, scheduler.progress.dispatched)

    def test_unexpected_exception_still_posts_completion(self):
        runner = FakeRunner(outcomes={0: RuntimeError("kaboom")})
        scheduler = Scheduler(lambda: runner, concurrency=2)
        with self.assertRaises(RuntimeError):
            scheduler.run(ListSeedSource([0]))
        self.assertEqual(scheduler.progress.completed, 1)


if __name__ == "__main__":
    unittest.main()
