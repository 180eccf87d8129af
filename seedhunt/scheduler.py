"""
Bounded-concurrency scheduling of trials.

The Scheduler draws seeds from a SeedSource and runs each one on its own
worker thread, never keeping more than ``concurrency`` trials in flight.
Workers report back through a completion queue; a new trial is admitted as
soon as any running one finishes, so the pool never idles waiting for a
whole batch.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable

from seedhunt.errors import RunTerminated, SeedhuntError, TrialLaunchError
from seedhunt.execution import TrialRunner
from seedhunt.seeds import SeedSource
from seedhunt.types import AbnormalExit, LaunchError, RunProgress, TrialOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrialCompletion:
    """Posted exactly once by every worker, whatever happened to its trial."""

    seed: int
    outcome: TrialOutcome | None = None
    error: BaseException | None = None


class Scheduler:
    """Runs every seed of a source exactly once with bounded concurrency."""

    def __init__(
        self,
        runner_factory: Callable[[], TrialRunner],
        concurrency: int = 10,
        commit_id: str | None = None,
        fail_fast: bool = False,
    ) -> None:
        """
        Initialize the Scheduler.

        Args:
            runner_factory: Returns the TrialRunner used for each new trial
            concurrency: Maximum number of trials running at the same time
            commit_id: Commit of the simulator under test, passed to every trial
            fail_fast: Stop the run at the first faulty seed
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.runner_factory = runner_factory
        self.concurrency = concurrency
        self.commit_id = commit_id
        self.fail_fast = fail_fast
        self.progress = RunProgress()

    def _run_trial(self, seed: int, completions: "queue.Queue[TrialCompletion]") -> None:
        """Worker body: run one trial and always post its completion."""
        outcome: TrialOutcome | None = None
        error: BaseException | None = None
        try:
            outcome = self.runner_factory().run(seed, self.commit_id)
        except SeedhuntError as e:
            # A faulty seed whose report ended the run is still a faulty seed.
            outcome = e.outcome
            error = e
        except Exception as e:
            error = e
        finally:
            completions.put(TrialCompletion(seed=seed, outcome=outcome, error=error))

    def _dispatch(self, seed: int, completions: "queue.Queue[TrialCompletion]") -> None:
        worker = threading.Thread(
            target=self._run_trial,
            args=(seed, completions),
            name=f"trial-{seed}",
            daemon=True,
        )
        self.progress.dispatched += 1
        worker.start()

    def _collect(self, completion: TrialCompletion) -> BaseException | None:
        """
        Account for one finished trial.

        Returns the run-level error carried by the completion, if any.
        Raises RunTerminated straight away when the run must stop now.
        """
        progress = self.progress
        progress.record(completion.outcome)
        logger.info(f"[*] Checked seeds [{progress.completed}/{progress.format_total()}]")

        if isinstance(completion.error, RunTerminated):
            raise completion.error
        if completion.error is not None:
            logger.error(f"  [!] Trial for seed {completion.seed} failed: {completion.error}")
            return completion.error

        outcome = completion.outcome
        if isinstance(outcome, LaunchError):
            return TrialLaunchError(outcome.seed, outcome.cause)
        if isinstance(outcome, AbnormalExit) and self.fail_fast:
            raise RunTerminated(
                seed=outcome.seed,
                reason=f"fail-fast after faulty seed (exit code {outcome.exit_code})",
            )
        return None

    def run(self, seed_source: SeedSource) -> RunProgress:
        """
        Run every seed of seed_source and wait for all of them to finish.

        Raises:
            RunTerminated: A faulty seed ended the run; in-flight trials are abandoned.
            TrialLaunchError: The simulator could not be launched.
            TriageError: A faulty seed's logs could not be triaged.
        """
        self.progress = RunProgress(total=seed_source.total)
        completions: "queue.Queue[TrialCompletion]" = queue.Queue()
        in_flight = 0
        first_error: BaseException | None = None

        for seed in seed_source:
            if in_flight == self.concurrency:
                error = self._collect(completions.get())
                in_flight -= 1
                if first_error is None:
                    first_error = error
            if first_error is not None:
                logger.error("[!] Stopping seed dispatch after a run-level error.")
                break
            logger.debug(f"  [~] Dispatching seed {seed} ({in_flight + 1} in flight)")
            self._dispatch(seed, completions)
            in_flight += 1

        if in_flight:
            logger.info(f"[*] Waiting for the remaining {in_flight} trial(s)")
        while in_flight:
            error = self._collect(completions.get())
            in_flight -= 1
            if first_error is None:
                first_error = error

        if first_error is not None:
            raise first_error
        return self.progress
