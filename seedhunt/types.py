"""Shared type definitions for seedhunt.

The TrialOutcome hierarchy uses frozen dataclasses so callers can dispatch
on the variant with isinstance() and an outcome can never be changed after
the trial that produced it has finished.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


# ---------------------------------------------------------------------------
# TrialOutcome hierarchy, returned by TrialRunner.run()
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrialOutcome:
    """Base class for the result of running one seed."""

    seed: int
    elapsed_secs: float = 0.0


@dataclass(frozen=True)
class Success(TrialOutcome):
    """The simulator exited with status 0."""


@dataclass(frozen=True)
class AbnormalExit(TrialOutcome):
    """The simulator exited with a non-zero status (negative for signals)."""

    exit_code: int = 1


@dataclass(frozen=True)
class TimedOut(TrialOutcome):
    """The simulator ran past the deadline and was killed."""


@dataclass(frozen=True)
class LaunchError(TrialOutcome):
    """The simulator could not be started at all."""

    cause: str = ""


# ---------------------------------------------------------------------------
# Triage and progress
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriageResult:
    """Everything a report sink needs to describe one faulty seed."""

    seed: int
    filtered_report: str
    log_directory: Path
    commit_id: str | None = None
    captured_stdout: str | None = None
    captured_stderr: str | None = None
    exit_code: int | None = None


@dataclass
class RunProgress:
    """Counters describing how far a run has got.

    Only the scheduler thread updates these. They are for logging and the
    run summary, never for control decisions.
    """

    total: int | None = None
    dispatched: int = 0
    completed: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0
    launch_errors: int = 0
    faulty_seeds: list[int] = field(default_factory=list)

    def format_total(self) -> str:
        return "∞" if self.total is None else str(self.total)

    def record(self, outcome: TrialOutcome | None) -> None:
        """Account for one finished trial."""
        self.completed += 1
        if isinstance(outcome, Success):
            self.successes += 1
        elif isinstance(outcome, AbnormalExit):
            self.failures += 1
            self.faulty_seeds.append(outcome.seed)
        elif isinstance(outcome, TimedOut):
            self.timeouts += 1
        elif isinstance(outcome, LaunchError):
            self.launch_errors += 1
