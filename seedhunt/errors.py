"""Exception types raised by seedhunt.

Everything a run can fail with derives from SeedhuntError, so the CLI has a
single place to turn failures into exit statuses. RunTerminated is the odd
one out: it is not a failure but the signal that a run must stop now.
"""


class SeedhuntError(Exception):
    """Base class for all seedhunt errors.

    When the error escapes a trial that had already been classified (a
    faulty seed whose triage or report raised), ``outcome`` holds that
    trial's outcome so the run can still account for it.
    """

    outcome = None


class ConfigError(SeedhuntError):
    """Invalid or conflicting configuration, detected before any trial runs."""


class TrialLaunchError(SeedhuntError):
    """The target executable could not be started for a trial."""

    def __init__(self, seed: int, cause: str) -> None:
        super().__init__(f"Failed to launch trial for seed {seed}: {cause}")
        self.seed = seed
        self.cause = cause


class TriageError(SeedhuntError):
    """A structured log file could not be read or contained a malformed record."""


class ReportError(SeedhuntError):
    """Uploading artifacts or creating an issue on the tracker failed."""


class RunTerminated(SeedhuntError):
    """Stop the whole run immediately.

    Raised after a faulty seed has been reported and the run must not go on,
    either because no tracker is configured or because fail-fast is set.
    Trials still in flight are abandoned.
    """

    def __init__(self, seed: int, reason: str, exit_code: int = 1) -> None:
        super().__init__(f"Run terminated on seed {seed}: {reason}")
        self.seed = seed
        self.reason = reason
        self.exit_code = exit_code
