"""
Report sinks for faulty seeds.

A report sink receives the TriageResult of every faulty seed, exactly once.
ConsoleReportSink prints it and stops the run; GitlabReportSink files an
issue and lets the run continue.
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import TextIO

from seedhunt.errors import ReportError, RunTerminated
from seedhunt.gitlab import GitlabClient, IssuePayload
from seedhunt.types import TriageResult

logger = logging.getLogger(__name__)


class ReportSink:
    """Interface for receivers of triage results."""

    def report(self, result: TriageResult) -> None:
        raise NotImplementedError


class ConsoleReportSink(ReportSink):
    """
    Print the report of a faulty seed and terminate the run.

    Used when no issue tracker is configured: the first faulty seed is shown
    in full and the run ends with a non-zero exit status.
    """

    def __init__(self, stdout: TextIO | None = None, stderr: TextIO | None = None) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self._lock = threading.Lock()

    def report(self, result: TriageResult) -> None:
        # Resolve the streams late so redirected sys.stdout/sys.stderr are honoured.
        out = self.stdout or sys.stdout
        err = self.stderr or sys.stderr
        with self._lock:
            print("stdout:\n", file=out)
            if result.captured_stdout is not None:
                print(result.captured_stdout, file=out)
            print("stderr:\n", file=out)
            if result.captured_stderr is not None:
                print(result.captured_stderr, file=err)
            print("layer errors (filtered_output):\n", file=out)
            if result.filtered_report:
                print(result.filtered_report, file=out)
            out.flush()
            err.flush()

        raise RunTerminated(
            seed=result.seed,
            reason="faulty seed found and no issue tracker configured",
        )


class GitlabReportSink(ReportSink):
    """File one GitLab issue per faulty seed."""

    def __init__(self, client: GitlabClient) -> None:
        self.client = client
        self.issues_created = 0
        self.failed_reports = 0
        self._lock = threading.Lock()

    def report(self, result: TriageResult) -> None:
        payload = IssuePayload(
            seed=result.seed,
            filtered_output=result.filtered_report,
            logs=result.log_directory,
            stdout=result.captured_stdout,
            stderr=result.captured_stderr,
            commit_id=result.commit_id,
        )
        try:
            issue = self.client.create_issue(payload)
        except ReportError as e:
            logger.error(f"  [!] Could not report seed {result.seed} to GitLab: {e}")
            with self._lock:
                self.failed_reports += 1
            return

        with self._lock:
            self.issues_created += 1
        logger.info(f"  [+] Issue filed for seed {result.seed}: {issue.get('web_url', '<no url>')}")
