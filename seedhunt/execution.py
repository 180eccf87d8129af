"""
Trial execution for seedhunt.

This module provides the TrialRunner class which handles:
- Allocating a private scratch workspace for each trial
- Launching the simulator with seed-specific arguments
- Enforcing the per-trial timeout by killing the whole process tree
- Triaging and reporting the seeds that make the simulator fail
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import tempfile
import time
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

import psutil

from seedhunt.errors import SeedhuntError
from seedhunt.triage import LogTriage
from seedhunt.types import (
    AbnormalExit,
    LaunchError,
    Success,
    TimedOut,
    TrialOutcome,
    TriageResult,
)

if TYPE_CHECKING:
    from seedhunt.artifacts import ArtifactStore
    from seedhunt.config import HarnessConfig
    from seedhunt.report import ReportSink

logger = logging.getLogger(__name__)

# How long to wait for a killed process tree to go away.
KILL_GRACE_SECS = 5.0


class TrialWorkspace:
    """
    A scratch directory owned by exactly one trial.

    Holds a ``data`` directory for the simulator's runtime state and a
    ``logs`` directory for its trace files. Use it as a context manager: the
    whole tree is removed on exit, whatever happened inside.
    """

    def __init__(self, seed: int, root: Path | None = None) -> None:
        self.seed = seed
        self.root = root
        self.path: Path | None = None

    def _allocated_path(self) -> Path:
        if self.path is None:
            raise RuntimeError(f"Workspace of seed {self.seed} is not allocated")
        return self.path

    @property
    def data_dir(self) -> Path:
        return self._allocated_path() / "data"

    @property
    def logs_dir(self) -> Path:
        return self._allocated_path() / "logs"

    def __enter__(self) -> "TrialWorkspace":
        self.path = Path(tempfile.mkdtemp(prefix=f"seedhunt_seed_{self.seed}_", dir=self.root))
        try:
            self.data_dir.mkdir()
            self.logs_dir.mkdir()
        except OSError:
            self.release()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def release(self) -> None:
        """Remove the workspace tree. Failures are logged, never raised."""
        if self.path is None:
            return
        try:
            shutil.rmtree(self.path)
        except OSError as e:
            logger.warning(f"  [!] Could not remove workspace {self.path} of seed {self.seed}: {e}")
        self.path = None


def kill_process_group(pgid: int) -> None:
    """Send SIGKILL to a whole process group, including detached descendants."""
    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _decode_partial(output: bytes | str | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def kill_process_tree(pid: int, grace_secs: float = KILL_GRACE_SECS) -> None:
    """Kill a process and all of its descendants."""
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return

    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    _, alive = psutil.wait_procs(procs, timeout=grace_secs)
    for proc in alive:
        logger.warning(f"  [!] Process {proc.pid} survived SIGKILL.")


class TrialRunner:
    """
    Runs one seed through the simulator and classifies what happened.

    A runner holds only read-only configuration, so a single instance can
    serve any number of concurrent trials.
    """

    def __init__(
        self,
        config: "HarnessConfig",
        report_sink: "ReportSink",
        artifact_store: "ArtifactStore | None" = None,
        log_triage: LogTriage | None = None,
    ) -> None:
        """
        Initialize the TrialRunner.

        Args:
            config: Shared run configuration (executable, test file, timeout)
            report_sink: Where triage results of faulty seeds are sent
            artifact_store: Optional local store for failing and timed-out trials
            log_triage: LogTriage used on faulty seeds (a default one if omitted)
        """
        self.config = config
        self.report_sink = report_sink
        self.artifact_store = artifact_store
        self.log_triage = log_triage or LogTriage()

    def build_command(self, seed: int, workspace: TrialWorkspace) -> list[str]:
        """Return the simulator command line for one seed."""
        return [
            str(self.config.fdbserver_path),
            "-r",
            "simulation",
            "-b",
            "on",
            "--trace-format",
            "json",
            "-f",
            str(self.config.test_file),
            "-d",
            str(workspace.data_dir),
            "-L",
            str(workspace.logs_dir),
            "-s",
            str(seed),
        ]

    def run(self, seed: int, commit_id: str | None = None) -> TrialOutcome:
        """
        Run the simulator for one seed.

        Faulty seeds are triaged and handed to the report sink before this
        returns. The report sink may raise RunTerminated to stop the run.

        Returns:
            The classified outcome of the trial.
        """
        logger.info(f"[*] Starting to check seed {seed}")
        with TrialWorkspace(seed, self.config.workspace_root) as workspace:
            cmd = self.build_command(seed, workspace)
            start_time = time.monotonic()
            try:
                process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    # Own process group, so detached descendants can be killed too.
                    start_new_session=True,
                )
            except OSError as e:
                logger.error(f"  [!] Could not launch {cmd[0]} for seed {seed}: {e}")
                return LaunchError(seed=seed, cause=str(e))

            try:
                stdout, stderr = process.communicate(timeout=self.config.timeout_secs)
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"  [!] Timeout reached for seed {seed} after "
                    f"{self.config.timeout_secs}s; terminating process and continuing."
                )
                stdout, stderr = self._kill_and_collect(process)
                outcome = TimedOut(seed=seed, elapsed_secs=time.monotonic() - start_time)
                if self.artifact_store is not None:
                    self.artifact_store.save_timeout(seed, cmd, stdout, stderr)
                return outcome
            except BaseException:
                kill_process_group(process.pid)
                kill_process_tree(process.pid)
                process.wait()
                raise

            elapsed = time.monotonic() - start_time
            if process.returncode == 0:
                logger.info(f"  [+] Finished checking seed {seed}, no error found ({elapsed:.1f}s).")
                return Success(seed=seed, elapsed_secs=elapsed)

            outcome = AbnormalExit(seed=seed, elapsed_secs=elapsed, exit_code=process.returncode)
            try:
                self.handle_faulty_seed(outcome, workspace, cmd, stdout, stderr, commit_id)
            except SeedhuntError as e:
                e.outcome = outcome
                raise
            return outcome

    def _kill_and_collect(self, process: subprocess.Popen) -> tuple[str, str]:
        """
        Kill a timed-out simulator and return whatever output it produced.

        Waits at most KILL_GRACE_SECS for the pipes to close. A descendant
        that escaped the kill can hold them open, in which case they are
        closed here and the output read so far is kept.
        """
        kill_process_group(process.pid)
        kill_process_tree(process.pid)
        try:
            return process.communicate(timeout=KILL_GRACE_SECS)
        except subprocess.TimeoutExpired as e:
            logger.warning(
                f"  [!] Output pipes of pid {process.pid} still open after kill; "
                "keeping the partial output."
            )
            stdout, stderr = _decode_partial(e.stdout), _decode_partial(e.stderr)
        for stream in (process.stdout, process.stderr):
            if stream is not None:
                stream.close()
        process.wait()
        return stdout, stderr

    def handle_faulty_seed(
        self,
        outcome: AbnormalExit,
        workspace: TrialWorkspace,
        cmd: list[str],
        stdout: str,
        stderr: str,
        commit_id: str | None,
    ) -> TriageResult:
        """Triage a faulty seed's logs and send the result on for reporting."""
        seed = outcome.seed
        logger.warning(f"  [!!!] Faulty seed found: {seed} (exit code {outcome.exit_code})")

        result = TriageResult(
            seed=seed,
            filtered_report="",
            log_directory=workspace.logs_dir,
            commit_id=commit_id,
            captured_stdout=stdout,
            captured_stderr=stderr,
            exit_code=outcome.exit_code,
        )
        try:
            filtered_report = self.log_triage.triage(workspace.logs_dir)
        except Exception as e:
            # Keep the raw output of the failure before the workspace goes away.
            logger.error(f"  [!] Triage failed for seed {seed}. stdout:\n{stdout}")
            logger.error(f"  [!] stderr of seed {seed}:\n{stderr}")
            if self.artifact_store is not None:
                self.artifact_store.save_failure(result, cmd, triage_error=str(e))
            raise

        result = replace(result, filtered_report=filtered_report)
        if self.artifact_store is not None:
            self.artifact_store.save_failure(result, cmd)
        self.report_sink.report(result)
        return result
