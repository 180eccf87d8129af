"""
Local artifact storage for seedhunt.

This module provides the ArtifactStore class, which keeps an on-disk copy of
every faulty and timed-out trial. Trial workspaces are deleted as soon as a
trial ends, so this is the only place their logs survive locally. Saving is
best-effort: a failure to save is logged and never stops the run.
"""

from __future__ import annotations

import json
import logging
import random
import shlex
import shutil
import signal
from datetime import datetime, timezone
from pathlib import Path
from textwrap import dedent

from seedhunt.types import TriageResult

logger = logging.getLogger(__name__)


def describe_exit_code(exit_code: int | None) -> str | None:
    """Return the signal name for a negative exit code, e.g. -11 -> 'SIGSEGV'."""
    if exit_code is None or exit_code >= 0:
        return None
    try:
        return signal.Signals(-exit_code).name
    except ValueError:
        return f"SIG{-exit_code}"


class ArtifactStore:
    """
    Saves the artifacts of faulty and timed-out trials.

    Layout::

        <root>/crashes/seed_<seed>_<timestamp>_<n>/
            stdout.txt  stderr.txt  filtered_report.json
            metadata.json  reproduce.sh  logs/
        <root>/timeouts/seed_<seed>_<timestamp>_<n>/
            stdout.txt  stderr.txt  metadata.json  reproduce.sh
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.crashes_dir = root / "crashes"
        self.timeouts_dir = root / "timeouts"

        self.crashes_dir.mkdir(parents=True, exist_ok=True)
        self.timeouts_dir.mkdir(parents=True, exist_ok=True)

    def _new_artifact_dir(self, parent: Path, seed: int) -> tuple[Path, str]:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        random_suffix = random.randint(1000, 9999)
        artifact_dir = parent / f"seed_{seed}_{timestamp}_{random_suffix}"
        artifact_dir.mkdir(parents=True, exist_ok=True)
        return artifact_dir, timestamp

    def _write_reproducer(self, artifact_dir: Path, cmd: list[str], header: str) -> None:
        reproduce_script = artifact_dir / "reproduce.sh"
        reproduce_content = dedent(f"""\
            #!/bin/bash
            # {header}
            # Data and log directories below are from the original (deleted) workspace.

            {shlex.join(cmd)}
        """)
        reproduce_script.write_text(reproduce_content)
        reproduce_script.chmod(0o755)

    def save_failure(
        self, result: TriageResult, cmd: list[str], triage_error: str | None = None
    ) -> Path | None:
        """
        Save everything known about a faulty seed.

        Args:
            result: Triage result of the faulty seed
            cmd: The exact simulator command line that failed
            triage_error: Why the logs could not be triaged, if they could not

        Returns:
            The artifact directory, or None if it could not be created.
        """
        try:
            crash_dir, timestamp = self._new_artifact_dir(self.crashes_dir, result.seed)
            (crash_dir / "stdout.txt").write_text(result.captured_stdout or "")
            (crash_dir / "stderr.txt").write_text(result.captured_stderr or "")
            (crash_dir / "filtered_report.json").write_text(result.filtered_report)

            metadata = {
                "seed": result.seed,
                "exit_code": result.exit_code,
                "signal_name": describe_exit_code(result.exit_code),
                "commit_id": result.commit_id,
                "timestamp": timestamp,
                "command": cmd,
            }
            if triage_error is not None:
                metadata["triage_error"] = triage_error
            (crash_dir / "metadata.json").write_text(json.dumps(metadata, indent=2))
            self._write_reproducer(
                crash_dir, cmd, f"Faulty seed {result.seed}, exit code {result.exit_code}"
            )
            shutil.copytree(result.log_directory, crash_dir / "logs")
        except OSError as e:
            logger.error(f"  [!] CRITICAL: Could not save artifacts of seed {result.seed}: {e}")
            return None

        logger.info(f"  [+] Faulty seed {result.seed} saved to {crash_dir}")
        return crash_dir

    def save_timeout(self, seed: int, cmd: list[str], stdout: str, stderr: str) -> Path | None:
        """Save the partial output of a trial that ran past its deadline."""
        try:
            timeout_dir, timestamp = self._new_artifact_dir(self.timeouts_dir, seed)
            (timeout_dir / "stdout.txt").write_text(stdout or "")
            (timeout_dir / "stderr.txt").write_text(stderr or "")
            metadata = {"seed": seed, "timestamp": timestamp, "command": cmd}
            (timeout_dir / "metadata.json").write_text(json.dumps(metadata, indent=2))
            self._write_reproducer(timeout_dir, cmd, f"Timed out seed {seed}")
        except OSError as e:
            logger.error(f"  [!] CRITICAL: Could not save timeout of seed {seed}: {e}")
            return None

        logger.info(f"  [+] Timeout of seed {seed} saved to {timeout_dir}")
        return timeout_dir
