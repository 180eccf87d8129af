"""
Log triage for faulty seeds.

The simulator writes its trace output as JSON lines under the trial's log
directory. When a seed fails, LogTriage walks that directory and keeps only
the records that point at the failure: errors raised by the Rust layer. The
kept records are pretty-printed one after the other into a single report.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterator

from seedhunt.errors import TriageError

logger = logging.getLogger(__name__)

# Records are kept iff both fields match exactly (string comparison).
FILTER_LAYER = "Rust"
FILTER_SEVERITY = "40"

STRUCTURED_LOG_SUFFIX = ".json"


class LogTriage:
    """Extract the interesting records from a directory of JSON trace files."""

    def __init__(
        self,
        layer: str = FILTER_LAYER,
        severity: str = FILTER_SEVERITY,
        suffix: str = STRUCTURED_LOG_SUFFIX,
    ) -> None:
        self.layer = layer
        self.severity = severity
        self.suffix = suffix

    def matches(self, record: dict[str, Any]) -> bool:
        return record.get("Layer") == self.layer and record.get("Severity") == self.severity

    def iter_log_files(self, log_directory: Path) -> Iterator[Path]:
        """Yield structured log files under log_directory, in sorted order."""
        for path in sorted(log_directory.rglob(f"*{self.suffix}")):
            if path.is_file():
                yield path

    def iter_records(self, log_file: Path) -> Iterator[dict[str, Any]]:
        """
        Yield every record of one JSON-lines trace file.

        Raises:
            TriageError: If the file can't be read, a line is not valid JSON,
                or a record is not a JSON object.
        """
        try:
            with open(log_file, "r", encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    if not line.strip():
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError as e:
                        raise TriageError(f"{log_file}:{lineno}: malformed log record: {e}") from e
                    if not isinstance(record, dict):
                        raise TriageError(
                            f"{log_file}:{lineno}: expected a JSON object, "
                            f"got {type(record).__name__}"
                        )
                    yield record
        except (OSError, UnicodeDecodeError) as e:
            raise TriageError(f"Could not read log file {log_file}: {e}") from e

    def triage(self, log_directory: Path) -> str:
        """
        Build the filtered report for one trial's log directory.

        Every matching record is pretty-printed and followed by a newline.
        A directory without matches gives an empty report.
        """
        log_directory = Path(log_directory)
        parts: list[str] = []
        files_scanned = 0
        for log_file in self.iter_log_files(log_directory):
            files_scanned += 1
            for record in self.iter_records(log_file):
                if self.matches(record):
                    parts.append(json.dumps(record, indent=2, ensure_ascii=False))
                    parts.append("\n")

        logger.debug(
            f"  [~] Scanned {files_scanned} log file(s) in {log_directory}, "
            f"kept {len(parts) // 2} record(s)."
        )
        return "".join(parts)
