"""
GitLab client used to file issues for faulty seeds.

Every faulty seed becomes one issue. Its raw stdout, raw stderr and a
.tar.gz of its full log directory are uploaded to the project first, and the
issue description links to them. Each call is an independent HTTP request,
so one client can be shared by concurrently running trials.
"""

from __future__ import annotations

import logging
import tarfile
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from textwrap import dedent
from typing import Any

import requests

from seedhunt.config import GitlabConfig
from seedhunt.errors import ReportError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECS = 60
COMMIT_NOT_SPECIFIED = "Non specified"


@dataclass(frozen=True)
class IssuePayload:
    """The content of one faulty-seed issue."""

    seed: int
    filtered_output: str
    logs: Path
    stdout: str | None = None
    stderr: str | None = None
    commit_id: str | None = None


def archive_directory(directory: Path, archive_path: Path) -> Path:
    """Write a gzip-compressed tarball of directory's contents."""
    with tarfile.open(archive_path, "w:gz") as tar:
        for child in sorted(Path(directory).iterdir()):
            tar.add(child, arcname=child.name)
    return archive_path


def render_issue_description(
    payload: IssuePayload, stdout_url: str, stderr_url: str, logs_url: str
) -> str:
    commit_id = payload.commit_id or COMMIT_NOT_SPECIFIED
    header = dedent(f"""\
        - Commit ID: {commit_id}
        - Output: [simulation.out]({stdout_url})
        - Stderr : [simulation.err]({stderr_url})
        - Full logs: [logs.tar.gz]({logs_url})
        - Layer errors:
    """)
    return f"{header}```json\n{payload.filtered_output}\n```\n"


class GitlabClient:
    """Thin wrapper over the GitLab REST API for one project."""

    def __init__(self, config: GitlabConfig) -> None:
        self.config = config

    @property
    def project_url(self) -> str:
        return f"https://{self.config.endpoint}/api/v4/projects/{self.config.project_id}"

    @property
    def headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self.config.token}

    def _post(self, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.project_url}/{path}"
        try:
            response = requests.post(
                url, headers=self.headers, timeout=REQUEST_TIMEOUT_SECS, **kwargs
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise ReportError(f"GitLab request to {url} failed: {e}") from e
        return response

    def upload_bytes(self, name: str, content: bytes) -> str:
        """Upload a file to the project and return its markdown-usable URL."""
        response = self._post("uploads", files={"file": (name, content)})
        try:
            return response.json()["url"]
        except (ValueError, KeyError, TypeError) as e:
            raise ReportError(f"Unexpected GitLab upload response for {name}: {e}") from e

    def upload_file(self, path: Path) -> str:
        return self.upload_bytes(path.name, path.read_bytes())

    def upload_text(self, name: str, text: str) -> str:
        return self.upload_bytes(name, text.encode("utf-8"))

    def upload_directory(self, name: str, directory: Path) -> str:
        """Upload directory as a .tar.gz archive called name."""
        with tempfile.TemporaryDirectory(prefix="seedhunt_upload_") as tmp_dir:
            try:
                archive = archive_directory(directory, Path(tmp_dir) / name)
            except (OSError, tarfile.TarError) as e:
                raise ReportError(f"Could not archive {directory}: {e}") from e
            return self.upload_file(archive)

    def create_issue(self, payload: IssuePayload) -> dict[str, Any]:
        """
        Upload the artifacts of a faulty seed and open an issue for it.

        Returns:
            The issue as returned by GitLab.

        Raises:
            ReportError: If any upload or the issue creation fails.
        """
        seed = payload.seed
        now = int(time.time())

        stdout_url = self.upload_text(
            f"simulation_stdout_seed_{seed}_{now}.txt", payload.stdout or ""
        )
        stderr_url = self.upload_text(
            f"simulation_stderr_seed_{seed}_{now}.txt", payload.stderr or ""
        )
        logs_url = self.upload_directory(
            f"simulation_logs_seed_{seed}_{now}.tar.gz", payload.logs
        )

        params = {
            "title": f"Investigate Faulty Seed #{seed}",
            "description": render_issue_description(payload, stdout_url, stderr_url, logs_url),
        }
        response = self._post("issues", json=params)
        logger.debug(f"  [~] GitLab create issue response: {response.status_code}")
        try:
            issue = response.json()
        except ValueError:
            return {}
        if not isinstance(issue, dict):
            logger.warning(f"  [!] Unexpected GitLab issue response for seed {seed}: {issue!r}")
            return {}
        return issue
