"""
Run configuration for seedhunt.

The configuration is built once at startup from the parsed command line,
validated, and then shared read-only by every trial.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path

from seedhunt.errors import ConfigError
from seedhunt.seeds import MAX_SEED, SEED_ORDERS

DEFAULT_FDBSERVER_PATH = "/usr/sbin/fdbserver"
DEFAULT_GITLAB_URL = "gitlab.com"
DEFAULT_CONCURRENCY = 10
DEFAULT_TIMEOUT_SECS = 120


@dataclass(frozen=True)
class GitlabConfig:
    """Where and how to file issues for faulty seeds."""

    endpoint: str
    token: str = field(repr=False)
    project_id: int

    def __post_init__(self) -> None:
        if not self.endpoint:
            raise ConfigError("GitLab endpoint must not be empty")
        if not self.token:
            raise ConfigError("GitLab token must not be empty")
        if self.project_id <= 0:
            raise ConfigError(f"GitLab project id must be positive, got {self.project_id}")


@dataclass(frozen=True)
class HarnessConfig:
    """Everything a run needs, fixed for its whole duration."""

    fdbserver_path: Path
    test_file: Path
    timeout_secs: float = DEFAULT_TIMEOUT_SECS
    concurrency: int = DEFAULT_CONCURRENCY
    fail_fast: bool = False
    max_iterations: int | None = None
    seeds: tuple[int, ...] | None = None
    seed_file: Path | None = None
    seed_order: str = "lifo"
    rng_seed: int | None = None
    commit_id: str | None = None
    artifacts_dir: Path | None = None
    workspace_root: Path | None = None
    gitlab: GitlabConfig | None = None

    def __post_init__(self) -> None:
        if self.timeout_secs <= 0:
            raise ConfigError(f"Timeout must be positive, got {self.timeout_secs}")
        if self.concurrency < 1:
            raise ConfigError(f"Concurrency must be at least 1, got {self.concurrency}")
        if self.max_iterations is not None and self.max_iterations < 0:
            raise ConfigError(f"Max iterations must not be negative, got {self.max_iterations}")
        if self.seed_order not in SEED_ORDERS:
            raise ConfigError(f"Unknown seed order {self.seed_order!r}")
        for seed in self.seeds or ():
            if not 0 <= seed <= MAX_SEED:
                raise ConfigError(f"Seed {seed} is outside [0, {MAX_SEED}]")
        if self.seed_file is not None and not self.seed_file.is_file():
            raise ConfigError(f"Seed file {self.seed_file} does not exist")
        if self.workspace_root is not None and not self.workspace_root.is_dir():
            raise ConfigError(f"Workspace root {self.workspace_root} is not a directory")

    @property
    def reporting_enabled(self) -> bool:
        return self.gitlab is not None

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "HarnessConfig":
        """Build and validate a configuration from parsed CLI arguments."""
        gitlab: GitlabConfig | None = None
        if args.token and args.gitlab_project_id is not None:
            gitlab = GitlabConfig(
                endpoint=args.gitlab_url,
                token=args.token,
                project_id=args.gitlab_project_id,
            )
        elif args.token:
            raise ConfigError("A GitLab token was given without --gitlab-project-id")
        elif args.gitlab_project_id is not None:
            raise ConfigError("--gitlab-project-id was given without a GitLab token")

        return cls(
            fdbserver_path=Path(args.fdbserver_path),
            test_file=Path(args.test_file),
            timeout_secs=args.timeout_secs,
            concurrency=args.concurrency,
            fail_fast=args.fail_fast,
            max_iterations=args.max_iterations,
            seeds=tuple(args.seeds) if args.seeds else None,
            seed_file=Path(args.seed_file) if args.seed_file else None,
            seed_order=args.seed_order,
            rng_seed=args.rng_seed,
            commit_id=args.commit_id,
            artifacts_dir=Path(args.artifacts_dir) if args.artifacts_dir else None,
            workspace_root=Path(args.workspace_root) if args.workspace_root else None,
            gitlab=gitlab,
        )
