"""
Command-line entry point for seedhunt.

Parses arguments (with defaults from the environment and a local .env file),
builds the run configuration, runs the scheduler, and is the only place that
turns the outcome of a run into a process exit status.
"""

import argparse
import logging
import os
import platform
import random
import socket
import sys
from datetime import datetime
from pathlib import Path
from textwrap import dedent

import psutil
from dotenv import load_dotenv

from seedhunt import __version__
from seedhunt.artifacts import ArtifactStore
from seedhunt.config import (
    DEFAULT_CONCURRENCY,
    DEFAULT_FDBSERVER_PATH,
    DEFAULT_GITLAB_URL,
    DEFAULT_TIMEOUT_SECS,
    HarnessConfig,
)
from seedhunt.errors import ConfigError, RunTerminated, SeedhuntError
from seedhunt.execution import TrialRunner
from seedhunt.gitlab import GitlabClient
from seedhunt.report import ConsoleReportSink, GitlabReportSink, ReportSink
from seedhunt.scheduler import Scheduler
from seedhunt.seeds import SEED_ORDERS, build_seed_source, merge_user_defined_seeds, parse_seed
from seedhunt.types import RunProgress

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s"


def _seed_arg(text: str) -> int:
    try:
        return parse_seed(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _env_default(name: str, convert, default=None):
    """Read a flag default from the environment, converting it with convert."""
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return convert(value)
    except ValueError:
        raise ConfigError(f"Environment variable {name} has an invalid value: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seedhunt",
        description="Run a simulation executable under many seeds and report the faulty ones.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s -f tests/fast/CycleTest.toml --max-iterations 1000
  %(prog)s -f CycleTest.toml --seeds 42 1337 --seed-file faulty_seeds.txt
  GITLAB_TOKEN=... %(prog)s -f CycleTest.toml --gitlab-project-id 1234 --fail-fast
        """,
    )
    parser.add_argument(
        "--fdbserver-path",
        default=DEFAULT_FDBSERVER_PATH,
        help=f"Path to the simulator binary. (Default: {DEFAULT_FDBSERVER_PATH})",
    )
    parser.add_argument("-f", "--test-file", required=True, help="Path to the test file to run.")
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=None,
        help="Run at most N trials. Without explicit seeds, runs forever if omitted.",
    )
    parser.add_argument(
        "--seeds", nargs="+", type=_seed_arg, default=None, help="Explicit seeds to run."
    )
    parser.add_argument("--seed-file", default=None, help="File with one seed per line.")
    parser.add_argument(
        "--seed-order",
        choices=SEED_ORDERS,
        default="lifo",
        help="Order in which explicit seeds are run: lifo starts from the last one. (Default: lifo)",
    )
    parser.add_argument(
        "--rng-seed",
        type=int,
        default=None,
        help="Seed the random seed generator, making random mode reproducible.",
    )
    parser.add_argument(
        "--concurrency",
        "--chunk-size",
        dest="concurrency",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help=f"Number of trials to run in parallel. (Default: {DEFAULT_CONCURRENCY})",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Stop the run after the first faulty seed is found.",
    )
    parser.add_argument(
        "--timeout-secs",
        type=float,
        default=_env_default("TIMEOUT_SECS", float, float(DEFAULT_TIMEOUT_SECS)),
        help="Seconds to wait for each simulation before killing it. (Env: TIMEOUT_SECS)",
    )
    parser.add_argument("--commit-id", default=None, help="Commit ID of the tested build.")
    parser.add_argument(
        "--token",
        default=os.environ.get("GITLAB_TOKEN"),
        help="GitLab token used to file issues. (Env: GITLAB_TOKEN)",
    )
    parser.add_argument(
        "--gitlab-url",
        default=os.environ.get("GITLAB_URL", DEFAULT_GITLAB_URL),
        help=f"GitLab host. (Env: GITLAB_URL, Default: {DEFAULT_GITLAB_URL})",
    )
    parser.add_argument(
        "--gitlab-project-id",
        type=int,
        default=_env_default("GITLAB_PROJECT_ID", int),
        help="GitLab project where issues are filed; required with a token. (Env: GITLAB_PROJECT_ID)",
    )
    parser.add_argument(
        "--artifacts-dir",
        default=None,
        help="Keep stdout, stderr, logs and a reproducer of every faulty or timed-out seed here.",
    )
    parser.add_argument(
        "--workspace-root",
        default=None,
        help="Create trial workspaces under this directory instead of the system temp dir.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def build_report_sink(config: HarnessConfig) -> ReportSink:
    if config.gitlab is not None:
        logger.info(
            f"[+] Exporting reports to GitLab (host={config.gitlab.endpoint}, "
            f"project_id={config.gitlab.project_id})"
        )
        return GitlabReportSink(GitlabClient(config.gitlab))
    logger.info("[*] No GitLab API configured, skipping GitLab export.")
    return ConsoleReportSink()


def print_header(config: HarnessConfig, start_time: datetime) -> None:
    cpu_count = psutil.cpu_count(logical=True) or 1
    header = f"""
================================================================================
SEEDHUNT RUN
================================================================================
- Hostname:          {socket.gethostname()}
- Platform:          {platform.platform()}
- CPUs (logical):    {cpu_count}
- Process ID:        {os.getpid()}
- Start Time:        {start_time.isoformat()}
- Command:           {" ".join(sys.argv)}
- Simulator:         {config.fdbserver_path}
- Test File:         {config.test_file}
- Commit ID:         {config.commit_id or "not specified"}
- Concurrency:       {config.concurrency}
- Trial Timeout:     {config.timeout_secs} seconds
- Fail Fast:         {config.fail_fast}
- Reporting:         {"GitLab" if config.reporting_enabled else "console"}
================================================================================
"""
    print(dedent(header), file=sys.stderr)
    if config.concurrency > cpu_count:
        logger.warning(
            f"[!] Concurrency {config.concurrency} exceeds the {cpu_count} available CPUs; "
            "trials may hit their timeout more often."
        )


def print_summary(progress: RunProgress, termination_reason: str, start_time: datetime) -> None:
    end_time = datetime.now()
    duration = end_time - start_time
    duration_secs = duration.total_seconds()
    trials_per_sec = progress.completed / duration_secs if duration_secs > 0 else 0
    faulty = ", ".join(str(seed) for seed in progress.faulty_seeds) or "none"

    summary = f"""
================================================================================
SEEDHUNT RUN SUMMARY
================================================================================
- Termination:       {termination_reason}
- End Time:          {end_time.isoformat()}
- Total Duration:    {str(duration)}

--- Trials ---
- Dispatched:        {progress.dispatched}
- Completed:         {progress.completed}/{progress.format_total()}
- Passed:            {progress.successes}
- Faulty:            {progress.failures}
- Timed Out:         {progress.timeouts}
- Launch Errors:     {progress.launch_errors}
- Trials per Second: {trials_per_sec:.2f}
- Faulty Seeds:      {faulty}
================================================================================
"""
    print(dedent(summary), file=sys.stderr)


def run(config: HarnessConfig) -> int:
    """Run a whole seed hunt and return the process exit status."""
    seeds = merge_user_defined_seeds(
        list(config.seeds) if config.seeds is not None else None, config.seed_file
    )
    rng = random.Random(config.rng_seed)
    seed_source = build_seed_source(seeds, rng, config.max_iterations, config.seed_order)

    report_sink = build_report_sink(config)
    artifact_store = ArtifactStore(config.artifacts_dir) if config.artifacts_dir else None
    runner = TrialRunner(config, report_sink, artifact_store)
    scheduler = Scheduler(
        lambda: runner,
        concurrency=config.concurrency,
        commit_id=config.commit_id,
        fail_fast=config.fail_fast,
    )

    start_time = datetime.now()
    print_header(config, start_time)

    termination_reason = "Completed"
    exit_code = EXIT_OK
    try:
        scheduler.run(seed_source)
    except RunTerminated as e:
        termination_reason = e.reason
        exit_code = e.exit_code
    except SeedhuntError as e:
        termination_reason = f"Error: {e}"
        exit_code = EXIT_FAILURE
        logger.error(f"[!!!] Run aborted: {e}")
    except KeyboardInterrupt:
        termination_reason = "KeyboardInterrupt"
        exit_code = EXIT_INTERRUPTED
        print("\n[!] Seed hunt stopped by user.", file=sys.stderr)
    finally:
        print_summary(scheduler.progress, termination_reason, start_time)

    return exit_code


def main(argv: list[str] | None = None) -> None:
    """Parse command-line arguments and run the seed hunt."""
    load_dotenv(Path.cwd() / ".env")

    try:
        parser = build_parser()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = HarnessConfig.from_args(args)
        exit_code = run(config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
