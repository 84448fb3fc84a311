# runner.py
from __future__ import annotations

import runpy
import subprocess
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from . import settings
from .adapters.notify import ConsoleNotifier, GitHubIssueNotifier, Notifier
from .adapters.publish import Publisher
from .aggregate import PUBLISH_PATTERNS, Aggregator, RepoInfo
from .credentials import CredentialStore, EnvironmentCredentialStore, credential_vars
from .engine import Engine
from .git_facts import git
from .model import BuildConfig, DayOfWeek, JobConfig, RunRequest, RunResult, Status
from .scheduler import Scheduler, today
from .ui.console import get_console
from .workers import list_matching, local_worker_factory

Items = Union[RunRequest, Sequence[Union[BuildConfig, JobConfig]]]


# ----------------------------------------------------------------------
# Workflow loading (local file)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> RunRequest:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> RunRequest | list of BuildConfig/JobConfig
      - CONFIGS = [BuildConfig, ..., JobConfig]
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py file, got: {wf_path.name}")

    globals_dict = runpy.run_path(str(wf_path), run_name=f"matrixci_workflow_{wf_path.stem}")

    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        items = globals_dict["workflow"]()
    elif "CONFIGS" in globals_dict:
        items = globals_dict["CONFIGS"]
    else:
        raise TypeError(
            "Workflow must define workflow() returning wf(...) / a list of configs, "
            "or CONFIGS = [BuildConfig, ...]."
        )
    return as_request(items)


def as_request(items: Items) -> RunRequest:
    if isinstance(items, RunRequest):
        return items
    if not isinstance(items, (list, tuple)):
        raise TypeError(f"Expected a RunRequest or a list of configs, got {type(items).__name__}")
    return RunRequest.from_items(items)


# ----------------------------------------------------------------------
# Source checkout helpers
# ----------------------------------------------------------------------

def should_skip(commit_message: str, skip_disable: bool = False) -> int:
    """
    1 if the commit message asks CI to skip this commit, else 0.

    Callers halt the run themselves on 1.
    """
    if skip_disable:
        return 0
    return 1 if git.has_skip_directive(commit_message) else 0


def checkout_source(source_dir: str | Path) -> str:
    """Return the latest commit message of the checked-out source tree."""
    return git.latest_commit_message(cwd=source_dir)


def repo_info(source_dir: str | Path) -> RepoInfo:
    """Best-effort repository identity; empty when git has nothing to say."""
    try:
        url = git.remote_url("origin", cwd=source_dir)
        branch = git.current_branch(cwd=source_dir)
    except (subprocess.CalledProcessError, FileNotFoundError):
        get_console().print_debug("No git origin/branch available for repository identity")
        return RepoInfo()
    return RepoInfo(slug=git.repo_slug(url), identity=git.repo_identity(url, branch))


def artifact_patterns(report_file: str = settings.REPORT_FILE) -> list[str]:
    report = Path(report_file)
    return [f"{report.stem}.*{report.suffix}", *PUBLISH_PATTERNS]


def clear_artifacts(collect_dir: Path, report_file: str = settings.REPORT_FILE) -> None:
    """
    Remove files a previous run collected into collect_dir.

    Other files in the directory are left alone.
    """
    for pattern in artifact_patterns(report_file):
        for path in list_matching(collect_dir, pattern):
            path.unlink()


def default_notifier() -> Notifier:
    if settings.GITHUB_TOKEN:
        return GitHubIssueNotifier(settings.GITHUB_TOKEN, api_url=settings.GITHUB_API_URL)
    return ConsoleNotifier()


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run(
    configs: Items,
    concurrent: bool = True,
    *,
    source_dir: str | Path = ".",
    work_root: str | Path = settings.WORK_ROOT,
    collect_dir: str | Path = settings.COLLECT_DIR,
    max_workers: Optional[int] = None,
    worker_factory: Optional[Callable] = None,
    notifier: Optional[Notifier] = None,
    publisher: Optional[Publisher] = None,
    credential_store: Optional[CredentialStore] = None,
    repo: Optional[RepoInfo] = None,
    clock: Callable[[], DayOfWeek] = today,
    build_url: Optional[str] = settings.BUILD_URL,
    force_publish: bool = bool(settings.ENV_PUBLISH_FORCE),
) -> RunResult:
    """
    Run a build matrix end to end and return the aggregated result.

    Configuration errors (more than one JobConfig, eagerly interpolated env
    values, unknown credentials) are raised before any task starts.
    `RunResult.status` is the run's SUCCESS / UNSTABLE / FAILURE verdict.
    """
    request = as_request(configs)
    policy = request.job
    source_dir_p = Path(source_dir).resolve()
    collect_dir_p = Path(collect_dir).resolve()

    env_extra = credential_vars(policy.credentials, credential_store or EnvironmentCredentialStore())

    # Artifacts of a previous run must not be published with this one.
    clear_artifacts(collect_dir_p)
    collect_dir_p.mkdir(parents=True, exist_ok=True)

    engine = Engine(
        worker_factory or local_worker_factory(work_root, source_dir_p),
        collect_dir=collect_dir_p,
    )
    aggregator = Aggregator(
        policy,
        notifier=notifier or default_notifier(),
        publisher=publisher,
        collect_dir=collect_dir_p,
        source_dir=source_dir_p,
        repo=repo if repo is not None else repo_info(source_dir_p),
        build_url=build_url,
        force_publish=force_publish,
    )
    scheduler = Scheduler(engine, aggregator, clock=clock, max_workers=max_workers, env_extra=env_extra)

    result = scheduler.schedule(request, concurrent=concurrent)
    get_console().print_verdict(result.status.value)
    return result


EXIT_CODES = {Status.SUCCESS: 0, Status.FAILURE: 1, Status.UNSTABLE: 2}


def exit_code(status: Status) -> int:
    return EXIT_CODES[status]
