# aggregate.py
"""
Post-run phase: merge per-configuration test summaries, decide the verdict,
then run the best-effort side effects (summary notification, environment
publication). Side effects never change the verdict.
"""
from __future__ import annotations

import configparser
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .adapters.notify import Notifier
from .adapters.publish import Publisher
from .model import JobConfig, RunResult, ScheduledSet, Status, TaskOutcome, TestReportSummary, Thresholds
from .report import evaluate_thresholds
from .ui.console import get_console

SUMMARY_SUBJECT = "[AUTO] Regression testing summary"
SUMMARY_HEADER = "Regression Testing (RT) Summary:\n\n"
PUBLISH_PATTERNS = ("conda_python_*", "reqs_*")

ThresholdEvaluator = Callable[[TestReportSummary, Thresholds], Status]


def problem_block(summary: TestReportSummary) -> str:
    return (
        f"Configuration: {summary.config_name}\n\n"
        f"| Total tests |  {summary.tests} |\n"
        "|----|----|\n"
        f"| Errors      | {summary.errors} |\n"
        f"| Failures    | {summary.failures} |\n"
        f"| Skipped     | {summary.skips} |\n\n"
    )


def aggregate(summaries: Iterable[TestReportSummary]) -> RunResult:
    """Merge summaries; one message block per configuration with problems."""
    result = RunResult(message=SUMMARY_HEADER)
    for summary in summaries:
        result.per_config[summary.config_name] = summary
        if summary.has_problems:
            result.problems = True
            result.message += problem_block(summary)
    return result


def report_url(build_url: Optional[str]) -> Optional[str]:
    """Point a build URL at the test results analyzer page of its job."""
    if not build_url:
        return None
    url = build_url if build_url.endswith("/") else build_url + "/"
    return re.sub(r"/\d+/$", "/test_results_analyzer/", url)


def results_root(source_dir: Path) -> Optional[str]:
    """Read the publication destination (`results_root`) from setup.cfg."""
    cfg_path = Path(source_dir) / "setup.cfg"
    if not cfg_path.exists():
        return None
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    # Keys may also sit above the first section header.
    parser.read_string("[top]\n" + cfg_path.read_text(encoding="utf-8"))
    for section in parser.sections():
        if parser.has_option(section, "results_root"):
            return parser.get(section, "results_root").strip()
    return None


@dataclass
class RepoInfo:
    slug: str = ""       # owner/repo, where summaries are posted
    identity: str = ""   # owner/branch, matched against publish_env_filter


class Aggregator:
    """The scheduler's post-run hook."""

    def __init__(
        self,
        policy: JobConfig,
        *,
        notifier: Notifier,
        publisher: Optional[Publisher] = None,
        collect_dir: Path,
        source_dir: Path,
        repo: Optional[RepoInfo] = None,
        build_url: Optional[str] = None,
        force_publish: bool = False,
        evaluator: ThresholdEvaluator = evaluate_thresholds,
    ):
        self.policy = policy
        self.notifier = notifier
        self.publisher = publisher
        self.collect_dir = Path(collect_dir)
        self.source_dir = Path(source_dir)
        self.repo = repo or RepoInfo()
        self.build_url = build_url
        self.force_publish = force_publish
        self.evaluator = evaluator
        self.notifications = 0

    def __call__(self, scheduled: ScheduledSet, outcomes: List[TaskOutcome]) -> RunResult:
        return self.post_run(scheduled, outcomes)

    def post_run(self, scheduled: ScheduledSet, outcomes: List[TaskOutcome]) -> RunResult:
        console = get_console()
        console.print_header("Post-build")

        # Only configurations that were scheduled take part.
        names = set(scheduled.names)
        summaries = [o.summary for o in outcomes if o.summary is not None and o.config_name in names]
        for name in scheduled.names:
            if not any(s.config_name == name for s in summaries):
                console.print_info(f"No results imported for {name}.")

        result = aggregate(summaries)
        result.outcomes = list(outcomes)

        configs = scheduled.by_name()
        for summary in summaries:
            cfg = configs[summary.config_name]
            status = self.evaluator(summary, cfg.thresholds)
            result.statuses[summary.config_name] = status
            console.print_debug(f"{summary.config_name}: {summary} -> {status.value}")

        if self.policy.post_test_summary:
            self.notify(result)
        self.publish(result)

        console.print_info("Post-build stage completed.")
        return result

    def notify(self, result: RunResult) -> None:
        if not result.problems:
            return
        console = get_console()
        url = report_url(self.build_url)
        body = result.message + (f"Report: {url}" if url else "")
        console.print_info(
            "Test failures and/or errors occurred.\n"
            f"Posting summary.\n  {self.repo.slug} Issue subject: {SUMMARY_SUBJECT}"
        )
        try:
            self.notifier.post_summary(self.repo.slug, SUMMARY_SUBJECT, body)
            self.notifications += 1
        except Exception as e:
            console.print_error("Summary notification failed", str(e))

    def publish_blocked_reason(self) -> Optional[str]:
        ident = self.repo.identity
        env_filter = self.policy.publish_env_filter.strip()
        if self.force_publish:
            return None
        if env_filter == "":
            return (
                "To publish this environment configure your JobConfig:\n"
                f'    JobConfig(publish_env_filter="{ident}")\n'
                "or override this check by setting the environment variable:\n"
                "    MATRIXCI_ENV_PUBLISH_FORCE=1"
            )
        if env_filter != ident:
            return f'JobConfig.publish_env_filter mismatch: "{env_filter}" != "{ident}"'
        return None

    def publish(self, result: RunResult) -> None:
        if not self.policy.enable_env_publication:
            return
        console = get_console()

        reason = self.publish_blocked_reason()
        if reason:
            console.print_info(f"Environment publication halted:\n{reason}")
            return
        if self.policy.publish_env_on_success_only and result.problems:
            console.print_info("Environment publication skipped: test problems were reported.")
            return
        if self.publisher is None:
            console.print_warning("Environment publication enabled but no publisher is configured.")
            return

        try:
            destination = results_root(self.source_dir)
            if not destination:
                console.print_warning("No 'results_root' found in setup.cfg; nothing published.")
                return
            for pattern in PUBLISH_PATTERNS:
                self.publisher.publish(self.collect_dir, pattern, destination)
        except Exception as e:
            console.print_error("Environment publication failed", str(e))
