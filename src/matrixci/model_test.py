"""Unit tests for the configuration model."""

from __future__ import annotations

import pytest

from matrixci.model import (
    Bare,
    BuildConfig,
    ConfigurationError,
    DayOfWeek,
    EnvVar,
    JobConfig,
    Named,
    RunRequest,
    RunResult,
    Status,
    TaskOutcome,
    TestReportSummary,
)


def _cfg(name="a", **kwargs):
    kwargs.setdefault("node_type", "linux")
    kwargs.setdefault("build_cmds", ["make"])
    return BuildConfig(name=name, **kwargs)


class TestBuildConfig:
    """Tests for BuildConfig validation and cloning."""

    def test_key_joins_node_type_and_name(self):
        assert _cfg("py38").key == "linux/py38"

    def test_empty_name_rejected(self):
        with pytest.raises(ConfigurationError):
            _cfg("  ")

    def test_empty_node_type_rejected(self):
        with pytest.raises(ConfigurationError):
            _cfg(node_type="")

    def test_build_cmds_required(self):
        with pytest.raises(ConfigurationError):
            _cfg(build_cmds=[])

    def test_days_are_parsed(self):
        cfg = _cfg(run_on_days=["Monday", "wed", DayOfWeek.FRI])
        assert cfg.run_on_days == [DayOfWeek.MON, DayOfWeek.WED, DayOfWeek.FRI]

    def test_unknown_day_rejected(self):
        with pytest.raises(ConfigurationError):
            _cfg(run_on_days=["someday"])

    def test_empty_days_means_every_day(self):
        cfg = _cfg()
        assert all(cfg.runs_on(day) for day in DayOfWeek)

    def test_env_entries_are_coerced(self):
        cfg = _cfg(env_vars=["A=1", "PATH=./bin:$PATH", ("B", "2"), ("C", "$B", True)])
        assert cfg.env_vars == [
            EnvVar("A", "1"),
            EnvVar("PATH", "./bin:$PATH", late=True),
            EnvVar("B", "2"),
            EnvVar("C", "$B", late=True),
        ]

    def test_env_entry_without_equals_rejected(self):
        with pytest.raises(ConfigurationError):
            _cfg(env_vars=["JUSTANAME"])

    def test_clone_is_independent(self):
        original = _cfg(env_vars=["A=1"], test_cmds=["pytest"])
        clone = original.clone()
        clone.env_vars.append(EnvVar("B", "2"))
        clone.test_cmds.append("flake8")
        clone.build_cmds[0] = "changed"
        assert original.env_vars == [EnvVar("A", "1")]
        assert original.test_cmds == ["pytest"]
        assert original.build_cmds == ["make"]

    def test_thresholds(self):
        cfg = _cfg(failed_unstable_thresh=0, skipped_failure_thresh=3)
        assert cfg.thresholds.failed_unstable == 0
        assert cfg.thresholds.skipped_failure == 3
        assert cfg.thresholds.failed_failure is None


class TestJobConfig:
    """Tests for JobConfig credential coercion."""

    def test_credentials_coerced(self):
        job = JobConfig(credentials=["TOKEN", ("deploy-key", "DEPLOY_KEY")])
        assert job.credentials == [Bare("TOKEN"), Named("deploy-key", "DEPLOY_KEY")]
        assert job.credentials[0].env_name == "TOKEN"

    def test_defaults(self):
        job = JobConfig()
        assert not job.post_test_summary
        assert not job.enable_env_publication
        assert job.publish_env_on_success_only


class TestRunRequest:
    """Tests for splitting mixed config lists."""

    def test_policy_is_split_out(self):
        job = JobConfig(post_test_summary=True)
        a, b = _cfg("a"), _cfg("b")
        request = RunRequest.from_items([a, job, b])
        assert request.policy is job
        assert request.configs == [a, b]

    def test_two_policies_rejected(self):
        with pytest.raises(ConfigurationError):
            RunRequest.from_items([JobConfig(), _cfg(), JobConfig()])

    def test_foreign_item_rejected(self):
        with pytest.raises(ConfigurationError):
            RunRequest.from_items([_cfg(), "not a config"])

    def test_duplicate_names_rejected(self):
        with pytest.raises(ConfigurationError, match="linux/a and mac/a"):
            RunRequest.from_items([_cfg("a"), _cfg("b"), _cfg("a", node_type="mac")])

    def test_default_job(self):
        assert RunRequest(configs=[_cfg()]).job == JobConfig()


class TestRunResult:
    """Tests for the overall verdict."""

    def test_worst_status_wins(self):
        result = RunResult(statuses={"a": Status.SUCCESS, "b": Status.UNSTABLE})
        assert result.status == Status.UNSTABLE

    def test_failed_task_is_failure(self):
        result = RunResult(
            statuses={"a": Status.SUCCESS},
            outcomes=[TaskOutcome(key="linux/b", config_name="b", status="failed")],
        )
        assert result.status == Status.FAILURE

    def test_empty_is_success(self):
        assert RunResult().status == Status.SUCCESS

    def test_summary_problems(self):
        assert TestReportSummary("a", tests=3, failures=1).has_problems
        assert TestReportSummary("a", tests=3, errors=1).has_problems
        assert not TestReportSummary("a", tests=3, skips=2).has_problems
