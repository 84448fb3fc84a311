"""Unit tests for the per-task execution engine."""

from __future__ import annotations

from matrixci.dsl import config, late, var, wf
from matrixci.engine import Engine, rewrite_freeze
from matrixci.model import DayOfWeek, EnvVar, RunResult, Task, TestReportSummary
from matrixci.scheduler import Scheduler
from matrixci.testkit.fakes import FakeCondaProvisioner, FakeWorker
from matrixci.workers import LocalWorker

REPORT = '<testsuite name="pytest" tests="4" errors="0" failures="1" skipped="1"><testcase name="t"/></testsuite>'


def _run(cfg, worker, collect_dir, provisioner=FakeCondaProvisioner, env_extra=None, index=0):
    engine = Engine(lambda task: worker, collect_dir=collect_dir, provisioner_factory=provisioner)
    return engine(Task(key=cfg.key, index=index, config=cfg, env_extra=list(env_extra or [])))


class TestBuildPhase:
    """Build commands are fatal to their own task."""

    def test_build_failure_aborts_task(self, tmp_path):
        worker = FakeWorker().respond("make", exit_code=2)
        outcome = _run(config("a", "make", "make install", test_cmds=["pytest"]), worker, tmp_path)
        assert outcome.failed
        assert outcome.error == "[linux/a] build command failed (exit=2): make"
        assert worker.ran == ["make"]

    def test_source_is_staged_first(self, tmp_path):
        worker = FakeWorker()
        _run(config("a", "make"), worker, tmp_path)
        assert worker.staged == 1

    def test_reqs_files_installed_before_build(self, tmp_path):
        worker = FakeWorker()
        _run(config("a", "make", pip_reqs_files=["requirements.txt"]), worker, tmp_path)
        assert worker.ran[:2] == ["pip install -r requirements.txt --src=../src", "make"]


class TestTestPhase:
    """Test exit codes are ignored; the report decides."""

    def test_failing_test_command_still_yields_summary(self, tmp_path):
        worker = FakeWorker().respond("pytest", exit_code=1, files={"results.xml": REPORT})
        outcome = _run(config("a", "make", test_cmds=["pytest", "flake8"]), worker, tmp_path)
        assert not outcome.failed
        assert worker.ran == ["make", "pytest", "flake8"]
        assert outcome.summary == TestReportSummary("a", tests=4, failures=1, skips=1)

    def test_report_is_tagged_and_collected(self, tmp_path):
        worker = FakeWorker().respond("pytest", files={"results.xml": REPORT})
        outcome = _run(config("py38", "make", test_cmds=["pytest"]), worker, tmp_path)
        collected = tmp_path / "results.py38.xml"
        assert collected.exists()
        assert 'name="[py38] pytest"' in collected.read_text()
        assert str(collected) in outcome.artifacts

    def test_missing_report_warns(self, tmp_path):
        worker = FakeWorker()
        outcome = _run(config("a", "make", test_cmds=["pytest"]), worker, tmp_path)
        assert not outcome.failed
        assert outcome.summary is None
        assert any("results.xml" in w for w in outcome.warnings)

    def test_no_test_commands_no_report_lookup(self, tmp_path):
        worker = FakeWorker()
        outcome = _run(config("a", "make"), worker, tmp_path)
        assert outcome.summary is None
        assert outcome.warnings == []

    def test_unparseable_report_warns(self, tmp_path):
        worker = FakeWorker().respond("pytest", files={"results.xml": "<html/>"})
        outcome = _run(config("a", "make", test_cmds=["pytest"]), worker, tmp_path)
        assert not outcome.failed
        assert outcome.summary is None
        assert any("could not be parsed" in w for w in outcome.warnings)


class TestEnvironment:
    """Resolved variables reach every command."""

    def test_env_order_raw_and_home(self, tmp_path):
        worker = FakeWorker(workspace="/ws")
        cfg = config(
            "a",
            "make",
            env=[var("A", "1"), late("P", "$A:x"), var("DATA", "./data")],
            env_raw=["RAW=$NOT_EXPANDED"],
        )
        _run(cfg, worker, tmp_path, env_extra=[EnvVar("TOKEN", "s3cret")])
        env = worker.env_for("make")
        assert env["A"] == "1"
        assert env["P"] == "1:x"
        assert env["DATA"] == "/ws/data"
        assert env["RAW"] == "$NOT_EXPANDED"
        assert env["HOME"] == "/ws"
        assert env["TOKEN"] == "s3cret"
        assert env["PATH"] == "/usr/bin"

    def test_failed_evaluation_fails_task(self, tmp_path):
        worker = FakeWorker().respond("echo", exit_code=1)
        outcome = _run(config("a", "make", env=[late("P", "$A")]), worker, tmp_path)
        assert outcome.failed
        assert "make" not in worker.ran

    def test_config_is_not_mutated(self, tmp_path):
        cfg = config("a", "make", env=[var("A", "1")])
        _run(cfg, FakeWorker(), tmp_path, env_extra=[EnvVar("TOKEN", "x")])
        assert cfg.env_vars == [EnvVar("A", "1")]

    def test_credentials_are_not_normalized(self, tmp_path):
        worker = FakeWorker(workspace="/ws")
        _run(config("a", "make"), worker, tmp_path, env_extra=[EnvVar("TOKEN", "./tok:.en../x")])
        assert worker.env_for("make")["TOKEN"] == "./tok:.en../x"


class FoundConda(FakeCondaProvisioner):
    located = "/opt/conda/bin/conda"


class MissingConda(FakeCondaProvisioner):
    located = None
    installs = False


class BrokenConda(FoundConda):
    create_fails = True


class TestConda:
    """Conda provisioning and activation."""

    def test_activation_prepended(self, tmp_path):
        worker = FakeWorker().respond("list --explicit", files={"conda_python_a.txt": "@EXPLICIT\n"})
        cfg = config("a", "make", conda_packages=["numpy"], env=[late("PATH", "/extra:$PATH")])
        outcome = _run(cfg, worker, tmp_path, provisioner=FoundConda, index=3)
        env = worker.env_for("make")
        assert env["PATH"] == "/extra:/opt/conda/envs/tmp_env3/bin:/opt/conda/bin:/usr/bin"
        assert env["CONDA_DEFAULT_ENV"] == "tmp_env3"
        assert env["CONDA_PREFIX"] == "/opt/conda/envs/tmp_env3"
        assert env["CONDA_SHLVL"] == "1"
        assert "/opt/conda/bin/conda list --explicit > 'conda_python_a.txt'" in worker.ran
        assert (tmp_path / "conda_python_a.txt").read_text() == "@EXPLICIT\n"
        assert not outcome.failed

    def test_missing_conda_only_warns(self, tmp_path):
        worker = FakeWorker()
        outcome = _run(config("a", "make", conda_packages=["numpy"]), worker, tmp_path, provisioner=MissingConda)
        assert not outcome.failed
        assert any("conda unavailable" in w for w in outcome.warnings)
        assert "CONDA_PREFIX" not in worker.env_for("make")

    def test_create_failure_fails_task(self, tmp_path):
        worker = FakeWorker()
        outcome = _run(config("a", "make", conda_packages=["nope"]), worker, tmp_path, provisioner=BrokenConda)
        assert outcome.failed
        assert worker.ran == []


class TestSnapshots:
    """pip freeze snapshots and VCS rewriting."""

    def test_freeze_snapshot(self, tmp_path):
        worker = FakeWorker().respond(
            "pip freeze",
            stdout="bar==1.0\nfoo==0.1.dev0\n-e git+https://github.com/o/baz.git@abc#egg=baz\n",
        )
        worker.files["requirements.txt"] = "foo @ git+https://github.com/o/foo.git\nbar\n"
        _run(config("a", "make", pip_reqs_files=["requirements.txt"]), worker, tmp_path)
        assert (tmp_path / "reqs_a.txt").read_text() == (
            "bar==1.0\n"
            "foo @ git+https://github.com/o/foo.git\n"
            "baz @ git+https://github.com/o/baz.git@abc\n"
        )

    def test_no_freeze_without_reqs_files(self, tmp_path):
        worker = FakeWorker()
        _run(config("a", "make"), worker, tmp_path)
        assert "pip freeze" not in worker.ran

    def test_rewrite_keeps_unrelated_lines(self):
        assert rewrite_freeze(["six==1.16.0", "# comment"], []) == "six==1.16.0\n# comment\n"


class TestLocalWorker:
    """The engine against a real workspace directory."""

    def test_end_to_end(self, tmp_path):
        source = tmp_path / "src"
        source.mkdir()
        (source / "build.sh").write_text("echo built > built.txt\n")
        report = source / "report.sh"
        report.write_text(f"cat > results.xml <<'EOF'\n{REPORT}\nEOF\nexit 1\n")
        worker = LocalWorker(tmp_path / "ws", source_dir=source)
        cfg = config("a", "sh build.sh", test_cmds=["sh report.sh"])
        outcome = _run(cfg, worker, tmp_path / "collected")
        assert not outcome.failed
        assert (tmp_path / "ws" / "built.txt").read_text().strip() == "built"
        assert outcome.summary.failures == 1
        assert (tmp_path / "collected" / "results.a.xml").exists()

    def test_home_is_workspace(self, tmp_path):
        worker = LocalWorker(tmp_path / "ws")
        cfg = config("a", 'test "$HOME" = "$(pwd -P)"')
        outcome = _run(cfg, worker, tmp_path / "collected")
        assert not outcome.failed

    def test_undecodable_report_is_no_data(self, tmp_path):
        source = tmp_path / "src"
        source.mkdir()
        (source / "bad.xml").write_bytes(b'<testsuite tests="1" failures="0"/>\xff\xfe')
        worker = LocalWorker(tmp_path / "ws", source_dir=source)
        cfg = config("a", "true", test_cmds=["cp bad.xml results.xml"])
        outcome = _run(cfg, worker, tmp_path / "collected")
        assert not outcome.failed
        assert outcome.summary is None
        assert any("could not be parsed" in w for w in outcome.warnings)

    def test_undecodable_report_does_not_stop_sequential_run(self, tmp_path):
        source = tmp_path / "src"
        source.mkdir()
        (source / "bad.xml").write_bytes(b"\xff\xfe\x00")
        engine = Engine(
            lambda task: LocalWorker(tmp_path / "ws" / task.config.name, source_dir=source),
            collect_dir=tmp_path / "collected",
            provisioner_factory=FakeCondaProvisioner,
        )
        request = wf(
            config("a", "true", test_cmds=["cp bad.xml results.xml"]),
            config("b", "true"),
        )
        scheduler = Scheduler(engine, lambda scheduled, outcomes: RunResult(outcomes=list(outcomes)),
                              clock=lambda: DayOfWeek.MON)
        result = scheduler.schedule(request, concurrent=False)
        assert [(o.config_name, o.status) for o in result.outcomes] == [("a", "ok"), ("b", "ok")]
