# engine.py
from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Tuple

from . import settings
from .conda import CondaEnv, CondaProvisioner
from .env import overlay, resolve, worker_evaluator
from .model import BuildFailure, CommandError, EnvVar, Task, TaskOutcome, TestReportSummary
from .report import parse_report, tag_report
from .ui.console import get_console


def _vcs_specs(worker, reqs_files: List[str]) -> List[str]:
    specs: List[str] = []
    for rfile in reqs_files:
        if not worker.exists(rfile):
            continue
        for line in worker.read_text(rfile).strip().splitlines():
            if "@git+" in line.replace(" ", ""):
                specs.append(line.strip())
    return specs


def rewrite_freeze(freeze_lines: List[str], vcs_specs: List[str]) -> str:
    """
    Make a `pip freeze` listing reproducible from VCS sources.

    Pinned packages that were requested from git are replaced by the original
    `name @ git+...` spec; editable `-e git+...#egg=name` lines become
    `name @ git+...`.
    """
    out: List[str] = []
    for line in freeze_lines:
        if "==" in line:
            pkg = line.split("==", 1)[0].strip()
            replacement = next((s for s in vcs_specs if s.split("@", 1)[0].strip() == pkg), None)
            out.append(replacement or line)
        elif "-e git+" in line and "#egg=" in line:
            egg = line.split("#egg=", 1)[1].split("&", 1)[0].strip()
            url = line.replace("-e ", "", 1).split("#", 1)[0].strip()
            out.append(f"{egg} @ {url}")
        else:
            out.append(line)
    return "".join(f"{line}\n" for line in out)


class Engine:
    """
    Runs one task against its worker: provision, resolve env, build, test,
    collect the report and environment snapshots.
    """

    def __init__(
        self,
        worker_factory: Callable[[Task], object],
        collect_dir: str | Path = settings.COLLECT_DIR,
        report_file: str = settings.REPORT_FILE,
        provisioner_factory: Optional[Callable] = None,
    ):
        self.worker_factory = worker_factory
        self.collect_dir = Path(collect_dir)
        self.report_file = report_file
        self.provisioner_factory = provisioner_factory or CondaProvisioner

    def __call__(self, task: Task) -> TaskOutcome:
        return self.run_task(task, self.worker_factory(task))

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _provision_conda(self, task: Task, worker, outcome: TaskOutcome) -> Optional[CondaEnv]:
        config = task.config
        console = get_console()
        provisioner = self.provisioner_factory(worker, worker.base_environment())

        exe = provisioner.locate()
        if exe is None:
            console.print_phase(task.key, "conda not found, installing")
            if provisioner.install(config.conda_ver, f"{worker.workspace}/miniconda"):
                exe = provisioner.local_exe
        if exe is None:
            msg = "conda unavailable; skipping conda package provisioning"
            outcome.warnings.append(msg)
            console.print_warning(msg, key=task.key)
            return None

        console.print_debug(f"[{task.key}] using conda at {exe}")
        try:
            return provisioner.create_env(
                exe,
                config.conda_packages,
                config.conda_channels,
                config.conda_override_channels,
                env_name=f"tmp_env{task.index}",
            )
        except CommandError as e:
            raise BuildFailure(task=task.key, cmd=e.cmd, exit_code=e.exit_code, output=e.output) from e

    def _build(self, task: Task, worker, env) -> None:
        console = get_console()
        cmds = [f"pip install -r {r} --src=../src" for r in task.config.pip_reqs_files]
        cmds += task.config.build_cmds
        for cmd in cmds:
            console.print_command(task.key, cmd)
            result = worker.run(cmd, env)
            if not result.ok:
                raise BuildFailure(task=task.key, cmd=cmd, exit_code=result.exit_code, output=result.tail())

    def _test(self, task: Task, worker, env) -> None:
        console = get_console()
        for cmd in task.config.test_cmds:
            console.print_command(task.key, cmd)
            result = worker.run(cmd, env)
            # Test runners exit non-zero when a test fails; the report decides.
            if not result.ok:
                console.print_debug(f"[{task.key}] test command exited {result.exit_code} (ignored)")

    def _collect_report(self, task: Task, worker, outcome: TaskOutcome) -> Optional[TestReportSummary]:
        console = get_console()
        name = task.config.name
        if not worker.exists(self.report_file):
            msg = f"no {self.report_file} produced; test report ingestion skipped"
            outcome.warnings.append(msg)
            console.print_warning(msg, key=task.key)
            return None

        tagged_name = f"{Path(self.report_file).stem}.{name}{Path(self.report_file).suffix}"
        # An unreadable report is "no data" for this configuration, never fatal.
        try:
            tagged = tag_report(worker.read_text(self.report_file), name)
            worker.write_text(tagged_name, tagged)
            outcome.artifacts.append(str(worker.fetch(tagged_name, self.collect_dir)))
            return parse_report(tagged, name)
        except (OSError, ValueError) as e:
            msg = f"test report could not be parsed: {e}"
            outcome.warnings.append(msg)
            console.print_warning(msg, key=task.key)
            return None

    def _snapshot(self, task: Task, worker, env, conda_env: Optional[CondaEnv], outcome: TaskOutcome) -> None:
        console = get_console()
        name = task.config.name

        if conda_env is not None:
            dump_name = f"conda_python_{name}.txt"
            console.print_phase(task.key, f"dumping conda environment: {dump_name}")
            result = worker.run(f"{conda_env.exe} list --explicit > '{dump_name}'", env)
            if result.ok:
                outcome.artifacts.append(str(worker.fetch(dump_name, self.collect_dir)))
            else:
                outcome.warnings.append(f"conda environment dump failed (exit={result.exit_code})")

        if task.config.pip_reqs_files:
            freeze = worker.run("pip freeze", env)
            if not freeze.ok:
                msg = '"pip" not usable; unable to generate "freeze" environment snapshot'
                outcome.warnings.append(msg)
                console.print_warning(msg, key=task.key)
                return
            reqs_name = f"reqs_{name}.txt"
            specs = _vcs_specs(worker, task.config.pip_reqs_files)
            worker.write_text(reqs_name, rewrite_freeze(freeze.stdout.strip().splitlines(), specs))
            outcome.artifacts.append(str(worker.fetch(reqs_name, self.collect_dir)))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_env(self, task: Task, worker, prepend: List[EnvVar]) -> Tuple[List[Tuple[str, str]], dict]:
        # Task-local list; never the config's own container.
        env_vars = list(prepend) + list(task.config.env_vars)
        base = worker.base_environment()
        entries = resolve(base, env_vars, worker.workspace, worker_evaluator(worker))
        # Credentials are passed through untouched.
        entries.extend((ev.name, ev.value) for ev in task.env_extra)
        for raw in task.config.env_vars_raw:
            name, _, value = raw.partition("=")
            entries.append((name.strip(), value))
        return entries, overlay(base, entries)

    def run_task(self, task: Task, worker) -> TaskOutcome:
        """
        Execute one task on its worker.

        Build failures are returned as a failed outcome rather than raised,
        so the scheduler can apply its policy.
        """
        console = get_console()
        config = task.config
        outcome = TaskOutcome(key=task.key, config_name=config.name, status="ok")
        console.print_task_start(task.key)

        try:
            worker.stage_source()

            conda_env: Optional[CondaEnv] = None
            if config.conda_packages:
                conda_env = self._provision_conda(task, worker, outcome)
            prepend = conda_env.activation_vars() if conda_env is not None else []

            try:
                _entries, env = self.resolve_env(task, worker, prepend)
            except CommandError as e:
                raise BuildFailure(task=task.key, cmd=e.cmd, exit_code=e.exit_code, output=e.output) from e

            console.print_phase(task.key, f"Build ({config.name})")
            self._build(task, worker, env)

            if config.test_cmds:
                console.print_phase(task.key, f"Test ({config.name})")
                try:
                    self._test(task, worker, env)
                finally:
                    outcome.summary = self._collect_report(task, worker, outcome)

            self._snapshot(task, worker, env, conda_env, outcome)
        except BuildFailure as e:
            outcome.status = "failed"
            outcome.error = str(e)
            console.print_failure(task.key, str(e), exit_code=e.exit_code, output=e.output)

        console.print_task_done(task.key, outcome.status)
        return outcome
