from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from matrixci.adapters.notify import NotificationError
from matrixci.conda import CondaEnv
from matrixci.model import CommandError
from matrixci.workers import CommandResult

_VAR_REF = re.compile(r"\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?")


@dataclass
class Response:
    """Scripted answer for every command containing `match`."""

    match: str
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    files: Dict[str, str] = field(default_factory=dict)


class FakeWorker:
    """
    In-memory Worker for unit tests.

    Commands are recorded in order. The first registered Response whose
    `match` occurs in a command decides its result; unmatched commands
    succeed silently, except `echo "..."`, which expands `$NAME` references
    against the env it is given, and `which ...`, which fails.
    """

    def __init__(self, workspace: str | Path = "/ws", base_env: Optional[Mapping[str, str]] = None):
        self.workspace = Path(workspace)
        self.base_env = dict(base_env or {"PATH": "/usr/bin"})
        self.files: Dict[str, str] = {}
        self.commands: List[Tuple[str, Dict[str, str]]] = []
        self.responses: List[Response] = []
        self.staged = 0

    def respond(self, match: str, exit_code: int = 0, stdout: str = "", files: Optional[Dict[str, str]] = None) -> "FakeWorker":
        self.responses.append(Response(match, exit_code, stdout, files=dict(files or {})))
        return self

    @property
    def ran(self) -> List[str]:
        """Return the commands run so far, in order."""
        return [cmd for cmd, _ in self.commands]

    def env_for(self, match: str) -> Dict[str, str]:
        """Return the env of the first command containing `match`."""
        for cmd, env in self.commands:
            if match in cmd:
                return env
        raise KeyError(match)

    # Worker protocol

    def stage_source(self) -> None:
        self.staged += 1

    def base_environment(self) -> Dict[str, str]:
        return dict(self.base_env)

    def run(self, cmd: str, env: Mapping[str, str]) -> CommandResult:
        self.commands.append((cmd, dict(env)))
        for response in self.responses:
            if response.match in cmd:
                self.files.update(response.files)
                return CommandResult(response.exit_code, response.stdout, response.stderr)
        if cmd.startswith('echo "') and cmd.endswith('"'):
            value = cmd[len('echo "'):-1]
            return CommandResult(0, _VAR_REF.sub(lambda m: env.get(m.group(1), ""), value) + "\n")
        if cmd.startswith("which "):
            return CommandResult(1, "")
        return CommandResult(0, "")

    def exists(self, rel_path: str) -> bool:
        return rel_path in self.files

    def read_text(self, rel_path: str) -> str:
        return self.files[rel_path]

    def write_text(self, rel_path: str, text: str) -> None:
        self.files[rel_path] = text

    def fetch(self, rel_path: str, dest_dir: Path) -> Path:
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / Path(rel_path).name
        dest.write_text(self.files[rel_path], encoding="utf-8")
        return dest


class FakeCondaProvisioner:
    """
    Stand-in for CondaProvisioner; behaviour is set on the class-level
    knobs of a subclass or instance before the engine builds it.
    """

    located: Optional[str] = None
    installs: bool = False
    create_fails: bool = False

    def __init__(self, worker, env: Mapping[str, str]):
        self.worker = worker
        self.env = dict(env)
        self.created: List[Tuple[str, List[str], List[str], bool, str]] = []

    @property
    def local_exe(self) -> str:
        return f"{self.worker.workspace}/miniconda/bin/conda"

    def locate(self) -> Optional[str]:
        return self.located

    def install(self, version: Optional[str] = None, install_dir: Optional[str] = None) -> bool:
        return self.installs

    def create_env(self, exe, packages, channels, override_channels, env_name) -> CondaEnv:
        self.created.append((exe, list(packages), list(channels), override_channels, env_name))
        if self.create_fails:
            raise CommandError(cmd=f"{exe} create -n {env_name}", exit_code=1, output="PackagesNotFoundError")
        root = exe[: -len("/bin/conda")]
        return CondaEnv(exe=exe, root=root, name=env_name, prefix=f"{root}/envs/{env_name}")


class RecordingNotifier:
    """Notifier that keeps every posted summary."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.posts: List[Tuple[str, str, str]] = []

    def post_summary(self, repo_identity: str, subject: str, body: str) -> None:
        if self.fail:
            raise NotificationError("notification service unavailable")
        self.posts.append((repo_identity, subject, body))


class RecordingPublisher:
    """Publisher that only records what it was asked to publish."""

    def __init__(self):
        self.calls: List[Tuple[Path, str, str]] = []

    def publish(self, source_dir: Path, pattern: str, destination: str) -> List[Path]:
        self.calls.append((Path(source_dir), pattern, destination))
        return sorted(Path(source_dir).glob(pattern))
