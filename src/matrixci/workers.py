# workers.py
from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def tail(self, limit: int = 4000) -> str:
        return (self.stdout + self.stderr)[-limit:]


class Worker(Protocol):
    """
    An isolated environment owned by exactly one task.

    Every operation blocks until it is done.
    """
    workspace: Path

    def stage_source(self) -> None: ...

    def base_environment(self) -> Dict[str, str]: ...

    def run(self, cmd: str, env: Mapping[str, str]) -> CommandResult: ...

    def exists(self, rel_path: str) -> bool: ...

    def read_text(self, rel_path: str) -> str: ...

    def write_text(self, rel_path: str, text: str) -> None: ...

    def fetch(self, rel_path: str, dest_dir: Path) -> Path: ...


class LocalWorker:
    """
    Worker backed by a private directory on this machine.

    The source tree is copied in by stage_source(); commands run through
    /bin/sh with the workspace as cwd.
    """

    def __init__(
        self,
        workspace: str | Path,
        source_dir: str | Path | None = None,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        self.workspace = Path(workspace).resolve()
        self.source_dir = Path(source_dir).resolve() if source_dir is not None else None
        self._base_env = dict(base_env) if base_env is not None else None

    def stage_source(self) -> None:
        # Start from an empty workspace every time.
        if self.workspace.exists():
            shutil.rmtree(self.workspace)
        if self.source_dir is None:
            self.workspace.mkdir(parents=True, exist_ok=True)
            return
        if not self.source_dir.is_dir():
            raise FileNotFoundError(f"Source tree not found: {self.source_dir}")
        shutil.copytree(
            self.source_dir,
            self.workspace,
            symlinks=True,
            ignore=shutil.ignore_patterns(".matrixci"),
        )

    def base_environment(self) -> Dict[str, str]:
        if self._base_env is not None:
            return dict(self._base_env)
        return os.environ.copy()

    def run(self, cmd: str, env: Mapping[str, str]) -> CommandResult:
        self.workspace.mkdir(parents=True, exist_ok=True)
        proc = subprocess.run(
            cmd,
            shell=True,
            cwd=str(self.workspace),
            env=dict(env),
            text=True,
            capture_output=True,
        )
        return CommandResult(exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)

    def exists(self, rel_path: str) -> bool:
        return (self.workspace / rel_path).exists()

    def read_text(self, rel_path: str) -> str:
        return (self.workspace / rel_path).read_text(encoding="utf-8")

    def write_text(self, rel_path: str, text: str) -> None:
        path = self.workspace / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    def fetch(self, rel_path: str, dest_dir: Path) -> Path:
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / Path(rel_path).name
        shutil.copy2(self.workspace / rel_path, dest)
        return dest


def local_worker_factory(work_root: str | Path, source_dir: str | Path | None):
    """
    Build LocalWorkers laid out as <work_root>/<node_type>/<name>@<index>,
    where index is the task's position in the run.
    """
    root = Path(work_root)

    def factory(task) -> LocalWorker:
        cfg = task.config
        return LocalWorker(root / cfg.node_type / f"{cfg.name}@{task.index}", source_dir=source_dir)

    return factory


def list_matching(directory: Path, pattern: str) -> List[Path]:
    return sorted(p for p in Path(directory).glob(pattern) if p.is_file())
