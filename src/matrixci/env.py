# env.py
"""
Environment resolution for a single task.

Entries are resolved strictly in declaration order. Each entry sees the base
environment plus every entry resolved before it, so later variables may
reference earlier ones, but never the other way around.
"""
from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

from .model import BuildConfig, CommandError, ConfigurationError, EnvVar

# (value, env) -> expanded value
Evaluator = Callable[[str, Mapping[str, str]], str]

_LONE_DOT_AFTER_COLON = re.compile(r":\.(?!\.)")

INTERPOLATION_HELP = (
    "Immediate interpolation of variables in the 'env_vars' list is not "
    "supported and will probably not do what you expect. Declare the value "
    "as a plain literal, or use late(name, value) so that '$' references are "
    "expanded by the shell when the task runs."
)


def check_env_vars(config: BuildConfig) -> None:
    """
    Reject env var values that were interpolated eagerly by the author.

    A value must be a plain str. A value that still carries a `$` marker but
    was not declared late would be passed through unexpanded, which is never
    what the author meant.
    """
    for ev in config.env_vars:
        if type(ev.value) is not str:
            raise ConfigurationError(
                f"[{config.name}] env var {ev.name!r} has a "
                f"{type(ev.value).__name__} value. {INTERPOLATION_HELP}"
            )
        if not ev.late and "$" in ev.value:
            raise ConfigurationError(
                f"[{config.name}] env var {ev.name!r} contains an unresolved "
                f"substitution marker: {ev.value!r}. {INTERPOLATION_HELP}"
            )


def shell_evaluator(cwd: str | Path | None = None) -> Evaluator:
    """Expand a value with /bin/sh, the way `echo "<value>"` would."""

    def evaluate(value: str, env: Mapping[str, str]) -> str:
        cmd = f'echo "{value}"'
        proc = subprocess.run(
            cmd,
            shell=True,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env),
            text=True,
            capture_output=True,
        )
        if proc.returncode != 0:
            raise CommandError(cmd=cmd, exit_code=proc.returncode, output=proc.stderr[-4000:])
        return proc.stdout.rstrip("\n")

    return evaluate


def worker_evaluator(worker) -> Evaluator:
    """Expand values through the task's own worker."""

    def evaluate(value: str, env: Mapping[str, str]) -> str:
        cmd = f'echo "{value}"'
        result = worker.run(cmd, env)
        if result.exit_code != 0:
            raise CommandError(cmd=cmd, exit_code=result.exit_code, output=result.tail())
        return result.stdout.rstrip("\n")

    return evaluate


def normalize_path(value: str, workspace_root: str) -> str:
    """Anchor `.`-relative values to the workspace root."""
    if value in (".", "./"):
        value = workspace_root
    elif value.startswith("./"):
        value = f"{workspace_root}/{value[2:]}"

    value = _LONE_DOT_AFTER_COLON.sub(lambda _m: f":{workspace_root}", value)

    if ".." in value:
        value = os.path.normpath(os.path.join(workspace_root, value))
    return value.strip()


def overlay(base: Mapping[str, str], entries: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    """Apply entries on top of base; the last write for a name wins."""
    env = dict(base)
    for name, value in entries:
        env[name] = value
    return env


def resolve(
    base_env: Mapping[str, str],
    env_vars: Sequence[EnvVar],
    workspace_root: str | Path,
    evaluate: Evaluator,
) -> List[Tuple[str, str]]:
    """
    Resolve env_vars into an ordered list of (name, value) pairs.

    Args:
        base_env: The worker's runtime environment.
        env_vars: Declared entries, in order.
        workspace_root: Absolute workspace path used for path normalization
            and the synthesized HOME entry.
        evaluate: Shell-evaluation collaborator, only called for late entries
            whose value contains `$`.

    Returns:
        Resolved entries followed by HOME=<workspace_root>.
    """
    root = str(workspace_root)
    resolved: List[Tuple[str, str]] = []
    current = dict(base_env)

    for ev in env_vars:
        value = ev.value
        if ev.late and "$" in value:
            value = evaluate(value, current)
        value = normalize_path(value, root)
        resolved.append((ev.name, value))
        current[ev.name] = value

    resolved.append(("HOME", root))
    return resolved
