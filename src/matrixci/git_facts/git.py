# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional

SKIP_DIRECTIVES = ("[ci skip]", "[skip ci]")


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["log", "-1"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.
    """
    # A non-zero exit raises CalledProcessError; callers decide what to do.
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
    )
    return out.strip()


def latest_commit_message(cwd: Optional[str | Path] = None) -> str:
    """Return the full message of the HEAD commit."""
    return _git(["log", "-1", "--pretty=%B"], cwd=cwd)


def remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    """Return the URL configured for a remote."""
    return _git(["remote", "get-url", remote], cwd=cwd)


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """
    Return the short name of the checked-out branch.

    On a detached HEAD git prints "HEAD"; only the last path segment of the
    ref is kept either way.
    """
    return _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd).split("/")[-1]


def repo_slug(url: str) -> str:
    """
    "https://github.com/owner/repo.git" -> "owner/repo".

    Also handles "git@github.com:owner/repo.git".
    """
    slug = re.sub(r"^https://github\.com/", "", url.strip())
    slug = re.sub(r"^git@github\.com:", "", slug)
    return re.sub(r"\.git$", "", slug)


def repo_identity(url: str, branch: str) -> str:
    """
    Identity used to gate environment publication: "<owner>/<branch>".
    """
    parts = [p for p in re.split(r"[/:]", url.strip()) if p]
    owner = parts[-2] if len(parts) >= 2 else ""
    return f"{owner}/{branch}"


def has_skip_directive(message: str) -> bool:
    return any(d in message for d in SKIP_DIRECTIVES)
