# src/matrixci/dsl.py
from __future__ import annotations

import copy as _copy
from typing import Any, Callable, Iterable, List, Optional, Sequence, TypeVar, Union

from .model import BuildConfig, ConfigurationError, CredentialRef, EnvVar, JobConfig, RunRequest

T = TypeVar("T")


# ---------------------------------------------------------------------
# Env var helpers
# ---------------------------------------------------------------------

def var(name: str, value: str) -> EnvVar:
    """A literal env var; the value is used exactly as written."""
    return EnvVar(name=name, value=value, late=False)


def late(name: str, value: str) -> EnvVar:
    """An env var whose `$` references are expanded by the shell at run time."""
    return EnvVar(name=name, value=value, late=True)


# ---------------------------------------------------------------------
# Configuration helpers
# ---------------------------------------------------------------------

def config(
    name: str,
    *build_cmds: str,
    node_type: str = "linux",
    test_cmds: Optional[List[str]] = None,
    env: Optional[Sequence[Union[EnvVar, str, tuple]]] = None,
    env_raw: Optional[List[str]] = None,
    run_on_days: Optional[Iterable[str]] = None,
    conda_packages: Optional[List[str]] = None,
    conda_channels: Optional[List[str]] = None,
    conda_override_channels: bool = False,
    conda_ver: Optional[str] = None,
    pip_reqs_files: Optional[List[str]] = None,
    failed_unstable: Optional[int] = None,
    failed_failure: Optional[int] = None,
    skipped_unstable: Optional[int] = None,
    skipped_failure: Optional[int] = None,
) -> BuildConfig:
    """
    Declare one build configuration.

    Example:
        config("py38", "pip install -e .", test_cmds=["pytest --junitxml=results.xml"],
               env=[var("LANG", "C.UTF-8"), late("PATH", "./bin:$PATH")])
    """
    return BuildConfig(
        name=name,
        node_type=node_type,
        build_cmds=list(build_cmds),
        test_cmds=test_cmds or [],
        run_on_days=list(run_on_days or []),
        env_vars=list(env or []),
        env_vars_raw=env_raw or [],
        conda_packages=conda_packages or [],
        conda_channels=conda_channels or [],
        conda_override_channels=conda_override_channels,
        conda_ver=conda_ver,
        pip_reqs_files=pip_reqs_files or [],
        failed_unstable_thresh=failed_unstable,
        failed_failure_thresh=failed_failure,
        skipped_unstable_thresh=skipped_unstable,
        skipped_failure_thresh=skipped_failure,
    )


def job_config(
    *,
    post_test_summary: bool = False,
    enable_env_publication: bool = False,
    publish_env_filter: str = "",
    publish_env_on_success_only: bool = True,
    credentials: Optional[List[Union[CredentialRef, str, Sequence[str]]]] = None,
) -> JobConfig:
    return JobConfig(
        post_test_summary=post_test_summary,
        enable_env_publication=enable_env_publication,
        publish_env_filter=publish_env_filter,
        publish_env_on_success_only=publish_env_on_success_only,
        credentials=list(credentials or []),
    )


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("py", ["3.10", "3.11"]).configs(
            lambda v: config(f"py{convert_specifiers(v)}", ...)
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def configs(self, builder: Callable[[Any], BuildConfig]) -> List[BuildConfig]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper
# ---------------------------------------------------------------------

def wf(*configs: BuildConfig, policy: Optional[JobConfig] = None) -> RunRequest:
    """
    Workflow definition helper.

        def workflow():
            return wf(config(...), config(...), policy=job_config(...))
    """
    flat: List[BuildConfig] = []
    for c in configs:
        if isinstance(c, (list, tuple)):
            flat.extend(c)
        else:
            flat.append(c)
    request = RunRequest.from_items(flat)
    if policy is not None:
        if request.policy is not None:
            raise ConfigurationError("At most one JobConfig may be supplied per run")
        request.policy = policy
    return request


# ---------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------

def copy(obj: T) -> T:
    """Independent deep copy of a configuration object."""
    return _copy.deepcopy(obj)


# Applied in order; "=" must come after "~=" so the compatible-release
# operator is not split into "~E".
_SPECIFIER_REPLACEMENTS = (
    (".", ""),
    (",", ""),
    ("<", "L"),
    (">", "G"),
    ("~=", "C"),
    ("=", "E"),
    ("!", "N"),
)


def convert_specifiers(s: str) -> str:
    """
    Condense version specifiers into identifier-safe text.

    "py3.7_np>=1.15.0" -> "py37_npGE1150"
    """
    result = s
    for old, new in _SPECIFIER_REPLACEMENTS:
        result = result.replace(old, new)
    return result
