# model.py
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------

class MatrixError(Exception):
    """Base class for matrixci errors."""


class ConfigurationError(MatrixError, ValueError):
    """A declared configuration is invalid. Raised before any task runs."""


@dataclass
class CommandError(MatrixError):
    """A shell command needed by the engine itself exited non-zero."""
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"command failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class BuildFailure(MatrixError):
    """
    A build-phase command failed. Fatal to its own task only.
    """
    task: str
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.task}] build command failed (exit={self.exit_code}): {self.cmd}"


# ----------------------------------------------------------------------
# Enums
# ----------------------------------------------------------------------

class DayOfWeek(str, Enum):
    MON = "mon"
    TUE = "tue"
    WED = "wed"
    THU = "thu"
    FRI = "fri"
    SAT = "sat"
    SUN = "sun"

    @classmethod
    def parse(cls, value: Union[str, "DayOfWeek"]) -> "DayOfWeek":
        if isinstance(value, DayOfWeek):
            return value
        try:
            return cls(str(value).strip().lower()[:3])
        except ValueError:
            raise ConfigurationError(
                f"Unknown day of week {value!r}. Use one of: "
                f"{', '.join(d.value for d in cls)}"
            ) from None

    @classmethod
    def from_weekday(cls, weekday: int) -> "DayOfWeek":
        """Map datetime.weekday() (Monday == 0) to a DayOfWeek."""
        return list(cls)[weekday]


class Status(str, Enum):
    SUCCESS = "SUCCESS"
    UNSTABLE = "UNSTABLE"
    FAILURE = "FAILURE"

    @classmethod
    def worst(cls, statuses) -> "Status":
        order = [cls.SUCCESS, cls.UNSTABLE, cls.FAILURE]
        result = cls.SUCCESS
        for s in statuses:
            if order.index(s) > order.index(result):
                result = s
        return result


# ----------------------------------------------------------------------
# Environment variables / credentials
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class EnvVar:
    """
    One declared environment variable.

    late=False: the value is used exactly as authored.
    late=True:  `$` references are expanded by the shell at resolution time,
                against the base environment plus every earlier entry.
    """
    name: str
    value: str
    late: bool = False

    @classmethod
    def coerce(cls, entry) -> "EnvVar":
        if isinstance(entry, EnvVar):
            return entry
        if isinstance(entry, str):
            if "=" not in entry:
                raise ConfigurationError(f"env var entry {entry!r} is not of the form NAME=value")
            name, value = entry.split("=", 1)
            return cls(name=name.strip(), value=value.strip(), late="$" in value)
        if isinstance(entry, (tuple, list)) and len(entry) in (2, 3):
            late = bool(entry[2]) if len(entry) == 3 else False
            return cls(name=str(entry[0]), value=entry[1], late=late)
        raise ConfigurationError(f"Unsupported env var entry: {entry!r}")


@dataclass(frozen=True)
class Bare:
    """Credential whose environment variable name is the credential id."""
    id: str

    @property
    def env_name(self) -> str:
        return self.id


@dataclass(frozen=True)
class Named:
    """Credential exposed under an explicit environment variable name."""
    id: str
    env_name: str


CredentialRef = Union[Bare, Named]


def coerce_credential(entry) -> CredentialRef:
    if isinstance(entry, (Bare, Named)):
        return entry
    if isinstance(entry, str):
        return Bare(entry)
    if isinstance(entry, (tuple, list)) and len(entry) == 2:
        return Named(id=str(entry[0]), env_name=str(entry[1]))
    raise ConfigurationError(f"Unsupported credential reference: {entry!r}")


# ----------------------------------------------------------------------
# Configurations
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Thresholds:
    """xUnit-style limits. None means unlimited."""
    failed_unstable: Optional[int] = None
    failed_failure: Optional[int] = None
    skipped_unstable: Optional[int] = None
    skipped_failure: Optional[int] = None


@dataclass
class BuildConfig:
    """
    One build/test unit of the matrix.

    A task never works on the object the author declared: the scheduler hands
    each task its own `clone()`.
    """
    name: str
    node_type: str
    build_cmds: List[str]
    test_cmds: List[str] = field(default_factory=list)
    run_on_days: List[DayOfWeek] = field(default_factory=list)
    env_vars: List[EnvVar] = field(default_factory=list)
    env_vars_raw: List[str] = field(default_factory=list)

    conda_packages: List[str] = field(default_factory=list)
    conda_channels: List[str] = field(default_factory=list)
    conda_override_channels: bool = False
    conda_ver: Optional[str] = None
    pip_reqs_files: List[str] = field(default_factory=list)

    failed_unstable_thresh: Optional[int] = None
    failed_failure_thresh: Optional[int] = None
    skipped_unstable_thresh: Optional[int] = None
    skipped_failure_thresh: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ConfigurationError("BuildConfig.name must be non-empty")
        if not self.node_type or not self.node_type.strip():
            raise ConfigurationError(f"BuildConfig({self.name!r}).node_type must be non-empty")
        if not self.build_cmds:
            raise ConfigurationError(f"BuildConfig({self.name!r}) must have at least one build command")

        self.build_cmds = list(self.build_cmds)
        self.test_cmds = list(self.test_cmds)
        self.run_on_days = [DayOfWeek.parse(d) for d in self.run_on_days]
        self.env_vars = [EnvVar.coerce(e) for e in self.env_vars]
        self.env_vars_raw = list(self.env_vars_raw)

    @property
    def key(self) -> str:
        return f"{self.node_type}/{self.name}"

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds(
            failed_unstable=self.failed_unstable_thresh,
            failed_failure=self.failed_failure_thresh,
            skipped_unstable=self.skipped_unstable_thresh,
            skipped_failure=self.skipped_failure_thresh,
        )

    def runs_on(self, day: DayOfWeek) -> bool:
        return not self.run_on_days or day in self.run_on_days

    def clone(self) -> "BuildConfig":
        """Independent deep copy; no list is shared with the original."""
        return copy.deepcopy(self)


@dataclass
class JobConfig:
    """Run-wide policy. At most one per run."""
    post_test_summary: bool = False
    enable_env_publication: bool = False
    publish_env_filter: str = ""
    publish_env_on_success_only: bool = True
    credentials: List[CredentialRef] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.credentials = [coerce_credential(c) for c in (self.credentials or [])]


def check_unique_names(configs: Sequence[BuildConfig]) -> None:
    """Reports, statuses and artifacts are keyed by name; it must be unique per run."""
    seen: Dict[str, BuildConfig] = {}
    for cfg in configs:
        if cfg.name in seen:
            raise ConfigurationError(
                f"Duplicate configuration name {cfg.name!r} ({seen[cfg.name].key} and {cfg.key})"
            )
        seen[cfg.name] = cfg


@dataclass
class RunRequest:
    """An explicit run: optional job policy plus the ordered build configs."""
    policy: Optional[JobConfig] = None
    configs: List[BuildConfig] = field(default_factory=list)

    @classmethod
    def from_items(cls, items: Sequence[Union[BuildConfig, JobConfig]]) -> "RunRequest":
        """Split a mixed list holding at most one JobConfig."""
        policy: Optional[JobConfig] = None
        configs: List[BuildConfig] = []
        for item in items:
            if isinstance(item, JobConfig):
                if policy is not None:
                    raise ConfigurationError("At most one JobConfig may be supplied per run")
                policy = item
            elif isinstance(item, BuildConfig):
                configs.append(item)
            else:
                raise ConfigurationError(
                    f"Expected BuildConfig or JobConfig, got {type(item).__name__}"
                )
        check_unique_names(configs)
        return cls(policy=policy, configs=configs)

    @property
    def job(self) -> JobConfig:
        return self.policy if self.policy is not None else JobConfig()


# ----------------------------------------------------------------------
# Scheduling / results
# ----------------------------------------------------------------------

@dataclass
class Task:
    """One configuration mapped to one worker execution."""
    key: str
    index: int
    config: BuildConfig
    env_extra: List[EnvVar] = field(default_factory=list)


@dataclass
class ScheduledSet:
    """The configurations that survived day-of-week filtering, in order."""
    day: DayOfWeek
    scheduled: List[BuildConfig] = field(default_factory=list)
    skipped: List[BuildConfig] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.scheduled]

    def by_name(self) -> Dict[str, BuildConfig]:
        return {c.name: c for c in self.scheduled}


@dataclass(frozen=True)
class TestReportSummary:
    __test__ = False  # not a pytest class

    config_name: str
    tests: int = 0
    errors: int = 0
    failures: int = 0
    skips: int = 0

    @property
    def has_problems(self) -> bool:
        return self.errors > 0 or self.failures > 0


@dataclass
class TaskOutcome:
    key: str
    config_name: str
    status: str  # "ok" | "failed"
    summary: Optional[TestReportSummary] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass
class RunResult:
    problems: bool = False
    message: str = ""
    per_config: Dict[str, TestReportSummary] = field(default_factory=dict)
    statuses: Dict[str, Status] = field(default_factory=dict)
    outcomes: List[TaskOutcome] = field(default_factory=list)

    @property
    def status(self) -> Status:
        if any(o.failed for o in self.outcomes):
            return Status.FAILURE
        return Status.worst(self.statuses.values())
