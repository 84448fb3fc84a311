from .dsl import config, job_config, var, late, matrix, wf, copy, convert_specifiers
from .runner import run, load_workflow, should_skip
from .model import BuildConfig, JobConfig, RunRequest, RunResult, Status, Bare, Named

__all__ = [
    "config", "job_config", "var", "late", "matrix", "wf", "copy", "convert_specifiers",
    "run", "load_workflow", "should_skip",
    "BuildConfig", "JobConfig", "RunRequest", "RunResult", "Status", "Bare", "Named",
]
