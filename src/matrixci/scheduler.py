# scheduler.py
from __future__ import annotations

import datetime as _dt
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, List, Optional

from .env import check_env_vars
from .model import (
    BuildConfig,
    DayOfWeek,
    EnvVar,
    RunRequest,
    RunResult,
    ScheduledSet,
    Task,
    TaskOutcome,
    check_unique_names,
)
from .ui.console import get_console

RunTaskFn = Callable[[Task], TaskOutcome]
PostRunFn = Callable[[ScheduledSet, List[TaskOutcome]], RunResult]


def today() -> DayOfWeek:
    return DayOfWeek.from_weekday(_dt.date.today().weekday())


def partition_by_day(configs: List[BuildConfig], day: DayOfWeek) -> ScheduledSet:
    """Split configurations into those eligible on `day` and those skipped."""
    console = get_console()
    scheduled = ScheduledSet(day=day)
    for cfg in configs:
        if cfg.runs_on(day):
            scheduled.scheduled.append(cfg)
        else:
            console.print_config_skipped(cfg.name, day.value)
            scheduled.skipped.append(cfg)
    return scheduled


def build_tasks(scheduled: ScheduledSet, env_extra: Optional[List[EnvVar]] = None) -> List[Task]:
    """One task per scheduled configuration, each owning a private clone."""
    tasks: List[Task] = []
    for index, cfg in enumerate(scheduled.scheduled):
        tasks.append(Task(key=cfg.key, index=index, config=cfg.clone(), env_extra=list(env_extra or [])))
    return tasks


def _failed_outcome(task: Task, exc: BaseException) -> TaskOutcome:
    return TaskOutcome(key=task.key, config_name=task.config.name, status="failed", error=str(exc))


class Scheduler:
    """
    Maps configurations to tasks and runs them under a parallel or
    sequential policy, then hands everything to the post-run phase once.
    """

    def __init__(
        self,
        run_task: RunTaskFn,
        post_run: PostRunFn,
        *,
        clock: Callable[[], DayOfWeek] = today,
        max_workers: Optional[int] = None,
        env_extra: Optional[List[EnvVar]] = None,
    ):
        self.run_task = run_task
        self.post_run = post_run
        self.clock = clock
        self.max_workers = max_workers
        self.env_extra = list(env_extra or [])

    def _safe_run(self, task: Task) -> TaskOutcome:
        try:
            return self.run_task(task)
        except Exception as e:
            get_console().print_exception(e)
            return _failed_outcome(task, e)

    def run_parallel(self, tasks: List[Task]) -> List[TaskOutcome]:
        """Launch every task; wait for all of them. A failure cancels nothing."""
        if not tasks:
            return []
        max_workers = self.max_workers or max(len(tasks), 1)
        results: Dict[int, TaskOutcome] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {pool.submit(self.run_task, t): t for t in tasks}
            for fut in as_completed(futures):
                task = futures[fut]
                try:
                    results[task.index] = fut.result()
                except Exception as e:
                    get_console().print_exception(e)
                    results[task.index] = _failed_outcome(task, e)
        return [results[t.index] for t in tasks]

    def run_sequential(self, tasks: List[Task]) -> List[TaskOutcome]:
        """Run tasks in order; the first failure ends the sequence."""
        outcomes: List[TaskOutcome] = []
        for i, task in enumerate(tasks):
            get_console().print_header(f"Serial-{i}")
            outcome = self._safe_run(task)
            outcomes.append(outcome)
            if outcome.failed:
                remaining = [t.key for t in tasks[i + 1:]]
                if remaining:
                    get_console().print_info(f"Sequence aborted; not run: {', '.join(remaining)}")
                break
        return outcomes

    def plan(self, request: RunRequest) -> ScheduledSet:
        # Every configuration is checked before anything is scheduled.
        check_unique_names(request.configs)
        for cfg in request.configs:
            check_env_vars(cfg)
        return partition_by_day(request.configs, self.clock())

    def schedule(self, request: RunRequest, concurrent: bool = True) -> RunResult:
        scheduled = self.plan(request)
        tasks = build_tasks(scheduled, self.env_extra)

        if concurrent:
            get_console().print_header("Matrix")
            outcomes = self.run_parallel(tasks)
        else:
            outcomes = self.run_sequential(tasks)

        get_console().print_results((o.key, o.status) for o in outcomes)
        return self.post_run(scheduled, outcomes)
