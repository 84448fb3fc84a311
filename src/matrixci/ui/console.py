"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
import traceback
from typing import Iterable, Optional


class Console:
    """All user-facing output of a run goes through one Console."""

    def __init__(self, debug: bool = False, stream=None, err_stream=None):
        """
        Args:
            debug: Also print tracebacks, debug lines and failing command output
            stream: Output stream (defaults to sys.stdout at write time)
            err_stream: Error stream (defaults to sys.stderr at write time)
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        # Tasks print from pool threads; keep multi-line blocks together.
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        if err:
            stream = self._err_stream or sys.stderr
        else:
            stream = self._stream or sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(self, workflow: str, config_count: int, concurrent: bool) -> None:
        """Announce the workflow and scheduling mode."""
        self._out(
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Configurations: {config_count}",
            f"Mode: {'parallel' if concurrent else 'sequential'}",
            "",
        )

    def print_config_skipped(self, name: str, day: str) -> None:
        self._out(f"Skipping build of [{name}] due to 'run_on_days' stipulation (today: {day}).")

    def print_task_start(self, key: str) -> None:
        """Print task start message."""
        self._out(f"\nTASK STARTED: {key}")

    def print_phase(self, key: str, phase: str) -> None:
        self._out(f"[{key}] {phase}")

    def print_command(self, key: str, cmd: str) -> None:
        self._out(f"[{key}] $ {cmd}")

    def print_task_done(self, key: str, status: str) -> None:
        self._out(f"[{key}] STATUS: {status}")

    def print_warning(self, message: str, key: Optional[str] = None) -> None:
        prefix = f"[{key}] " if key else ""
        self._out(f"{prefix}WARNING: {message}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        Print a task failure.

        Args:
            name: Task key
            reason: Failure reason/error message
            exit_code: Optional exit code
            output: Tail of the failing command's output (shown in debug mode)
        """
        lines = [f"TASK FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        if self.debug and output:
            lines.append(output)
        self._out(*lines)

    def print_results(self, results: Iterable[tuple[str, str]]) -> None:
        """Print per-task results."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for key, status in results:
            lines.append(f"  {key}: {'SUCCESS' if status == 'ok' else status.upper()}")
        self._out(*lines)

    def print_verdict(self, status: str) -> None:
        self._out(f"\nFINAL STATUS: {status}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Traceback in debug mode, one line otherwise."""
        if self.debug:
            self._out("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Replaced by the CLI once --debug is known
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
