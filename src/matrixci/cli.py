# cli.py
from __future__ import annotations

import subprocess
import sys
from pathlib import Path

import click

from matrixci import settings
from matrixci.adapters.publish import DirectoryPublisher
from matrixci.dsl import convert_specifiers
from matrixci.model import ConfigurationError
from matrixci.runner import checkout_source, exit_code, load_workflow, run as run_matrix, should_skip
from matrixci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "matrixci_workflow.py"


def candidate_workflows(directory: Path) -> list[Path]:
    """matrixci_workflow.py if present, otherwise every *_workflow.py."""
    default = directory / DEFAULT_WORKFLOW
    if default.exists():
        return [default]
    return sorted(directory.glob("*_workflow.py"))


def discover_workflow(workflow_arg: str | None, directory: Path = Path(".")) -> Path:
    """
    Resolve the workflow file to run.

    Exits with status 1 when nothing, or more than one file, matches.
    """
    console = get_console()

    if workflow_arg:
        path = Path(workflow_arg)
        if not path.exists() and path.suffix != ".py":
            path = path.with_name(path.name + ".py")
        if path.exists():
            return path
        console.print_error("Workflow file not found", f"No such file: {workflow_arg}")
        sys.exit(1)

    found = candidate_workflows(directory)
    if len(found) == 1:
        return found[0]

    if not found:
        console.print_error(
            "No workflow file found",
            f"Expected {DEFAULT_WORKFLOW} or a *_workflow.py file in {directory.resolve()}",
            suggestion="Pass one explicitly: matrixci run --workflow path/to/file.py",
        )
    else:
        console.print_error(
            "Ambiguous workflow",
            "More than one workflow file matches:",
            details=[str(f) for f in found],
            suggestion="Pick one with --workflow.",
        )
    sys.exit(1)


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Show tracebacks and debug output")
@click.pass_context
def cli(ctx, debug):
    """matrixci: build-matrix orchestration for CI jobs."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help=f"Workflow file (defaults to {DEFAULT_WORKFLOW})")
@click.option("--concurrent/--sequential", default=True, show_default=True,
              help="Run all configurations in parallel, or one at a time stopping at the first failure")
@click.option("--workers", default=None, type=int, help="Maximum number of tasks running at once")
@click.option("--source", default=".", show_default=True, help="Source tree staged onto every worker")
@click.option("--work-root", default=settings.WORK_ROOT, show_default=True, help="Directory holding per-task workspaces")
@click.option("--collect-dir", default=settings.COLLECT_DIR, show_default=True, help="Where reports and environment snapshots are gathered")
@click.option("--publish-root", default=None, help="Publish environment snapshots under this directory")
@click.pass_context
def run(ctx, workflow, concurrent, workers, source, work_root, collect_dir, publish_root):
    """Run a build matrix. Exit code: 0 SUCCESS, 1 FAILURE, 2 UNSTABLE."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        request = load_workflow(workflow_path)
        console.print_run_started(
            workflow=workflow_path.name,
            config_count=len(request.configs),
            concurrent=concurrent,
        )
        result = run_matrix(
            request,
            concurrent,
            source_dir=source,
            work_root=work_root,
            collect_dir=collect_dir,
            max_workers=workers,
            publisher=DirectoryPublisher(publish_root) if publish_root else None,
        )
        sys.exit(exit_code(result.status))

    except ConfigurationError as e:
        console.print_error("Invalid configuration", str(e), suggestion="No task was started.")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command("should-skip")
@click.option("--source", default=".", show_default=True, help="Checked-out source tree")
@click.option("--skip-disable", is_flag=True, default=False, help="Ignore [ci skip] / [skip ci] directives")
def should_skip_cmd(source, skip_disable):
    """Exit 1 if the latest commit asks CI to skip, 0 to proceed."""
    console = get_console()
    try:
        message = checkout_source(source)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        console.print_error(
            "Could not read latest commit message",
            str(e),
            suggestion="Run inside a git checkout or pass --source.",
        )
        sys.exit(0)

    skip = should_skip(message, skip_disable=skip_disable)
    if skip:
        console.print_info("Build skipped due to commit message directive.")
    else:
        console.print_info("proceed")
    sys.exit(skip)


@cli.command("convert-specifiers")
@click.argument("spec")
def convert_specifiers_cmd(spec):
    """Condense version specifiers, e.g. 'np>=1.15' -> 'npGE115'."""
    click.echo(convert_specifiers(spec))


if __name__ == "__main__":
    cli()
