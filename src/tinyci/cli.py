# cli.py
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import click

from tinyci.errors import CIError
from tinyci.git_facts.git import current_branch, repo_root as git_repo_root
from tinyci.model import Event, Pipeline
from tinyci.runner import load_workflow, run_pipeline
from tinyci.trigger import event_from_ref, should_run
from tinyci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "tinyci_workflow.py"


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    default_workflow = current_dir / DEFAULT_WORKFLOW
    if default_workflow.exists():
        return [default_workflow]

    for path in current_dir.glob("*_workflow.py"):
        workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  tinyci run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                f"  {DEFAULT_WORKFLOW}",
                "  *_workflow.py",
            ],
            suggestion=f"Create a workflow file:\n  {DEFAULT_WORKFLOW}\n\nOr specify a workflow explicitly:\n  tinyci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion=f"Specify a workflow explicitly:\n  tinyci run --workflow {workflow_files[0]}",
        )
        sys.exit(1)

    return workflow_files[0]


def _load(workflow: str | None) -> tuple[Path, Pipeline]:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except CIError as e:
        console.print_error(
            "Invalid workflow",
            f"Could not load workflow from {workflow_path}",
            details=str(e).splitlines(),
        )
        sys.exit(1)


def _resolve_event(kind: str, branch: str | None) -> Event:
    console = get_console()

    if not branch:
        try:
            branch = current_branch()
            console.print_debug(f"Using current git branch: {branch}")
        except (subprocess.CalledProcessError, FileNotFoundError, ValueError) as e:
            console.print_error(
                "Could not determine branch",
                "No --branch specified and the current git branch is unknown.",
                details=[str(e)] if str(e) else None,
                suggestion="Specify the branch explicitly:\n  tinyci run --branch master",
            )
            sys.exit(1)

    try:
        return event_from_ref(kind, branch)
    except ValueError as e:
        console.print_error("Invalid event", str(e))
        sys.exit(1)


def _resolve_repo_root(repo_root: str | None) -> Path:
    console = get_console()

    if repo_root:
        return Path(repo_root)
    try:
        root = git_repo_root()
        console.print_debug(f"Using git repository root: {root}")
        return root
    except (subprocess.CalledProcessError, FileNotFoundError):
        console.print_debug("Not inside a git repository; steps run in the current directory")
        return Path(".")


_event_options = [
    click.option(
        "--workflow",
        default=None,
        envvar="TINYCI_WORKFLOW",
        help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)",
    ),
    click.option(
        "--event",
        "event_kind",
        default="push",
        show_default=True,
        envvar="TINYCI_EVENT",
        help="Event kind: push or pull_request",
    ),
    click.option(
        "--branch",
        default=None,
        envvar="TINYCI_BRANCH",
        help="Target branch or ref (defaults to the current git branch)",
    ),
]


def event_options(f):
    for option in reversed(_event_options):
        f = option(f)
    return f


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and full step output)",
)
@click.pass_context
def cli(ctx, debug):
    """tinyci — run CI pipelines locally: trigger, parallel jobs, ordered steps."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@event_options
@click.option(
    "--repo-root",
    default=None,
    type=click.Path(file_okay=False),
    help="Directory steps run in, step cwd is relative to it (default: the git repository root, else .)",
)
@click.option("--workers", default=None, type=int, help="Number of parallel job workers (default: one per job)")
@click.option("--timeout", default=None, type=float, help="Pipeline timeout in seconds (default: none)")
@click.option("--job", "only", multiple=True, help="Only run this job (repeatable); others are reported skipped")
@click.option("--report", default=None, type=click.Path(dir_okay=False), help="Write a JSON report to this path")
@click.pass_context
def run(ctx, workflow, event_kind, branch, repo_root, workers, timeout, only, report):
    """Run a tinyci workflow for one event."""
    console = get_console()

    workflow_path, pipeline = _load(workflow)
    event = _resolve_event(event_kind, branch)

    try:
        selected = {pipeline.job(name).name for name in only}

        if should_run(event, pipeline):
            console.print_run_started(
                pipeline=pipeline.name,
                workflow=workflow_path.name,
                event=event,
                job_count=len(selected) if selected else len(pipeline.jobs),
            )

        result = run_pipeline(
            pipeline,
            event,
            repo_root=_resolve_repo_root(repo_root),
            max_workers=workers,
            timeout=timeout,
            only=only or None,
        )

        # trigger did not match: nothing ran, nothing failed
        if result is None:
            return

        console.print_report(result, pipeline)

        if report:
            Path(report).write_text(json.dumps(result.to_dict(), indent=2) + "\n", encoding="utf-8")
            console.print_info(f"Report written to {report}")

        if result.exit_code != 0:
            sys.exit(result.exit_code)

    except CIError as e:
        console.print_error("Invalid run configuration", str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.command()
@event_options
@click.pass_context
def plan(ctx, workflow, event_kind, branch):
    """Show the pipeline and whether an event would trigger it. Runs nothing."""
    console = get_console()

    _workflow_path, pipeline = _load(workflow)
    event = _resolve_event(event_kind, branch)
    console.print_plan(pipeline, event, should_run(event, pipeline))


if __name__ == "__main__":
    cli()
