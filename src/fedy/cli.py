"""FEDY CLI: a thin shell over the scheduler.

Installed as ``fedy`` console_script via pipx / pip.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from functools import wraps
from typing import Any

import click
from rich.table import Table

from fedy import __version__
from fedy import log
from fedy.config import Config
from fedy.errors import FedyError
from fedy.scheduler import Scheduler
from fedy.store import FileDocumentStore
from fedy.tasks.model import Outcome, Task, TaskStatus
from fedy.tasks.store import TaskStore
from fedy.tasks.validate import validate


CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])

def _store(ctx: click.Context) -> TaskStore:
    cfg: Config = ctx.obj
    docs = FileDocumentStore(
        cfg.plan_path,
        lock_timeout=cfg.lock_timeout,
        lock_poll_interval=cfg.lock_poll_interval,
    )
    return TaskStore(docs)


def _scheduler(ctx: click.Context) -> Scheduler:
    return Scheduler(_store(ctx))


def _reports_errors(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Print FEDY errors as one line and exit 1 instead of a traceback."""

    @wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, **kwargs)
        except FedyError as exc:
            log.error(str(exc))
            sys.exit(1)

    return wrapper


def _describe(task: Task) -> str:
    return f"#{task.id} {task.title}"


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--plan-dir", default="", help="Plan directory (default: .fedy or $FEDY_PLAN_DIR)")
@click.option("--lock-timeout", type=float, default=None, help="Seconds to wait for a record lock")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="fedy")
@click.pass_context
def main(ctx: click.Context, plan_dir: str, lock_timeout: float | None, verbose: bool) -> None:
    """FEDY — task planning and scheduling for parallel coding agents.

    \b
    WORKFLOW:
      1. fedy init
      2. fedy add "Set up project" ; fedy add "Add auth" --depends 1
      3. fedy plan-next             # Pending -> Planning
      4. fedy plan-done 1 --file src/app.py
      5. fedy claim                 # Ready -> InProgress
      6. fedy release 1             # InProgress -> Completed
    """
    log.set_verbose(verbose)
    cfg = Config(plan_dir=plan_dir, verbose=verbose)
    if lock_timeout is not None:
        cfg.lock_timeout = lock_timeout
    ctx.obj = cfg


@main.command()
@click.pass_context
@_reports_errors
def init(ctx: click.Context) -> None:
    """Create an empty plan."""
    if _store(ctx).init_plan():
        log.success(f"Plan created in {ctx.obj.plan_dir}")
    else:
        log.warn(f"Plan already exists in {ctx.obj.plan_dir}")


@main.command()
@click.argument("title")
@click.option("--depends", "-d", multiple=True, help="Task id or exact title this task depends on")
@click.pass_context
@_reports_errors
def add(ctx: click.Context, title: str, depends: tuple[str, ...]) -> None:
    """Append a Pending task to the plan."""
    task = _store(ctx).add_task(title, list(depends))
    log.success(f"Added {_describe(task)}")


@main.command(name="list")
@click.pass_context
@_reports_errors
def list_tasks(ctx: click.Context) -> None:
    """Show every task with its status."""
    plan = _store(ctx).load_plan()
    if not plan.tasks:
        log.info("Plan is empty")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Depends")
    table.add_column("Files")
    for task in plan.tasks:
        table.add_row(
            str(task.id),
            task.title,
            log.status(task.status),
            ", ".join(str(d) for d in task.dependencies),
            ", ".join(task.files_touched),
        )
    log.console.print(table)
    counts = plan.counts()
    log.info(" ".join(f"{log.status(s)}={n}" for s, n in counts.items()))


@main.command(name="plan-next")
@click.pass_context
@_reports_errors
def plan_next(ctx: click.Context) -> None:
    """Start planning the first Pending task."""
    sched = _scheduler(ctx)
    task = sched.next_plannable()
    if task is None:
        log.info("No pending task to plan")
        return
    task = sched.start_planning(task)
    log.success(f"Planning {_describe(task)}")


@main.command(name="plan-done")
@click.argument("task_id", type=int)
@click.option("--file", "files", multiple=True, required=True, help="File the task will modify")
@click.option("--summary", default="", help="One-line plan summary")
@click.option("--step", "steps", multiple=True, help="Plan step (repeatable, in order)")
@click.option("--notes", default="", help="Free-form notes")
@click.pass_context
@_reports_errors
def plan_done(
    ctx: click.Context,
    task_id: int,
    files: tuple[str, ...],
    summary: str,
    steps: tuple[str, ...],
    notes: str,
) -> None:
    """Record the plan detail of a task and mark it Ready."""
    sched = _scheduler(ctx)
    task = sched.store.get_task(task_id)
    task = sched.finish_planning(task, files, summary=summary, steps=steps, notes=notes)
    log.success(f"Ready: {_describe(task)}")


@main.command()
@click.argument("task_id", type=int)
@click.pass_context
@_reports_errors
def abandon(ctx: click.Context, task_id: int) -> None:
    """Return a Planning task to Pending."""
    sched = _scheduler(ctx)
    task = sched.abandon_planning(sched.store.get_task(task_id))
    log.success(f"Abandoned planning of {_describe(task)}")


@main.command(name="next")
@click.pass_context
@_reports_errors
def next_task(ctx: click.Context) -> None:
    """Show the task that would be claimed next."""
    sched = _scheduler(ctx)
    plan = sched.store.load_plan()
    task = sched.next_executable(plan)
    if task is not None:
        log.console.print(_describe(task))
        return
    log.info("No executable task")
    for t in plan.by_status(TaskStatus.READY):
        log.info(f"{_describe(t)} blocked: {sched.explain_block(t, plan)}")


@main.command()
@click.argument("task_id", type=int, required=False)
@click.pass_context
@_reports_errors
def claim(ctx: click.Context, task_id: int | None) -> None:
    """Claim TASK_ID, or the next executable task."""
    sched = _scheduler(ctx)
    if task_id is None:
        task = sched.next_executable()
        if task is None:
            log.info("No executable task")
            return
    else:
        task = sched.store.get_task(task_id)
    task = sched.claim(task)
    log.success(f"Claimed {_describe(task)}")
    for path in task.files_touched:
        log.console.print(f"  {path}")


@main.command()
@click.argument("task_id", type=int)
@click.option("--failed", is_flag=True, help="Roll the task back to Ready")
@click.pass_context
@_reports_errors
def release(ctx: click.Context, task_id: int, failed: bool) -> None:
    """Finish an InProgress task."""
    sched = _scheduler(ctx)
    outcome = Outcome.FAILED if failed else Outcome.SUCCEEDED
    task = sched.release(sched.store.get_task(task_id), outcome)
    if outcome == Outcome.FAILED:
        log.warn(f"Rolled back {_describe(task)}")
        return
    log.success(f"Completed {_describe(task)}")
    log.console.print(sched.change_summary(task).commit_message(), end="")


@main.command()
@click.pass_context
@_reports_errors
def check(ctx: click.Context) -> None:
    """Validate the plan and report cycles or deadlock."""
    sched = _scheduler(ctx)
    plan = sched.store.load_plan()
    errors = validate(plan)
    for err in errors:
        log.error(err)
    if sched.check_deadlock(plan):
        log.warn("No task can make progress")
    if errors:
        sys.exit(1)
    log.success(f"Plan OK ({len(plan.tasks)} tasks)")
