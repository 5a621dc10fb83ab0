"""
Command line interface for commit-sweep.

This module defines the ``main`` click command used as the entry point of
the ``commit-sweep`` executable. It resolves the requested operation,
loads configuration, plans every repository and, when asked to, hands the
plan to the executor. Human-readable progress goes to stderr so that
``--json`` output on stdout stays machine readable.
"""

from __future__ import annotations

import enum
import json
import logging
import shutil
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import click

from commit_sweep import __version__
from commit_sweep.config.loader import ConfigError, load_config, resolve_state_dir
from commit_sweep.execution.executor import Executor, SweepSession
from commit_sweep.execution.recovery import unresolved_state
from commit_sweep.execution.state import SweepStateStore
from commit_sweep.grouping.group_model import COMMIT_TYPES
from commit_sweep.message.commit_message_generator import Overrides
from commit_sweep.plan.plan_builder import (
    PlanBuilder,
    PlanIntegrityError,
    freeze_plan,
    new_run_id,
    rehydrate_plan,
    utc_now,
)
from commit_sweep.plan.plan_model import (
    ERROR_ATOMIC_ROLLBACK,
    ERROR_CHECKPOINT,
    ERROR_DETACHED_HEAD,
    ERROR_GIT,
    ERROR_GROUP_FAILED,
    ERROR_INTERRUPTED,
    ERROR_LOCK_TIMEOUT,
    ERROR_NOT_A_REPOSITORY,
    ERROR_OPERATION_IN_PROGRESS,
    ERROR_PLAN_STATE_DIVERGED,
    ERROR_PROTECTED_BRANCH,
    ERROR_UNDO,
    ERROR_UNMERGED_PATHS,
    ERROR_UNRESOLVED_STATE,
    ERROR_UNSAFE_PATH,
    STATUS_FAILED,
    STATUS_INTERRUPTED,
    STATUS_PARTIAL,
    Plan,
    RepoPlan,
)
from commit_sweep.tasks.task_resolver import TaskResolver
from commit_sweep.vcs.git_client import MIN_GIT_VERSION, GitClient


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------
EXIT_SUCCESS = 0
EXIT_PARTIAL_FAILURE = 1
EXIT_PREFLIGHT_CONFLICT = 2
EXIT_DEPENDENCY = 3
EXIT_INVALID_USAGE = 4
EXIT_INTERRUPTED = 5

# When several apply, the first one listed wins
EXIT_PRIORITY = (
    EXIT_INTERRUPTED,
    EXIT_INVALID_USAGE,
    EXIT_DEPENDENCY,
    EXIT_PREFLIGHT_CONFLICT,
    EXIT_PARTIAL_FAILURE,
)

ERROR_EXIT_CODES = {
    ERROR_NOT_A_REPOSITORY: EXIT_INVALID_USAGE,
    ERROR_UNSAFE_PATH: EXIT_PARTIAL_FAILURE,
    ERROR_UNMERGED_PATHS: EXIT_PREFLIGHT_CONFLICT,
    ERROR_OPERATION_IN_PROGRESS: EXIT_PREFLIGHT_CONFLICT,
    ERROR_DETACHED_HEAD: EXIT_PREFLIGHT_CONFLICT,
    ERROR_PROTECTED_BRANCH: EXIT_PREFLIGHT_CONFLICT,
    ERROR_PLAN_STATE_DIVERGED: EXIT_PREFLIGHT_CONFLICT,
    ERROR_LOCK_TIMEOUT: EXIT_DEPENDENCY,
    ERROR_UNRESOLVED_STATE: EXIT_INVALID_USAGE,
    ERROR_CHECKPOINT: EXIT_PARTIAL_FAILURE,
    ERROR_GROUP_FAILED: EXIT_PARTIAL_FAILURE,
    ERROR_ATOMIC_ROLLBACK: EXIT_PARTIAL_FAILURE,
    ERROR_INTERRUPTED: EXIT_INTERRUPTED,
    ERROR_UNDO: EXIT_PARTIAL_FAILURE,
    ERROR_GIT: EXIT_PARTIAL_FAILURE,
}

GUIDANCE = {
    ERROR_NOT_A_REPOSITORY: "Pass the path of a git working tree",
    ERROR_UNSAFE_PATH: "Rename or remove the offending path, then rerun",
    ERROR_UNMERGED_PATHS: "Resolve the conflicts and rerun",
    ERROR_OPERATION_IN_PROGRESS: "Finish or abort the operation in progress, then rerun",
    ERROR_DETACHED_HEAD: "Check out a branch, then rerun",
    ERROR_PROTECTED_BRANCH: "Switch to a feature branch or pass --allow-protected-branch",
    ERROR_PLAN_STATE_DIVERGED: "Save a fresh plan with --save-plan",
    ERROR_LOCK_TIMEOUT: "Wait for the other commit-sweep run to finish",
    ERROR_UNRESOLVED_STATE: "Rerun with --resume to continue or --restart to roll back",
    ERROR_GROUP_FAILED: "Fix the failure and rerun with --resume, or roll back with --undo",
    ERROR_INTERRUPTED: "Rerun with --resume or --restart",
}

JSON_COMMAND_NAME = "commit-sweep"
LOG_FORMAT = "%(levelname)s: %(message)s"


class Operation(enum.Enum):
    """The closed set of things one invocation can do."""

    DRY_RUN = "dry-run"
    EXECUTE = "execute"
    SAVE_PLAN = "save-plan"
    EXECUTE_PLAN = "execute-plan"
    UNDO = "undo"
    DOCTOR = "doctor"


def prioritized_exit_code(codes: Iterable[int]) -> int:
    present = set(codes)
    for code in EXIT_PRIORITY:
        if code in present:
            return code
    return EXIT_SUCCESS


def plan_exit_code(plan: Plan, interrupted: bool = False) -> int:
    """Map repository statuses and error codes to the process exit code."""
    codes: List[int] = [EXIT_INTERRUPTED] if interrupted else []
    for repo_plan in plan.repos:
        if repo_plan.status == STATUS_INTERRUPTED:
            codes.append(EXIT_INTERRUPTED)
        codes.extend(ERROR_EXIT_CODES.get(code, EXIT_PARTIAL_FAILURE) for code in repo_plan.error_codes)
        if repo_plan.status in (STATUS_PARTIAL, STATUS_FAILED) and not repo_plan.errors:
            codes.append(EXIT_PARTIAL_FAILURE)
    return prioritized_exit_code(codes)


def usage_error(message: str) -> click.UsageError:
    error = click.UsageError(message)
    error.exit_code = EXIT_INVALID_USAGE
    return error


class SweepCommand(click.Command):
    """Click command whose usage errors exit with :data:`EXIT_INVALID_USAGE`."""

    def make_context(self, info_name, args, parent=None, **extra):
        try:
            return super().make_context(info_name, args, parent=parent, **extra)
        except click.UsageError as exc:
            exc.exit_code = EXIT_INVALID_USAGE
            raise


# ---------------------------------------------------------------------------
# Progress and status display utilities
# ---------------------------------------------------------------------------

class ProgressIndicator:
    """Simple progress indicator for user feedback."""

    def __init__(self, message: str):
        self.message = message
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        click.echo(f"→ {self.message}...", err=True)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            elapsed = time.time() - self.start_time
            click.echo(f"  ✓ Done ({elapsed:.1f}s)", err=True)
        return False


def print_step(step_num: int, total_steps: int, message: str):
    """Print a step indicator."""
    click.echo(f"\n{'=' * 60}", err=True)
    click.echo(f"Step {step_num}/{total_steps}: {message}", err=True)
    click.echo(f"{'=' * 60}", err=True)


def print_info(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}ℹ {message}", err=True)


def print_success(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}✓ {message}", err=True)


def print_warning(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}⚠ {message}", err=True)


def print_error(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}✗ {message}", err=True)


def print_summary_box(title: str, items: List[str]):
    """Print a formatted summary box."""
    max_width = max(len(title), max(len(item) for item in items) if items else 0)
    box_width = min(max_width + 4, 60)

    click.echo(f"\n┌{'─' * box_width}┐", err=True)
    click.echo(f"│ {title.ljust(box_width - 2)}│", err=True)
    click.echo(f"├{'─' * box_width}┤", err=True)
    for item in items:
        click.echo(f"│ {item.ljust(box_width - 2)}│", err=True)
    click.echo(f"└{'─' * box_width}┘", err=True)


def print_repo_report(repo_plan: RepoPlan, verbose: bool = False) -> None:
    branch = repo_plan.branch or "detached"
    task = f", task {repo_plan.task_id}" if repo_plan.task_id else ""
    click.echo(f"\n📁 {repo_plan.repo} [{branch}{task}] {repo_plan.status}", err=True)
    if repo_plan.task_title:
        print_info(f"Task: {repo_plan.task_title}", indent=1)
    outcome = {result["group_id"]: result for result in repo_plan.results}
    for group in repo_plan.groups:
        level = group.confidence.level if group.confidence else "n/a"
        result = outcome.get(group.id)
        line = f"{group.id}: {group.message}  ({len(group.files)} file(s), confidence {level})"
        if result is None:
            print_info(line, indent=1)
        elif result["status"] == "committed":
            print_success(f"{line} -> {(result['commit'] or '')[:12]}", indent=1)
        else:
            print_error(f"{line} [{result['status']}]", indent=1)
        if verbose:
            for change in group.files:
                print_info(f"{change.status} {change.path}", indent=2)
    for warning in repo_plan.warnings:
        print_warning(warning, indent=1)
    for error in repo_plan.errors:
        print_error(f"{error['code']}: {error['message']}", indent=1)
        hint = GUIDANCE.get(error["code"])
        if hint:
            print_info(hint, indent=2)


def print_plan_report(plan: Plan, operation: Operation, verbose: bool = False) -> None:
    for repo_plan in plan.repos:
        print_repo_report(repo_plan, verbose=verbose)
    summary = plan.summary
    print_summary_box(
        f"Summary ({operation.value})",
        [
            f"Repositories scanned: {summary['repos_scanned']}",
            f"Repositories dirty: {summary['repos_dirty']}",
            f"Groups planned: {summary['groups_planned']}",
            f"Groups committed: {summary['groups_executed']}",
            f"Groups failed: {summary['groups_failed']}",
        ],
    )


def json_envelope(data: Dict[str, Any], meta: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "command": JSON_COMMAND_NAME,
        "version": __version__,
        "generated_at": utc_now(),
        "output_format": "json",
        "data": data,
        "_meta": meta,
    }


def emit_json(data: Dict[str, Any], meta: Dict[str, Any]) -> None:
    click.echo(json.dumps(json_envelope(data, meta), indent=2, sort_keys=True, ensure_ascii=True))


# ---------------------------------------------------------------------------
# Core functionality
# ---------------------------------------------------------------------------

@dataclass
class RunOptions:
    """Everything an operation handler needs from the command line."""

    repos: List[Path]
    config: Dict[str, Any]
    state_dir: Path
    atomic: bool = False
    atomic_repos: bool = False
    save_plan: Optional[Path] = None
    execute_plan: Optional[Path] = None
    resume: bool = False
    restart: bool = False
    respect_staging: bool = False
    exclude: List[str] = field(default_factory=list)
    overrides: Overrides = field(default_factory=Overrides)
    include_body: bool = False
    include_task_id: bool = True
    include_binary: bool = False
    allow_protected_branch: bool = False
    as_json: bool = False
    verbose: bool = False
    started: float = field(default_factory=time.monotonic)
    git_version: Optional[str] = None

    def session(self, run_id: str, verify_fingerprint: bool = False) -> SweepSession:
        return SweepSession(
            run_id=run_id,
            state_dir=self.state_dir,
            config=self.config,
            atomic=self.atomic or self.atomic_repos,
            atomic_repos=self.atomic_repos,
            resume=self.resume,
            allow_protected_branch=self.allow_protected_branch,
            verify_fingerprint=verify_fingerprint,
        )


def resolve_operation(
    execute: bool,
    save_plan: Optional[Path],
    execute_plan: Optional[Path],
    undo: bool,
    doctor: bool,
    resume: bool,
    restart: bool,
) -> Operation:
    """Validate mutually exclusive options and pick the operation.

    Raises
    ------
    click.UsageError
        With exit code :data:`EXIT_INVALID_USAGE` for invalid combinations.
    """
    if doctor:
        return Operation.DOCTOR
    if resume and restart:
        raise usage_error("--resume and --restart are mutually exclusive")
    if undo:
        if execute or save_plan or execute_plan or resume or restart:
            raise usage_error("--undo cannot be combined with other operations")
        return Operation.UNDO
    if save_plan and execute_plan:
        raise usage_error("--save-plan and --execute-plan are mutually exclusive")
    if save_plan:
        if execute:
            raise usage_error("--save-plan only plans; run --execute-plan FILE to apply it")
        if resume or restart:
            raise usage_error("--resume/--restart require --execute or --execute-plan")
        return Operation.SAVE_PLAN
    if execute_plan:
        return Operation.EXECUTE_PLAN
    if execute:
        return Operation.EXECUTE
    if resume or restart:
        raise usage_error("--resume/--restart require --execute or --execute-plan")
    return Operation.DRY_RUN


def format_version(version: Optional[Tuple[int, int, int]]) -> str:
    return ".".join(str(part) for part in version) if version else "missing"


def check_git(options: RunOptions) -> Optional[int]:
    """Return an exit code if git is unusable, otherwise None."""
    version = GitClient.git_version()
    options.git_version = format_version(version)
    if version is None:
        print_error("git executable not found on PATH")
        return EXIT_DEPENDENCY
    if version[:2] < MIN_GIT_VERSION:
        print_error(
            f"git {format_version(version)} is too old; "
            f"commit-sweep needs {'.'.join(str(part) for part in MIN_GIT_VERSION)} or newer"
        )
        return EXIT_DEPENDENCY
    return None


def build_plan(options: RunOptions, run_id: Optional[str] = None, warn_unresolved: bool = True) -> Plan:
    builder = PlanBuilder(
        options.config,
        respect_staging=options.respect_staging,
        exclude=options.exclude,
        include_binary=options.include_binary,
        include_task_id=options.include_task_id,
        include_body=options.include_body,
        overrides=options.overrides,
        resolver=TaskResolver(
            options.config.get("task_lookup_command"),
            options.config.get("task_lookup_timeout", 5.0),
        ),
    )
    with ProgressIndicator(f"Planning {len(options.repos)} repositor{'y' if len(options.repos) == 1 else 'ies'}"):
        plan = builder.build(options.repos, run_id=run_id)
    if warn_unresolved:
        states = SweepStateStore(options.state_dir)
        for repo_plan in plan.repos:
            state = unresolved_state(states, Path(repo_plan.path))
            if state is not None:
                repo_plan.warnings.append(
                    f"Previous sweep {state.run_id} is {state.status}; "
                    "--execute needs --resume or --restart"
                )
    return plan


def finish(options: RunOptions, plan: Plan, operation: Operation, code: int, session=None) -> int:
    """Fill in run metadata, print the report and return ``code``."""
    plan.meta.update(
        {
            "duration_seconds": round(time.monotonic() - options.started, 3),
            "exit_code": code,
            "git_version": options.git_version,
            "operation": operation.value,
        }
    )
    if session is not None:
        plan.meta["transitions"] = list(session.transitions)
    print_plan_report(plan, operation, verbose=options.verbose)
    if options.as_json:
        emit_json(plan.to_dict(), dict(plan.meta))
    return code


def run_dry_run(options: RunOptions) -> int:
    print_step(1, 2, "Planning")
    plan = build_plan(options)
    print_step(2, 2, "Report")
    return finish(options, plan, Operation.DRY_RUN, plan_exit_code(plan))


def run_save_plan(options: RunOptions) -> int:
    print_step(1, 2, "Planning")
    plan = build_plan(options)
    print_step(2, 2, "Saving Plan")
    freeze_plan(plan, options.save_plan)
    print_success(f"Plan {plan.run_id} saved to {options.save_plan}")
    return finish(options, plan, Operation.SAVE_PLAN, plan_exit_code(plan))


def restart_repositories(options: RunOptions, executor: Executor) -> Dict[str, List[Dict[str, str]]]:
    """Roll back unresolved sweeps before planning; returns errors by repository root."""
    failures: Dict[str, List[Dict[str, str]]] = {}
    for path in options.repos:
        root = GitClient.find_repo_root(path)
        if root is None:
            continue
        pending = RepoPlan(repo=root.name, path=str(root))
        if not executor.restart(pending):
            failures[str(root)] = pending.errors
    return failures


def apply_restart_failures(plan: Plan, failures: Dict[str, List[Dict[str, str]]]) -> None:
    for repo_plan in plan.repos:
        errors = failures.get(repo_plan.path)
        if errors:
            repo_plan.errors.extend(errors)
            repo_plan.status = STATUS_FAILED


def run_execute(options: RunOptions) -> int:
    run_id = new_run_id()
    session = options.session(run_id)
    executor = Executor(session)
    with session.token:
        failures: Dict[str, List[Dict[str, str]]] = {}
        if options.restart:
            print_step(1, 3, "Restarting")
            failures = restart_repositories(options, executor)
        print_step(2 if options.restart else 1, 3 if options.restart else 2, "Planning")
        plan = build_plan(options, run_id=run_id, warn_unresolved=False)
        apply_restart_failures(plan, failures)
        print_step(3 if options.restart else 2, 3 if options.restart else 2, "Committing")
        executor.run(plan)
    return finish(options, plan, Operation.EXECUTE, plan_exit_code(plan, session.interrupted), session)


def run_execute_plan(options: RunOptions) -> int:
    print_step(1, 2, "Loading Plan")
    try:
        plan = rehydrate_plan(options.execute_plan)
    except PlanIntegrityError as exc:
        print_error(str(exc))
        return EXIT_INVALID_USAGE
    print_success(f"Plan {plan.run_id} verified ({len(plan.repos)} repositor{'y' if len(plan.repos) == 1 else 'ies'})")

    session = options.session(plan.run_id, verify_fingerprint=True)
    executor = Executor(session)
    with session.token:
        if options.restart:
            options.repos = [Path(repo_plan.path) for repo_plan in plan.repos]
            apply_restart_failures(plan, restart_repositories(options, executor))
        print_step(2, 2, "Committing")
        executor.run(plan)
    return finish(options, plan, Operation.EXECUTE_PLAN, plan_exit_code(plan, session.interrupted), session)


def run_undo(options: RunOptions) -> int:
    print_step(1, 1, "Restoring Checkpoints")
    plan = Plan(run_id=new_run_id(), generated_at=utc_now())
    executor = Executor(options.session(plan.run_id))
    for path in options.repos:
        root = GitClient.find_repo_root(path)
        if root is None:
            repo_plan = RepoPlan(repo=path.name or str(path), path=str(path), status=STATUS_FAILED)
            repo_plan.add_error(ERROR_NOT_A_REPOSITORY, f"{path} is not inside a git working tree")
        else:
            repo_plan = RepoPlan(repo=root.name, path=str(root))
            repo_plan.branch = GitClient(root).get_current_branch()
            if executor.undo(repo_plan):
                print_success(f"{root.name}: restored to {repo_plan.head[:12]}")
        plan.repos.append(repo_plan)
    return finish(options, plan, Operation.UNDO, plan_exit_code(plan))


def run_doctor(options: RunOptions) -> int:
    print_step(1, 1, "Checking Environment")
    code = EXIT_SUCCESS
    version = GitClient.git_version()
    git_path = shutil.which("git")
    minimum = ".".join(str(part) for part in MIN_GIT_VERSION)
    if version is None:
        print_error("git: not found")
        code = EXIT_DEPENDENCY
    elif version[:2] < MIN_GIT_VERSION:
        print_error(f"git: {format_version(version)} at {git_path} (need {minimum} or newer)")
        code = EXIT_DEPENDENCY
    else:
        print_success(f"git: {format_version(version)} at {git_path}")

    lookup = options.config.get("task_lookup_command") or []
    lookup_path = shutil.which(lookup[0]) if lookup else None
    if lookup_path:
        print_success(f"task lookup: {' '.join(lookup)} ({lookup_path})")
    else:
        print_warning(f"task lookup: {lookup[0] if lookup else 'none'} not found; task titles will be empty")
    print_info(f"state directory: {options.state_dir}")

    if options.as_json:
        emit_json(
            {
                "git": {"path": git_path, "version": format_version(version), "minimum": minimum},
                "task_lookup": {"command": lookup, "available": lookup_path is not None},
                "state_dir": str(options.state_dir),
            },
            {"exit_code": code, "operation": Operation.DOCTOR.value},
        )
    return code


OPERATION_HANDLERS: Dict[Operation, Callable[[RunOptions], int]] = {
    Operation.DRY_RUN: run_dry_run,
    Operation.EXECUTE: run_execute,
    Operation.SAVE_PLAN: run_save_plan,
    Operation.EXECUTE_PLAN: run_execute_plan,
    Operation.UNDO: run_undo,
    Operation.DOCTOR: run_doctor,
}


def attach_log_handler(verbose: bool) -> Tuple[logging.Handler, int]:
    """Route commit_sweep logs to stderr for the duration of one command."""
    package_logger = logging.getLogger("commit_sweep")
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    level = logging.DEBUG if verbose else logging.WARNING
    handler.setLevel(level)
    previous = package_logger.level
    package_logger.setLevel(level)
    package_logger.addHandler(handler)
    return handler, previous


def detach_log_handler(handler: logging.Handler, previous: int) -> None:
    package_logger = logging.getLogger("commit_sweep")
    package_logger.removeHandler(handler)
    package_logger.setLevel(previous)


@click.command(cls=SweepCommand)
@click.argument("repos", nargs=-1, type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--execute/--dry-run", "execute", default=False, help="Commit the planned groups (default: dry run).")
@click.option("--atomic", is_flag=True, help="Restore a repository's checkpoint if any of its groups fails.")
@click.option("--atomic-repos", is_flag=True, help="Roll back every repository if any repository fails.")
@click.option("--save-plan", type=click.Path(dir_okay=False, path_type=Path), help="Write the plan to FILE.")
@click.option(
    "--execute-plan",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Execute a plan saved with --save-plan.",
)
@click.option("--resume", is_flag=True, help="Continue an interrupted or failed sweep.")
@click.option("--restart", is_flag=True, help="Roll back an unfinished sweep and plan again.")
@click.option("--undo", is_flag=True, help="Restore the checkpoint taken before the last sweep.")
@click.option("--respect-staging", is_flag=True, help="Commit manually staged files as their own first group.")
@click.option("--exclude", multiple=True, metavar="PATTERN", help="Additional denylist pattern (repeatable).")
@click.option("--type", "commit_type", type=click.Choice(COMMIT_TYPES), help="Override the commit type.")
@click.option("--scope", help="Override the commit scope.")
@click.option("--message", help="Override the subject description.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Configuration file.")
@click.option("--doctor", is_flag=True, help="Check git and the task lookup tool, then exit.")
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON on stdout.")
@click.option("--body", is_flag=True, help="Add a body listing every file to each commit.")
@click.option("--no-task-id", is_flag=True, help="Do not append the task id to subjects.")
@click.option("--include-binary", is_flag=True, help="Commit binary files instead of skipping them.")
@click.option("--allow-protected-branch", is_flag=True, help="Allow committing on main/master.")
@click.option("--verbose", is_flag=True, help="Enable verbose (debug) output.")
@click.version_option(version=__version__, prog_name="commit-sweep")
def main(
    repos: Tuple[Path, ...],
    execute: bool,
    atomic: bool,
    atomic_repos: bool,
    save_plan: Optional[Path],
    execute_plan: Optional[Path],
    resume: bool,
    restart: bool,
    undo: bool,
    respect_staging: bool,
    exclude: Tuple[str, ...],
    commit_type: Optional[str],
    scope: Optional[str],
    message: Optional[str],
    config_path: Optional[Path],
    doctor: bool,
    as_json: bool,
    body: bool,
    no_task_id: bool,
    include_binary: bool,
    allow_protected_branch: bool,
    verbose: bool,
) -> None:
    """🧹 Sweep a dirty git working tree into atomic conventional commits.

    REPO defaults to the current directory. Without --execute nothing is
    changed; the plan is printed instead.
    """
    operation = resolve_operation(execute, save_plan, execute_plan, undo, doctor, resume, restart)
    if execute_plan and repos:
        raise usage_error("--execute-plan takes its repositories from the plan file")

    handler, previous_level = attach_log_handler(verbose)
    try:
        try:
            config = load_config(config_path)
        except ConfigError as exc:
            print_error(f"Configuration error: {exc}")
            raise click.exceptions.Exit(EXIT_INVALID_USAGE)

        options = RunOptions(
            repos=[path.resolve() for path in repos] or [Path.cwd()],
            config=config,
            state_dir=resolve_state_dir(config),
            atomic=atomic,
            atomic_repos=atomic_repos,
            save_plan=save_plan,
            execute_plan=execute_plan,
            resume=resume,
            restart=restart,
            respect_staging=respect_staging,
            exclude=list(exclude),
            overrides=Overrides(commit_type=commit_type, scope=scope, message=message),
            include_body=body,
            include_task_id=not no_task_id,
            include_binary=include_binary,
            allow_protected_branch=allow_protected_branch,
            as_json=as_json,
            verbose=verbose,
        )
        logger.debug("Operation %s, state directory %s", operation.value, options.state_dir)

        if operation is not Operation.DOCTOR:
            missing = check_git(options)
            if missing is not None:
                raise click.exceptions.Exit(missing)

        code = OPERATION_HANDLERS[operation](options)
        raise click.exceptions.Exit(code)

    except click.exceptions.Exit:
        raise
    except Exception as exc:
        logger.exception("Unhandled error: %s", exc)
        print_error(f"Unexpected error: {exc}")
        raise click.exceptions.Exit(EXIT_PARTIAL_FAILURE)
    finally:
        detach_log_handler(handler, previous_level)


if __name__ == "__main__":  # pragma: no cover
    main()
