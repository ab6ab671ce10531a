"""CLI entrypoint for ralph."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from ralph import __version__
from ralph.engine.backend import SpawnError
from ralph.engine.contracts import ContractError
from ralph.engine.controllers import (
    BuildCommand,
    CommandResult,
    PlanCommand,
    RalphCliController,
)
from ralph.engine.phases import TerminalPhaseError
from ralph.engine.plan import OutputExistsError
from ralph.engine.prd import PrdError
from ralph.engine.session import SessionError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RalphCliController()

_USER_ERRORS = (
    SpawnError,
    PrdError,
    ContractError,
    SessionError,
    OutputExistsError,
    TerminalPhaseError,
    ValueError,
    OSError,
)


@click.group()
@click.version_option(version=__version__, prog_name="ralph")
def ralph() -> None:
    """Drive a coding agent through a task list, or interview it into one."""


@ralph.command("build")
@click.option(
    "--prd-path",
    type=click.Path(path_type=Path),
    default=None,
    help="Task list JSON. If omitted, RALPH_PRD_PATH or plans/prd.json is used.",
)
@click.option(
    "--max-loops",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many turns. If omitted, RALPH_BUILD_MAX_LOOPS is used.",
)
@click.option(
    "--max-turns",
    type=click.IntRange(min=1),
    default=None,
    help="Agent-internal step budget per turn. If omitted, RALPH_BUILD_MAX_TURNS is used.",
)
def build(prd_path: Path | None, max_loops: int | None, max_turns: int | None) -> None:
    """Work through the task list one item per agent turn.

    Ctrl+C once to stop after the current turn, twice to kill it.
    """

    _run(
        lambda: CONTROLLER.build(
            BuildCommand(prd_path=prd_path, max_loops=max_loops, max_turns=max_turns),
        ),
        failure_message="Build loop interrupted.",
    )


@ralph.command("plan")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Where to write the task list. If omitted, RALPH_PLAN_OUTPUT or plans/prd.json is used.",
)
@click.option("--resume", is_flag=True, help="Continue the saved interview session.")
@click.option("--force", is_flag=True, help="Discard any saved session and existing output.")
@click.option(
    "--request",
    default=None,
    help="Feature request for a new session. Prompted for when omitted.",
)
def plan(output_path: Path | None, resume: bool, force: bool, request: str | None) -> None:
    """Interview the agent into a task list, asking you questions along the way."""

    _run(
        lambda: CONTROLLER.plan(
            PlanCommand(output_path=output_path, resume=resume, force=force, request=request),
        ),
        failure_message="Plan session failed; the session was kept for --resume.",
    )


def _run(action: Callable[[], CommandResult], *, failure_message: str) -> None:
    try:
        result = action()
    except _USER_ERRORS as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ralph()
