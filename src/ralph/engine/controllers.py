"""Controllers for the build and plan CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rich.console import Console

from ralph.config import Settings, configure_logging
from ralph.engine.backend import CliAgentSupervisor
from ralph.engine.build import BuildLoop
from ralph.engine.console import PromptAnswerCollector, RichPresenter
from ralph.engine.control import LoopControl, signal_handlers
from ralph.engine.phases import BuildStopReason
from ralph.engine.plan import PlanLoop
from ralph.engine.repair import OutputRepairer
from ralph.engine.retry import RetryPolicy
from ralph.engine.session import SessionStore

RULE = "=" * 63


@dataclass(slots=True)
class BuildCommand:
    """CLI input for the task-execution loop."""

    prd_path: Path | None
    max_loops: int | None
    max_turns: int | None


@dataclass(slots=True)
class PlanCommand:
    """CLI input for the interview loop."""

    output_path: Path | None
    resume: bool
    force: bool
    request: str | None


@dataclass(slots=True)
class CommandResult:
    """Final report to render in CLI."""

    lines: list[str]
    success: bool


class RalphCliController:
    """Wires settings, supervisor, and terminal adapters into the loops."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console

    def build(self, command: BuildCommand) -> CommandResult:
        settings = _load_settings()
        prd_path = command.prd_path or settings.build.prd_path
        control = LoopControl()
        loop = BuildLoop(
            supervisor=_supervisor(settings),
            control=control,
            presenter=RichPresenter.for_terminal(self.console),
            retry_policy=_retry_policy(settings),
            max_loops=command.max_loops or settings.build.max_loops,
            max_turns=command.max_turns or settings.build.max_turns,
        )
        with signal_handlers(control):
            summary = loop.run(prd_path)

        lines = [
            "",
            RULE,
            "Ralph Session Complete",
            f"Loops: {summary.loops}",
            f"Final status: {summary.final_status}",
            f"Stop reason: {summary.stop_reason.value}",
        ]
        if summary.last_log:
            lines += ["", "--- Last Agent Output ---", summary.last_log]
        return CommandResult(
            lines=lines,
            success=summary.stop_reason is not BuildStopReason.INTERRUPTED,
        )

    def plan(self, command: PlanCommand) -> CommandResult:
        settings = _load_settings()
        output_path = command.output_path or settings.plan.output_path
        control = LoopControl()
        supervisor = _supervisor(settings)
        loop = PlanLoop(
            supervisor=supervisor,
            control=control,
            collector=PromptAnswerCollector(self.console),
            repairer=OutputRepairer(
                supervisor=supervisor,
                control=control,
                model=settings.agent.repair_model,
                poll_interval_seconds=settings.retry.poll_interval_seconds,
            ),
            store=SessionStore(),
            presenter=RichPresenter.for_terminal(self.console),
            retry_policy=_retry_policy(settings),
        )
        with signal_handlers(control):
            summary = loop.run(
                output_path,
                request=command.request,
                resume=command.resume,
                force=command.force,
            )

        if summary.already_complete:
            return CommandResult(
                lines=[f"PRD already complete: {output_path} (use --force to regenerate)"],
                success=True,
            )
        lines = [
            "",
            RULE,
            "Ralph Plan Session Complete",
            f"Session ID: {summary.session_id}",
            f"Turns: {summary.turn_count}",
            f"Final phase: {summary.final_phase.value if summary.final_phase else '-'}",
            f"Final status: {summary.final_status}",
        ]
        if summary.completed:
            lines.append(f"Output: {output_path}")
        elif summary.session_id and not summary.failed:
            lines.append("Resume with: ralph plan --resume")
        return CommandResult(lines=lines, success=not summary.failed)


def _load_settings() -> Settings:
    settings = Settings.from_env()
    configure_logging(settings.logging)
    return settings


def _supervisor(settings: Settings) -> CliAgentSupervisor:
    return CliAgentSupervisor(
        command=settings.agent.command,
        permission_mode=settings.agent.permission_mode,
    )


def _retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry.max_attempts,
        base_delay_seconds=settings.retry.base_delay_seconds,
        poll_interval_seconds=settings.retry.poll_interval_seconds,
    )
