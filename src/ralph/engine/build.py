"""Task-execution loop: one agent turn per task-list item until done or stopped."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ralph.engine.backend.base import AgentSupervisor, TurnRequest
from ralph.engine.contracts import TASK_TURN_SCHEMA, TaskTurnResult, read_task_turn_result
from ralph.engine.control import LoopControl
from ralph.engine.models import (
    FailureClass,
    FatalError,
    Interrupted,
    ProtocolError,
    Success,
    TurnOutcome,
)
from ralph.engine.phases import BuildStopReason
from ralph.engine.prd import load_completed_tasks, load_prd
from ralph.engine.prompts import build_task_prompt
from ralph.engine.retry import RetryController, RetryNotice, RetryPolicy
from ralph.engine.state import KEY_HINT, LoopState, NullPresenter, Presenter, pump_events
from ralph.engine.turn import TurnRunner

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BuildRunSummary:
    """Aggregate loop counters for CLI reporting."""

    loops: int = 0
    succeeded: int = 0
    failed: int = 0
    final_status: str = ""
    last_log: str | None = None
    stop_reason: BuildStopReason = BuildStopReason.LOOP_LIMIT


class BuildLoop:
    """Runs turns against the task list; a bad turn is logged and the loop goes on."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        supervisor: AgentSupervisor,
        control: LoopControl,
        presenter: Presenter | None = None,
        retry_policy: RetryPolicy | None = None,
        max_loops: int = 100,
        max_turns: int = 200,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.control = control
        self.presenter = presenter or NullPresenter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_loops = max_loops
        self.max_turns = max_turns
        self.state = LoopState()
        self._runner = TurnRunner(
            supervisor=supervisor,
            control=control,
            poll_interval_seconds=self.retry_policy.poll_interval_seconds,
            on_tick=self._tick,
            sleep=sleep,
        )
        self._retry = RetryController(
            policy=self.retry_policy,
            control=control,
            on_retry=self._on_retry,
            on_tick=self._tick,
            sleep=sleep,
            clock=clock,
        )

    def run(self, prd_path: Path) -> BuildRunSummary:
        prd = load_prd(prd_path)
        self.state.title = prd.name
        summary = BuildRunSummary()

        while True:
            if self.control.kill_requested:
                summary.stop_reason = BuildStopReason.INTERRUPTED
                break
            if self.control.stop_requested:
                summary.stop_reason = BuildStopReason.USER_STOP
                break
            if summary.loops >= self.max_loops:
                summary.stop_reason = BuildStopReason.LOOP_LIMIT
                break

            self._reload_progress(prd_path)
            summary.loops += 1
            self.state.turn_count = summary.loops
            self.state.set_status(f"Waiting for agent... ({KEY_HINT})")
            self._tick()

            request = TurnRequest(
                prompt=build_task_prompt(prd_path),
                output_format="json",
                json_schema=TASK_TURN_SCHEMA,
                max_turns=self.max_turns,
            )
            outcome = self._retry.run(lambda: self._runner.run(request, read_task_turn_result))
            if self._apply_outcome(outcome, summary):
                break
            self._tick()

        summary.final_status = self.state.status
        summary.last_log = self.state.latest_log()
        logger.info(
            "Build loop finished: reason=%s loops=%d succeeded=%d failed=%d",
            summary.stop_reason.value,
            summary.loops,
            summary.succeeded,
            summary.failed,
        )
        return summary

    def _apply_outcome(
        self,
        outcome: TurnOutcome[TaskTurnResult],
        summary: BuildRunSummary,
    ) -> bool:
        """Record one turn; return True when the loop must end."""

        if isinstance(outcome, Success):
            result = outcome.payload
            summary.succeeded += 1
            self.state.push_log(format_task_result(result))
            logger.info(
                "Item #%d %s (all_complete=%s)",
                result.item_number,
                result.status.value,
                result.all_complete,
            )
            if result.all_complete:
                self.state.set_status("PRD complete!")
                summary.stop_reason = BuildStopReason.ALL_COMPLETE
                return True
            self.state.set_status(f"Task {result.item_number} {result.status.value}")
            return False

        if isinstance(outcome, Interrupted):
            self.state.set_status("Interrupted by user")
            summary.stop_reason = BuildStopReason.INTERRUPTED
            return True

        summary.failed += 1
        if isinstance(outcome, FatalError):
            if outcome.failure_class is FailureClass.RETRIES_EXHAUSTED:
                self.state.push_log(
                    f"Failed after {outcome.attempts} attempts\n\nLast error: {outcome.raw}",
                )
                self.state.set_status("Error: max retries exceeded")
            else:
                self.state.push_log(f"Agent returned error\n\nRaw output:\n{outcome.raw}")
                self.state.set_status("Error: agent reported failure")
        elif isinstance(outcome, ProtocolError):
            self.state.push_log(f"Parse error: {outcome.parse_error}\n\nRaw output:\n{outcome.raw}")
            self.state.set_status("Warning: failed to parse agent output")
        logger.warning("Build turn %d failed: %s", summary.loops, outcome.failure_class.value)
        return False

    def _reload_progress(self, prd_path: Path) -> None:
        prd = load_prd(prd_path)
        completed = load_completed_tasks(prd_path)
        self.state.title = prd.name
        self.state.set_progress(completed=len(completed), total=len(completed) + len(prd.tasks))

    def _on_retry(self, notice: RetryNotice) -> None:
        self.state.push_log(f"Transient error (will retry): {notice.reason}")
        self.state.set_status(
            f"Retry {notice.retry_number}/{notice.max_retries} "
            f"in {notice.delay_seconds:.0f}s... (API error)",
        )
        self._tick()

    def _tick(self) -> None:
        pump_events(self.presenter, self.state, self.control)


def format_task_result(result: TaskTurnResult) -> str:
    headline = f"Task #{result.item_number}"
    if result.all_complete:
        headline += ": PRD COMPLETE"
    return f"{headline}\nStatus: {result.status.value}\nSummary: {result.summary}"
