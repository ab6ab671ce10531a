"""Interview loop: multi-turn conversation with the agent that ends in a task list."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from ralph.engine.backend.base import AgentSupervisor, TurnRequest
from ralph.engine.contracts import (
    PLAN_RESPONSE_SCHEMA,
    Answer,
    ContractError,
    PlanResponse,
    Question,
    read_plan_response,
)
from ralph.engine.control import LoopControl
from ralph.engine.models import (
    FailureClass,
    FatalError,
    Interrupted,
    PlanPhase,
    ProtocolError,
    Success,
    TurnOutcome,
)
from ralph.engine.phases import (
    NextAction,
    ensure_turn_allowed,
    next_plan_action,
    note_transition,
    validate_plan_response,
)
from ralph.engine.prd import write_prd
from ralph.engine.prompts import (
    CONTINUE_PROMPT,
    build_continuation_prompt,
    build_initial_prompt,
    build_resume_prompt,
)
from ralph.engine.repair import Repairer, RepairError
from ralph.engine.retry import RetryController, RetryNotice, RetryPolicy
from ralph.engine.session import PlanSession, SessionStore
from ralph.engine.state import KEY_HINT, LoopState, NullPresenter, Presenter, pump_events
from ralph.engine.turn import TurnRunner

logger = logging.getLogger(__name__)


class OutputExistsError(RuntimeError):
    def __init__(self, path: Path) -> None:
        super().__init__(
            f"Output file {path} already exists. Use --resume to continue or --force to overwrite.",
        )
        self.path = path


class AnswerCollector(Protocol):
    """Blocking user input; no turn is in flight while it runs."""

    def ask_request(self) -> str | None:
        """Return the feature request, or ``None`` if the user quit."""

    def collect(self, questions: list[Question]) -> list[Answer] | None:
        """Return one answer per question, or ``None`` if the user quit."""


@dataclass(slots=True)
class PlanRunSummary:
    """What the CLI reports after the interview loop exits."""

    output_path: Path
    session_id: str | None = None
    turn_count: int = 0
    final_phase: PlanPhase | None = None
    completed: bool = False
    already_complete: bool = False
    failed: bool = False
    final_status: str = ""
    last_log: str | None = None


def decode_plan_turn(raw: dict[str, Any]) -> PlanResponse:
    """Strict decode plus the checks the loop needs to act on a response."""

    response = read_plan_response(raw)
    problem = validate_plan_response(response)
    if problem is not None:
        raise ContractError(problem)
    return response


class PlanLoop:
    """Owns one session for the length of a run and drives it turn by turn."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        supervisor: AgentSupervisor,
        control: LoopControl,
        collector: AnswerCollector,
        repairer: Repairer | None = None,
        store: SessionStore | None = None,
        presenter: Presenter | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.control = control
        self.collector = collector
        self.repairer = repairer
        self.store = store or SessionStore()
        self.presenter = presenter or NullPresenter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.state = LoopState(title="Plan")
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

    def run(
        self,
        output_path: Path,
        *,
        request: str | None = None,
        resume: bool = False,
        force: bool = False,
    ) -> PlanRunSummary:
        summary = PlanRunSummary(output_path=output_path)
        has_session = self.store.exists(output_path)
        if output_path.exists() and not force:
            if not resume:
                raise OutputExistsError(output_path)
            if not has_session:
                logger.info("Output %s exists with no session record; nothing to do", output_path)
                summary.already_complete = True
                summary.completed = True
                summary.final_status = f"Already complete: {output_path}"
                return summary

        session = self.store.load_or_create(output_path, resume=resume, force=force)
        ensure_turn_allowed(session.last_phase)
        # The stored path may be relative to another working directory.
        session.output_path = output_path
        if has_session and resume and session.is_fresh:
            # The agent may already hold the old id from a killed first turn.
            session.id = str(uuid.uuid4())
        summary.session_id = session.id

        user_request = request
        if session.is_fresh and not user_request:
            with self.control.waiting_for_input():
                user_request = self.collector.ask_request()
            if not user_request:
                summary.final_status = "Cancelled before the first turn"
                return summary
        output_path.parent.mkdir(parents=True, exist_ok=True)

        self.state.turn_count = session.turn_count
        self.state.set_status(f"Starting plan session: {session.id}")
        self._tick()
        self._drive(session, user_request or "", summary)

        summary.session_id = session.id
        summary.turn_count = session.turn_count
        summary.final_phase = session.last_phase
        summary.final_status = self.state.status
        summary.last_log = self.state.latest_log()
        logger.info(
            "Plan loop finished: session=%s turns=%d phase=%s completed=%s",
            session.id,
            session.turn_count,
            session.last_phase.value,
            summary.completed,
        )
        return summary

    def _drive(self, session: PlanSession, user_request: str, summary: PlanRunSummary) -> None:
        first_turn = True
        while True:
            if self.control.should_exit:
                self.store.save(session)
                return
            ensure_turn_allowed(session.last_phase)

            undelivered = session.undelivered_answers()
            if first_turn and session.is_fresh:
                prompt = build_initial_prompt(user_request)
            elif first_turn:
                prompt = build_resume_prompt(
                    session.turn_count,
                    session.last_phase.value,
                    undelivered,
                )
            elif undelivered:
                prompt = build_continuation_prompt(undelivered)
            else:
                prompt = CONTINUE_PROMPT
            request = TurnRequest(
                prompt=prompt,
                session_id=session.id,
                resume_session=not session.is_fresh,
                output_format="json",
                json_schema=PLAN_RESPONSE_SCHEMA,
            )
            first_turn = False

            self.state.set_status(f"Waiting for agent... ({KEY_HINT})")
            self._tick()
            outcome = self._retry.run(lambda: self._runner.run(request, decode_plan_turn))
            response = self._resolve(outcome, session, summary)
            if response is None:
                return

            note_transition(session.last_phase, response.phase)
            session.merge_context(response.context, now=self.store.now())
            session.mark_answers_delivered()
            action = next_plan_action(response)
            if action is NextAction.FINALIZE:
                self._finalize(session, response, summary)
                return
            self.store.advance(session, response.phase)
            self._show_turn(session, response)

            if self.control.should_exit:
                self.state.set_status("Stopped; resume with --resume")
                self.store.save(session)
                return
            if action is NextAction.COLLECT_ANSWERS:
                with self.control.waiting_for_input():
                    answers = self.collector.collect(response.questions or [])
                if answers is None:
                    self.state.set_status("Stopped; resume with --resume")
                    self.store.save(session)
                    return
                now = self.store.now()
                for answer in answers:
                    session.add_answer(answer, now=now)
                self.store.save(session)
            else:
                self.state.set_status(response.status or "Working...")

    def _show_turn(self, session: PlanSession, response: PlanResponse) -> None:
        self.state.turn_count = session.turn_count
        self.state.set_phase(session.last_phase.label)
        self.state.push_log(format_plan_response(response))

    def _resolve(
        self,
        outcome: TurnOutcome[PlanResponse],
        session: PlanSession,
        summary: PlanRunSummary,
    ) -> PlanResponse | None:
        """Turn an outcome into a response, or record why the loop ends."""

        if isinstance(outcome, Success):
            return outcome.payload
        if isinstance(outcome, Interrupted):
            self.state.set_status("Interrupted by user")
            self.store.save(session)
            return None
        if isinstance(outcome, ProtocolError):
            repaired = self._repair(outcome)
            if repaired is not None:
                return repaired
            self.state.push_log(
                f"Parse error: {outcome.parse_error}\n\nRaw output:\n{outcome.raw}",
            )
            self.state.set_status("Error: failed to parse agent output")
        elif isinstance(outcome, FatalError):
            if outcome.failure_class is FailureClass.RETRIES_EXHAUSTED:
                self.state.push_log(
                    f"Failed after {outcome.attempts} attempts\n\nLast error: {outcome.raw}",
                )
                self.state.set_status("Error: max retries exceeded")
            else:
                self.state.push_log(f"Agent returned error\n\nRaw output:\n{outcome.raw}")
                self.state.set_status("Error: agent reported failure")

        logger.error("Plan turn failed: %s", outcome.failure_class.value)
        summary.failed = True
        self.store.advance(session, session.last_phase)
        self.state.turn_count = session.turn_count
        return None

    def _repair(self, outcome: ProtocolError) -> PlanResponse | None:
        if self.repairer is None:
            return None
        self.state.set_status("Repairing malformed agent output...")
        self._tick()
        try:
            return self.repairer.repair(
                raw=outcome.raw,
                schema=PLAN_RESPONSE_SCHEMA,
                decode_payload=decode_plan_turn,
            )
        except RepairError as error:
            logger.warning("Repair failed: %s", error)
            self.state.push_log(f"Repair failed: {error}")
            return None

    def _finalize(
        self,
        session: PlanSession,
        response: PlanResponse,
        summary: PlanRunSummary,
    ) -> None:
        """The record turns terminal only after the task list is on disk."""

        if response.final_output is None:
            raise ContractError("Phase 'complete' requires final_output")
        try:
            write_prd(session.output_path, response.final_output)
        except OSError as error:
            logger.error("Failed to write task list to %s: %s", session.output_path, error)
            self.store.advance(session, session.last_phase)
            self._show_turn(session, response)
            self.state.push_log(f"Failed to write {session.output_path}: {error}")
            self.state.set_status("Error: could not write the task list")
            summary.failed = True
            return
        session.advance(response.phase, now=self.store.now())
        self._show_turn(session, response)
        self.store.cleanup(session)
        summary.completed = True
        self.state.set_status(f"PRD written to {session.output_path}")

    def _on_retry(self, notice: RetryNotice) -> None:
        self.state.push_log(f"Transient error (will retry): {notice.reason}")
        self.state.set_status(
            f"Retry {notice.retry_number}/{notice.max_retries} "
            f"in {notice.delay_seconds:.0f}s... (API error)",
        )
        self._tick()

    def _tick(self) -> None:
        pump_events(self.presenter, self.state, self.control)


def format_plan_response(response: PlanResponse) -> str:
    lines = [f"Phase: {response.phase.label}"]
    if response.status:
        lines.append(f"Status: {response.status}")
    for question in response.questions or []:
        lines.append(f"[{question.id}] ({question.category}) {question.text}")
        lines.extend(f"  {option.key}) {option.label}" for option in question.options or [])
    if response.final_output is not None:
        lines.append(
            f"Task list {response.final_output.name!r}: {len(response.final_output.tasks)} tasks",
        )
    return "\n".join(lines)
