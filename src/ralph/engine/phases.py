"""Content-driven phase handling for both workflows."""

from __future__ import annotations

import logging
from enum import Enum

from ralph.engine.contracts import PlanResponse
from ralph.engine.models import PlanPhase

logger = logging.getLogger(__name__)


class NextAction(str, Enum):
    """What the interview loop does after a parsed response."""

    CONTINUE = "continue"
    COLLECT_ANSWERS = "collect_answers"
    FINALIZE = "finalize"


class BuildStopReason(str, Enum):
    ALL_COMPLETE = "all_complete"
    LOOP_LIMIT = "loop_limit"
    USER_STOP = "user_stop"
    INTERRUPTED = "interrupted"


class TerminalPhaseError(RuntimeError):
    """A turn was requested for a session that already reached its terminal phase."""


# Advisory only: the declared phase always wins, unexpected moves are logged.
EXPECTED_TRANSITIONS: dict[PlanPhase, frozenset[PlanPhase]] = {
    PlanPhase.EXPLORING: frozenset(
        {PlanPhase.EXPLORING, PlanPhase.ASKING, PlanPhase.WORKING, PlanPhase.COMPLETE},
    ),
    PlanPhase.ASKING: frozenset({PlanPhase.ASKING, PlanPhase.WORKING, PlanPhase.COMPLETE}),
    PlanPhase.WORKING: frozenset({PlanPhase.WORKING, PlanPhase.ASKING, PlanPhase.COMPLETE}),
    PlanPhase.COMPLETE: frozenset(),
}


def ensure_turn_allowed(last_phase: PlanPhase | None) -> None:
    if last_phase is not None and last_phase.is_terminal:
        raise TerminalPhaseError(
            f"Session already reached phase {last_phase.value!r}; no further turns allowed.",
        )


def is_expected_transition(previous: PlanPhase | None, current: PlanPhase) -> bool:
    if previous is None:
        return True
    return current in EXPECTED_TRANSITIONS[previous]


def validate_plan_response(response: PlanResponse) -> str | None:
    """Return a protocol error message for a response the loop cannot act on."""

    if response.phase.is_terminal and response.final_output is None:
        return "Phase 'complete' requires final_output"
    return None


def next_plan_action(response: PlanResponse) -> NextAction:
    """Terminal phase finalizes; any questions block for input; otherwise continue.

    Questions are honored whatever phase they arrive with so user input is
    never skipped.
    """

    if response.phase.is_terminal:
        return NextAction.FINALIZE
    if response.questions:
        return NextAction.COLLECT_ANSWERS
    return NextAction.CONTINUE


def note_transition(previous: PlanPhase | None, current: PlanPhase) -> None:
    if not is_expected_transition(previous, current):
        logger.warning(
            "Unexpected phase transition %s -> %s; following the agent",
            previous.value if previous else None,
            current.value,
        )
