"""Domain models for agent turns, phases, and outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

PayloadT = TypeVar("PayloadT")


class PlanPhase(str, Enum):
    """Interview phases declared by the agent in every response."""

    EXPLORING = "exploring"
    ASKING = "asking"
    WORKING = "working"
    COMPLETE = "complete"

    @property
    def is_terminal(self) -> bool:
        return self is PlanPhase.COMPLETE

    @property
    def label(self) -> str:
        return self.value.capitalize()


class TaskStatus(str, Enum):
    """Per-item outcome declared by the agent for one build turn."""

    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is TaskStatus.COMPLETED


class FailureClass(str, Enum):
    """Normalized failure classes used by retry and loop policy."""

    TRANSIENT = "transient"
    PROTOCOL = "protocol"
    FATAL = "fatal"
    RETRIES_EXHAUSTED = "retries_exhausted"
    INTERRUPTED = "interrupted"


@dataclass(slots=True, frozen=True)
class Success(Generic[PayloadT]):
    """Turn produced a schema-valid payload."""

    payload: PayloadT


@dataclass(slots=True, frozen=True)
class ProtocolError:
    """Output was present but did not decode into the expected payload."""

    raw: str
    parse_error: str

    @property
    def failure_class(self) -> FailureClass:
        return FailureClass.PROTOCOL


@dataclass(slots=True, frozen=True)
class TransientError:
    """Capacity/availability failure that is likely to succeed if retried."""

    reason: str

    @property
    def failure_class(self) -> FailureClass:
        return FailureClass.TRANSIENT


@dataclass(slots=True, frozen=True)
class FatalError:
    """Agent understood the request but reported a failure, or retries ran out."""

    raw: str
    reason: str = "agent_reported_error"
    attempts: int = 1

    @property
    def failure_class(self) -> FailureClass:
        if self.reason == "retries_exhausted":
            return FailureClass.RETRIES_EXHAUSTED
        return FailureClass.FATAL


@dataclass(slots=True, frozen=True)
class Interrupted:
    """User requested immediate termination while the turn was in flight."""

    @property
    def failure_class(self) -> FailureClass:
        return FailureClass.INTERRUPTED


TurnOutcome = Success[PayloadT] | ProtocolError | TransientError | FatalError | Interrupted


def retries_exhausted(last: TransientError, *, attempts: int) -> FatalError:
    """Convert the final transient failure into a terminal outcome."""

    return FatalError(raw=last.reason, reason="retries_exhausted", attempts=attempts)
