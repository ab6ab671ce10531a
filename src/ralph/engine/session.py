"""Durable, resumable interview session record."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ralph.engine.contracts import Answer, ContractError, read_answer, write_json
from ralph.engine.models import PlanPhase

logger = logging.getLogger(__name__)

SESSION_FILENAME = ".ralph-session.json"

# Context keys whose lists accumulate across turns; every other key is replaced.
ACCUMULATING_CONTEXT_FIELDS = frozenset({"requirements"})


class SessionError(RuntimeError):
    """Base error for session record handling."""


class SessionExistsError(SessionError):
    def __init__(self, path: Path) -> None:
        super().__init__(
            f"Session file {path} exists but --resume not specified. "
            "Use --resume to continue or --force to start over.",
        )
        self.path = path


class SessionReadError(SessionError):
    """Session record could not be read or decoded."""


def utc_now() -> datetime:
    return datetime.now(UTC)


def session_file_path(output_path: Path) -> Path:
    """The record lives next to the output so each output has its own session."""

    return output_path.parent / SESSION_FILENAME


@dataclass(slots=True)
class PlanSession:
    """Cross-turn interview state, owned by one loop for the length of a run."""

    id: str
    output_path: Path
    created_at: datetime
    updated_at: datetime
    last_phase: PlanPhase = PlanPhase.EXPLORING
    turn_count: int = 0
    context: dict[str, Any] = field(default_factory=dict)
    answers: list[Answer] = field(default_factory=list)
    # Answered question ids the agent has not yet seen in a prompt.
    pending_answer_ids: list[str] = field(default_factory=list)

    @classmethod
    def new(cls, output_path: Path, *, now: datetime) -> PlanSession:
        return cls(
            id=str(uuid.uuid4()),
            output_path=output_path,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_fresh(self) -> bool:
        return self.turn_count == 0

    def touch(self, now: datetime) -> None:
        if now > self.updated_at:
            self.updated_at = now

    def advance(self, phase: PlanPhase, *, now: datetime) -> None:
        self.last_phase = phase
        self.turn_count += 1
        self.touch(now)

    def add_answer(self, answer: Answer, *, now: datetime) -> None:
        """Later answers for the same question id replace earlier ones."""

        for index, existing in enumerate(self.answers):
            if existing.question_id == answer.question_id:
                self.answers[index] = answer
                break
        else:
            self.answers.append(answer)
        if answer.question_id not in self.pending_answer_ids:
            self.pending_answer_ids.append(answer.question_id)
        self.touch(now)

    def undelivered_answers(self) -> list[Answer]:
        pending = set(self.pending_answer_ids)
        return [answer for answer in self.answers if answer.question_id in pending]

    def mark_answers_delivered(self) -> None:
        self.pending_answer_ids.clear()

    def merge_context(self, update: dict[str, Any] | None, *, now: datetime) -> None:
        if not update:
            return
        for key, value in update.items():
            if key in ACCUMULATING_CONTEXT_FIELDS and isinstance(value, list):
                existing = self.context.get(key)
                if isinstance(existing, list):
                    existing.extend(value)
                else:
                    self.context[key] = list(value)
            elif not _is_empty(value):
                self.context[key] = value
        self.touch(now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "output_path": str(self.output_path),
            "last_phase": self.last_phase.value,
            "turn_count": self.turn_count,
            "context": self.context,
            "answers": [
                {"question_id": answer.question_id, "value": answer.value}
                for answer in self.answers
            ],
            "pending_answers": list(self.pending_answer_ids),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> PlanSession:
        session_id = raw.get("id")
        output_path = raw.get("output_path")
        turn_count = raw.get("turn_count")
        context = raw.get("context", {})
        answers = raw.get("answers", [])
        if not isinstance(session_id, str) or not session_id:
            raise ContractError("session.id must be a non-empty string")
        if not isinstance(output_path, str):
            raise ContractError("session.output_path must be a string")
        if isinstance(turn_count, bool) or not isinstance(turn_count, int) or turn_count < 0:
            raise ContractError("session.turn_count must be a non-negative integer")
        if not isinstance(context, dict):
            raise ContractError("session.context must be an object")
        if not isinstance(answers, list):
            raise ContractError("session.answers must be an array")
        pending = raw.get("pending_answers", [])
        if not isinstance(pending, list) or not all(isinstance(item, str) for item in pending):
            raise ContractError("session.pending_answers must be an array of strings")
        try:
            last_phase = PlanPhase(raw.get("last_phase"))
        except ValueError as error:
            raise ContractError("session.last_phase is not a known phase") from error
        return cls(
            id=session_id,
            output_path=Path(output_path),
            last_phase=last_phase,
            turn_count=turn_count,
            context=context,
            answers=[read_answer(item) for item in answers],
            pending_answer_ids=list(pending),
            created_at=_read_timestamp(raw.get("created_at"), "created_at"),
            updated_at=_read_timestamp(raw.get("updated_at"), "updated_at"),
        )


class SessionStore:
    """File-backed session persistence.

    One writer per output path is assumed; concurrent writers are not
    guarded and the last save wins.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def load_or_create(self, output_path: Path, *, resume: bool, force: bool) -> PlanSession:
        path = session_file_path(output_path)
        if path.exists():
            if resume:
                session = self._read(path)
                logger.info(
                    "Resumed session %s at turn %d (phase=%s)",
                    session.id,
                    session.turn_count,
                    session.last_phase.value,
                )
                return session
            if not force:
                raise SessionExistsError(path)
            path.unlink(missing_ok=True)
            logger.info("Removed existing session file %s (--force)", path)

        session = PlanSession.new(output_path, now=self.now())
        logger.info("Created session %s for %s", session.id, output_path)
        return session

    def exists(self, output_path: Path) -> bool:
        return session_file_path(output_path).exists()

    def save(self, session: PlanSession) -> Path:
        path = session_file_path(session.output_path)
        write_json(path, session.to_dict())
        logger.debug("Saved session %s (turn=%d)", session.id, session.turn_count)
        return path

    def advance(self, session: PlanSession, phase: PlanPhase) -> None:
        """Record one completed turn and persist it."""

        session.advance(phase, now=self.now())
        self.save(session)

    def cleanup(self, session: PlanSession) -> None:
        path = session_file_path(session.output_path)
        path.unlink(missing_ok=True)
        logger.info("Cleaned up session %s", session.id)

    def _read(self, path: Path) -> PlanSession:
        try:
            raw = json.loads(path.read_text("utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            raise SessionReadError(f"Failed to read session file {path}: {error}") from error
        if not isinstance(raw, dict):
            raise SessionReadError(f"Session file {path} must hold a JSON object")
        try:
            return PlanSession.from_dict(raw)
        except ContractError as error:
            raise SessionReadError(f"Failed to parse session file {path}: {error}") from error


def _is_empty(value: object) -> bool:
    return value is None or value in ("", [], {})


def _read_timestamp(value: object, field_name: str) -> datetime:
    if not isinstance(value, str):
        raise ContractError(f"session.{field_name} must be an ISO-8601 string")
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as error:
        raise ContractError(f"session.{field_name} is not a valid timestamp") from error
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
