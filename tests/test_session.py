from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from ralph.engine.contracts import Answer
from ralph.engine.models import PlanPhase
from ralph.engine.session import (
    SESSION_FILENAME,
    PlanSession,
    SessionExistsError,
    SessionReadError,
    SessionStore,
    session_file_path,
)

pytestmark = [
    allure.epic("Turn Engine"),
    allure.feature("Session Store"),
]

T0 = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


class StepClock:
    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def _new_session(output: Path) -> PlanSession:
    return PlanSession.new(output, now=T0)


def test_session_file_lives_next_to_output(tmp_path: Path) -> None:
    assert session_file_path(tmp_path / "plans" / "prd.json") == (
        tmp_path / "plans" / SESSION_FILENAME
    )


def test_fresh_session_defaults(tmp_path: Path) -> None:
    session = SessionStore(clock=StepClock()).load_or_create(
        tmp_path / "prd.json",
        resume=False,
        force=False,
    )

    assert session.is_fresh
    assert session.turn_count == 0
    assert session.last_phase is PlanPhase.EXPLORING
    assert session.answers == []
    assert not session_file_path(tmp_path / "prd.json").exists()


def test_context_merge_appends_requirements_and_replaces_scalars(tmp_path: Path) -> None:
    session = _new_session(tmp_path / "prd.json")

    session.merge_context({"requirements": ["A"], "codebase_summary": "X"}, now=T0)
    session.merge_context({"requirements": ["B"], "codebase_summary": "Y"}, now=T0)
    session.merge_context({"quality_gates": ["pytest"]}, now=T0)
    session.merge_context({"quality_gates": ["pytest", "ruff"], "codebase_summary": None}, now=T0)

    assert session.context == {
        "requirements": ["A", "B"],
        "codebase_summary": "Y",
        "quality_gates": ["pytest", "ruff"],
    }


def test_empty_values_never_erase_context(tmp_path: Path) -> None:
    session = _new_session(tmp_path / "prd.json")
    session.merge_context({"tasks": [{"description": "a"}]}, now=T0)

    session.merge_context({"tasks": [], "codebase_summary": ""}, now=T0)
    session.merge_context(None, now=T0)

    assert session.context == {"tasks": [{"description": "a"}]}


def test_answers_are_idempotent_by_question_id(tmp_path: Path) -> None:
    session = _new_session(tmp_path / "prd.json")

    session.add_answer(Answer("q1", "A"), now=T0)
    session.add_answer(Answer("q2", "free text"), now=T0)
    session.add_answer(Answer("q1", "B"), now=T0)

    assert session.answers == [Answer("q1", "B"), Answer("q2", "free text")]


def test_answers_stay_pending_until_delivered(tmp_path: Path) -> None:
    session = _new_session(tmp_path / "prd.json")

    session.add_answer(Answer("q1", "A"), now=T0)
    session.add_answer(Answer("q2", "free text"), now=T0)
    session.add_answer(Answer("q1", "B"), now=T0)

    assert session.undelivered_answers() == [Answer("q1", "B"), Answer("q2", "free text")]
    session.mark_answers_delivered()
    assert session.undelivered_answers() == []
    assert len(session.answers) == 2


def test_updated_at_never_moves_backwards(tmp_path: Path) -> None:
    session = _new_session(tmp_path / "prd.json")

    session.advance(PlanPhase.WORKING, now=T0 + timedelta(minutes=5))
    session.advance(PlanPhase.ASKING, now=T0 + timedelta(minutes=1))

    assert session.updated_at == T0 + timedelta(minutes=5)
    assert session.turn_count == 2
    assert session.last_phase is PlanPhase.ASKING


def test_store_advance_counts_turns_and_persists(tmp_path: Path) -> None:
    store = SessionStore(clock=StepClock())
    session = store.load_or_create(tmp_path / "prd.json", resume=False, force=False)

    for phase in (PlanPhase.EXPLORING, PlanPhase.ASKING, PlanPhase.WORKING):
        store.advance(session, phase)

    stored = json.loads(session_file_path(tmp_path / "prd.json").read_text("utf-8"))
    assert session.turn_count == 3
    assert stored["turn_count"] == 3
    assert stored["last_phase"] == "working"


def test_round_trip_through_resume(tmp_path: Path) -> None:
    output = tmp_path / "prd.json"
    store = SessionStore(clock=StepClock())
    session = store.load_or_create(output, resume=False, force=False)
    session.merge_context({"requirements": [{"description": "login"}]}, now=store.now())
    session.add_answer(Answer("q1", "A"), now=store.now())
    store.advance(session, PlanPhase.ASKING)

    loaded = store.load_or_create(output, resume=True, force=False)

    assert loaded.id == session.id
    assert loaded.turn_count == session.turn_count
    assert loaded.last_phase is session.last_phase
    assert loaded.answers == session.answers
    assert loaded.undelivered_answers() == [Answer("q1", "A")]
    assert loaded.context == session.context
    assert loaded.created_at == session.created_at
    assert loaded.updated_at == session.updated_at


def test_existing_record_without_resume_or_force_is_conflict(tmp_path: Path) -> None:
    output = tmp_path / "prd.json"
    store = SessionStore(clock=StepClock())
    store.save(store.load_or_create(output, resume=False, force=False))
    path = session_file_path(output)
    before = path.read_bytes()
    before_listing = sorted(p.name for p in tmp_path.iterdir())

    with pytest.raises(SessionExistsError, match="--resume"):
        store.load_or_create(output, resume=False, force=False)

    assert path.read_bytes() == before
    assert sorted(p.name for p in tmp_path.iterdir()) == before_listing


def test_force_replaces_existing_record(tmp_path: Path) -> None:
    output = tmp_path / "prd.json"
    store = SessionStore(clock=StepClock())
    old = store.load_or_create(output, resume=False, force=False)
    store.advance(old, PlanPhase.WORKING)

    fresh = store.load_or_create(output, resume=False, force=True)

    assert fresh.id != old.id
    assert fresh.is_fresh
    assert not session_file_path(output).exists()


def test_resume_without_record_starts_fresh(tmp_path: Path) -> None:
    session = SessionStore().load_or_create(tmp_path / "prd.json", resume=True, force=False)

    assert session.is_fresh


def test_corrupt_record_is_read_error(tmp_path: Path) -> None:
    output = tmp_path / "prd.json"
    session_file_path(output).write_text('{"id": "x", "turn_count": "many"}', "utf-8")

    with pytest.raises(SessionReadError, match="Failed to parse"):
        SessionStore().load_or_create(output, resume=True, force=False)

    session_file_path(output).write_text("not json", "utf-8")
    with pytest.raises(SessionReadError, match="Failed to read"):
        SessionStore().load_or_create(output, resume=True, force=False)


def test_cleanup_is_idempotent(tmp_path: Path) -> None:
    store = SessionStore()
    session = store.load_or_create(tmp_path / "prd.json", resume=False, force=False)
    store.save(session)

    store.cleanup(session)
    store.cleanup(session)

    assert not store.exists(tmp_path / "prd.json")


def test_record_uses_sortable_timestamps(tmp_path: Path) -> None:
    store = SessionStore(clock=StepClock())
    session = store.load_or_create(tmp_path / "prd.json", resume=False, force=False)
    store.save(session)

    stored = json.loads(session_file_path(tmp_path / "prd.json").read_text("utf-8"))
    assert stored["created_at"] == "2025-01-15T12:00:01+00:00"
    assert set(stored) == {
        "id",
        "output_path",
        "last_phase",
        "turn_count",
        "context",
        "answers",
        "pending_answers",
        "created_at",
        "updated_at",
    }
