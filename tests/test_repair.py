from __future__ import annotations

import allure
import pytest

from conftest import FakeSupervisor, ok
from ralph.engine.backend import SpawnError
from ralph.engine.contracts import PLAN_RESPONSE_SCHEMA, read_plan_response
from ralph.engine.control import LoopControl
from ralph.engine.models import PlanPhase
from ralph.engine.repair import (
    OutputRepairer,
    RepairError,
    is_repair_candidate,
    strip_code_fences,
)

pytestmark = [
    allure.epic("Turn Engine"),
    allure.feature("Repair Path"),
]

BROKEN = "Here you go: {phase: 'working', status: 'Drafting'}"


def _repairer(supervisor) -> OutputRepairer:
    return OutputRepairer(
        supervisor=supervisor,
        control=LoopControl(),
        model="haiku",
        poll_interval_seconds=0,
    )


def test_strip_code_fences_handles_language_tag() -> None:
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}\n```\n') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


def test_only_object_like_text_is_repair_candidate() -> None:
    assert is_repair_candidate(BROKEN)
    assert not is_repair_candidate("I could not finish the task.")


def test_repair_uses_cheap_single_step_plain_text_call() -> None:
    supervisor = FakeSupervisor([ok('```json\n{"phase": "working", "status": "Drafting"}\n```')])

    response = _repairer(supervisor).repair(
        raw=BROKEN,
        schema=PLAN_RESPONSE_SCHEMA,
        decode_payload=read_plan_response,
    )

    assert response.phase is PlanPhase.WORKING
    request = supervisor.requests[0]
    assert request.model == "haiku"
    assert request.output_format is None
    assert request.max_turns == 1
    assert request.session_id is None
    assert BROKEN in request.prompt
    assert PLAN_RESPONSE_SCHEMA in request.prompt


def test_non_json_repair_output_is_repair_error() -> None:
    supervisor = FakeSupervisor([ok("API Error: 529 overloaded")])

    with pytest.raises(RepairError, match="does not start with a JSON object"):
        _repairer(supervisor).repair(
            raw=BROKEN,
            schema=PLAN_RESPONSE_SCHEMA,
            decode_payload=read_plan_response,
        )
    assert len(supervisor.requests) == 1


def test_schema_invalid_repair_output_is_repair_error() -> None:
    supervisor = FakeSupervisor([ok('{"phase": "dreaming"}')])

    with pytest.raises(RepairError, match="failed validation"):
        _repairer(supervisor).repair(
            raw=BROKEN,
            schema=PLAN_RESPONSE_SCHEMA,
            decode_payload=read_plan_response,
        )


def test_text_without_object_is_not_sent_for_repair() -> None:
    supervisor = FakeSupervisor([ok("{}")])

    with pytest.raises(RepairError, match="no JSON object"):
        _repairer(supervisor).repair(
            raw="plain prose",
            schema=PLAN_RESPONSE_SCHEMA,
            decode_payload=read_plan_response,
        )
    assert supervisor.requests == []


def test_spawn_failure_is_reported_as_repair_error() -> None:
    class BrokenSupervisor(FakeSupervisor):
        def start(self, request):
            raise SpawnError("Agent command not found: claude")

    with pytest.raises(RepairError, match="could not start"):
        _repairer(BrokenSupervisor([ok("")])).repair(
            raw=BROKEN,
            schema=PLAN_RESPONSE_SCHEMA,
            decode_payload=read_plan_response,
        )
