from __future__ import annotations

import json

import allure

from conftest import envelope, task_result
from ralph.engine.contracts import read_plan_response, read_task_turn_result
from ralph.engine.failure_classifier import (
    TURN_CLASSIFIER_VERSION,
    classify_turn_output,
    find_transient_indicator,
    is_transient_failure,
)
from ralph.engine.models import (
    FailureClass,
    FatalError,
    ProtocolError,
    Success,
    TransientError,
)

pytestmark = [
    allure.epic("Turn Engine"),
    allure.feature("Outcome Classification"),
]


def _classify(stdout: str, stderr: str = "", exit_code: int = 0):
    return classify_turn_output(
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        decode_payload=read_task_turn_result,
    )


def test_classifier_version_is_stable() -> None:
    assert TURN_CLASSIFIER_VERSION == 1


def test_empty_stdout_with_gateway_error_is_transient() -> None:
    outcome = _classify("", "503 Service Unavailable", exit_code=1)

    assert isinstance(outcome, TransientError)
    assert outcome.failure_class == FailureClass.TRANSIENT
    assert outcome.reason == "API error: 503 Service Unavailable"


def test_empty_stdout_with_unmatched_stderr_is_still_transient() -> None:
    outcome = _classify("   \n", "something odd happened", exit_code=1)

    assert isinstance(outcome, TransientError)
    assert outcome.reason.startswith("Empty output with stderr:")


def test_empty_stdout_and_stderr_is_transient() -> None:
    outcome = _classify("", "", exit_code=0)

    assert isinstance(outcome, TransientError)
    assert "Empty output" in outcome.reason


def test_structured_output_decodes_to_success() -> None:
    stdout = (
        '{"type":"result","is_error":false,"structured_output":'
        '{"item_number":1,"status":"completed","summary":"x","all_complete":false}}'
    )

    outcome = _classify(stdout)

    assert isinstance(outcome, Success)
    assert outcome.payload.item_number == 1
    assert outcome.payload.all_complete is False


def test_extra_envelope_fields_are_ignored() -> None:
    stdout = envelope(
        task_result(3, "blocked", "needs key"),
        duration_ms=386510,
        session_id="b7e6c276",
        usage={"input_tokens": 2},
    )

    outcome = _classify(stdout)

    assert isinstance(outcome, Success)
    assert outcome.payload.status.value == "blocked"


def test_error_flag_without_transient_marker_is_fatal() -> None:
    stdout = '{"type":"result","is_error":true,"structured_output":null}'

    outcome = _classify(stdout, exit_code=1)

    assert isinstance(outcome, FatalError)
    assert outcome.raw == stdout
    assert outcome.failure_class == FailureClass.FATAL


def test_error_flag_with_overloaded_body_is_transient() -> None:
    stdout = envelope(None, is_error=True, result="API Error: Overloaded")

    outcome = _classify(stdout, exit_code=1)

    assert isinstance(outcome, TransientError)
    assert "Overloaded" in outcome.reason


def test_malformed_json_is_protocol_error_with_raw_text() -> None:
    outcome = _classify('{"type": "result", "is_error": fal')

    assert isinstance(outcome, ProtocolError)
    assert outcome.raw == '{"type": "result", "is_error": fal'
    assert outcome.parse_error.startswith("Invalid JSON")


def test_envelope_without_payload_is_protocol_error() -> None:
    outcome = _classify(envelope(None, result="I finished the task."))

    assert isinstance(outcome, ProtocolError)
    assert outcome.raw == "I finished the task."
    assert outcome.parse_error == "No structured output in agent response"


def test_structured_output_violating_payload_contract_is_protocol_error() -> None:
    bad = {"item_number": "one", "status": "completed", "summary": "x", "all_complete": False}

    outcome = _classify(envelope(bad))

    assert isinstance(outcome, ProtocolError)
    assert json.loads(outcome.raw) == bad
    assert "item_number" in outcome.parse_error


def test_bare_payload_without_envelope_is_accepted() -> None:
    outcome = classify_turn_output(
        stdout='{"phase": "exploring", "status": "Reading src/"}',
        stderr="",
        exit_code=0,
        decode_payload=read_plan_response,
    )

    assert isinstance(outcome, Success)
    assert outcome.payload.status == "Reading src/"


def test_transient_indicator_reports_rule_and_pattern() -> None:
    match = find_transient_indicator("Error: Rate limit reached for requests")

    assert match is not None
    assert match.matched_rule == "capacity"
    assert match.matched_pattern == "rate limit"
    assert is_transient_failure("502 Bad Gateway")
    assert not is_transient_failure("permission denied")
