"""Wire contracts for agent responses, task lists, and durable JSON files."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ralph.engine.models import PlanPhase, TaskStatus


class ContractError(ValueError):
    """Raised when JSON does not match the expected contract."""


@dataclass(slots=True)
class AgentEnvelope:
    """Top-level wrapper emitted by the agent with ``--output-format json``."""

    type: str
    is_error: bool
    structured_output: dict[str, Any] | None = None
    result: str | None = None
    session_id: str | None = None


@dataclass(slots=True)
class TaskTurnResult:
    """Structured output of one task-execution turn."""

    item_number: int
    status: TaskStatus
    summary: str
    all_complete: bool


@dataclass(slots=True)
class QuestionOption:
    """One selectable answer for a question."""

    key: str
    label: str
    description: str | None = None


@dataclass(slots=True)
class Question:
    """A question the agent needs the user to answer."""

    id: str
    category: str
    text: str
    context: str | None = None
    options: list[QuestionOption] | None = None
    allow_freeform: bool = False

    @property
    def accepts_freeform(self) -> bool:
        """Questions without options can only be answered freeform."""

        return self.allow_freeform or not self.options

    def option_keys(self) -> list[str]:
        return [option.key for option in self.options or []]


@dataclass(slots=True)
class Answer:
    """User answer for one question id."""

    question_id: str
    value: str


@dataclass(slots=True)
class PrdTask:
    """One task-list item."""

    category: str
    description: str
    steps: list[str]
    passes: bool = False


@dataclass(slots=True)
class FinalOutput:
    """Task list produced at the end of an interview."""

    name: str
    quality_gates: list[str]
    tasks: list[PrdTask]


@dataclass(slots=True)
class PlanResponse:
    """Structured output of one interview turn."""

    phase: PlanPhase
    status: str | None = None
    questions: list[Question] | None = None
    context: dict[str, Any] | None = None
    final_output: FinalOutput | None = None
    extra: dict[str, Any] = field(default_factory=dict)


TASK_TURN_SCHEMA = """{
  "type": "object",
  "properties": {
    "item_number": {"type": "integer"},
    "status": {"type": "string", "enum": ["completed", "in_progress", "blocked", "skipped"]},
    "summary": {"type": "string"},
    "all_complete": {"type": "boolean"}
  },
  "required": ["item_number", "status", "summary", "all_complete"]
}"""

PLAN_RESPONSE_SCHEMA = """{
  "type": "object",
  "required": ["phase"],
  "properties": {
    "phase": {"type": "string", "enum": ["exploring", "asking", "working", "complete"]},
    "status": {"type": "string"},
    "questions": {
      "type": "array",
      "items": {
        "type": "object",
        "required": ["id", "category", "text", "allow_freeform"],
        "properties": {
          "id": {"type": "string"},
          "category": {"type": "string"},
          "text": {"type": "string"},
          "context": {"type": "string"},
          "options": {
            "type": "array",
            "items": {
              "type": "object",
              "required": ["key", "label"],
              "properties": {
                "key": {"type": "string"},
                "label": {"type": "string"},
                "description": {"type": "string"}
              }
            }
          },
          "allow_freeform": {"type": "boolean"}
        }
      }
    },
    "context": {"type": "object"},
    "final_output": {
      "type": "object",
      "required": ["name", "quality_gates", "tasks"],
      "properties": {
        "name": {"type": "string"},
        "quality_gates": {"type": "array", "items": {"type": "string"}},
        "tasks": {
          "type": "array",
          "items": {
            "type": "object",
            "required": ["category", "description", "steps"],
            "properties": {
              "category": {"type": "string"},
              "description": {"type": "string"},
              "steps": {"type": "array", "items": {"type": "string"}},
              "passes": {"type": "boolean"}
            }
          }
        }
      }
    }
  }
}"""

_PLAN_RESPONSE_FIELDS = {"phase", "status", "questions", "context", "final_output"}


def write_json(path: Path, payload: dict[str, Any] | list[Any]) -> None:
    """Persist JSON via temp file + replace so readers never see a partial write."""

    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, ensure_ascii=False, indent=2)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def parse_json_object(text: str) -> dict[str, Any]:
    """Strictly decode text that must hold exactly one JSON object."""

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        raise ContractError(f"Invalid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ContractError("Expected a JSON object at top level")
    return payload


def decode_envelope(text: str) -> AgentEnvelope:
    """Decode the agent's JSON wrapper; other wrapper fields are ignored."""

    raw = parse_json_object(text)
    is_error = raw.get("is_error")
    if not isinstance(is_error, bool):
        raise ContractError("envelope.is_error must be a boolean")
    output_type = raw.get("type", "")
    if not isinstance(output_type, str):
        raise ContractError("envelope.type must be a string")
    structured = raw.get("structured_output")
    if structured is not None and not isinstance(structured, dict):
        raise ContractError("envelope.structured_output must be an object when provided")
    result = raw.get("result")
    session_id = raw.get("session_id")
    return AgentEnvelope(
        type=output_type,
        is_error=is_error,
        structured_output=structured,
        result=result if isinstance(result, str) else None,
        session_id=session_id if isinstance(session_id, str) else None,
    )


def read_task_turn_result(raw: dict[str, Any]) -> TaskTurnResult:
    """Deserialize and validate a task-execution payload (all fields required)."""

    missing = [
        key
        for key in ("item_number", "status", "summary", "all_complete")
        if key not in raw
    ]
    if missing:
        raise ContractError(f"Task result missing required fields: {', '.join(missing)}")

    item_number = raw["item_number"]
    if isinstance(item_number, bool) or not isinstance(item_number, int):
        raise ContractError("item_number must be an integer")
    summary = raw["summary"]
    if not isinstance(summary, str):
        raise ContractError("summary must be a string")
    all_complete = raw["all_complete"]
    if not isinstance(all_complete, bool):
        raise ContractError("all_complete must be a boolean")
    return TaskTurnResult(
        item_number=item_number,
        status=_enum_value(TaskStatus, raw["status"], "status"),
        summary=summary,
        all_complete=all_complete,
    )


def read_plan_response(raw: dict[str, Any]) -> PlanResponse:
    """Deserialize an interview payload; only ``phase`` is required.

    ``context`` is kept as an opaque object so agents may vary its shape
    between turns.
    """

    if "phase" not in raw:
        raise ContractError("Plan response missing required field: phase")
    phase = _enum_value(PlanPhase, raw["phase"], "phase")
    status = _optional_str(raw.get("status"), "status")

    questions_raw = raw.get("questions")
    questions: list[Question] | None = None
    if questions_raw is not None:
        if not isinstance(questions_raw, list):
            raise ContractError("questions must be an array")
        questions = [_read_question(item) for item in questions_raw]
        seen: set[str] = set()
        for question in questions:
            if question.id in seen:
                raise ContractError(f"Duplicate question id: {question.id}")
            seen.add(question.id)

    context = raw.get("context")
    if context is not None and not isinstance(context, dict):
        raise ContractError("context must be an object")

    final_raw = raw.get("final_output")
    final_output = read_final_output(final_raw) if final_raw is not None else None

    return PlanResponse(
        phase=phase,
        status=status,
        questions=questions,
        context=context,
        final_output=final_output,
        extra={key: value for key, value in raw.items() if key not in _PLAN_RESPONSE_FIELDS},
    )


def read_final_output(raw: object) -> FinalOutput:
    """Deserialize and validate the task list."""

    if not isinstance(raw, dict):
        raise ContractError("task list must be an object")
    name = raw.get("name")
    if not isinstance(name, str):
        raise ContractError("task list name must be a string")
    quality_gates = _str_list(raw.get("quality_gates"), "quality_gates")
    tasks_raw = raw.get("tasks")
    if not isinstance(tasks_raw, list):
        raise ContractError("task list tasks must be an array")

    tasks: list[PrdTask] = []
    for item in tasks_raw:
        if not isinstance(item, dict):
            raise ContractError("task entry must be an object")
        category = item.get("category")
        description = item.get("description")
        passes = item.get("passes", False)
        if not isinstance(category, str):
            raise ContractError("task.category must be a string")
        if not isinstance(description, str):
            raise ContractError("task.description must be a string")
        if not isinstance(passes, bool):
            raise ContractError("task.passes must be a boolean")
        tasks.append(
            PrdTask(
                category=category,
                description=description,
                steps=_str_list(item.get("steps"), "task.steps"),
                passes=passes,
            ),
        )
    return FinalOutput(name=name, quality_gates=quality_gates, tasks=tasks)


def final_output_to_dict(final_output: FinalOutput) -> dict[str, Any]:
    """Serialize the task list in its on-disk shape."""

    return {
        "name": final_output.name,
        "quality_gates": list(final_output.quality_gates),
        "tasks": [
            {
                "category": task.category,
                "description": task.description,
                "steps": list(task.steps),
                "passes": task.passes,
            }
            for task in final_output.tasks
        ],
    }


def read_answer(raw: object) -> Answer:
    if not isinstance(raw, dict):
        raise ContractError("answer must be an object")
    question_id = raw.get("question_id")
    value = raw.get("value")
    if not isinstance(question_id, str) or not question_id:
        raise ContractError("answer.question_id must be a non-empty string")
    if not isinstance(value, str):
        raise ContractError("answer.value must be a string")
    return Answer(question_id=question_id, value=value)


def _read_question(raw: object) -> Question:
    if not isinstance(raw, dict):
        raise ContractError("question must be an object")
    question_id = raw.get("id")
    category = raw.get("category")
    text = raw.get("text")
    if not isinstance(question_id, str) or not question_id:
        raise ContractError("question.id must be a non-empty string")
    if not isinstance(category, str):
        raise ContractError("question.category must be a string")
    if not isinstance(text, str):
        raise ContractError("question.text must be a string")
    allow_freeform = raw.get("allow_freeform", False)
    if not isinstance(allow_freeform, bool):
        raise ContractError("question.allow_freeform must be a boolean")

    options: list[QuestionOption] | None = None
    options_raw = raw.get("options")
    if options_raw is not None:
        if not isinstance(options_raw, list):
            raise ContractError("question.options must be an array")
        options = []
        for option in options_raw:
            if not isinstance(option, dict):
                raise ContractError("question option must be an object")
            key = option.get("key")
            label = option.get("label")
            if not isinstance(key, str) or not isinstance(label, str):
                raise ContractError("question option key and label must be strings")
            options.append(
                QuestionOption(
                    key=key,
                    label=label,
                    description=_optional_str(option.get("description"), "option.description"),
                ),
            )

    return Question(
        id=question_id,
        category=category,
        text=text,
        context=_optional_str(raw.get("context"), "question.context"),
        options=options,
        allow_freeform=allow_freeform,
    )


def _enum_value(enum_type, value: object, field_name: str):
    if not isinstance(value, str):
        raise ContractError(f"{field_name} must be a string")
    try:
        return enum_type(value)
    except ValueError as error:
        allowed = ", ".join(member.value for member in enum_type)
        raise ContractError(f"{field_name} must be one of: {allowed}") from error


def _optional_str(value: object, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ContractError(f"{field_name} must be a string when provided")
    return value


def _str_list(value: object, field_name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ContractError(f"{field_name} must be an array of strings")
    return list(value)
