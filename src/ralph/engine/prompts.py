"""Prompt builders for both workflows and the repair call."""

from __future__ import annotations

from pathlib import Path

from ralph.engine.contracts import Answer

CONTINUE_PROMPT = "Continue building the task list."

PLAN_INSTRUCTIONS = """\
You turn a user's request into a task list for a coding agent.

Reply with a single JSON object matching the provided schema. Declare a phase:
- "exploring": you are reading the codebase; set "status" to what you are looking at.
- "asking": you need user input; send at most four questions, each with id,
  category (scope, technical, quality, priority), text and allow_freeform, and
  options with keys A, B, C... when a fixed choice makes sense.
- "working": you are drafting requirements; put findings under "context"
  (codebase_summary, requirements, quality_gates, tasks).
- "complete": the task list is ready; include "final_output" with name,
  quality_gates and tasks (category, description, steps, passes=false).

Skip phases that are not needed. A small, well-defined request may be complete
in one or two turns. Prefer the project's own build, lint and test commands as
quality gates.
"""

TASK_INSTRUCTIONS = """\

@progress.txt
1. Pick the highest priority unfinished item from the task list and work only on it.
2. Run the project's quality gates (format, lint, typecheck, build, tests) with its own tooling.
3. Update the task list with the work that was done; set passes=true on finished items.
4. Move items with passes=true to completed.json next to the task list, adding
   completed_at (YYYY-MM-DD) and dropping passes. Skip items already there.
5. Append a short note about your progress to progress.txt for the next person.
6. Commit the work for that item.
Reply with the structured result: the item number you worked on, its status,
a one-paragraph summary, and all_complete=true only when no items remain.
"""

REPAIR_INSTRUCTIONS = """\
The text below was supposed to be a single JSON object matching this JSON schema,
but it could not be parsed. Re-emit it as valid JSON that matches the schema,
keeping every value it contains. Output only the JSON object, nothing else.

Schema:
{schema}

Text:
{raw}
"""


def build_initial_prompt(user_request: str) -> str:
    return (
        f"{PLAN_INSTRUCTIONS}\n"
        f"## User request\n\n{user_request}\n\n"
        "Start by exploring the codebase, then continue as you judge best."
    )


def build_resume_prompt(
    turn_count: int,
    last_phase: str,
    answers: list[Answer] | None = None,
) -> str:
    """Prompt for the first turn of a resumed session.

    ``answers`` are the ones collected before the previous run stopped that
    never reached the agent.
    """

    lines = [
        "This is a resumed session.",
        f"- Turns completed: {turn_count}",
        f"- Last phase: {last_phase}",
        "",
    ]
    if answers:
        lines.append("Since your last reply the user answered:")
        lines.extend(f"- {answer.question_id}: {answer.value}" for answer in answers)
        lines.append("")
    lines.append(
        "Continue from where we left off. Reply with your current phase and any "
        "questions, or the final task list.",
    )
    return "\n".join(lines)


def build_continuation_prompt(answers: list[Answer]) -> str:
    """Prompt carrying the user's answers into the next turn."""

    if not answers:
        return CONTINUE_PROMPT
    lines = ["The user answered:", ""]
    lines.extend(f"- {answer.question_id}: {answer.value}" for answer in answers)
    lines.extend(["", "Continue building the task list using these answers."])
    return "\n".join(lines)


def build_task_prompt(prd_path: Path) -> str:
    return f"@{prd_path}{TASK_INSTRUCTIONS}"


def build_repair_prompt(*, raw: str, schema: str) -> str:
    return REPAIR_INSTRUCTIONS.format(schema=schema, raw=raw)
