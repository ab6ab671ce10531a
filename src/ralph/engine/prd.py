"""Task list (PRD) files shared by the interview output and the build loop."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from ralph.engine.contracts import (
    ContractError,
    FinalOutput,
    final_output_to_dict,
    read_final_output,
    write_json,
)

logger = logging.getLogger(__name__)

COMPLETED_FILENAME = "completed.json"


class PrdError(ValueError):
    """Task list file is missing or does not match the expected shape."""


@dataclass(slots=True)
class CompletedTask:
    category: str
    description: str
    steps: list[str]
    completed_at: str


def completed_tasks_path(prd_path: Path) -> Path:
    return prd_path.parent / COMPLETED_FILENAME


def load_prd(prd_path: Path) -> FinalOutput:
    if not prd_path.exists():
        raise PrdError(f"PRD file not found at path {prd_path}")
    raw = _read_json(prd_path)
    try:
        return read_final_output(raw)
    except ContractError as error:
        raise PrdError(f"Invalid PRD in {prd_path}: {error}") from error


def load_completed_tasks(prd_path: Path) -> list[CompletedTask]:
    """Return tasks archived next to the task list; an absent file means none yet."""

    path = completed_tasks_path(prd_path)
    if not path.exists():
        return []
    raw = _read_json(path)
    if not isinstance(raw, list):
        raise PrdError(f"Expected a JSON array in {path}")
    tasks: list[CompletedTask] = []
    for item in raw:
        if not isinstance(item, dict):
            raise PrdError(f"Completed task entries must be objects in {path}")
        category = item.get("category")
        description = item.get("description")
        steps = item.get("steps", [])
        completed_at = item.get("completed_at", "")
        if not isinstance(category, str) or not isinstance(description, str):
            raise PrdError(f"Completed task category/description must be strings in {path}")
        if not isinstance(steps, list) or not all(isinstance(step, str) for step in steps):
            raise PrdError(f"Completed task steps must be an array of strings in {path}")
        if not isinstance(completed_at, str):
            raise PrdError(f"Completed task completed_at must be a string in {path}")
        tasks.append(
            CompletedTask(
                category=category,
                description=description,
                steps=list(steps),
                completed_at=completed_at,
            ),
        )
    return tasks


def write_prd(path: Path, final_output: FinalOutput) -> None:
    write_json(path, final_output_to_dict(final_output))
    logger.info("Wrote PRD %r with %d tasks to %s", final_output.name, len(final_output.tasks), path)


def _read_json(path: Path) -> object:
    try:
        return json.loads(path.read_text("utf-8"))
    except OSError as error:
        raise PrdError(f"Error reading {path}: {error}") from error
    except json.JSONDecodeError as error:
        raise PrdError(f"Invalid JSON formatting in {path}: {error}") from error
