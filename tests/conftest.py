"""Shared test fixtures."""

from __future__ import annotations

import json
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from ralph.engine.backend.base import ProcessOutput, TurnRequest
from ralph.engine.control import InputEvent

ECHO_AGENT_MODULE = "ralph.engine.backend.echo_agent"


def envelope(structured: dict[str, Any] | None = None, *, is_error: bool = False, **extra) -> str:
    """Render the agent's ``--output-format json`` wrapper."""

    payload: dict[str, Any] = {
        "type": "result",
        "subtype": "error" if is_error else "success",
        "is_error": is_error,
        "structured_output": structured,
    }
    payload.update(extra)
    return json.dumps(payload)


def task_result(
    item_number: int = 1,
    status: str = "completed",
    summary: str = "done",
    *,
    all_complete: bool = False,
) -> dict[str, Any]:
    return {
        "item_number": item_number,
        "status": status,
        "summary": summary,
        "all_complete": all_complete,
    }


def final_output(name: str = "Login feature") -> dict[str, Any]:
    return {
        "name": name,
        "quality_gates": ["pytest", "ruff check ."],
        "tasks": [
            {
                "category": "feature",
                "description": "Add login form",
                "steps": ["Create form", "Add validation"],
                "passes": False,
            },
        ],
    }


def ok(stdout: str, stderr: str = "", exit_code: int = 0) -> ProcessOutput:
    return ProcessOutput(exit_code=exit_code, stdout=stdout, stderr=stderr)


@dataclass(slots=True, eq=False)
class FakeHandle:
    pid: int
    output: ProcessOutput
    polls_remaining: int = 0
    killed: bool = False


class FakeSupervisor:
    """In-memory supervisor replaying scripted outputs; the last one repeats."""

    def __init__(self, outputs: list[ProcessOutput], *, polls_before_exit: int = 0) -> None:
        self.outputs = list(outputs)
        self.polls_before_exit = polls_before_exit
        self.requests: list[TurnRequest] = []
        self.killed: list[int] = []
        self.active: FakeHandle | None = None

    def start(self, request: TurnRequest) -> FakeHandle:
        assert self.active is None, "previous handle was never collected"
        self.requests.append(request)
        output = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        handle = FakeHandle(
            pid=1000 + len(self.requests),
            output=output,
            polls_remaining=self.polls_before_exit,
        )
        self.active = handle
        return handle

    def poll(self, handle: FakeHandle) -> int | None:
        if handle.killed:
            return -9
        if handle.polls_remaining > 0:
            handle.polls_remaining -= 1
            return None
        return handle.output.exit_code

    def kill(self, handle: FakeHandle) -> None:
        handle.killed = True
        self.killed.append(handle.pid)

    def collect(self, handle: FakeHandle) -> ProcessOutput:
        self.active = None
        if handle.killed:
            return ProcessOutput(exit_code=-9, stdout="", stderr="")
        return handle.output


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedPresenter:
    """Presenter feeding one batch of events per poll, then nothing."""

    def __init__(self, batches: list[list[InputEvent]] | None = None) -> None:
        self.batches = list(batches or [])
        self.renders = 0

    def render(self, state) -> None:
        self.renders += 1

    def poll_events(self) -> list[InputEvent]:
        if self.batches:
            return self.batches.pop(0)
        return []


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def echo_script(tmp_path: Path):
    """Write an echo-agent script and return the agent command that replays it."""

    def _write(responses: list[dict[str, Any]], name: str = "agent-script.json") -> str:
        script_path = tmp_path / name
        script_path.write_text(json.dumps({"responses": responses}), "utf-8")
        return (
            f"{shlex.quote(sys.executable)} -m {ECHO_AGENT_MODULE} "
            f"--script {shlex.quote(str(script_path))}"
        )

    return _write


def read_calls(script_path: Path) -> list[list[str]]:
    calls_path = script_path.with_name(f"{script_path.name}.calls.jsonl")
    if not calls_path.exists():
        return []
    return [json.loads(line) for line in calls_path.read_text("utf-8").splitlines()]
