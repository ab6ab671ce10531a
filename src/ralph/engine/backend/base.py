"""Supervisor interface for one agent process per turn."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(slots=True)
class TurnRequest:
    """Inputs required to invoke the agent once. Never persisted."""

    prompt: str
    session_id: str | None = None
    resume_session: bool = False
    continue_session: bool = False
    json_schema: str | None = None
    max_turns: int | None = None
    output_format: str | None = "json"
    model: str | None = None


@dataclass(slots=True)
class ProcessOutput:
    """Captured streams of an exited (or killed) process."""

    exit_code: int
    stdout: str
    stderr: str


class ProcessHandle(Protocol):
    """Opaque token for one started process."""

    pid: int


class AgentSupervisor(Protocol):
    """Start/poll/kill/collect contract for agent subprocesses."""

    def start(self, request: TurnRequest) -> ProcessHandle:
        """Spawn the agent; raise ``SpawnError`` if it cannot start."""

    def poll(self, handle: ProcessHandle) -> int | None:
        """Return the exit code once exited, ``None`` while running. Non-blocking."""

    def kill(self, handle: ProcessHandle) -> None:
        """Best-effort immediate termination."""

    def collect(self, handle: ProcessHandle) -> ProcessOutput:
        """Return captured stdout/stderr; valid only after exit or kill."""
