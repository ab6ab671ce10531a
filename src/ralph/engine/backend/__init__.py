"""Agent process supervisor implementations."""

from ralph.engine.backend.base import AgentSupervisor, ProcessHandle, ProcessOutput, TurnRequest
from ralph.engine.backend.cli_backend import CliAgentSupervisor, SpawnError

__all__ = [
    "AgentSupervisor",
    "CliAgentSupervisor",
    "ProcessHandle",
    "ProcessOutput",
    "SpawnError",
    "TurnRequest",
]
