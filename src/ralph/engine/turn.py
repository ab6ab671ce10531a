"""One supervised agent invocation: spawn, poll, honor kill, classify."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from ralph.engine.backend.base import AgentSupervisor, ProcessOutput, TurnRequest
from ralph.engine.control import LoopControl
from ralph.engine.failure_classifier import PayloadDecoder, classify_turn_output
from ralph.engine.models import Interrupted, TurnOutcome

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT")


class TurnRunner:
    """Runs exactly one process at a time and never leaves a handle unresolved."""

    def __init__(
        self,
        *,
        supervisor: AgentSupervisor,
        control: LoopControl,
        poll_interval_seconds: float = 0.1,
        on_tick: Callable[[], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.supervisor = supervisor
        self.control = control
        self.poll_interval_seconds = poll_interval_seconds
        self.on_tick = on_tick
        self._sleep = sleep
        self.last_output: ProcessOutput | None = None

    def execute(self, request: TurnRequest) -> ProcessOutput | None:
        """Run the process to completion; ``None`` means it was killed on request.

        ``SpawnError`` from the supervisor propagates unchanged.
        """

        self.last_output = None
        handle = self.supervisor.start(request)
        resolved = False
        try:
            while self.supervisor.poll(handle) is None:
                if self.on_tick is not None:
                    self.on_tick()
                if self.control.kill_requested:
                    self.supervisor.kill(handle)
                    self.supervisor.collect(handle)
                    resolved = True
                    logger.info("Turn interrupted by user; agent pid=%s killed", handle.pid)
                    return None
                self._sleep(self.poll_interval_seconds)
            output = self.supervisor.collect(handle)
            resolved = True
        finally:
            if not resolved:
                self.supervisor.kill(handle)
                self.supervisor.collect(handle)
        self.last_output = output
        return output

    def run(
        self,
        request: TurnRequest,
        decode_payload: PayloadDecoder[PayloadT],
    ) -> TurnOutcome[PayloadT]:
        output = self.execute(request)
        if output is None:
            return Interrupted()
        return classify_turn_output(
            stdout=output.stdout,
            stderr=output.stderr,
            exit_code=output.exit_code,
            decode_payload=decode_payload,
        )
