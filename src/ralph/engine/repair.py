"""Best-effort recovery of malformed structured output via a cheaper agent call."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Protocol, TypeVar

from ralph.engine.backend.base import AgentSupervisor, TurnRequest
from ralph.engine.backend.cli_backend import SpawnError
from ralph.engine.contracts import ContractError, parse_json_object
from ralph.engine.control import LoopControl
from ralph.engine.failure_classifier import PayloadDecoder
from ralph.engine.prompts import build_repair_prompt
from ralph.engine.turn import TurnRunner

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT")

_CODE_FENCE = re.compile(r"^```[A-Za-z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


class RepairError(RuntimeError):
    """The repair call did not yield a schema-valid JSON object."""


class Repairer(Protocol):
    def repair(
        self,
        *,
        raw: str,
        schema: str,
        decode_payload: PayloadDecoder[PayloadT],
    ) -> PayloadT:
        """Return a decoded payload or raise ``RepairError``."""


def strip_code_fences(text: str) -> str:
    stripped = text.strip()
    match = _CODE_FENCE.match(stripped)
    if match is not None:
        return match.group(1).strip()
    return stripped


def is_repair_candidate(raw: str) -> bool:
    """Only text that already looks like it holds an object is worth repairing."""

    return "{" in raw


class OutputRepairer:
    """Single-shot repair; its failures are reported, never retried."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        supervisor: AgentSupervisor,
        control: LoopControl,
        model: str = "haiku",
        poll_interval_seconds: float = 0.1,
        on_tick: Callable[[], None] | None = None,
    ) -> None:
        self.model = model
        self._runner = TurnRunner(
            supervisor=supervisor,
            control=control,
            poll_interval_seconds=poll_interval_seconds,
            on_tick=on_tick,
        )

    def repair(
        self,
        *,
        raw: str,
        schema: str,
        decode_payload: PayloadDecoder[PayloadT],
    ) -> PayloadT:
        if not is_repair_candidate(raw):
            raise RepairError("Output contains no JSON object to repair.")

        logger.info("Attempting output repair with model=%s (%d chars)", self.model, len(raw))
        request = TurnRequest(
            prompt=build_repair_prompt(raw=raw, schema=schema),
            model=self.model,
            output_format=None,
            max_turns=1,
        )
        try:
            output = self._runner.execute(request)
        except SpawnError as error:
            raise RepairError(f"Repair call could not start: {error}") from error
        if output is None:
            raise RepairError("Repair call interrupted.")

        text = strip_code_fences(output.stdout)
        if not text.startswith("{"):
            logger.warning("Repair output is not a JSON object (exit=%s)", output.exit_code)
            raise RepairError("Repair output does not start with a JSON object.")
        try:
            payload = decode_payload(parse_json_object(text))
        except ContractError as error:
            logger.warning("Repair output failed validation: %s", error)
            raise RepairError(f"Repair output failed validation: {error}") from error
        logger.info("Output repair succeeded")
        return payload
