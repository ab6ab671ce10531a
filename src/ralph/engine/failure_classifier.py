"""Deterministic classification of one agent invocation into a turn outcome."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from ralph.engine.contracts import ContractError, decode_envelope, parse_json_object
from ralph.engine.models import (
    FatalError,
    ProtocolError,
    Success,
    TransientError,
    TurnOutcome,
)

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT")
PayloadDecoder = Callable[[dict[str, Any]], PayloadT]

TURN_CLASSIFIER_VERSION = 1

_SERVER_ERROR_PATTERNS: tuple[str, ...] = (
    "500",
    "502",
    "503",
    "504",
    "internal server error",
    "service unavailable",
    "bad gateway",
    "gateway timeout",
)
_CAPACITY_PATTERNS: tuple[str, ...] = (
    "overloaded",
    "rate limit",
)


@dataclass(slots=True)
class TransientMatch:
    """Which transient vocabulary entry matched."""

    matched_rule: str
    matched_pattern: str


def find_transient_indicator(text: str) -> TransientMatch | None:
    """Case-insensitive scan for gateway/server/availability/rate-limit markers."""

    haystack = text.lower()
    pattern = _first_match(haystack, _SERVER_ERROR_PATTERNS)
    if pattern is not None:
        return TransientMatch(matched_rule="server_error", matched_pattern=pattern)
    pattern = _first_match(haystack, _CAPACITY_PATTERNS)
    if pattern is not None:
        return TransientMatch(matched_rule="capacity", matched_pattern=pattern)
    return None


def is_transient_failure(text: str) -> bool:
    return find_transient_indicator(text) is not None


def classify_turn_output(
    *,
    stdout: str,
    stderr: str,
    exit_code: int,
    decode_payload: PayloadDecoder[PayloadT],
) -> TurnOutcome[PayloadT]:
    """Classify raw process output for any payload shape.

    Empty output, malformed JSON and a well-formed envelope with the error
    flag set are all checked before giving up.
    """

    if not stdout.strip():
        outcome = _classify_empty_stdout(stderr=stderr, exit_code=exit_code)
        logger.info("Turn classified as transient: %s", outcome.reason)
        return outcome

    try:
        envelope = decode_envelope(stdout)
    except ContractError as envelope_error:
        return _classify_bare_payload(
            stdout=stdout,
            envelope_error=envelope_error,
            decode_payload=decode_payload,
        )

    if envelope.structured_output is not None:
        try:
            return Success(decode_payload(envelope.structured_output))
        except ContractError as error:
            logger.info("Structured output failed strict decode: %s", error)
            return ProtocolError(
                raw=json.dumps(envelope.structured_output, ensure_ascii=False),
                parse_error=str(error),
            )

    if envelope.is_error:
        match = find_transient_indicator(stdout)
        if match is not None:
            logger.info(
                "Agent error classified as transient (rule=%s pattern=%s)",
                match.matched_rule,
                match.matched_pattern,
            )
            return TransientError(f"Agent API error:\n{stdout.strip()}")
        logger.info("Agent reported a non-transient error (exit_code=%s)", exit_code)
        return FatalError(raw=stdout)

    raw = envelope.result if envelope.result else stdout
    return ProtocolError(raw=raw, parse_error="No structured output in agent response")


def _classify_empty_stdout(*, stderr: str, exit_code: int) -> TransientError:
    stripped = stderr.strip()
    if find_transient_indicator(stripped) is not None:
        return TransientError(f"API error: {stripped}")
    if stripped:
        return TransientError(f"Empty output with stderr: {stripped}")
    return TransientError(f"Empty output from agent (exit_code={exit_code})")


def _classify_bare_payload(
    *,
    stdout: str,
    envelope_error: ContractError,
    decode_payload: PayloadDecoder[PayloadT],
) -> TurnOutcome[PayloadT]:
    # Agents run without --output-format json print the payload itself.
    try:
        raw = parse_json_object(stdout)
    except ContractError:
        return ProtocolError(raw=stdout, parse_error=str(envelope_error))
    try:
        return Success(decode_payload(raw))
    except ContractError as error:
        return ProtocolError(raw=stdout, parse_error=str(error))


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
