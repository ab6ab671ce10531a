"""Runtime configuration for agent supervision, retries, and workflows."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(slots=True)
class AgentSettings:
    """External agent binary and invocation defaults."""

    command: str = "claude"
    permission_mode: str = "bypassPermissions"
    repair_model: str = "haiku"


@dataclass(slots=True)
class RetrySettings:
    """Bounded exponential backoff for transient agent failures."""

    max_attempts: int = 5
    base_delay_seconds: float = 5.0
    poll_interval_seconds: float = 0.1


@dataclass(slots=True)
class BuildSettings:
    """Task-execution workflow settings."""

    prd_path: Path = Path("plans/prd.json")
    max_loops: int = 100
    max_turns: int = 200


@dataclass(slots=True)
class PlanSettings:
    """Interview workflow settings."""

    output_path: Path = Path("plans/prd.json")


@dataclass(slots=True)
class LoggingSettings:
    """Log destination; the terminal itself belongs to the presenter."""

    log_file: Path | None = None
    log_level: str = "INFO"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    agent: AgentSettings = field(default_factory=AgentSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    build: BuildSettings = field(default_factory=BuildSettings)
    plan: PlanSettings = field(default_factory=PlanSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        log_file = os.getenv("RALPH_LOG_FILE", "").strip()
        settings = cls(
            agent=AgentSettings(
                command=os.getenv("RALPH_AGENT_COMMAND", "claude").strip() or "claude",
                permission_mode=os.getenv("RALPH_AGENT_PERMISSION_MODE", "bypassPermissions"),
                repair_model=os.getenv("RALPH_REPAIR_MODEL", "haiku"),
            ),
            retry=RetrySettings(
                max_attempts=_env_int("RALPH_RETRY_MAX_ATTEMPTS", 5),
                base_delay_seconds=_env_float("RALPH_RETRY_BASE_DELAY_SECONDS", 5.0),
                poll_interval_seconds=_env_float("RALPH_POLL_INTERVAL_SECONDS", 0.1),
            ),
            build=BuildSettings(
                prd_path=Path(os.getenv("RALPH_PRD_PATH", "plans/prd.json")),
                max_loops=_env_int("RALPH_BUILD_MAX_LOOPS", 100),
                max_turns=_env_int("RALPH_BUILD_MAX_TURNS", 200),
            ),
            plan=PlanSettings(
                output_path=Path(os.getenv("RALPH_PLAN_OUTPUT", "plans/prd.json")),
            ),
            logging=LoggingSettings(
                log_file=Path(log_file) if log_file else None,
                log_level=os.getenv("RALPH_LOG_LEVEL", "INFO").strip().upper(),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot honor."""

        if not self.agent.command.strip():
            raise ValueError("RALPH_AGENT_COMMAND must be a non-empty command name.")
        if self.retry.max_attempts <= 0:
            raise ValueError("RALPH_RETRY_MAX_ATTEMPTS must be > 0.")
        if self.retry.base_delay_seconds < 0:
            raise ValueError("RALPH_RETRY_BASE_DELAY_SECONDS must be >= 0.")
        if self.retry.poll_interval_seconds <= 0:
            raise ValueError("RALPH_POLL_INTERVAL_SECONDS must be > 0.")
        if self.build.max_loops <= 0:
            raise ValueError("RALPH_BUILD_MAX_LOOPS must be > 0.")
        if self.build.max_turns <= 0:
            raise ValueError("RALPH_BUILD_MAX_TURNS must be > 0.")
        if self.logging.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"Invalid RALPH_LOG_LEVEL: {self.logging.log_level!r}. "
                f"Expected one of {', '.join(_LOG_LEVELS)}.",
            )


def configure_logging(settings: LoggingSettings) -> None:
    """Route engine logs to a file, keeping the terminal for the presenter."""

    if settings.log_file is None:
        logging.basicConfig(level=logging.WARNING)
        return
    settings.log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(settings.log_file),
        level=getattr(logging, settings.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid numeric value for {name}: {value!r}") from error
