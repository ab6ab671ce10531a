"""Presentation-facing loop state: status line, phase signal, and log history."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from ralph.engine.control import InputEvent, LoopControl

LOG_SCROLL_LINES = 10
KEY_HINT = "type q+Enter to stop after this turn, Ctrl+C twice to kill"


@dataclass(slots=True)
class LoopState:
    """Everything a presenter needs to draw one frame."""

    title: str = ""
    status: str = "Initialising..."
    phase: str | None = None
    turn_count: int = 0
    completed_items: int = 0
    total_items: int = 0
    stopping: bool = False
    logs: list[str] = field(default_factory=list)
    current_log_index: int = 0
    scroll_offset: int = 0

    def set_status(self, message: str) -> None:
        self.status = message

    def set_phase(self, phase: str | None) -> None:
        self.phase = phase

    def set_progress(self, *, completed: int, total: int) -> None:
        self.completed_items = completed
        self.total_items = total

    def push_log(self, entry: str) -> None:
        """Append an entry and switch the view to it."""

        self.logs.append(entry)
        self.current_log_index = len(self.logs) - 1
        self.scroll_offset = 0

    def latest_log(self) -> str | None:
        return self.logs[-1] if self.logs else None

    def current_log(self) -> str:
        if not self.logs:
            return ""
        return self.logs[self.current_log_index]

    def prev_log(self) -> None:
        if self.current_log_index > 0:
            self.current_log_index -= 1
            self.scroll_offset = 0

    def next_log(self) -> None:
        if self.current_log_index + 1 < len(self.logs):
            self.current_log_index += 1
            self.scroll_offset = 0

    def scroll_up(self, amount: int = 1) -> None:
        self.scroll_offset = max(0, self.scroll_offset - amount)

    def scroll_down(self, amount: int = 1) -> None:
        content_height = len(self.current_log().splitlines())
        self.scroll_offset = min(self.scroll_offset + amount, content_height)


class Presenter(Protocol):
    """Draws loop state and reports user control events."""

    def render(self, state: LoopState) -> None:
        """Redraw; called at the loop's polling cadence."""

    def poll_events(self) -> list[InputEvent]:
        """Return control events received since the last call. Non-blocking."""


class NullPresenter:
    """Headless presenter: draws nothing and never produces events."""

    def render(self, state: LoopState) -> None:
        return None

    def poll_events(self) -> list[InputEvent]:
        return []


def pump_events(presenter: Presenter, state: LoopState, control: LoopControl) -> None:
    """One cadence step: apply pending user events, then redraw."""

    for event in presenter.poll_events():
        control.apply(event)
        if event is InputEvent.PREV_LOG:
            state.prev_log()
        elif event is InputEvent.NEXT_LOG:
            state.next_log()
        elif event is InputEvent.SCROLL_UP:
            state.scroll_up(LOG_SCROLL_LINES)
        elif event is InputEvent.SCROLL_DOWN:
            state.scroll_down(LOG_SCROLL_LINES)
        elif event is InputEvent.STOP:
            state.set_status("Will stop after the current turn finishes... (r+Enter=resume)")
        elif event is InputEvent.RESUME and not control.stop_requested:
            state.set_status("Resumed. Waiting for agent...")
        elif event is InputEvent.KILL:
            state.set_status("Interrupted by user")
    state.stopping = control.stop_requested
    presenter.render(state)
