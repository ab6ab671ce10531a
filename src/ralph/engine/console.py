"""Terminal adapters: a rich console presenter and a prompt-based answer collector."""

from __future__ import annotations

import os
import select
import sys

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt

from ralph.engine.contracts import Answer, Question
from ralph.engine.control import InputEvent
from ralph.engine.state import LoopState

QUIT_COMMAND = ":q"
NO_ANSWER = "(no answer, use your best judgment)"
LOG_PAGE_LINES = 20

# Typed while a turn runs, each followed by Enter.
KEY_COMMANDS = {
    "q": InputEvent.STOP,
    "r": InputEvent.RESUME,
    "k": InputEvent.KILL,
    "p": InputEvent.PREV_LOG,
    "n": InputEvent.NEXT_LOG,
    "u": InputEvent.SCROLL_UP,
    "d": InputEvent.SCROLL_DOWN,
}
KEY_HELP = "q=stop after turn, r=resume, k=kill, p/n=previous/next log, u/d=scroll; then Enter"


def terminal_input_fd() -> int | None:
    """Stdin descriptor when it is an interactive terminal that select() can watch."""

    if sys.platform == "win32":
        return None
    try:
        if not sys.stdin.isatty():
            return None
        return sys.stdin.fileno()
    except (AttributeError, OSError, ValueError):
        return None


class RichPresenter:
    """Line-oriented presenter: prints status changes and each new log entry once.

    Commands typed on stdin while a turn runs come back from ``poll_events``;
    browsing the log history reprints the selected entry one page at a time.
    """

    def __init__(self, console: Console | None = None, *, input_fd: int | None = None) -> None:
        self.console = console or Console()
        self.input_fd = input_fd
        self._last_status: str | None = None
        self._last_phase: str | None = None
        self._printed_logs = 0
        self._view: tuple[int, int] | None = None

    @classmethod
    def for_terminal(cls, console: Console | None = None) -> RichPresenter:
        return cls(console, input_fd=terminal_input_fd())

    def render(self, state: LoopState) -> None:
        while self._printed_logs < len(state.logs):
            entry = state.logs[self._printed_logs]
            self._printed_logs += 1
            self.console.print(
                Panel(
                    escape(entry),
                    title=f"{escape(state.title)} | turn {state.turn_count}",
                    subtitle=self._progress(state),
                ),
            )
            self._view = (self._printed_logs - 1, 0)
        view = (state.current_log_index, state.scroll_offset)
        if state.logs and view != self._view:
            self._view = view
            self._print_view(state)
        if state.phase != self._last_phase:
            self._last_phase = state.phase
            if state.phase:
                self.console.print(f"[bold magenta]Phase:[/bold magenta] {escape(state.phase)}")
        if state.status != self._last_status:
            self._last_status = state.status
            self.console.print(f"[dim]{escape(state.status)}[/dim]")

    def poll_events(self) -> list[InputEvent]:
        """Read whatever command lines are waiting, without blocking."""

        if self.input_fd is None:
            return []
        chunks: list[bytes] = []
        while select.select([self.input_fd], [], [], 0)[0]:
            data = os.read(self.input_fd, 1024)
            if not data:
                self.input_fd = None
                break
            chunks.append(data)
        events: list[InputEvent] = []
        for line in b"".join(chunks).decode("utf-8", errors="replace").splitlines():
            command = line.strip().lower()
            if not command:
                continue
            event = KEY_COMMANDS.get(command)
            if event is None:
                self.console.print(
                    f"[yellow]Unknown command {escape(command)!r}.[/yellow] {KEY_HELP}",
                )
            else:
                events.append(event)
        return events

    def _print_view(self, state: LoopState) -> None:
        lines = state.current_log().splitlines()
        page = lines[state.scroll_offset : state.scroll_offset + LOG_PAGE_LINES]
        first = min(state.scroll_offset + 1, len(lines))
        self.console.print(
            Panel(
                escape("\n".join(page)),
                title=f"log {state.current_log_index + 1}/{len(state.logs)}",
                subtitle=f"lines {first}-{state.scroll_offset + len(page)} of {len(lines)}",
            ),
        )

    @staticmethod
    def _progress(state: LoopState) -> str | None:
        if not state.total_items:
            return None
        return f"{state.completed_items}/{state.total_items} tasks done"


class PromptAnswerCollector:
    """Asks questions one at a time; typing ``:q`` or pressing Ctrl+C stops the interview."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def ask_request(self) -> str | None:
        self.console.print("\n[bold]Describe what you want to build[/bold] [dim](:q to quit)[/dim]")
        try:
            while True:
                text = Prompt.ask("[bold cyan]>[/bold cyan]", console=self.console).strip()
                if text == QUIT_COMMAND:
                    return None
                if text:
                    return text
        except (KeyboardInterrupt, EOFError):
            self.console.print()
            return None

    def collect(self, questions: list[Question]) -> list[Answer] | None:
        answers: list[Answer] = []
        total = len(questions)
        for index, question in enumerate(questions, 1):
            self._show(question, index, total)
            try:
                value = self._ask(question, index, total)
            except (KeyboardInterrupt, EOFError):
                self.console.print()
                return None
            if value is None:
                return None
            answers.append(Answer(question_id=question.id, value=value))
        return answers

    def _show(self, question: Question, index: int, total: int) -> None:
        self.console.print(
            f"\n[dim]({index}/{total}) {escape(question.category)}[/dim] "
            f"[bold]{escape(question.text)}[/bold]",
        )
        if question.context:
            self.console.print(f"[dim]{escape(question.context)}[/dim]")
        for option in question.options or []:
            line = f"  [cyan]{escape(option.key)}[/cyan]) {escape(option.label)}"
            if option.description:
                line += f" [dim]- {escape(option.description)}[/dim]"
            self.console.print(line)

    def _ask(self, question: Question, index: int, total: int) -> str | None:
        keys = {key.upper(): key for key in question.option_keys()}
        hint = "option key" if keys else "answer"
        if keys and question.accepts_freeform:
            hint = "option key or your own answer"
        while True:
            raw = Prompt.ask(
                f"[bold cyan]>[/bold cyan] [dim]{hint} ({index} of {total})[/dim]",
                console=self.console,
            ).strip()
            if raw == QUIT_COMMAND:
                return None
            if raw.upper() in keys:
                return keys[raw.upper()]
            if question.accepts_freeform:
                return raw or NO_ANSWER
            self.console.print(
                f"[red]Choose one of: {escape(', '.join(question.option_keys()))}[/red]",
            )
