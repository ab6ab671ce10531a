"""User stop/kill requests shared by the loop, the retry controller, and the turn."""

from __future__ import annotations

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class InputEvent(str, Enum):
    """Control events a presentation layer may feed into the loop.

    The log events only move the view; they never touch the loop itself.
    """

    STOP = "stop"
    RESUME = "resume"
    KILL = "kill"
    PREV_LOG = "prev_log"
    NEXT_LOG = "next_log"
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"


@dataclass(slots=True)
class LoopControl:
    """Graceful stop lets the in-flight turn finish; kill ends it immediately."""

    stop_requested: bool = False
    kill_requested: bool = False
    signal_name: str | None = None
    awaiting_input: bool = False

    @property
    def should_exit(self) -> bool:
        return self.stop_requested or self.kill_requested

    def request_stop(self) -> None:
        self.stop_requested = True

    def cancel_stop(self) -> None:
        """Withdraw a pending graceful stop; a kill cannot be withdrawn."""

        if not self.kill_requested:
            self.stop_requested = False

    def request_kill(self) -> None:
        self.stop_requested = True
        self.kill_requested = True

    @contextmanager
    def waiting_for_input(self) -> Iterator[None]:
        """Mark a blocking user prompt; no turn is in flight while it runs."""

        self.awaiting_input = True
        try:
            yield
        finally:
            self.awaiting_input = False

    def apply(self, event: InputEvent) -> None:
        if event is InputEvent.STOP:
            self.request_stop()
        elif event is InputEvent.RESUME:
            self.cancel_stop()
        elif event is InputEvent.KILL:
            self.request_kill()


@contextmanager
def signal_handlers(control: LoopControl) -> Iterator[None]:
    """First SIGINT asks for a graceful stop, a second one (or SIGTERM) kills.

    While the loop waits on a user prompt there is no turn to finish, so any
    of these signals also raises ``KeyboardInterrupt`` to unblock the prompt.
    """

    if not hasattr(signal, "SIGINT"):
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        control.signal_name = name
        if signum == signal.SIGINT and not control.stop_requested:
            logger.info("Received %s; stopping after the current turn", name)
            control.request_stop()
        else:
            logger.info("Received %s; killing the current turn", name)
            control.request_kill()
        if control.awaiting_input:
            raise KeyboardInterrupt

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
