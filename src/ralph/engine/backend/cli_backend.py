"""Subprocess-based supervisor for the external agent CLI."""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass
from typing import IO

from ralph.engine.backend.base import ProcessOutput, TurnRequest

logger = logging.getLogger(__name__)

AGENT_FLAGS_VERSION = 1


class SpawnError(RuntimeError):
    """Agent process could not be started. Never retried."""


@dataclass(slots=True, eq=False)
class CliProcessHandle:
    """One spawned agent process with its capture files."""

    pid: int
    process: subprocess.Popen[bytes]
    stdout_handle: IO[bytes]
    stderr_handle: IO[bytes]
    started_monotonic: float
    killed: bool = False
    output: ProcessOutput | None = None


class CliAgentSupervisor:
    """Spawn the agent with a versioned flag set and supervise it without blocking.

    stdout/stderr go to anonymous temp files rather than pipes so a chatty
    agent can never stall on a full pipe buffer between polls.  The child
    runs in its own session: terminal Ctrl+C reaches only the supervisor,
    which decides between graceful stop and kill.
    """

    def __init__(
        self,
        *,
        command: str = "claude",
        permission_mode: str = "bypassPermissions",
        env: dict[str, str] | None = None,
    ) -> None:
        self.command = command
        self.permission_mode = permission_mode
        self.env = env
        self._active: CliProcessHandle | None = None

    @property
    def has_active_process(self) -> bool:
        return self._active is not None

    def start(self, request: TurnRequest) -> CliProcessHandle:
        if self._active is not None:
            raise RuntimeError(
                f"Agent process {self._active.pid} is still unresolved; "
                "collect() it before starting another.",
            )
        argv = build_run_args(
            command=self.command,
            permission_mode=self.permission_mode,
            request=request,
        )
        env = os.environ.copy()
        if self.env:
            env.update(self.env)

        stdout_handle = tempfile.TemporaryFile()  # noqa: SIM115
        stderr_handle = tempfile.TemporaryFile()  # noqa: SIM115
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=stdout_handle,
                stderr=stderr_handle,
                start_new_session=True,
            )
        except FileNotFoundError as error:
            _close_quietly(stdout_handle, stderr_handle)
            raise SpawnError(f"Agent command not found: {argv[0]}") from error
        except OSError as error:
            _close_quietly(stdout_handle, stderr_handle)
            raise SpawnError(f"Agent failed to start: {error}") from error

        handle = CliProcessHandle(
            pid=process.pid,
            process=process,
            stdout_handle=stdout_handle,
            stderr_handle=stderr_handle,
            started_monotonic=time.monotonic(),
        )
        self._active = handle
        logger.info(
            "Spawned agent pid=%s command=%s flags_version=%s",
            process.pid,
            argv[0],
            AGENT_FLAGS_VERSION,
        )
        return handle

    def poll(self, handle: CliProcessHandle) -> int | None:
        return handle.process.poll()

    def kill(self, handle: CliProcessHandle) -> None:
        """Kill the agent together with every process it started."""

        if handle.killed:
            return
        handle.killed = True
        _kill_process_group(handle.process)
        try:
            handle.process.wait(timeout=2)
        except subprocess.TimeoutExpired:
            logger.warning("Agent pid=%s did not exit within 2s after kill", handle.pid)
        logger.info("Killed agent pid=%s and its process group", handle.pid)

    def collect(self, handle: CliProcessHandle) -> ProcessOutput:
        if handle.output is not None:
            return handle.output
        if handle.process.poll() is None and not handle.killed:
            raise RuntimeError("collect() called before the agent process exited.")
        exit_code = handle.process.wait()
        try:
            stdout = _read_capture(handle.stdout_handle)
            stderr = _read_capture(handle.stderr_handle)
        finally:
            _close_quietly(handle.stdout_handle, handle.stderr_handle)
            if self._active is handle:
                self._active = None

        handle.output = ProcessOutput(exit_code=exit_code, stdout=stdout, stderr=stderr)
        logger.info(
            "Agent pid=%s exited code=%s after %.1fs (stdout=%d chars, stderr=%d chars)",
            handle.pid,
            exit_code,
            time.monotonic() - handle.started_monotonic,
            len(stdout),
            len(stderr),
        )
        return handle.output


def build_run_args(
    *,
    command: str,
    permission_mode: str,
    request: TurnRequest,
    os_name: str | None = None,
) -> list[str]:
    """Render argv for one invocation; the prompt is always the final argument."""

    current_os_name = os_name or os.name
    head = shlex.split(command, posix=current_os_name != "nt")
    if not head:
        raise SpawnError("Agent command is empty.")

    argv = [*head, "--permission-mode", permission_mode]
    if request.model:
        argv += ["--model", request.model]
    if request.session_id:
        flag = "--resume" if request.resume_session else "--session-id"
        argv += [flag, request.session_id]
    if request.continue_session:
        argv.append("--continue")
    if request.output_format:
        argv += ["--output-format", request.output_format]
    if request.json_schema:
        argv += ["--json-schema", request.json_schema]
    if request.max_turns is not None:
        argv += ["--max-turns", str(request.max_turns)]
    argv += ["-p", request.prompt]
    return argv


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    """The agent leads its own process group, so its tool processes die with it."""

    if hasattr(os, "killpg"):
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except OSError as error:
            logger.warning("killpg failed for pid=%s: %s", process.pid, error)
        else:
            return
    try:
        process.kill()
    except OSError:
        return


def _read_capture(handle: IO[bytes]) -> str:
    handle.seek(0)
    return handle.read().decode("utf-8", errors="replace")


def _close_quietly(*handles: IO[bytes]) -> None:
    for handle in handles:
        try:
            handle.close()
        except OSError:
            continue
