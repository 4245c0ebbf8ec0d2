"""Subprocess execution for build stages."""

import logging
import os
import signal
import subprocess
import threading
import time

from .base import ToolResult, ToolStatus
from .build_commands import BuildCommand

logger = logging.getLogger(__name__)


class ShellTool:
    """Run build commands as child processes.

    Captures combined stdout/stderr, enforces a timeout and honours a
    cancellation event. Each child runs in its own session so the whole
    process tree (make and its compilers) is killed on timeout or cancel.
    """

    def __init__(self, timeout: float = 1800, poll_interval: float = 0.2) -> None:
        """Initialize shell tool.

        Args:
            timeout: Default timeout in seconds
            poll_interval: How often to check for cancellation
        """
        self.timeout = timeout
        self.poll_interval = poll_interval

    def run(
        self,
        command: BuildCommand,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ToolResult:
        """Run a command to completion.

        Args:
            command: Command to run
            timeout: Seconds before the process tree is killed
            cancel_event: Set by the caller to abort

        Returns:
            ToolResult with the combined output and exit status.
        """
        timeout = timeout or self.timeout
        rendered = command.render()
        logger.debug("Running: %s", rendered)

        started = time.monotonic()
        try:
            process = subprocess.Popen(
                command.argv,
                cwd=command.cwd,
                env=command.full_env(),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except FileNotFoundError:
            return ToolResult(
                status=ToolStatus.FAILURE,
                command=rendered,
                returncode=127,
                stage=command.stage,
                error=f"Command not found: {command.program}",
            )
        except PermissionError:
            return ToolResult(
                status=ToolStatus.FAILURE,
                command=rendered,
                returncode=126,
                stage=command.stage,
                error=f"Command not executable: {command.program}",
            )
        except OSError as e:
            # e.g. ENOEXEC for a script without a shebang
            return ToolResult(
                status=ToolStatus.FAILURE,
                command=rendered,
                returncode=126,
                stage=command.stage,
                error=f"Cannot execute {command.program}: {e}",
            )

        status: ToolStatus | None = None
        while True:
            try:
                stdout, _ = process.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    status = ToolStatus.CANCELLED
                elif time.monotonic() - started >= timeout:
                    status = ToolStatus.TIMEOUT
                else:
                    continue
                self._kill(process)
                stdout, _ = process.communicate()
                break

        if status is None:
            status = ToolStatus.SUCCESS if process.returncode == 0 else ToolStatus.FAILURE
        errors = {
            ToolStatus.SUCCESS: None,
            ToolStatus.FAILURE: f"Exited with status {process.returncode}",
            ToolStatus.TIMEOUT: f"Command timed out after {timeout}s",
            ToolStatus.CANCELLED: "Command cancelled",
        }
        return ToolResult(
            status=status,
            command=rendered,
            stdout=stdout or "",
            returncode=process.returncode,
            stage=command.stage,
            duration_seconds=round(time.monotonic() - started, 3),
            error=errors[status],
        )

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
