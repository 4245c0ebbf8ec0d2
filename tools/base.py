"""Result types shared by the build tools."""

from dataclasses import dataclass
from enum import Enum


class ToolStatus(Enum):
    """How a child process ended."""

    SUCCESS = "success"
    FAILURE = "failure"  # nonzero exit, or could not be started
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass
class ToolResult:
    """Outcome of one build command.

    Attributes:
        status: How the process ended.
        command: Shell line that reproduces the command.
        stdout: Combined stdout and stderr.
        returncode: Exit status (negative for a signal, 126/127 when the
            program could not be executed).
        stage: Install stage the command belonged to.
        duration_seconds: Wall time.
        error: Short reason when not successful.
    """

    status: ToolStatus
    command: str = ""
    stdout: str = ""
    returncode: int | None = None
    stage: str = ""
    duration_seconds: float = 0.0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status == ToolStatus.SUCCESS

    def __bool__(self) -> bool:
        return self.success

