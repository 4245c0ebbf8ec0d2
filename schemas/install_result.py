"""Install result schema.

Outcome of one install attempt, including a record per stage with the
command that ran and its captured output.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from extensions.errors import ExtensionInstallFailed


class InstallStage(str, Enum):
    """Install pipeline stages."""

    RESOLVE = "resolve"
    FETCH = "fetch"
    CONFIGURE = "configure"
    BUILD = "build"
    INSTALL = "install"
    DONE = "done"


class InstallStatus(str, Enum):
    """Terminal status of an install attempt."""

    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StageStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StageRecord(BaseModel):
    """One executed stage."""

    stage: InstallStage = Field(..., description="Stage name")
    status: StageStatus = Field(..., description="Stage status")
    started_at: datetime | None = Field(None, description="When stage started")
    duration_seconds: float | None = Field(None, description="Duration in seconds")
    commands: list[str] = Field(default_factory=list, description="Commands run, shell-quoted")
    output: str = Field("", description="Captured stdout+stderr of the commands")
    exit_code: int | None = Field(None, description="Exit code of the last command")
    error: str | None = Field(None, description="Error message if failed")


class InstallResult(BaseModel):
    """Terminal outcome of ``ExtensionManager.install_extension``."""

    extension: str = Field(..., description="Extension name")
    version: str | None = Field(None, description="Resolved upstream version")
    runtime_version: str = Field(..., description="Target runtime version")
    status: InstallStatus = Field(..., description="Terminal status")
    stage: InstallStage = Field(..., description="Failing stage, or done")
    error_kind: str | None = Field(None, description="Error taxonomy kind")
    message: str = Field("", description="Human readable summary")

    artifact_path: str | None = Field(None, description="Installed shared object")
    source_path: str | None = Field(None, description="Extracted sources (kept on failure)")
    from_cache: bool = Field(False, description="Archive came from the cache")
    stages: list[StageRecord] = Field(default_factory=list)

    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == InstallStatus.DONE

    @property
    def failed_stage_record(self) -> StageRecord | None:
        for record in reversed(self.stages):
            if record.status != StageStatus.COMPLETED:
                return record
        return None

    @property
    def failed_stage_output(self) -> str:
        record = self.failed_stage_record
        return record.output if record else ""

    def raise_for_status(self) -> "InstallResult":
        """Raise ExtensionInstallFailed unless the install succeeded."""
        if not self.succeeded:
            raise ExtensionInstallFailed(self)
        return self
