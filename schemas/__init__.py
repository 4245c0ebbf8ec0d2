"""Schemas module for structured install output.

Provides Pydantic models for:
- Install results
- Per-stage records with captured command output
"""

from .install_result import (
    InstallResult,
    InstallStage,
    InstallStatus,
    StageRecord,
    StageStatus,
)

__all__ = [
    "InstallResult",
    "InstallStage",
    "InstallStatus",
    "StageRecord",
    "StageStatus",
]
