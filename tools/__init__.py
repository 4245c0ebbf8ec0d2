"""Tools module for build operations.

Provides:
- Build command values (phpize, configure, make, recipe hooks)
- Subprocess execution with timeouts and cancellation
"""

from .base import ToolResult, ToolStatus
from .build_commands import BuildCommand, merge_configure_options
from .shell_tool import ShellTool

__all__ = [
    "BuildCommand",
    "ShellTool",
    "ToolResult",
    "ToolStatus",
    "merge_configure_options",
]
