"""phpext CLI.

Command-line interface for building and installing PHP extensions.
"""

__version__ = "0.1.0"

from cli.phpext.cli import app, main

__all__ = ["__version__", "app", "main"]
