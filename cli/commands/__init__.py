"""CLI command modules for phpext."""

from cli.commands.cache import cache_app
from cli.commands.extensions import extensions_app

__all__ = ["cache_app", "extensions_app"]
