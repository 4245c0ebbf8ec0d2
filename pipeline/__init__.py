"""phpext - build and register PHP extensions against installed runtimes."""

__version__ = "0.1.0"
