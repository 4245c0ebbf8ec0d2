"""Error taxonomy for extension installs.

Every error carries a short ``kind`` string that ends up in
``InstallResult.error_kind`` so callers can branch without isinstance checks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from schemas.install_result import InstallResult


class ExtensionError(Exception):
    """Base class for all extension install errors."""

    kind = "error"


class PackageNotFoundError(ExtensionError):
    """Raised when a package or version does not exist upstream."""

    kind = "not_found"


class UpstreamUnavailableError(ExtensionError):
    """Raised on transient network or service failures (retry-eligible)."""

    kind = "upstream_unavailable"


class FetchError(ExtensionError):
    """Raised when an artifact cannot be fetched for a non-transient reason."""

    kind = "fetch_error"


class IntegrityError(ExtensionError):
    """Raised when a fetched artifact does not match its expected checksum."""

    kind = "integrity_error"

    def __init__(self, message: str, expected: str = "", actual: str = ""):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ExtractError(ExtensionError):
    """Raised when an archive cannot be unpacked."""

    kind = "extract_error"


class RecipeError(ExtensionError):
    """Raised when a recipe file is malformed."""

    kind = "recipe_error"


class ManifestError(ExtensionError):
    """Raised when the runtime manifest cannot be read or written."""

    kind = "manifest_error"


class IncompatibleRuntimeError(ExtensionError):
    """Raised when a recipe does not support the target runtime."""

    kind = "incompatible_runtime"


class StageError(ExtensionError):
    """A subprocess stage exited nonzero or timed out."""

    kind = "stage_error"

    def __init__(
        self,
        message: str,
        command: str = "",
        output: str = "",
        exit_code: int | None = None,
    ):
        super().__init__(message)
        self.command = command
        self.output = output
        self.exit_code = exit_code


class ConfigureError(StageError):
    kind = "configure_error"


class BuildError(StageError):
    kind = "build_error"


class InstallError(ExtensionError):
    """Raised when the built artifact cannot be registered with the runtime."""

    kind = "install_error"


class Cancelled(ExtensionError):
    """Raised when the caller aborts an install in progress."""

    kind = "cancelled"


class ExtensionInstallFailed(ExtensionError):
    """Raised by ``InstallResult.raise_for_status`` for a failed install."""

    kind = "install_failed"

    def __init__(self, result: InstallResult):
        super().__init__(
            f"{result.extension}: {result.stage.value} failed "
            f"({result.error_kind}): {result.message}"
        )
        self.result = result
