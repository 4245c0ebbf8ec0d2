"""Extension build and registration for installed PHP runtimes.

This package holds the recipe registry, the target runtime layout, the
runtime's extension manifest and the error taxonomy. The heavier pieces
import providers and are imported by module path:

- extensions.downloader: ExtensionDownloader (fetch + cache + extract)
- extensions.installer: ExtensionManager (configure/build/install pipeline)

Runtimes live under ~/.phpext/php/<version>/ by default.
"""

from extensions.errors import (
    BuildError,
    Cancelled,
    ConfigureError,
    ExtensionError,
    ExtensionInstallFailed,
    ExtractError,
    FetchError,
    IncompatibleRuntimeError,
    InstallError,
    IntegrityError,
    ManifestError,
    PackageNotFoundError,
    RecipeError,
    StageError,
    UpstreamUnavailableError,
)
from extensions.manifest import ExtensionManifest, ManifestEntry
from extensions.recipes import ExtensionFactory, ExtensionRecipe
from extensions.runtime import RuntimeNotFoundError, TargetRuntime

__all__ = [
    "BuildError",
    "Cancelled",
    "ConfigureError",
    "ExtensionError",
    "ExtensionFactory",
    "ExtensionInstallFailed",
    "ExtensionManifest",
    "ExtensionRecipe",
    "ExtractError",
    "FetchError",
    "IncompatibleRuntimeError",
    "InstallError",
    "IntegrityError",
    "ManifestEntry",
    "ManifestError",
    "PackageNotFoundError",
    "RecipeError",
    "RuntimeNotFoundError",
    "StageError",
    "TargetRuntime",
    "UpstreamUnavailableError",
]
