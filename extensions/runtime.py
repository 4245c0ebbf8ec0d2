"""Target runtime: one installed PHP build extensions are compiled against.

The runtime tree itself is produced and switched by an external tool; this
module only reads its layout::

    <runtimes_dir>/<version>/
    ├── bin/php, bin/phpize, bin/php-config
    ├── include/php/
    ├── lib/php/extensions/        extension_dir
    └── var/db/                    ini scan dir + extensions.yaml manifest
"""

from __future__ import annotations

import fcntl
import logging
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from extensions.errors import ExtensionError
from pipeline.config import Config

logger = logging.getLogger(__name__)

MANIFEST_FILE = "extensions.yaml"
LOCK_FILE = ".phpext.lock"

_runtime_locks: dict[Path, threading.Lock] = {}
_runtime_locks_lock = threading.Lock()


class RuntimeNotFoundError(ExtensionError):
    """Raised when the requested runtime is not installed."""

    kind = "runtime_not_found"


class RuntimeLockError(ExtensionError):
    """Raised when a runtime cannot be locked for changes."""

    kind = "runtime_lock"


@dataclass(frozen=True)
class TargetRuntime:
    """Paths of one installed runtime.

    Attributes:
        version: Runtime version name (e.g. "8.1" or "8.1.27").
        root: Install prefix of the runtime.
        extension_dir: Where shared objects are installed. Defaults to
            ``<root>/lib/php/extensions``.
        config_scan_dir: Directory of per-extension ini files. Defaults to
            ``<root>/var/db``.
    """

    version: str
    root: Path
    extension_dir: Path | None = None
    config_scan_dir: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root))
        if self.extension_dir is None:
            object.__setattr__(self, "extension_dir", self.root / "lib" / "php" / "extensions")
        if self.config_scan_dir is None:
            object.__setattr__(self, "config_scan_dir", self.root / "var" / "db")

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def php(self) -> Path:
        return self.bin_dir / "php"

    @property
    def phpize(self) -> Path:
        return self.bin_dir / "phpize"

    @property
    def php_config(self) -> Path:
        return self.bin_dir / "php-config"

    @property
    def include_dir(self) -> Path:
        return self.root / "include" / "php"

    @property
    def manifest_path(self) -> Path:
        return self.config_scan_dir / MANIFEST_FILE

    @property
    def lock_path(self) -> Path:
        return self.config_scan_dir / LOCK_FILE

    def ini_path(self, name: str) -> Path:
        return self.config_scan_dir / f"{name}.ini"

    def validate(self) -> None:
        """Check that the build tools for this runtime exist.

        Raises:
            RuntimeNotFoundError: If phpize or php-config is missing.
        """
        for tool in (self.phpize, self.php_config):
            if not tool.exists():
                raise RuntimeNotFoundError(
                    f"Runtime {self.version} at {self.root} is missing {tool.name}"
                )

    @classmethod
    def from_root(cls, root: Path, version: str | None = None) -> TargetRuntime:
        """Build a runtime from its prefix.

        The version is read from ``php-config --version`` when not given, and
        the extension dir from ``php-config --extension-dir`` when it reports
        one.
        """
        root = Path(root).expanduser()
        php_config = root / "bin" / "php-config"
        if version is None:
            version = _php_config_value(php_config, "--version") or root.name
        extension_dir = _php_config_value(php_config, "--extension-dir")
        return cls(
            version=version,
            root=root,
            extension_dir=Path(extension_dir) if extension_dir else None,
        )

    @classmethod
    def discover(cls, runtimes_dir: Path, version: str) -> TargetRuntime:
        """Find an installed runtime by version name.

        Accepts "8.1" for a tree named "8.1" or "php-8.1".

        Raises:
            RuntimeNotFoundError: If no such runtime exists.
        """
        for name in (version, f"php-{version}"):
            root = Path(runtimes_dir) / name
            if root.is_dir():
                return cls.from_root(root, version=version)
        raise RuntimeNotFoundError(f"Runtime {version} not found in {runtimes_dir}")

    @classmethod
    def active(cls, config: Config) -> TargetRuntime:
        """The runtime currently selected by the external switch.

        Raises:
            RuntimeNotFoundError: If no runtime is active.
        """
        if not config.runtime.active:
            raise RuntimeNotFoundError(
                "No active runtime. Set PHPEXT_RUNTIME or [runtime] active in phpext.toml"
            )
        return cls.discover(config.paths.runtimes_path, config.runtime.active)


def list_runtimes(runtimes_dir: Path) -> list[str]:
    """Version names of runtimes installed under a directory."""
    if not runtimes_dir.exists():
        return []
    return sorted(
        p.name.removeprefix("php-")
        for p in runtimes_dir.iterdir()
        if p.is_dir() and (p / "bin").is_dir()
    )


def thread_lock_for(runtime: TargetRuntime) -> threading.Lock:
    """In-process lock shared by every TargetRuntime with the same root."""
    key = runtime.root.resolve()
    with _runtime_locks_lock:
        return _runtime_locks.setdefault(key, threading.Lock())


@contextmanager
def runtime_lock(runtime: TargetRuntime) -> Iterator[None]:
    """Exclusive hold on one runtime's extension dir and manifest.

    Threads serialize on ``thread_lock_for``; other processes on an flock of
    ``<config_scan_dir>/.phpext.lock``.

    Raises:
        RuntimeNotFoundError: If the runtime root does not exist
        RuntimeLockError: If the lock file cannot be opened
    """
    if not runtime.root.is_dir():
        raise RuntimeNotFoundError(f"Runtime {runtime.version} not found at {runtime.root}")
    with thread_lock_for(runtime):
        lock_file = runtime.lock_path
        try:
            lock_file.parent.mkdir(parents=True, exist_ok=True)
            fh = lock_file.open("a")
        except OSError as e:
            raise RuntimeLockError(f"Cannot lock runtime {runtime.version}: {e}") from e
        with fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def _php_config_value(php_config: Path, flag: str) -> str | None:
    if not php_config.exists():
        return None
    try:
        result = subprocess.run(
            [str(php_config), flag],
            capture_output=True,
            text=True,
            timeout=30,
            check=True,
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
        logger.warning("php-config %s failed: %s", flag, e)
        return None
    return result.stdout.strip() or None
