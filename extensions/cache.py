"""Content-keyed archive cache.

Archives are stored under ``<cache_dir>/<provider>/<package>/<version>/``
next to a ``meta.json`` recording where they came from and their sha256.
Entries are written through a temporary file and promoted with
``os.replace`` so readers never see a partial archive.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Callable, Iterator

from extensions.errors import IntegrityError
from providers.base import PackageLocator
from providers.local import file_sha256

logger = logging.getLogger(__name__)

META_FILE = "meta.json"

_UNSAFE = re.compile(r"[^A-Za-z0-9._+-]+")

_key_locks: dict[tuple[str, str, str], threading.Lock] = {}
_key_locks_lock = threading.Lock()


def _safe(component: str) -> str:
    """Make a key component usable as a single path segment."""
    cleaned = _UNSAFE.sub("_", component).strip("._")
    return cleaned or "_"


@dataclass(frozen=True)
class CacheEntry:
    """A stored archive and its recorded metadata."""

    key: tuple[str, str, str]
    archive: Path
    sha256: str
    size: int
    source: str
    fetched_at: str

    @property
    def directory(self) -> Path:
        return self.archive.parent

    @classmethod
    def from_meta(cls, directory: Path, meta: dict[str, Any]) -> CacheEntry:
        return cls(
            key=tuple(meta["key"]),
            archive=directory / meta["archive"],
            sha256=meta["sha256"],
            size=int(meta.get("size", 0)),
            source=meta.get("source", ""),
            fetched_at=meta.get("fetched_at", ""),
        )


class PackageCache:
    """Cache of fetched archives keyed by (provider, package, version).

    Example:
        >>> cache = PackageCache(Path("~/.phpext/cache").expanduser())
        >>> entry = cache.get(locator)
        >>> entry or cache.store(locator, lambda f: f.write(data))
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    @staticmethod
    def key_for(locator: PackageLocator) -> tuple[str, str, str]:
        return (
            locator.provider.value,
            locator.package.lower(),
            locator.cache_version,
        )

    def entry_dir(self, locator: PackageLocator) -> Path:
        provider, package, version = self.key_for(locator)
        return self.root / _safe(provider) / _safe(package) / _safe(version)

    @contextmanager
    def lock(self, locator: PackageLocator) -> Iterator[None]:
        """Serialize writers of one cache key within this process."""
        key = self.key_for(locator)
        with _key_locks_lock:
            key_lock = _key_locks.setdefault(key, threading.Lock())
        with key_lock:
            yield

    def get(self, locator: PackageLocator) -> CacheEntry | None:
        """Return a valid entry for the locator, or None.

        An entry whose archive no longer matches its recorded digest (or the
        locator's checksum) counts as missing.
        """
        directory = self.entry_dir(locator)
        meta_path = directory / META_FILE
        if not meta_path.exists():
            return None

        try:
            entry = CacheEntry.from_meta(
                directory, json.loads(meta_path.read_text(encoding="utf-8"))
            )
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Ignoring unreadable cache metadata %s: %s", meta_path, e)
            return None

        if not entry.archive.exists():
            return None
        actual = file_sha256(entry.archive)
        if actual != entry.sha256:
            logger.warning("Cache entry %s is corrupt, refetching", entry.archive)
            return None
        if locator.checksum and locator.checksum.lower() != actual:
            logger.warning("Cache entry %s does not match upstream checksum", entry.archive)
            return None

        logger.debug("Cache hit: %s", entry.archive)
        return entry

    def store(
        self,
        locator: PackageLocator,
        fill: Callable[[BinaryIO], None],
    ) -> CacheEntry:
        """Write an archive into the cache.

        Args:
            locator: Locator the bytes belong to
            fill: Callback writing the archive bytes into an open file

        Returns:
            The promoted CacheEntry.

        Raises:
            IntegrityError: If the locator carries a checksum that the
                written bytes do not match. Nothing is promoted.
        """
        directory = self.entry_dir(locator)
        directory.parent.mkdir(parents=True, exist_ok=True)

        # Stage in the parent so the final rename stays on one filesystem
        staging = Path(tempfile.mkdtemp(prefix=".tmp-", dir=directory.parent))
        try:
            archive_name = _safe(locator.archive_name or f"{locator.package}.tgz")
            tmp_archive = staging / archive_name
            with open(tmp_archive, "wb") as f:
                fill(f)

            digest = file_sha256(tmp_archive)
            if locator.checksum and locator.checksum.lower() != digest:
                raise IntegrityError(
                    f"Checksum mismatch for {locator.package} {locator.version}",
                    expected=locator.checksum.lower(),
                    actual=digest,
                )

            meta = {
                "key": list(self.key_for(locator)),
                "archive": archive_name,
                "sha256": digest,
                "size": tmp_archive.stat().st_size,
                "source": locator.source,
                "version": locator.version,
                "revision": locator.revision,
                "fetched_at": datetime.now(timezone.utc).isoformat(),
            }
            (staging / META_FILE).write_text(json.dumps(meta, indent=2), encoding="utf-8")

            # Replace wholesale: old entry out of the way, staged dir in
            if directory.exists():
                retired = Path(tempfile.mkdtemp(prefix=".old-", dir=directory.parent))
                os.replace(directory, retired / "entry")
                shutil.rmtree(retired, ignore_errors=True)
            os.replace(staging, directory)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        logger.info("Cached %s %s (%d bytes)", locator.package, locator.version, meta["size"])
        return CacheEntry.from_meta(directory, meta)

    def invalidate(self, locator: PackageLocator) -> bool:
        """Remove the entry for a locator.

        Returns:
            True if an entry was removed.
        """
        directory = self.entry_dir(locator)
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        logger.info("Invalidated cache entry %s", directory)
        return True

    def entries(self) -> list[CacheEntry]:
        """List all readable cache entries."""
        found: list[CacheEntry] = []
        if not self.root.exists():
            return found
        for meta_path in sorted(self.root.glob(f"*/*/*/{META_FILE}")):
            try:
                found.append(
                    CacheEntry.from_meta(
                        meta_path.parent,
                        json.loads(meta_path.read_text(encoding="utf-8")),
                    )
                )
            except (OSError, ValueError, KeyError):
                continue
        return found

    def clear(self) -> int:
        """Remove every entry.

        Returns:
            Number of entries removed.
        """
        count = len(self.entries())
        if self.root.exists():
            shutil.rmtree(self.root)
        return count
