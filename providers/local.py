"""Local filesystem provider."""

from __future__ import annotations

import hashlib
from pathlib import Path

from extensions.errors import PackageNotFoundError

from .base import PackageLocator, Provider, ProviderKind, is_symbolic

ARCHIVE_SUFFIXES = (".tgz", ".tar.gz", ".tar.bz2", ".tar.xz", ".tar", ".zip")


def is_archive(path: Path) -> bool:
    return path.name.lower().endswith(ARCHIVE_SUFFIXES)


def file_sha256(path: Path, chunk_size: int = 64 * 1024) -> str:
    """Hex sha256 of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


class LocalProvider(Provider):
    """Use a source directory or archive already on disk.

    The package name is the path. Archives are pinned by their sha256 so the
    downloader can cache them like any remote artifact; directories are
    copied straight into the work dir.
    """

    kind = ProviderKind.LOCAL

    def resolve(self, package_name: str, version_token: str) -> PackageLocator:
        path = Path(package_name).expanduser().resolve()
        if not path.exists():
            raise PackageNotFoundError(f"Local source not found: {path}")

        token = (version_token or "").strip()

        if path.is_dir():
            return PackageLocator(
                provider=self.kind,
                package=path.name,
                version=token if token and not is_symbolic(token) else "local",
                path=str(path),
                archive_name=path.name,
            )

        if not is_archive(path):
            raise PackageNotFoundError(f"Not a source archive: {path}")

        digest = file_sha256(path)
        version = token if token and not is_symbolic(token) else digest[:12]
        return PackageLocator(
            provider=self.kind,
            package=_package_stem(path),
            version=version,
            path=str(path),
            checksum=digest,
            revision=digest[:12],
            archive_name=path.name,
        )


def _package_stem(path: Path) -> str:
    name = path.name
    for suffix in ARCHIVE_SUFFIXES:
        if name.lower().endswith(suffix):
            return name[: -len(suffix)]
    return name
