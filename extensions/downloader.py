"""Extension source downloader.

Resolves a package through a Provider, fetches the archive into the
PackageCache (reusing it when present) and unpacks it into a fresh work
directory.
"""

from __future__ import annotations

import logging
import shutil
import tarfile
import uuid
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from extensions.cache import CacheEntry, PackageCache
from extensions.context import InstallContext
from extensions.errors import (
    Cancelled,
    ExtractError,
    FetchError,
    UpstreamUnavailableError,
)
from pipeline.config import Config
from providers.base import PackageLocator, Provider, raise_for_status

logger = logging.getLogger(__name__)

# Marker files that identify the root of a PHP extension source tree
SOURCE_MARKERS = ("config.m4", "config0.m4", "config.w32")


@dataclass
class ExtractedSource:
    """Unpacked sources for one install attempt."""

    path: Path
    source_root: Path
    locator: PackageLocator
    cache_entry: CacheEntry | None = None
    from_cache: bool = False

    def cleanup(self) -> None:
        """Remove the work directory."""
        shutil.rmtree(self.path, ignore_errors=True)


class ExtensionDownloader:
    """Fetch, cache and extract extension sources.

    Example:
        >>> downloader = ExtensionDownloader(config)
        >>> source = downloader.download(PeclProvider(), "APCu", "latest")
        >>> source.source_root
        PosixPath('/home/me/.phpext/build/APCu-5.1.23-3f2a.../APCu-5.1.23')
    """

    def __init__(
        self,
        config: Config | None = None,
        cache: PackageCache | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the downloader.

        Args:
            config: Paths, retry and timeout settings
            cache: Archive cache (default: config.paths.cache_path)
            client: Optional HTTP client (mainly for tests)
        """
        self.config = config or Config()
        self.cache = cache or PackageCache(self.config.paths.cache_path)
        self.build_dir = self.config.paths.build_path
        self._client = client

    def download(
        self,
        provider: Provider,
        package_name: str,
        version_token: str,
        context: InstallContext | None = None,
        force: bool = False,
    ) -> ExtractedSource:
        """Resolve, fetch (or reuse) and extract a package.

        Args:
            provider: Where the package comes from
            package_name: Package name understood by the provider
            version_token: Literal version, symbolic token or VCS ref
            context: Cancellation and timeout carrier
            force: Invalidate any cached archive first

        Returns:
            ExtractedSource in a fresh work directory.

        Raises:
            PackageNotFoundError: Unknown package or version
            UpstreamUnavailableError: Upstream still failing after retries
            FetchError: Non-transient fetch failure
            IntegrityError: Checksum mismatch
            ExtractError: Archive could not be unpacked
            Cancelled: Caller aborted
        """
        context = context or InstallContext.from_config(self.config)
        context.check_cancelled()

        locator = provider.resolve(package_name, version_token)
        logger.info(
            "Resolved %s %s -> %s (%s)",
            package_name, version_token, locator.version, locator.source,
        )

        if locator.path and Path(locator.path).is_dir():
            return self._copy_directory(locator, context)

        with self.cache.lock(locator):
            try:
                if force:
                    self.cache.invalidate(locator)
                entry = self.cache.get(locator)
                from_cache = entry is not None
                if entry is None:
                    entry = self._fetch(locator, context)
            except OSError as e:
                raise FetchError(
                    f"Could not cache {locator.package} {locator.version}: {e}"
                ) from e

        context.check_cancelled()
        work_dir = self._new_work_dir(locator)
        try:
            self._extract(entry.archive, work_dir, context)
        except BaseException:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise

        return ExtractedSource(
            path=work_dir,
            source_root=find_source_root(work_dir),
            locator=locator,
            cache_entry=entry,
            from_cache=from_cache,
        )

    def _fetch(self, locator: PackageLocator, context: InstallContext) -> CacheEntry:
        """Fetch into the cache with bounded retry on transient failures."""
        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.config.fetch.retries)),
            wait=wait_exponential(
                multiplier=self.config.fetch.backoff_min,
                min=self.config.fetch.backoff_min,
                max=self.config.fetch.backoff_max,
            ),
            retry=retry_if_exception_type(UpstreamUnavailableError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(
            self.cache.store,
            locator,
            lambda f: self._write_source(locator, f, context),
        )

    def _write_source(
        self, locator: PackageLocator, f: BinaryIO, context: InstallContext
    ) -> None:
        context.check_cancelled()
        if locator.path:
            with open(locator.path, "rb") as src:
                shutil.copyfileobj(src, f)
            return

        logger.info("Downloading %s", locator.url)
        try:
            if self._client is not None:
                self._stream(self._client, locator.url, f, context)
            else:
                with httpx.Client(
                    timeout=context.fetch_timeout,
                    follow_redirects=True,
                    headers={"User-Agent": self.config.fetch.user_agent},
                ) as client:
                    self._stream(client, locator.url, f, context)
        except httpx.RequestError as e:
            raise UpstreamUnavailableError(
                f"Connection error downloading {locator.url}: {e}"
            ) from e

    def _stream(
        self,
        client: httpx.Client,
        url: str,
        f: BinaryIO,
        context: InstallContext,
    ) -> None:
        with client.stream("GET", url, timeout=context.fetch_timeout) as response:
            if response.status_code >= 400:
                response.read()
                raise_for_status(response)
            for chunk in response.iter_bytes(self.config.fetch.chunk_size):
                if context.cancelled:
                    raise Cancelled(f"Download of {url} cancelled")
                f.write(chunk)

    def _new_work_dir(self, locator: PackageLocator) -> Path:
        name = f"{Path(locator.package).name}-{locator.version}-{uuid.uuid4().hex[:8]}"
        work_dir = self.build_dir / name.replace("/", "_")
        try:
            work_dir.mkdir(parents=True)
        except OSError as e:
            raise ExtractError(f"Could not create work directory {work_dir}: {e}") from e
        return work_dir

    def _copy_directory(
        self, locator: PackageLocator, context: InstallContext
    ) -> ExtractedSource:
        work_dir = self._new_work_dir(locator)
        target = work_dir / Path(locator.path).name
        try:
            shutil.copytree(locator.path, target, symlinks=True)
            context.check_cancelled()
        except OSError as e:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise ExtractError(f"Failed to copy {locator.path}: {e}") from e
        except BaseException:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise
        return ExtractedSource(
            path=work_dir,
            source_root=find_source_root(work_dir),
            locator=locator,
        )

    def _extract(self, archive: Path, dest: Path, context: InstallContext) -> None:
        logger.debug("Extracting %s -> %s", archive, dest)
        try:
            if archive.name.lower().endswith(".zip"):
                self._extract_zip(archive, dest)
            else:
                with tarfile.open(archive, "r:*") as tar:
                    tar.extractall(dest, filter="data")
        except (tarfile.TarError, zipfile.BadZipFile, OSError) as e:
            raise ExtractError(f"Failed to extract {archive.name}: {e}") from e
        context.check_cancelled()

    @staticmethod
    def _extract_zip(archive: Path, dest: Path) -> None:
        root = dest.resolve()
        with zipfile.ZipFile(archive) as zf:
            for member in zf.namelist():
                target = (dest / member).resolve()
                if not target.is_relative_to(root):
                    raise ExtractError(f"Unsafe path in {archive.name}: {member}")
            zf.extractall(dest)


def find_source_root(directory: Path) -> Path:
    """Locate the extension source tree inside an extraction directory.

    PECL tarballs ship ``package.xml`` beside a ``<name>-<version>/`` dir,
    GitHub archives wrap everything in one top-level dir.
    """
    for marker in SOURCE_MARKERS:
        if (directory / marker).exists():
            return directory
    for marker in SOURCE_MARKERS:
        found = sorted(directory.glob(f"*/{marker}"))
        if found:
            return found[0].parent

    children = [p for p in directory.iterdir() if not p.name.startswith(".")]
    if len(children) == 1 and children[0].is_dir():
        return children[0]
    return directory
