"""Tests for extensions.downloader."""

import io
import tarfile
import zipfile

import pytest

from extensions.context import InstallContext
from extensions.downloader import ExtensionDownloader, find_source_root
from extensions.errors import (
    Cancelled,
    ExtractError,
    IntegrityError,
    PackageNotFoundError,
    UpstreamUnavailableError,
)
from providers import LocalProvider, PeclProvider
from providers.base import PackageLocator, Provider, ProviderKind
from tests.conftest import PECL_URL, extension_tarball, make_tarball


@pytest.fixture
def downloader(config, http_client):
    return ExtensionDownloader(config, client=http_client)


@pytest.fixture
def pecl(config, http_client):
    return PeclProvider(config.providers, http_client)


class PinnedProvider(Provider):
    """Returns a fixed locator."""

    kind = ProviderKind.PECL

    def __init__(self, locator):
        super().__init__()
        self.locator = locator

    def resolve(self, package_name, version_token):
        return self.locator


class TestDownload:

    def test_fetch_and_extract(self, upstream, downloader, pecl):
        upstream.serve_pecl("APCu", "5.1.23", extension_tarball())

        source = downloader.download(pecl, "APCu", "latest")

        assert source.locator.version == "5.1.23"
        assert source.from_cache is False
        assert source.source_root.name == "apcu-5.1.23"
        assert (source.source_root / "config.m4").exists()
        assert source.path.parent == downloader.build_dir

    def test_second_download_uses_cache(self, upstream, downloader, pecl):
        url = upstream.serve_pecl("APCu", "5.1.23", extension_tarball())

        first = downloader.download(pecl, "APCu", "5.1.23")
        second = downloader.download(pecl, "APCu", "5.1.23")

        assert upstream.hits(url) == 1
        assert second.from_cache is True
        assert second.cache_entry.sha256 == first.cache_entry.sha256
        # Every attempt gets its own work directory
        assert first.path != second.path

    def test_force_refetches(self, upstream, downloader, pecl):
        url = upstream.serve_pecl("APCu", "5.1.23", extension_tarball())

        downloader.download(pecl, "APCu", "5.1.23")
        source = downloader.download(pecl, "APCu", "5.1.23", force=True)

        assert upstream.hits(url) == 2
        assert source.from_cache is False

    def test_missing_version(self, upstream, downloader, pecl):
        upstream.pecl_info("APCu")
        with pytest.raises(PackageNotFoundError):
            downloader.download(pecl, "APCu", "9.9.9")
        assert downloader.cache.entries() == []

    def test_cleanup_removes_work_dir(self, upstream, downloader, pecl):
        upstream.serve_pecl("APCu", "5.1.23", extension_tarball())
        source = downloader.download(pecl, "APCu", "5.1.23")
        source.cleanup()
        assert not source.path.exists()


class TestRetry:

    def test_transient_failure_is_retried(self, upstream, downloader, pecl):
        upstream.pecl_info("APCu")
        url = f"{PECL_URL}/get/APCu-5.1.23.tgz"
        upstream.add(url, status=503)
        upstream.add(url, status=502)
        upstream.add(url, extension_tarball())

        source = downloader.download(pecl, "APCu", "5.1.23")

        assert upstream.hits(url) == 3
        assert (source.source_root / "config.m4").exists()

    def test_gives_up_after_configured_attempts(self, upstream, downloader, pecl):
        upstream.pecl_info("APCu")
        url = f"{PECL_URL}/get/APCu-5.1.23.tgz"
        upstream.add(url, status=503)

        with pytest.raises(UpstreamUnavailableError):
            downloader.download(pecl, "APCu", "5.1.23")

        assert upstream.hits(url) == downloader.config.fetch.retries
        assert downloader.cache.entries() == []

    def test_not_found_is_not_retried(self, upstream, downloader, pecl):
        upstream.pecl_info("APCu")
        url = f"{PECL_URL}/get/APCu-5.1.23.tgz"
        with pytest.raises(PackageNotFoundError):
            downloader.download(pecl, "APCu", "5.1.23")
        assert upstream.hits(url) == 1


class TestIntegrity:

    def test_checksum_mismatch_leaves_no_cache_entry(self, upstream, downloader):
        url = f"{PECL_URL}/get/APCu-5.1.23.tgz"
        upstream.add(url, extension_tarball())
        locator = PackageLocator(
            provider=ProviderKind.PECL,
            package="APCu",
            version="5.1.23",
            url=url,
            checksum="f" * 64,
        )

        with pytest.raises(IntegrityError):
            downloader.download(PinnedProvider(locator), "APCu", "5.1.23")

        assert downloader.cache.get(locator) is None
        assert not downloader.build_dir.exists() or list(downloader.build_dir.iterdir()) == []


class TestExtract:

    def test_corrupt_archive(self, upstream, downloader, pecl):
        upstream.serve_pecl("APCu", "5.1.23", b"this is not a tarball")

        with pytest.raises(ExtractError):
            downloader.download(pecl, "APCu", "5.1.23")
        assert list(downloader.build_dir.iterdir()) == []

    def test_tar_path_traversal_is_rejected(self, upstream, downloader, pecl):
        upstream.serve_pecl("evil", "1.0", make_tarball({"../escape.txt": "x"}))

        with pytest.raises(ExtractError):
            downloader.download(pecl, "evil", "1.0")
        assert not (downloader.build_dir / "escape.txt").exists()

    def test_zip_archive(self, tmp_path, downloader):
        archive = tmp_path / "demo-1.0.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("demo-1.0/config.m4", "PHP_ARG_ENABLE(demo)\n")

        source = downloader.download(LocalProvider(), str(archive), "1.0")

        assert source.source_root.name == "demo-1.0"

    def test_zip_path_traversal_is_rejected(self, tmp_path, downloader):
        archive = tmp_path / "evil.zip"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../../escape.txt", "x")

        with pytest.raises(ExtractError):
            downloader.download(LocalProvider(), str(archive), "1.0")


class TestLocalSources:

    def test_local_archive_is_cached(self, tmp_path, downloader):
        archive = tmp_path / "apcu-5.1.23.tgz"
        archive.write_bytes(extension_tarball())

        first = downloader.download(LocalProvider(), str(archive), "latest")
        second = downloader.download(LocalProvider(), str(archive), "latest")

        assert first.from_cache is False
        assert second.from_cache is True

    def test_local_directory_is_copied(self, tmp_path, downloader):
        source_dir = tmp_path / "myext"
        source_dir.mkdir()
        (source_dir / "config.m4").write_text("PHP_ARG_ENABLE(myext)\n")

        source = downloader.download(LocalProvider(), str(source_dir), "")

        assert source.source_root != source_dir
        assert (source.source_root / "config.m4").exists()
        assert downloader.cache.entries() == []


class TestCancellation:

    def test_cancelled_before_fetch(self, upstream, downloader, pecl, config):
        url = upstream.serve_pecl("APCu", "5.1.23", extension_tarball())
        context = InstallContext.from_config(config)
        context.cancel()

        with pytest.raises(Cancelled):
            downloader.download(pecl, "APCu", "5.1.23", context=context)
        assert upstream.hits(url) == 0


class TestFindSourceRoot:

    def test_marker_at_top(self, tmp_path):
        (tmp_path / "config.m4").write_text("")
        assert find_source_root(tmp_path) == tmp_path

    def test_single_wrapping_directory(self, tmp_path):
        (tmp_path / "swoole-src-abc").mkdir()
        (tmp_path / "swoole-src-abc" / "config.m4").write_text("")
        assert find_source_root(tmp_path) == tmp_path / "swoole-src-abc"

    def test_windows_marker(self, tmp_path):
        (tmp_path / "ext").mkdir()
        (tmp_path / "ext" / "config.w32").write_text("")
        (tmp_path / "package.xml").write_text("")
        assert find_source_root(tmp_path) == tmp_path / "ext"
