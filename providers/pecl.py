"""PECL registry provider."""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET

from extensions.errors import FetchError, PackageNotFoundError

from .base import PackageLocator, Provider, ProviderKind

# Stability channels published by the PECL REST index
STABILITY_TOKENS = ("latest", "stable", "beta", "alpha", "devel")

_VERSION_RE = re.compile(r"^[0-9][0-9A-Za-z.\-]*$")
_REST_NS = "{http://pear.php.net/dtd/rest.allreleases}"
_PACKAGE_NS = "{http://pear.php.net/dtd/rest.package}"


class PeclProvider(Provider):
    """Resolve packages against pecl.php.net.

    Package names are matched case-insensitively; the canonical spelling
    (``APCu`` for ``apcu``) comes from ``/rest/p/<package>/info.xml`` and is
    what the download URL uses. Symbolic tokens are looked up in the REST
    index (``/rest/r/<package>/<token>.txt``); literal versions are used
    as-is and a missing version surfaces as a 404 on fetch.

    Example:
        >>> provider = PeclProvider()
        >>> provider.resolve("apcu", "stable").url
        'https://pecl.php.net/get/APCu-5.1.23.tgz'
    """

    kind = ProviderKind.PECL

    def resolve(self, package_name: str, version_token: str) -> PackageLocator:
        token = (version_token or "stable").strip()
        if token.lower() not in STABILITY_TOKENS and not _VERSION_RE.match(token):
            raise PackageNotFoundError(
                f"Invalid PECL version for {package_name}: {token!r}"
            )

        name = self.canonical_name(package_name)
        if token.lower() in STABILITY_TOKENS:
            version = self._resolve_channel(name, token.lower())
            if not _VERSION_RE.match(version):
                raise FetchError(
                    f"Unexpected {token.lower()} version for {name}: {version!r}"
                )
        else:
            version = token

        archive_name = f"{name}-{version}.tgz"
        return PackageLocator(
            provider=self.kind,
            package=name,
            version=version,
            url=f"{self._base}/get/{archive_name}",
            archive_name=archive_name,
        )

    def canonical_name(self, package_name: str) -> str:
        """Package name as spelled by PECL.

        Raises:
            PackageNotFoundError: If PECL does not know the package
            FetchError: If the package info document is malformed
        """
        url = f"{self._base}/rest/p/{package_name.lower()}/info.xml"
        response = self._get(url)
        try:
            root = ET.fromstring(response.text)
        except ET.ParseError as e:
            raise FetchError(f"Malformed package info for {package_name}: {e}") from e

        node = root.find(f"{_PACKAGE_NS}n")
        if node is None:
            node = root.find("n")
        if node is None or not (node.text or "").strip():
            raise FetchError(f"Package info for {package_name} has no name")
        return node.text.strip()

    def list_versions(self, package_name: str) -> list[str]:
        """List released versions, newest first.

        Args:
            package_name: PECL package name

        Returns:
            Version strings as listed by allreleases.xml.
        """
        url = f"{self._rest_dir(package_name)}/allreleases.xml"
        response = self._get(url)
        try:
            root = ET.fromstring(response.text)
        except ET.ParseError as e:
            raise FetchError(f"Malformed release index for {package_name}: {e}") from e

        versions = [
            node.text.strip()
            for node in root.iter()
            if node.tag in (f"{_REST_NS}v", "v") and node.text
        ]
        return versions

    def _resolve_channel(self, package_name: str, channel: str) -> str:
        """Read the version published for a stability channel."""
        url = f"{self._rest_dir(package_name)}/{channel}.txt"
        version = self._get(url).text.strip()
        if not version:
            raise PackageNotFoundError(
                f"No {channel} release of {package_name} on PECL"
            )
        return version

    def _rest_dir(self, package_name: str) -> str:
        return f"{self._base}/rest/r/{package_name.lower()}"

    @property
    def _base(self) -> str:
        return self.config.pecl_url.rstrip("/")
