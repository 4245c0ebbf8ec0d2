"""Abstract base class for package providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from extensions.errors import (
    FetchError,
    PackageNotFoundError,
    UpstreamUnavailableError,
)
from pipeline.config import ProvidersConfig

logger = logging.getLogger(__name__)

# Tokens every provider understands; anything else is a literal version or ref
SYMBOLIC_TOKENS = ("latest", "stable")


class ProviderKind(str, Enum):
    """Kind of package source."""

    PECL = "pecl"
    GITHUB = "github"
    BITBUCKET = "bitbucket"
    LOCAL = "local"


@dataclass(frozen=True)
class PackageLocator:
    """Resolved download target produced by ``Provider.resolve``.

    Attributes:
        provider: Kind of provider that produced this locator.
        package: Upstream package name (as the provider spells it).
        version: Resolved version label (never a symbolic token).
        url: Remote archive URL (mutually exclusive with ``path``).
        path: Local archive or source directory.
        checksum: Expected sha256 hex digest, when upstream publishes one.
        revision: Commit id for VCS providers.
        archive_name: File name to store the archive under.
    """

    provider: ProviderKind
    package: str
    version: str
    url: str | None = None
    path: str | None = None
    checksum: str | None = None
    revision: str | None = None
    archive_name: str = ""

    def __post_init__(self) -> None:
        if bool(self.url) == bool(self.path):
            raise ValueError("PackageLocator needs exactly one of url or path")

    @property
    def cache_version(self) -> str:
        """Version component of the cache key.

        Branches move, commits do not, so VCS locators key on the revision.
        """
        return self.revision or self.version

    @property
    def is_remote(self) -> bool:
        return self.url is not None

    @property
    def source(self) -> str:
        return self.url or self.path or ""


class Provider(ABC):
    """Abstract interface for package sources.

    Providers only resolve; they never write to disk. Each concrete provider
    defines what a version token means for its source.
    """

    kind: ProviderKind

    def __init__(
        self,
        config: ProvidersConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize provider.

        Args:
            config: Provider URLs, tokens and timeouts
            client: Optional shared HTTP client (mainly for tests)
        """
        self.config = config or ProvidersConfig()
        self._client = client

    @abstractmethod
    def resolve(self, package_name: str, version_token: str) -> PackageLocator:
        """Resolve a package name and version token into a locator.

        Args:
            package_name: Package name as understood by this provider
            version_token: Literal version, symbolic token ("latest",
                "stable") or source-control ref

        Returns:
            An immutable PackageLocator.

        Raises:
            PackageNotFoundError: If the package or version does not exist
            UpstreamUnavailableError: If the source cannot be reached
        """
        ...

    def headers(self) -> dict[str, str]:
        """Extra request headers for this provider."""
        return {}

    def _get(self, url: str, **kwargs: Any) -> httpx.Response:
        """GET a URL, mapping transport and status errors to our taxonomy."""
        headers = {**self.headers(), **kwargs.pop("headers", {})}
        logger.debug("%s GET %s", self.kind.value, url)
        try:
            if self._client is not None:
                response = self._client.get(url, headers=headers, **kwargs)
            else:
                with httpx.Client(
                    timeout=self.config.timeout, follow_redirects=True
                ) as client:
                    response = client.get(url, headers=headers, **kwargs)
        except httpx.RequestError as e:
            raise UpstreamUnavailableError(f"Connection error for {url}: {e}") from e

        raise_for_status(response)
        return response

    def _get_json(self, url: str, **kwargs: Any) -> Any:
        """GET a URL and decode its JSON body."""
        response = self._get(url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Malformed JSON from {url}: {e}") from e

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(kind={self.kind.value!r})"


def raise_for_status(response: httpx.Response) -> None:
    """Map HTTP error statuses onto the provider error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    url = str(response.request.url)
    if status == 404:
        raise PackageNotFoundError(f"Not found: {url}")
    if status == 429 or status >= 500:
        raise UpstreamUnavailableError(f"Upstream error {status} for {url}")
    raise FetchError(f"HTTP {status} for {url}")


def is_symbolic(version_token: str) -> bool:
    """Whether a token needs an index lookup rather than a literal match."""
    return version_token.lower() in SYMBOLIC_TOKENS
