"""Package provider abstraction layer.

Provides a unified ``resolve`` interface over the places extension sources
come from:

1. PECL (default)
2. GitHub repositories
3. Bitbucket repositories
4. Local directories and archives
"""

import logging

import httpx

from pipeline.config import ProvidersConfig

from .base import PackageLocator, Provider, ProviderKind
from .bitbucket import BitbucketProvider
from .github import GithubProvider
from .local import LocalProvider
from .pecl import PeclProvider

logger = logging.getLogger(__name__)

__all__ = [
    "PackageLocator",
    "Provider",
    "ProviderKind",
    "PeclProvider",
    "GithubProvider",
    "BitbucketProvider",
    "LocalProvider",
    "PROVIDERS",
    "get_provider",
]

PROVIDERS: dict[ProviderKind, type[Provider]] = {
    ProviderKind.PECL: PeclProvider,
    ProviderKind.GITHUB: GithubProvider,
    ProviderKind.BITBUCKET: BitbucketProvider,
    ProviderKind.LOCAL: LocalProvider,
}


def get_provider(
    kind: str | ProviderKind | None = None,
    config: ProvidersConfig | None = None,
    client: httpx.Client | None = None,
) -> Provider:
    """Get a provider instance.

    Args:
        kind: Provider kind; None uses ``config.default``
        config: Provider configuration
        client: Optional HTTP client shared with the provider

    Returns:
        Configured Provider instance.

    Raises:
        ValueError: If the kind is unknown.
    """
    config = config or ProvidersConfig()
    name = kind.value if isinstance(kind, ProviderKind) else (kind or config.default)

    try:
        provider_kind = ProviderKind(name.lower())
    except ValueError:
        raise ValueError(
            f"Unknown provider: {name}. "
            f"Available: {', '.join(k.value for k in ProviderKind)}"
        ) from None

    logger.debug("Using provider: %s", provider_kind.value)
    return PROVIDERS[provider_kind](config=config, client=client)
