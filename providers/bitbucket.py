"""Bitbucket repository provider."""

from __future__ import annotations

from extensions.errors import FetchError, PackageNotFoundError

from .base import PackageLocator, Provider, ProviderKind, is_symbolic
from .github import split_repo


class BitbucketProvider(Provider):
    """Resolve refs in a Bitbucket Cloud repository to commit archives."""

    kind = ProviderKind.BITBUCKET

    def resolve(self, package_name: str, version_token: str) -> PackageLocator:
        owner, repo = split_repo(package_name)
        token = (version_token or "latest").strip()

        ref = self._latest_tag(owner, repo) if is_symbolic(token) else token
        data = self._get_json(f"{self._repo_api(owner, repo)}/commit/{ref}")
        sha = data.get("hash", "") if isinstance(data, dict) else ""
        if not sha:
            raise FetchError(f"Unexpected commit response for {owner}/{repo}@{ref}")

        return PackageLocator(
            provider=self.kind,
            package=f"{owner}/{repo}",
            version=ref,
            revision=sha,
            url=f"{self.config.bitbucket_url.rstrip('/')}/{owner}/{repo}/get/{sha}.tar.gz",
            archive_name=f"{repo}-{sha[:12]}.tar.gz",
        )

    def _latest_tag(self, owner: str, repo: str) -> str:
        data = self._get_json(
            f"{self._repo_api(owner, repo)}/refs/tags",
            params={"sort": "-target.date", "pagelen": 1},
        )
        values = data.get("values") if isinstance(data, dict) else None
        if values is None:
            raise FetchError(f"Unexpected tag listing for {owner}/{repo}")
        if not values:
            raise PackageNotFoundError(f"{owner}/{repo} has no tags")
        name = values[0].get("name") if isinstance(values[0], dict) else None
        if not name:
            raise FetchError(f"Unexpected tag listing for {owner}/{repo}")
        return name

    def _repo_api(self, owner: str, repo: str) -> str:
        return f"{self.config.bitbucket_api_url.rstrip('/')}/2.0/repositories/{owner}/{repo}"
