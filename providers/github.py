"""GitHub repository provider."""

from __future__ import annotations

from extensions.errors import FetchError, PackageNotFoundError

from .base import PackageLocator, Provider, ProviderKind, is_symbolic


def split_repo(package_name: str) -> tuple[str, str]:
    """Split ``owner/repo`` into its parts."""
    parts = package_name.strip("/").split("/")
    if len(parts) != 2 or not all(parts):
        raise PackageNotFoundError(
            f"Expected 'owner/repo', got {package_name!r}"
        )
    return parts[0], parts[1]


class GithubProvider(Provider):
    """Resolve refs in a GitHub repository to commit archives.

    ``latest``/``stable`` mean the latest release (or newest tag when the
    repository publishes no releases). Any other token is a tag, branch or
    commit and is pinned to a commit sha.
    """

    kind = ProviderKind.GITHUB

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.config.github_token:
            headers["Authorization"] = f"Bearer {self.config.github_token}"
        return headers

    def resolve(self, package_name: str, version_token: str) -> PackageLocator:
        owner, repo = split_repo(package_name)
        token = (version_token or "latest").strip()

        ref = self._latest_tag(owner, repo) if is_symbolic(token) else token
        sha = self._commit_for(owner, repo, ref)

        return PackageLocator(
            provider=self.kind,
            package=f"{owner}/{repo}",
            version=ref,
            revision=sha,
            url=f"{self.config.github_url.rstrip('/')}/{owner}/{repo}/archive/{sha}.tar.gz",
            archive_name=f"{repo}-{sha[:12]}.tar.gz",
        )

    def _latest_tag(self, owner: str, repo: str) -> str:
        """Tag of the latest release, falling back to the newest tag."""
        try:
            data = self._get_json(f"{self._api}/repos/{owner}/{repo}/releases/latest")
            if isinstance(data, dict) and data.get("tag_name"):
                return data["tag_name"]
        except PackageNotFoundError:
            pass

        tags = self._get_json(f"{self._api}/repos/{owner}/{repo}/tags")
        if not isinstance(tags, list):
            raise FetchError(f"Unexpected tag listing for {owner}/{repo}")
        if not tags:
            raise PackageNotFoundError(f"{owner}/{repo} has no releases or tags")
        name = tags[0].get("name") if isinstance(tags[0], dict) else None
        if not name:
            raise FetchError(f"Unexpected tag listing for {owner}/{repo}")
        return name

    def _commit_for(self, owner: str, repo: str, ref: str) -> str:
        response = self._get(
            f"{self._api}/repos/{owner}/{repo}/commits/{ref}",
            headers={"Accept": "application/vnd.github.sha"},
        )
        sha = response.text.strip()
        if len(sha) < 7:
            raise FetchError(f"Unexpected commit response for {owner}/{repo}@{ref}")
        return sha

    @property
    def _api(self) -> str:
        return self.config.github_api_url.rstrip("/")
