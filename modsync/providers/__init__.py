"""Provider clients and the registry that dispatches to them by tag."""

from typing import Iterable, Iterator

from ..errors import Unavailable
from ..models import ProviderTag
from .base import DownloadedFile, ProviderClient
from .curseforge import CurseForgeClient
from .github import GitHubReleasesClient
from .modrinth import ModrinthClient


class ProviderRegistry:
    """A closed set of provider clients keyed by their tag."""

    def __init__(self, clients: Iterable[ProviderClient]):
        self._clients: dict[ProviderTag, ProviderClient] = {}
        for client in clients:
            self._clients[client.tag] = client

    def get(self, tag: ProviderTag) -> ProviderClient:
        client = self._clients.get(ProviderTag(tag))
        if client is None:
            raise Unavailable(f"Provider '{tag}' is not configured")
        return client

    def select(self, tag: ProviderTag | None = None) -> list[ProviderClient]:
        """Clients to query, in priority order; just one when ``tag`` is given."""
        if tag is not None:
            return [self.get(tag)]
        return list(self._clients.values())

    def __iter__(self) -> Iterator[ProviderClient]:
        return iter(self._clients.values())

    def __len__(self) -> int:
        return len(self._clients)


def build_providers(
    github_token: str | None = None,
    curseforge_api_key: str | None = None,
) -> ProviderRegistry:
    """Default registry: Modrinth first, then GitHub releases, then CurseForge."""
    return ProviderRegistry(
        [
            ModrinthClient(),
            GitHubReleasesClient(token=github_token),
            CurseForgeClient(api_key=curseforge_api_key),
        ]
    )


__all__ = [
    "CurseForgeClient",
    "DownloadedFile",
    "GitHubReleasesClient",
    "ModrinthClient",
    "ProviderClient",
    "ProviderRegistry",
    "build_providers",
]
