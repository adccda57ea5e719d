"""GitHub releases (source-control provider C) client."""

import re
from typing import Any

from ..errors import NotFound
from ..models import Identity, ProviderTag, Version
from .base import ProviderClient, parse_timestamp

GITHUB_API_URL = "https://api.github.com"

KNOWN_LOADERS = ("fabric", "forge", "neoforge", "quilt", "liteloader", "cauldron")

# Minecraft versions look like 1.20 or 1.20.4; the lookbehind lets "mc1.20.4" match.
_GAME_VERSION_RE = re.compile(r"(?<![\d.])1\.\d{1,2}(?:\.\d{1,2})?(?![\d.]*\d)")
_TOKEN_RE = re.compile(r"[a-z]+")


def infer_game_versions(text: str) -> frozenset[str]:
    return frozenset(_GAME_VERSION_RE.findall(text))


def infer_loaders(text: str) -> frozenset[str]:
    tokens = set(_TOKEN_RE.findall(text.lower()))
    return frozenset(loader for loader in KNOWN_LOADERS if loader in tokens)


class GitHubReleasesClient(ProviderClient):
    """Treats each ``.jar`` asset of a published release as one version."""

    tag = ProviderTag.GITHUB
    base_url = GITHUB_API_URL

    def __init__(self, token: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.session.headers.update({"Accept": "application/vnd.github+json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def search(self, query: str, limit: int = 10) -> list[Identity]:
        data = self._get_json("/search/repositories", params={"q": query, "per_page": limit})
        items = data.get("items", [])
        if not items:
            raise NotFound(f"No GitHub repositories match '{query}'")
        return [
            Identity(self.tag, item["full_name"], slug=item["name"], name=item["name"])
            for item in items
        ]

    def list_versions(self, identity: Identity, platform_version: str, loader: str) -> list[Version]:
        releases = self._get_json(f"/repos/{identity.project_id}/releases", params={"per_page": 100})
        versions = []
        for release in releases:
            if release.get("draft"):
                continue
            versions.extend(self._release_versions(release, identity))
        versions.sort(key=lambda v: v.published_at.timestamp() if v.published_at else 0, reverse=True)
        return versions

    def _release_versions(self, release: dict[str, Any], identity: Identity) -> list[Version]:
        release_text = f"{release.get('tag_name', '')} {release.get('name') or ''}"
        published = parse_timestamp(release.get("published_at") or release.get("created_at"))
        versions = []
        for asset in release.get("assets", []):
            name = asset["name"]
            if not name.endswith(".jar") or name.endswith("-sources.jar"):
                continue
            versions.append(
                Version(
                    id=str(asset["id"]),
                    identity=identity,
                    name=release.get("tag_name", ""),
                    platform_versions=infer_game_versions(name) or infer_game_versions(release_text),
                    loaders=infer_loaders(name) or infer_loaders(release_text),
                    download_url=asset["browser_download_url"],
                    filename=name,
                    checksum=asset.get("digest"),
                    published_at=published,
                )
            )
        return versions
