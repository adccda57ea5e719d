"""Modrinth (registry A) client."""

import json
import logging
from pathlib import Path
from typing import Any

from ..errors import NotFound
from ..fsutil import file_digest
from ..models import DependencyEdge, DependencyKind, Identity, ProviderTag, Version
from .base import ProviderClient, parse_timestamp

logger = logging.getLogger(__name__)

MODRINTH_API_URL = "https://api.modrinth.com/v2"
SEARCH_PAGE_SIZE = 100

# Well-liked server-side mods that rarely make the download charts.
CURATED_SLUGS = (
    "anti-xray",
    "appleskin",
    "carpet-extra",
    "easyauth",
    "essential-commands",
    "fabric-carpet",
    "geyser",
    "origins",
    "skinrestorer",
    "status",
)

# Modrinth also reports "embedded" dependencies, which ship inside the jar itself.
_DEPENDENCY_KINDS = {
    "required": DependencyKind.REQUIRED,
    "optional": DependencyKind.OPTIONAL,
    "incompatible": DependencyKind.INCOMPATIBLE,
}


class ModrinthClient(ProviderClient):
    """Client for the Modrinth v2 REST API."""

    tag = ProviderTag.MODRINTH
    base_url = MODRINTH_API_URL

    def search(self, query: str, limit: int = 10) -> list[Identity]:
        data = self._get_json(
            "/search",
            params={
                "query": query,
                "limit": limit,
                "index": "relevance",
                "facets": json.dumps([["project_type:mod"]]),
            },
        )
        hits = data.get("hits", [])
        if not hits:
            raise NotFound(f"No Modrinth projects match '{query}'")
        return [self._hit_identity(hit) for hit in hits]

    def top_projects(
        self,
        limit: int = 100,
        platform_version: str | None = None,
        loader: str | None = None,
    ) -> list[Identity]:
        """The ``limit`` most downloaded mods, fetched a page of 100 at a time."""
        facets = [["project_type:mod"]]
        if platform_version:
            facets.append([f"versions:{platform_version}"])
        if loader:
            facets.append([f"categories:{loader.lower()}"])

        projects: list[Identity] = []
        while len(projects) < limit:
            page_size = min(SEARCH_PAGE_SIZE, limit - len(projects))
            data = self._get_json(
                "/search",
                params={
                    "query": "",
                    "limit": page_size,
                    "offset": len(projects),
                    "index": "downloads",
                    "facets": json.dumps(facets),
                },
            )
            hits = data.get("hits", [])
            projects.extend(self._hit_identity(hit) for hit in hits)
            if len(hits) < page_size:
                break
        logger.debug("Fetched %d top projects from Modrinth", len(projects))
        return projects

    def list_versions(self, identity: Identity, platform_version: str, loader: str) -> list[Version]:
        data = self._get_json(
            f"/project/{identity.project_id}/version",
            params={
                "game_versions": json.dumps([platform_version]),
                "loaders": json.dumps([loader.lower()]),
            },
        )
        versions = [v for v in (self._parse_version(d, identity) for d in data) if v is not None]
        versions.sort(key=lambda v: v.published_at.timestamp() if v.published_at else 0, reverse=True)
        return versions

    def lookup_by_hash(self, path: Path) -> Version | None:
        digest = file_digest(path, "sha512")
        try:
            data = self._get_json(f"/version_file/{digest}", params={"algorithm": "sha512"})
        except NotFound:
            return None
        identity = self._project_identity(data["project_id"])
        return self._parse_version(data, identity)

    # -- parsing --

    def _hit_identity(self, hit: dict[str, Any]) -> Identity:
        return Identity(self.tag, hit["project_id"], slug=hit.get("slug", ""), name=hit.get("title", ""))

    def _project_identity(self, project_id: str) -> Identity:
        try:
            project = self._get_json(f"/project/{project_id}")
        except NotFound:
            return Identity(self.tag, project_id, slug=project_id)
        return Identity(
            self.tag,
            project["id"],
            slug=project.get("slug", project_id),
            name=project.get("title", ""),
        )

    def _parse_version(self, data: dict[str, Any], identity: Identity) -> Version | None:
        files = data.get("files") or []
        if not files:
            logger.debug("Skipping Modrinth version %s with no files", data.get("id"))
            return None
        primary = next((f for f in files if f.get("primary")), files[0])
        sha512 = (primary.get("hashes") or {}).get("sha512")

        return Version(
            id=data["id"],
            identity=identity,
            name=data.get("version_number") or data.get("name") or data["id"],
            platform_versions=frozenset(data.get("game_versions") or []),
            loaders=frozenset(name.lower() for name in data.get("loaders") or []),
            download_url=primary["url"],
            filename=primary["filename"],
            checksum=f"sha512:{sha512}" if sha512 else None,
            dependencies=tuple(self._parse_dependencies(data.get("dependencies") or [])),
            published_at=parse_timestamp(data.get("date_published")),
        )

    def _parse_dependencies(self, deps: list[dict[str, Any]]) -> list[DependencyEdge]:
        edges = []
        for dep in deps:
            kind = _DEPENDENCY_KINDS.get(dep.get("dependency_type", ""))
            if kind is None:
                continue
            project_id = dep.get("project_id")
            if not project_id and dep.get("version_id"):
                # Pinned to a version only; look up which project it belongs to.
                project_id = self._get_json(f"/version/{dep['version_id']}")["project_id"]
            if not project_id:
                continue
            edges.append(DependencyEdge(Identity(self.tag, project_id, slug=project_id), kind))
        return edges
