"""Provenance records embedded inside each mod jar."""

import json
import logging
import os
import zipfile
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import InvalidArtifact, MetadataCorrupt
from .fsutil import atomic_replace, temp_path_for
from .models import Identity, ProviderTag

logger = logging.getLogger(__name__)

# Jars are zip archives; a resource under META-INF is ignored by mod loaders.
METADATA_ENTRY = "META-INF/modsync.json"


class MetadataRecord:
    """Which provider and version an installed artifact came from."""

    def __init__(
        self,
        provider: ProviderTag,
        project_id: str,
        version_id: str,
        platform_version: str,
        loader: str,
        installed_at: str | None = None,
        slug: str = "",
    ):
        self.provider = ProviderTag(provider)
        self.project_id = project_id
        self.version_id = version_id
        self.platform_version = platform_version
        self.loader = loader
        self.installed_at = installed_at or datetime.now(timezone.utc).isoformat()
        self.slug = slug

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetadataRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"MetadataRecord({self.to_dict()!r})"

    def identity(self) -> Identity:
        return Identity(self.provider, self.project_id, slug=self.slug)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "project_id": self.project_id,
            "version_id": self.version_id,
            "platform_version": self.platform_version,
            "loader": self.loader,
            "installed_at": self.installed_at,
            "slug": self.slug,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetadataRecord":
        try:
            return cls(
                provider=ProviderTag(data["provider"]),
                project_id=str(data["project_id"]),
                version_id=str(data["version_id"]),
                platform_version=data.get("platform_version", ""),
                loader=data.get("loader", ""),
                installed_at=data.get("installed_at"),
                slug=data.get("slug", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MetadataCorrupt(f"Invalid metadata record: {e}")

    def encode(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True).encode()

    @classmethod
    def decode(cls, raw: bytes) -> "MetadataRecord":
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MetadataCorrupt(f"Unreadable metadata record: {e}")
        if not isinstance(data, dict):
            raise MetadataCorrupt("Metadata record is not an object")
        return cls.from_dict(data)


class MetadataStore:
    """Reads and atomically rewrites the metadata slot of an artifact."""

    def __init__(self, entry_name: str = METADATA_ENTRY):
        self.entry_name = entry_name

    def read(self, path: Path) -> MetadataRecord | None:
        """
        Return the embedded record, or None when the artifact is untracked.

        A record that fails to decompress or decode is logged and treated as absent.
        """
        try:
            with zipfile.ZipFile(path) as zf:
                try:
                    raw = zf.read(self.entry_name)
                except KeyError:
                    return None
                except (zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, NotImplementedError) as e:
                    # damaged or encrypted entry
                    logger.warning("Ignoring corrupt metadata in %s: %s", Path(path).name, e)
                    return None
        except (zipfile.BadZipFile, OSError):
            return None

        try:
            return MetadataRecord.decode(raw)
        except MetadataCorrupt as e:
            logger.warning("Ignoring corrupt metadata in %s: %s", Path(path).name, e)
            return None

    def write(self, path: Path, record: MetadataRecord) -> None:
        """Embed ``record`` by rebuilding the archive into a temp file and renaming it over ``path``."""
        path = Path(path)
        tmp = temp_path_for(path)
        try:
            try:
                with zipfile.ZipFile(path) as src, zipfile.ZipFile(tmp, "w") as dst:
                    for info in src.infolist():
                        if info.filename == self.entry_name:
                            continue
                        dst.writestr(info, src.read(info.filename))
                    dst.writestr(self.entry_name, record.encode(), compress_type=zipfile.ZIP_DEFLATED)
            except zipfile.BadZipFile as e:
                raise InvalidArtifact(f"{path.name} is not a zip archive: {e}")
            atomic_replace(tmp, path)
        except BaseException:
            if tmp.exists():
                os.unlink(tmp)
            raise
        logger.debug("Wrote metadata to %s: %s", path.name, record.to_dict())
