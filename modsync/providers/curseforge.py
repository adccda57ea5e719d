"""CurseForge (registry B) client.

Support for CurseForge is on hold: the client is a normal provider variant that
answers every operation with ``Unavailable``, so callers exercise the same skip
path they use for an outage.
"""

import threading
from pathlib import Path

from ..errors import Unavailable
from ..models import Identity, ProviderTag, Version
from .base import DownloadedFile, ProviderClient

CURSEFORGE_API_URL = "https://api.curseforge.com/v1"


class CurseForgeClient(ProviderClient):
    tag = ProviderTag.CURSEFORGE
    base_url = CURSEFORGE_API_URL

    def __init__(self, api_key: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key

    def _unavailable(self) -> Unavailable:
        return Unavailable("CurseForge support is not available yet")

    def search(self, query: str, limit: int = 10) -> list[Identity]:
        raise self._unavailable()

    def list_versions(self, identity: Identity, platform_version: str, loader: str) -> list[Version]:
        raise self._unavailable()

    def lookup_by_hash(self, path: Path) -> Version | None:
        raise self._unavailable()

    def download(
        self,
        version: Version,
        dest_dir: Path,
        cancel: threading.Event | None = None,
    ) -> DownloadedFile:
        raise self._unavailable()
