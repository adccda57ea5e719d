"""Runtime settings gathered from the command line and its environment variables."""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .models import Constraints, ProviderTag

DEFAULT_WORKERS = 4
DEFAULT_LOADER = "fabric"


class ConfigError(Exception):
    """Raised when required settings are missing or invalid."""

    pass


def default_minecraft_dir() -> Path:
    """The platform's default ``.minecraft`` directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if not appdata:
            raise ConfigError("%APPDATA% is not set")
        return Path(appdata) / ".minecraft"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "minecraft"
    return Path.home() / ".minecraft"


def default_mods_dir() -> Path:
    return default_minecraft_dir() / "mods"


@dataclass
class Settings:
    mods_dir: Path = field(default_factory=default_mods_dir)
    game_version: str | None = None
    loader: str = DEFAULT_LOADER
    provider: ProviderTag | None = None
    workers: int = DEFAULT_WORKERS
    github_token: str | None = None
    curseforge_api_key: str | None = None

    def __post_init__(self):
        self.mods_dir = Path(self.mods_dir)
        self.loader = self.loader.lower()
        if self.provider is not None:
            self.provider = ProviderTag(self.provider.lower())
        if self.workers < 1:
            raise ConfigError(f"workers must be a positive integer, got {self.workers}")

    def constraints(self) -> Constraints:
        if not self.game_version:
            raise ConfigError("No game version given. Pass --game-version or set MODSYNC_GAME_VERSION.")
        return Constraints(self.game_version, self.loader, self.provider)
