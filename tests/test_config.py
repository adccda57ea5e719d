"""Tests for runtime settings."""

import sys
from pathlib import Path

import pytest

from modsync.config import ConfigError, Settings, default_minecraft_dir
from modsync.models import Constraints, ProviderTag


class TestSettings:
    """Tests for Settings."""

    def test_normalises_values(self, tmp_path: Path) -> None:
        settings = Settings(mods_dir=str(tmp_path), game_version="1.20.4", loader="Quilt", provider="GitHub")
        assert settings.mods_dir == tmp_path
        assert settings.loader == "quilt"
        assert settings.provider == ProviderTag.GITHUB
        assert settings.constraints() == Constraints("1.20.4", "quilt", ProviderTag.GITHUB)

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setenv("HOME", str(tmp_path))
        settings = Settings()
        assert settings.loader == "fabric"
        assert settings.provider is None
        assert settings.workers == 4
        assert settings.mods_dir == tmp_path / ".minecraft" / "mods"

    def test_missing_game_version(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError):
            Settings(mods_dir=tmp_path).constraints()

    def test_unknown_provider(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            Settings(mods_dir=tmp_path, provider="nexus")

    @pytest.mark.parametrize("workers", [0, -1])
    def test_invalid_workers(self, tmp_path: Path, workers: int) -> None:
        with pytest.raises(ConfigError):
            Settings(mods_dir=tmp_path, workers=workers)


class TestDefaultMinecraftDir:
    """Tests for platform default directories."""

    def test_linux(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setattr(sys, "platform", "linux")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert default_minecraft_dir() == tmp_path / ".minecraft"

    def test_macos(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setattr(sys, "platform", "darwin")
        monkeypatch.setenv("HOME", str(tmp_path))
        assert default_minecraft_dir() == tmp_path / "Library" / "Application Support" / "minecraft"

    def test_windows_without_appdata(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(sys, "platform", "win32")
        monkeypatch.delenv("APPDATA", raising=False)
        with pytest.raises(ConfigError):
            default_minecraft_dir()

    def test_windows(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setattr(sys, "platform", "win32")
        monkeypatch.setenv("APPDATA", str(tmp_path))
        assert default_minecraft_dir() == tmp_path / ".minecraft"
