"""Tests for directory scanning."""

from pathlib import Path

from modsync.models import Artifact, ToggleState
from modsync.scanner import find_name_conflicts, is_artifact_name, locate, scan_directory


class TestScanDirectory:
    """Tests for scan_directory."""

    def test_lists_enabled_and_disabled_sorted(self, mods_dir: Path) -> None:
        for name in ("zoom.jar", "Apple.jar.disabled", "lithium.jar"):
            (mods_dir / name).write_bytes(b"x")
        artifacts = scan_directory(mods_dir)
        assert [a.canonical_name for a in artifacts] == ["Apple.jar", "lithium.jar", "zoom.jar"]
        assert artifacts[0].state == ToggleState.DISABLED

    def test_ignores_other_files(self, mods_dir: Path) -> None:
        (mods_dir / "readme.txt").write_text("hi")
        (mods_dir / ".downloading_sodium.jar").write_bytes(b"partial")
        (mods_dir / ".tmp_sodium.jar.abc").write_bytes(b"partial")
        (mods_dir / ".previous").mkdir()
        (mods_dir / ".previous" / "old.jar").write_bytes(b"x")
        (mods_dir / "folder.jar").mkdir()
        assert scan_directory(mods_dir) == []

    def test_missing_directory_is_empty(self, tmp_path: Path) -> None:
        assert scan_directory(tmp_path / "nope") == []

    def test_extensions_are_configurable(self, mods_dir: Path) -> None:
        (mods_dir / "pack.zip").write_bytes(b"x")
        assert [a.canonical_name for a in scan_directory(mods_dir, (".zip",))] == ["pack.zip"]


class TestHelpers:
    """Tests for conflict detection and lookup."""

    def test_is_artifact_name(self) -> None:
        assert is_artifact_name("a.jar")
        assert is_artifact_name("a.JAR.disabled")
        assert not is_artifact_name("a.disabled")
        assert not is_artifact_name(".hidden.jar")

    def test_find_name_conflicts(self, mods_dir: Path) -> None:
        for name in ("a.jar", "a.jar.disabled", "b.jar"):
            (mods_dir / name).write_bytes(b"x")
        assert find_name_conflicts(scan_directory(mods_dir)) == {"a.jar"}

    def test_locate_finds_current_form(self, mods_dir: Path) -> None:
        (mods_dir / "a.jar.disabled").write_bytes(b"x")
        assert locate(mods_dir, "a.jar") == Artifact.from_path(mods_dir / "a.jar.disabled")
        assert locate(mods_dir, "b.jar") is None
