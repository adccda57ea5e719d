"""Tests for embedded metadata records and atomic file helpers."""

import logging
import zipfile
from pathlib import Path

import pytest

from modsync.errors import InvalidArtifact, MetadataCorrupt
from modsync.fsutil import atomic_replace, atomic_write_bytes, file_digest, parse_checksum
from modsync.metadata import METADATA_ENTRY, MetadataRecord, MetadataStore
from modsync.models import Identity, ProviderTag

from tests.fakes.jars import corrupt_entry, jar_bytes


def _record(**overrides) -> MetadataRecord:
    values = dict(
        provider=ProviderTag.MODRINTH,
        project_id="AANobbMI",
        version_id="v3",
        platform_version="1.20.4",
        loader="fabric",
        installed_at="2024-03-01T12:00:00+00:00",
        slug="sodium",
    )
    values.update(overrides)
    return MetadataRecord(**values)


class TestMetadataRecord:
    """Tests for record encoding."""

    def test_encode_decode_preserves_fields(self) -> None:
        record = _record()
        assert MetadataRecord.decode(record.encode()) == record

    def test_identity_compares_by_provider_and_project(self) -> None:
        assert _record().identity() == Identity(ProviderTag.MODRINTH, "AANobbMI")

    def test_decode_rejects_non_json(self) -> None:
        with pytest.raises(MetadataCorrupt):
            MetadataRecord.decode(b"\xff\xfenot json")

    def test_decode_rejects_missing_fields(self) -> None:
        with pytest.raises(MetadataCorrupt):
            MetadataRecord.decode(b'{"provider": "modrinth"}')

    def test_decode_rejects_unknown_provider(self) -> None:
        with pytest.raises(MetadataCorrupt):
            MetadataRecord.decode(b'{"provider": "nexus", "project_id": "1", "version_id": "2"}')

    def test_installed_at_defaults_to_now(self) -> None:
        record = MetadataRecord(ProviderTag.GITHUB, "owner/repo", "123", "1.20.4", "fabric")
        assert record.installed_at


class TestMetadataStore:
    """Tests for reading and writing the metadata slot inside a jar."""

    def test_untracked_jar_reads_none(self, tmp_path: Path) -> None:
        path = tmp_path / "sodium.jar"
        path.write_bytes(jar_bytes("sodium"))
        assert MetadataStore().read(path) is None

    def test_write_then_read(self, tmp_path: Path) -> None:
        path = tmp_path / "sodium.jar"
        path.write_bytes(jar_bytes("sodium"))
        store = MetadataStore()
        store.write(path, _record())
        assert store.read(path) == _record()

    def test_write_keeps_other_entries(self, tmp_path: Path) -> None:
        path = tmp_path / "sodium.jar"
        path.write_bytes(jar_bytes("sodium", "0.5.8"))
        MetadataStore().write(path, _record())
        with zipfile.ZipFile(path) as zf:
            names = zf.namelist()
            assert b"0.5.8" in zf.read("fabric.mod.json")
        assert "sodium/Main.class" in names
        assert names.count(METADATA_ENTRY) == 1

    def test_rewrite_replaces_record(self, tmp_path: Path) -> None:
        path = tmp_path / "sodium.jar"
        path.write_bytes(jar_bytes("sodium"))
        store = MetadataStore()
        store.write(path, _record(version_id="v2"))
        store.write(path, _record(version_id="v3"))
        assert store.read(path).version_id == "v3"
        with zipfile.ZipFile(path) as zf:
            assert zf.namelist().count(METADATA_ENTRY) == 1

    def test_corrupt_record_reads_none(self, tmp_path: Path) -> None:
        path = tmp_path / "sodium.jar"
        path.write_bytes(jar_bytes("sodium", extra={METADATA_ENTRY: b"{broken"}))
        assert MetadataStore().read(path) is None

    def test_damaged_compressed_record_reads_none(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        path = tmp_path / "sodium.jar"
        path.write_bytes(jar_bytes("sodium"))
        store = MetadataStore()
        store.write(path, _record())
        path.write_bytes(corrupt_entry(path.read_bytes(), METADATA_ENTRY))

        with caplog.at_level(logging.WARNING, logger="modsync.metadata"):
            assert store.read(path) is None
        assert "corrupt metadata in sodium.jar" in caplog.text

    def test_rewrite_over_damaged_record(self, tmp_path: Path) -> None:
        path = tmp_path / "sodium.jar"
        path.write_bytes(jar_bytes("sodium"))
        store = MetadataStore()
        store.write(path, _record(version_id="v2"))
        path.write_bytes(corrupt_entry(path.read_bytes(), METADATA_ENTRY))

        store.write(path, _record(version_id="v3"))

        assert store.read(path).version_id == "v3"

    def test_non_zip_reads_none(self, tmp_path: Path) -> None:
        path = tmp_path / "notes.jar"
        path.write_bytes(b"plain text")
        assert MetadataStore().read(path) is None

    def test_write_to_non_zip_raises_and_leaves_file(self, tmp_path: Path) -> None:
        path = tmp_path / "notes.jar"
        path.write_bytes(b"plain text")
        with pytest.raises(InvalidArtifact):
            MetadataStore().write(path, _record())
        assert path.read_bytes() == b"plain text"
        assert [p.name for p in tmp_path.iterdir()] == ["notes.jar"]

    def test_custom_entry_name(self, tmp_path: Path) -> None:
        path = tmp_path / "sodium.jar"
        path.write_bytes(jar_bytes("sodium"))
        MetadataStore("META-INF/OTHER.MF").write(path, _record())
        assert MetadataStore().read(path) is None
        assert MetadataStore("META-INF/OTHER.MF").read(path) == _record()


class TestFsutil:
    """Tests for atomic replace and checksum helpers."""

    def test_atomic_replace_swaps_content(self, tmp_path: Path) -> None:
        dest = tmp_path / "a.jar"
        dest.write_bytes(b"old")
        src = tmp_path / ".staged"
        src.write_bytes(b"new")
        atomic_replace(src, dest)
        assert dest.read_bytes() == b"new"
        assert not src.exists()

    def test_atomic_write_bytes_leaves_no_temp(self, tmp_path: Path) -> None:
        dest = tmp_path / "a.bin"
        atomic_write_bytes(dest, b"data")
        assert dest.read_bytes() == b"data"
        assert [p.name for p in tmp_path.iterdir()] == ["a.bin"]

    def test_parse_checksum(self) -> None:
        assert parse_checksum("SHA1:ABCD") == ("sha1", "abcd")
        assert parse_checksum("abcd") == ("sha512", "abcd")

    def test_file_digest(self, tmp_path: Path) -> None:
        path = tmp_path / "x"
        path.write_bytes(b"abc")
        assert file_digest(path, "sha1") == "a9993e364706816aba3e25717850c26c9cd0d89d"
