"""Shared fixtures."""

from pathlib import Path

import pytest

from modsync.engine import UpdateEngine
from modsync.metadata import MetadataRecord, MetadataStore
from modsync.models import Constraints, Identity, Version
from modsync.providers import ProviderRegistry

from tests.fakes.jars import jar_bytes
from tests.fakes.provider import FakeProvider


@pytest.fixture
def mods_dir(tmp_path: Path) -> Path:
    path = tmp_path / "mods"
    path.mkdir()
    return path


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(provider: FakeProvider) -> ProviderRegistry:
    return ProviderRegistry([provider])


@pytest.fixture
def engine(registry: ProviderRegistry) -> UpdateEngine:
    return UpdateEngine(registry, workers=2)


@pytest.fixture
def constraints() -> Constraints:
    return Constraints("1.20.4", "fabric")


@pytest.fixture
def install():
    """Write a jar into a directory, optionally stamped as an installed version."""

    def _install(
        directory: Path,
        filename: str,
        version: Version | None = None,
        content: bytes | None = None,
        identity: Identity | None = None,
    ) -> Path:
        path = directory / filename
        if content is None:
            content = jar_bytes(filename.split("-")[0].split(".")[0], version.id if version else "0.0.1")
        path.write_bytes(content)
        identity = identity or (version.identity if version else None)
        if identity is not None:
            record = MetadataRecord(
                provider=identity.provider,
                project_id=identity.project_id,
                version_id=version.id if version else "unknown",
                platform_version="1.20.4",
                loader="fabric",
                slug=identity.slug,
            )
            MetadataStore().write(path, record)
        return path

    return _install
