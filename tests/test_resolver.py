"""Tests for version selection and dependency closure."""

from datetime import datetime, timezone

import pytest

from modsync.errors import Incompatible
from modsync.models import Constraints, Identity, ProviderTag, Version
from modsync.providers import ProviderRegistry
from modsync.resolver import VersionResolver, select_version

from tests.fakes.provider import FakeProvider

TARGET = Constraints("1.20.4", "fabric")


def _version(
    version_id: str,
    game_versions=("1.20.4",),
    loaders=("fabric",),
    published: datetime | None = None,
) -> Version:
    return Version(
        id=version_id,
        identity=Identity(ProviderTag.MODRINTH, "p"),
        name=version_id,
        platform_versions=frozenset(game_versions),
        loaders=frozenset(loaders),
        download_url=f"https://cdn.example/{version_id}.jar",
        filename=f"{version_id}.jar",
        published_at=published,
    )


def _day(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


class TestSelectVersion:
    """Tests for choosing among published versions."""

    def test_most_recent_compatible_wins(self) -> None:
        versions = [
            _version("v4", game_versions=("1.20.5",), published=_day(4)),
            _version("v3", published=_day(3)),
            _version("v2", published=_day(2)),
        ]
        assert select_version(versions, TARGET).id == "v3"

    def test_loader_match_is_case_insensitive(self) -> None:
        assert select_version([_version("v1", loaders=("Fabric",), published=_day(1))], TARGET).id == "v1"

    def test_exact_build_breaks_recency_tie(self) -> None:
        versions = [
            _version("multi", game_versions=("1.20.4", "1.20.3"), published=_day(3)),
            _version("exact", published=_day(3)),
        ]
        assert select_version(versions, TARGET).id == "exact"

    def test_newer_multi_target_beats_older_exact(self) -> None:
        versions = [
            _version("exact", published=_day(2)),
            _version("multi", game_versions=("1.20.4", "1.20.3"), loaders=("fabric", "quilt"), published=_day(3)),
        ]
        assert select_version(versions, TARGET).id == "multi"

    def test_undated_versions_rank_last_in_given_order(self) -> None:
        versions = [_version("a"), _version("b"), _version("dated", published=_day(1))]
        assert select_version(versions, TARGET).id == "dated"
        assert select_version([_version("a"), _version("b")], TARGET).id == "a"

    def test_nothing_compatible(self) -> None:
        with pytest.raises(Incompatible):
            select_version([_version("v1", loaders=("forge",), published=_day(1))], TARGET)


class TestVersionResolver:
    """Tests for required-dependency closure."""

    def test_single_project_without_dependencies(self) -> None:
        provider = FakeProvider()
        sodium = provider.project("AANobbMI", "sodium")
        provider.publish(sodium, "v2", days=1)
        provider.publish(sodium, "v3", days=2)
        provider.publish(sodium, "v4", game_versions=("1.20.5",), days=3)

        resolution = VersionResolver(ProviderRegistry([provider])).resolve(sodium, TARGET)

        assert resolution.root.id == "v3"
        assert resolution.dependencies == ()
        assert [v.id for v in resolution.ordered] == ["v3"]

    def test_dependencies_come_first(self) -> None:
        provider = FakeProvider()
        api = provider.project("P7dR8mSH", "fabric-api")
        lib = provider.project("lib", "cloth-config")
        mod = provider.project("mod", "modmenu")
        provider.publish(api, "api1")
        provider.publish(lib, "lib1", requires=(api,))
        provider.publish(mod, "mod1", requires=(lib, api))

        resolution = VersionResolver(ProviderRegistry([provider])).resolve(mod, TARGET)

        assert [v.identity.slug for v in resolution.ordered] == ["fabric-api", "cloth-config", "modmenu"]

    def test_cycle_terminates(self) -> None:
        provider = FakeProvider()
        a = provider.project("a")
        b = provider.project("b")
        provider.publish(a, "a1", requires=(b,))
        provider.publish(b, "b1", requires=(a,))

        resolution = VersionResolver(ProviderRegistry([provider])).resolve(a, TARGET)

        assert [v.id for v in resolution.ordered] == ["b1", "a1"]

    def test_installed_dependencies_are_satisfied(self) -> None:
        provider = FakeProvider()
        api = provider.project("P7dR8mSH", "fabric-api")
        mod = provider.project("mod", "modmenu")
        provider.publish(mod, "mod1", requires=(api,))

        resolution = VersionResolver(ProviderRegistry([provider])).resolve(mod, TARGET, installed=frozenset({api}))

        assert resolution.dependencies == ()
        assert resolution.satisfied == (api,)

    def test_optional_dependencies_are_reported_only(self) -> None:
        provider = FakeProvider()
        extra = provider.project("extra", "sodium-extra")
        sodium = provider.project("AANobbMI", "sodium")
        provider.publish(sodium, "v3", optional=(extra,))

        resolution = VersionResolver(ProviderRegistry([provider])).resolve(sodium, TARGET)

        assert resolution.dependencies == ()
        assert resolution.optional == (extra,)

    def test_incompatible_dependency_version(self) -> None:
        provider = FakeProvider()
        api = provider.project("P7dR8mSH", "fabric-api")
        mod = provider.project("mod", "modmenu")
        provider.publish(api, "api1", game_versions=("1.19.2",))
        provider.publish(mod, "mod1", requires=(api,))

        with pytest.raises(Incompatible):
            VersionResolver(ProviderRegistry([provider])).resolve(mod, TARGET)

    def test_incompatible_edge_with_installed_project(self) -> None:
        provider = FakeProvider()
        optifine = provider.project("optifine")
        sodium = provider.project("AANobbMI", "sodium")
        provider.publish(sodium, "v3", incompatible=(optifine,))

        resolver = VersionResolver(ProviderRegistry([provider]))
        with pytest.raises(Incompatible):
            resolver.resolve(sodium, TARGET, installed=frozenset({optifine}))
        assert resolver.resolve(sodium, TARGET).root.id == "v3"

    def test_depth_limit(self) -> None:
        provider = FakeProvider()
        chain = [provider.project(f"p{i}") for i in range(4)]
        for i, identity in enumerate(chain):
            provider.publish(identity, f"v{i}", requires=chain[i + 1 : i + 2])

        with pytest.raises(Incompatible):
            VersionResolver(ProviderRegistry([provider]), max_depth=2).resolve(chain[0], TARGET)
        assert len(VersionResolver(ProviderRegistry([provider]), max_depth=4).resolve(chain[0], TARGET).ordered) == 4
