"""Core value types: identities, versions, constraints and local artifacts."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

DISABLED_SUFFIX = ".disabled"


class ProviderTag(str, Enum):
    MODRINTH = "modrinth"
    CURSEFORGE = "curseforge"
    GITHUB = "github"

    def __str__(self) -> str:
        return self.value


class DependencyKind(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    INCOMPATIBLE = "incompatible"


class ToggleState(str, Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"


class DuplicatePolicy(str, Enum):
    """What to do when two local artifacts resolve to the same identity."""

    REJECT = "reject"
    KEEP_NEWEST = "keep_newest"


class BatchStatus(str, Enum):
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL = "partial"
    ALL_FAILED = "all_failed"

    @classmethod
    def from_counts(cls, failed: int, total: int) -> "BatchStatus":
        if failed == 0:
            return cls.ALL_SUCCEEDED
        if failed == total:
            return cls.ALL_FAILED
        return cls.PARTIAL


@dataclass(frozen=True)
class Identity:
    """Canonical (provider, project id) pair naming a mod project."""

    provider: ProviderTag
    project_id: str
    slug: str = field(default="", compare=False)
    name: str = field(default="", compare=False)

    def __str__(self) -> str:
        return f"{self.provider}:{self.slug or self.project_id}"


@dataclass(frozen=True)
class DependencyEdge:
    identity: Identity
    kind: DependencyKind


@dataclass(frozen=True)
class Version:
    """One downloadable version of a project."""

    id: str
    identity: Identity
    name: str
    platform_versions: frozenset[str]
    loaders: frozenset[str]
    download_url: str
    filename: str
    checksum: str | None = None  # "<algorithm>:<hexdigest>"
    dependencies: tuple[DependencyEdge, ...] = ()
    published_at: datetime | None = None

    def supports(self, platform_version: str, loader: str) -> bool:
        return (
            platform_version in self.platform_versions
            and loader.lower() in {name.lower() for name in self.loaders}
        )

    def is_exact(self, platform_version: str, loader: str) -> bool:
        """True when this build targets exactly one platform version and loader."""
        return (
            self.supports(platform_version, loader)
            and len(self.platform_versions) == 1
            and len(self.loaders) == 1
        )


@dataclass(frozen=True)
class Constraints:
    platform_version: str
    loader: str
    provider: ProviderTag | None = None


@dataclass(frozen=True)
class Artifact:
    """One local mod file. Its toggle state is encoded by its name only."""

    path: Path
    canonical_name: str
    state: ToggleState

    @classmethod
    def from_path(cls, path: Path) -> "Artifact":
        path = Path(path)
        if path.name.endswith(DISABLED_SUFFIX):
            return cls(path, path.name[: -len(DISABLED_SUFFIX)], ToggleState.DISABLED)
        return cls(path, path.name, ToggleState.ENABLED)

    @property
    def directory(self) -> Path:
        return self.path.parent

    @property
    def enabled(self) -> bool:
        return self.state == ToggleState.ENABLED

    @property
    def disabled_name(self) -> str:
        return self.canonical_name + DISABLED_SUFFIX

    def name_for(self, state: ToggleState) -> str:
        return self.canonical_name if state == ToggleState.ENABLED else self.disabled_name

    def path_for(self, state: ToggleState) -> Path:
        return self.directory / self.name_for(state)
