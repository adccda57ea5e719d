"""Version selection and required-dependency closure."""

import logging
from dataclasses import dataclass, field

from .errors import Incompatible
from .models import Constraints, DependencyKind, Identity, Version
from .providers import ProviderRegistry

logger = logging.getLogger(__name__)

MAX_DEPTH = 8


@dataclass(frozen=True)
class Resolution:
    """A chosen root version plus what it needs.

    ``dependencies`` is dependency-first and never contains the root.
    ``satisfied`` lists required identities that were already installed and so
    were not resolved again; ``optional`` lists optional dependencies, which
    are reported but never installed automatically.
    """

    root: Version
    dependencies: tuple[Version, ...] = ()
    optional: tuple[Identity, ...] = ()
    satisfied: tuple[Identity, ...] = field(default=())

    @property
    def ordered(self) -> list[Version]:
        """Install order: dependencies first, root last."""
        return [*self.dependencies, self.root]


def is_compatible(version: Version, constraints: Constraints) -> bool:
    return version.supports(constraints.platform_version, constraints.loader)


def select_version(versions: list[Version], constraints: Constraints) -> Version:
    """
    Most recent version supporting the target platform version and loader.

    Recency comes from ``published_at``; versions without a date rank after
    dated ones and keep the provider's order. A build made for exactly this
    target wins only when two candidates were published at the same time.
    """
    compatible = [(i, v) for i, v in enumerate(versions) if is_compatible(v, constraints)]
    if not compatible:
        raise Incompatible(
            f"No version supports {constraints.platform_version} with {constraints.loader}"
        )

    def rank(item: tuple[int, Version]) -> tuple:
        index, version = item
        if version.published_at is None:
            return (1, 0.0, False, index)
        exact = version.is_exact(constraints.platform_version, constraints.loader)
        return (0, -version.published_at.timestamp(), not exact, index)

    return min(compatible, key=rank)[1]


class VersionResolver:
    """Chooses versions and walks required dependency edges."""

    def __init__(self, providers: ProviderRegistry, max_depth: int = MAX_DEPTH):
        self.providers = providers
        self.max_depth = max_depth

    def select(self, identity: Identity, constraints: Constraints) -> Version:
        client = self.providers.get(identity.provider)
        versions = client.list_versions(identity, constraints.platform_version, constraints.loader)
        try:
            return select_version(versions, constraints)
        except Incompatible as e:
            raise Incompatible(f"{identity}: {e}")

    def resolve(
        self,
        identity: Identity,
        constraints: Constraints,
        installed: frozenset[Identity] = frozenset(),
    ) -> Resolution:
        root = self.select(identity, constraints)
        selected: dict[Identity, Version] = {identity: root}
        order: list[Version] = []
        optional: list[Identity] = []
        satisfied: list[Identity] = []

        self._walk(root, constraints, installed, selected, order, optional, satisfied, depth=1)
        self._check_conflicts(selected, installed - {identity})

        optional = [i for i in dict.fromkeys(optional) if i not in selected and i not in installed]
        if order:
            logger.info("%s needs %s", identity, ", ".join(str(v.identity) for v in order))
        return Resolution(root, tuple(order), tuple(optional), tuple(dict.fromkeys(satisfied)))

    def _walk(
        self,
        version: Version,
        constraints: Constraints,
        installed: frozenset[Identity],
        selected: dict[Identity, Version],
        order: list[Version],
        optional: list[Identity],
        satisfied: list[Identity],
        depth: int,
    ) -> None:
        for edge in version.dependencies:
            if edge.kind == DependencyKind.OPTIONAL:
                optional.append(edge.identity)
                continue
            if edge.kind != DependencyKind.REQUIRED:
                continue
            # Visited set doubles as the cycle guard.
            if edge.identity in selected:
                continue
            if edge.identity in installed:
                satisfied.append(edge.identity)
                continue
            if depth >= self.max_depth:
                raise Incompatible(
                    f"Dependency chain through {version.identity} exceeds depth {self.max_depth}"
                )

            dependency = self.select(edge.identity, constraints)
            selected[edge.identity] = dependency
            self._walk(dependency, constraints, installed, selected, order, optional, satisfied, depth + 1)
            order.append(dependency)

    def _check_conflicts(self, selected: dict[Identity, Version], installed: frozenset[Identity]) -> None:
        for version in selected.values():
            for edge in version.dependencies:
                if edge.kind != DependencyKind.INCOMPATIBLE:
                    continue
                if edge.identity in selected or edge.identity in installed:
                    raise Incompatible(f"{version.identity} is incompatible with {edge.identity}")
