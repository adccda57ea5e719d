"""Enable and disable artifacts by renaming them, singly or in validated batches."""

import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from .errors import ModSyncError, NameConflict, NotFound
from .locks import PathLocks
from .models import Artifact, BatchStatus, ToggleState
from .scanner import locate

logger = logging.getLogger(__name__)


class ToggleStatus(str, Enum):
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass
class ToggleResult:
    name: str
    status: ToggleStatus
    state: ToggleState
    error: Exception | None = None


@dataclass
class ToggleReport:
    results: dict[str, ToggleResult] = field(default_factory=dict)

    @property
    def failed(self) -> list[ToggleResult]:
        return [r for r in self.results.values() if r.status == ToggleStatus.FAILED]

    @property
    def changed(self) -> list[ToggleResult]:
        return [r for r in self.results.values() if r.status == ToggleStatus.CHANGED]

    @property
    def status(self) -> BatchStatus:
        return BatchStatus.from_counts(len(self.failed), len(self.results))


class ToggleManager:
    """Rename-based enable/disable. Never overwrites an existing name."""

    def __init__(self, locks: PathLocks | None = None):
        self.locks = locks or PathLocks()

    def enable(self, artifact: Artifact) -> Artifact:
        return self.set_state(artifact, ToggleState.ENABLED)

    def disable(self, artifact: Artifact) -> Artifact:
        return self.set_state(artifact, ToggleState.DISABLED)

    def set_state(self, artifact: Artifact, state: ToggleState) -> Artifact:
        with self.locks.for_artifact(artifact.directory, artifact.canonical_name):
            # Re-read under the lock; another operation may have renamed it.
            current = locate(artifact.directory, artifact.canonical_name)
            if current is None:
                raise NotFound(f"{artifact.canonical_name} no longer exists")
            if current.state == state:
                return current
            dest = current.path_for(state)
            if dest.exists():
                raise NameConflict(f"{dest.name} already exists", names=[dest.name])
            os.rename(current.path, dest)
            logger.info("%s %s", "Enabled" if state == ToggleState.ENABLED else "Disabled", artifact.canonical_name)
            return Artifact.from_path(dest)

    def apply(self, artifacts: list[Artifact], desired: dict[str, bool]) -> ToggleReport:
        """
        Move every artifact named in ``desired`` to the requested state.

        Keys may use either name of an artifact; ``True`` means enabled. The
        whole map is validated first and a NotFound or NameConflict is raised
        before anything is renamed. After that, failures are per artifact: the
        renames already done stay done and the failure is recorded.
        """
        targets = self._validate(artifacts, desired)

        report = ToggleReport()
        pending: list[tuple[Artifact, ToggleState]] = []
        for artifact in artifacts:
            state = targets.get(artifact.canonical_name)
            if state is None:
                continue
            if artifact.state == state:
                report.results[artifact.canonical_name] = ToggleResult(
                    artifact.canonical_name, ToggleStatus.UNCHANGED, state
                )
            else:
                pending.append((artifact, state))

        # Disables first so a freed name is never still in use when an enable needs it.
        pending.sort(key=lambda item: item[1] == ToggleState.ENABLED)
        for artifact, state in pending:
            try:
                self.set_state(artifact, state)
                result = ToggleResult(artifact.canonical_name, ToggleStatus.CHANGED, state)
            except (ModSyncError, OSError) as e:
                logger.warning("Could not toggle %s: %s", artifact.canonical_name, e)
                result = ToggleResult(artifact.canonical_name, ToggleStatus.FAILED, artifact.state, e)
            report.results[artifact.canonical_name] = result
        return report

    def _validate(self, artifacts: list[Artifact], desired: dict[str, bool]) -> dict[str, ToggleState]:
        by_name: dict[str, Artifact] = {a.path.name: a for a in artifacts}
        for artifact in artifacts:
            by_name.setdefault(artifact.canonical_name, artifact)
            by_name.setdefault(artifact.disabled_name, artifact)

        targets: dict[str, ToggleState] = {}
        for key, enabled in desired.items():
            artifact = by_name.get(key)
            if artifact is None:
                raise NotFound(f"No artifact named {key}")
            if artifact.canonical_name in targets:
                raise NameConflict(
                    f"{artifact.canonical_name} appears more than once in the request",
                    names=[artifact.canonical_name],
                )
            targets[artifact.canonical_name] = ToggleState.ENABLED if enabled else ToggleState.DISABLED

        resulting = Counter(
            a.name_for(targets.get(a.canonical_name, a.state)) for a in artifacts
        )
        duplicates = sorted(name for name, count in resulting.items() if count > 1)
        if duplicates:
            raise NameConflict(f"Toggling would produce duplicate names: {', '.join(duplicates)}", names=duplicates)
        return targets
