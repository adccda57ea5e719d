"""Update engine - the per-artifact resolve/fetch/verify/replace pipeline and batch operations."""

import logging
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from .errors import Ambiguous, Cancelled, ChecksumMismatch, Incompatible, ModSyncError, NameConflict
from .fsutil import atomic_replace, parse_checksum, temp_path_for
from .identity import IdentityResolver, Resolved
from .locks import PathLocks
from .metadata import MetadataRecord, MetadataStore
from .models import (
    Artifact,
    BatchStatus,
    Constraints,
    DuplicatePolicy,
    Identity,
    ProviderTag,
    ToggleState,
    Version,
)
from .providers import DownloadedFile, ProviderRegistry
from .resolver import Resolution, VersionResolver
from .scanner import DEFAULT_EXTENSIONS, find_name_conflicts, locate, scan_directory
from .toggle import ToggleManager, ToggleReport

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 4
PREVIOUS_DIRNAME = ".previous"

# progress callback: (event_type, percentage 0-1, message)
ProgressCallback = Callable[[str, float, str], None]

T = TypeVar("T")


def _noop_progress(event: str, pct: float, msg: str) -> None:
    pass


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ArtifactOutcome:
    name: str
    status: OutcomeStatus
    identity: Identity | None = None
    version_id: str | None = None
    installed: list[str] = field(default_factory=list)
    optional: list[Identity] = field(default_factory=list)
    error: Exception | None = None
    note: str = ""

    @property
    def reason(self) -> str:
        if self.error is not None:
            return f"{type(self.error).__name__}: {self.error}"
        return self.note


@dataclass
class UpdateReport:
    outcomes: list[ArtifactOutcome] = field(default_factory=list)

    def _with(self, status: OutcomeStatus) -> list[ArtifactOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> list[ArtifactOutcome]:
        return self._with(OutcomeStatus.SUCCEEDED)

    @property
    def skipped(self) -> list[ArtifactOutcome]:
        return self._with(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> list[ArtifactOutcome]:
        return self._with(OutcomeStatus.FAILED)

    @property
    def downloads(self) -> int:
        return sum(len(o.installed) for o in self.outcomes)

    @property
    def status(self) -> BatchStatus:
        return BatchStatus.from_counts(len(self.failed), len(self.outcomes))

    def get(self, name: str) -> ArtifactOutcome | None:
        return next((o for o in self.outcomes if o.name == name), None)


@dataclass
class ArtifactListing:
    artifact: Artifact
    metadata: MetadataRecord | None

    @property
    def state(self) -> ToggleState:
        return self.artifact.state


@dataclass
class _Job:
    artifact: Artifact
    record: MetadataRecord | None
    resolved: Resolved


class _DependencyClaims:
    """
    Ensures each dependency is installed by one pipeline only.

    The first pipeline to claim an identity installs it; later claimants wait
    for that install to finish and fail if it failed.
    """

    def __init__(self, present: Iterable[Identity]):
        self._lock = threading.Lock()
        self._done: dict[Identity, threading.Event] = {}
        self._errors: dict[Identity, BaseException | None] = {}
        for identity in present:
            event = threading.Event()
            event.set()
            self._done[identity] = event
            self._errors[identity] = None

    def claim(self, identity: Identity) -> bool:
        """True if the caller must install ``identity`` and then call ``finish``."""
        with self._lock:
            if identity in self._done:
                event = self._done[identity]
                owner = False
            else:
                event = self._done[identity] = threading.Event()
                owner = True
        if not owner:
            event.wait()
            error = self._errors.get(identity)
            if isinstance(error, Cancelled):
                raise Cancelled(f"Install of required dependency {identity} was cancelled")
            if error is not None:
                raise Incompatible(f"Required dependency {identity} failed to install: {error}")
        return owner

    def finish(self, identity: Identity, error: BaseException | None = None) -> None:
        with self._lock:
            self._errors[identity] = error
            self._done[identity].set()


class UpdateEngine:
    """Keeps a mods directory in sync with remote catalogs."""

    def __init__(
        self,
        providers: ProviderRegistry,
        metadata_store: MetadataStore | None = None,
        locks: PathLocks | None = None,
        workers: int = DEFAULT_WORKERS,
        extensions: tuple[str, ...] = DEFAULT_EXTENSIONS,
    ):
        self.providers = providers
        self.metadata = metadata_store or MetadataStore()
        self.locks = locks or PathLocks()
        self.workers = workers
        self.extensions = extensions
        self.identities = IdentityResolver(providers)
        self.versions = VersionResolver(providers)
        self.toggles = ToggleManager(self.locks)

    # -- operations --

    def list_artifacts(self, directory: Path) -> list[ArtifactListing]:
        return [
            ArtifactListing(artifact, self.metadata.read(artifact.path))
            for artifact in scan_directory(directory, self.extensions)
        ]

    def apply_toggles(self, directory: Path, desired: dict[str, bool]) -> ToggleReport:
        return self.toggles.apply(scan_directory(directory, self.extensions), desired)

    def update_directory(
        self,
        directory: Path,
        constraints: Constraints,
        keep_previous: bool = False,
        duplicates: DuplicatePolicy = DuplicatePolicy.REJECT,
        cancel: threading.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> UpdateReport:
        """
        Bring every artifact in ``directory`` to the newest version matching ``constraints``.

        Each artifact runs its own pipeline; a failure is recorded against that
        artifact and never stops the batch.
        """
        progress = on_progress or _noop_progress
        directory = Path(directory)
        artifacts = scan_directory(directory, self.extensions)
        progress("scan", 0.0, f"Found {len(artifacts)} mods")
        outcomes: dict[str, ArtifactOutcome] = {}

        conflicts = find_name_conflicts(artifacts)
        for name in sorted(conflicts):
            outcomes[name] = ArtifactOutcome(
                name,
                OutcomeStatus.FAILED,
                error=NameConflict(f"{name} exists both enabled and disabled", names=[name]),
            )
        candidates = [a for a in artifacts if a.canonical_name not in conflicts]

        # Identify every artifact first so duplicate installs can be detected.
        progress("identify", 0.05, "Identifying mods...")
        jobs: list[_Job] = []
        for artifact, result in self._map(
            lambda a: self._identify(a, constraints, cancel),
            candidates,
            progress,
            "identify",
            (0.05, 0.3),
        ):
            if isinstance(result, Exception):
                outcomes[artifact.canonical_name] = self._failure(artifact.canonical_name, result)
            else:
                record, resolved = result
                jobs.append(_Job(artifact, record, resolved))

        jobs = self._apply_duplicate_policy(jobs, duplicates, outcomes)
        present = frozenset(job.resolved.identity for job in jobs)
        claims = _DependencyClaims(present)
        # New dependencies never take the name of a scanned artifact, whatever happened to it.
        reserved = frozenset(a.canonical_name for a in artifacts)

        progress("update", 0.3, f"Updating {len(jobs)} mods...")
        for job, result in self._map(
            lambda j: self._update_one(j, directory, constraints, present, claims, reserved, keep_previous, cancel),
            jobs,
            progress,
            "update",
            (0.3, 0.95),
        ):
            name = job.artifact.canonical_name
            outcomes[name] = result if isinstance(result, ArtifactOutcome) else self._failure(name, result, job)

        order = {a.canonical_name: i for i, a in enumerate(artifacts)}
        report = UpdateReport(sorted(outcomes.values(), key=lambda o: order.get(o.name, len(order))))
        logger.info(
            "Update of %s: %d succeeded, %d skipped, %d failed",
            directory,
            len(report.succeeded),
            len(report.skipped),
            len(report.failed),
        )
        progress("done", 1.0, "Update complete")
        return report

    def resolve_and_install(
        self,
        target: Identity | str,
        directory: Path,
        constraints: Constraints,
        cancel: threading.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> UpdateReport:
        """Install ``target`` (an identity or a search query) and its required dependencies."""
        progress = on_progress or _noop_progress
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        local: dict[Identity, tuple[Artifact, MetadataRecord]] = {}
        for listing in self.list_artifacts(directory):
            if listing.metadata is not None:
                local[listing.metadata.identity()] = (listing.artifact, listing.metadata)

        label = str(target)
        progress("resolve", 0.05, f"Resolving {label}...")
        try:
            if isinstance(target, Identity):
                identity = target
            else:
                identity = self.identities.resolve_query(target, constraints.provider)
            resolution = self.versions.resolve(identity, constraints, frozenset(local) - {identity})
        except ModSyncError as e:
            logger.error("Could not resolve %s: %s", label, e)
            return UpdateReport([self._failure(label, e)])

        outcomes: list[ArtifactOutcome] = []
        ordered = resolution.ordered
        for i, version in enumerate(ordered):
            existing = local.get(version.identity)
            name = existing[0].canonical_name if existing else version.filename
            if existing and existing[1].version_id == version.id:
                outcomes.append(
                    ArtifactOutcome(
                        name, OutcomeStatus.SKIPPED, version.identity, version.id, note="already installed"
                    )
                )
                continue
            progress("install", 0.1 + 0.85 * i / len(ordered), f"Installing {version.filename}...")
            try:
                self._check_cancel(cancel)
                self._install(version, directory, name, constraints, False, cancel)
            except (ModSyncError, OSError) as e:
                outcomes.append(self._failure(name, e))
                # Without its dependencies the root is not usable.
                if version is not resolution.root:
                    root = resolution.root
                    installed_root = local.get(root.identity)
                    outcomes.append(
                        self._failure(
                            installed_root[0].canonical_name if installed_root else root.filename,
                            Incompatible(f"Required dependency {version.identity} failed to install: {e}"),
                        )
                    )
                break
            outcomes.append(
                ArtifactOutcome(
                    name,
                    OutcomeStatus.SUCCEEDED,
                    version.identity,
                    version.id,
                    installed=[name],
                    optional=list(resolution.optional) if version is resolution.root else [],
                )
            )

        progress("done", 1.0, f"Installed {label}")
        return UpdateReport(outcomes)

    def quick_add(
        self,
        directory: Path,
        constraints: Constraints,
        limit: int = 100,
        extras: Iterable[str] = (),
        cancel: threading.Event | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> UpdateReport:
        """
        Install the ``limit`` most downloaded projects plus the ``extras`` slugs.

        Each project goes through ``resolve_and_install`` in turn, so a dependency
        installed for one is already present for the next. The outcomes are merged
        into one report with one entry per file name.
        """
        progress = on_progress or _noop_progress
        client = self.providers.get(constraints.provider or ProviderTag.MODRINTH)
        label = f"top {limit} {client.tag} projects"

        progress("resolve", 0.0, f"Fetching {label}...")
        try:
            targets = client.top_projects(limit, constraints.platform_version, constraints.loader)
        except ModSyncError as e:
            logger.error("Could not fetch %s: %s", label, e)
            return UpdateReport([self._failure(label, e)])
        known = {t.slug for t in targets}
        targets.extend(Identity(client.tag, slug, slug=slug) for slug in extras if slug not in known)
        logger.info("Quick add of %d projects into %s", len(targets), directory)

        merged: dict[str, ArtifactOutcome] = {}
        for i, target in enumerate(targets):
            if cancel is not None and cancel.is_set():
                for skipped in targets[i:]:
                    merged.setdefault(str(skipped), self._failure(str(skipped), Cancelled("Operation cancelled")))
                break
            progress("install", i / len(targets), f"Installing {target.slug or target.project_id}...")
            report = self.resolve_and_install(target, directory, constraints, cancel)
            for outcome in report.outcomes:
                merged.setdefault(outcome.name, outcome)

        progress("done", 1.0, f"Installed {label}")
        return UpdateReport(list(merged.values()))

    # -- pipeline stages --

    def _identify(
        self,
        artifact: Artifact,
        constraints: Constraints,
        cancel: threading.Event | None,
    ) -> tuple[MetadataRecord | None, Resolved]:
        self._check_cancel(cancel)
        record = self.metadata.read(artifact.path)
        return record, self.identities.resolve(artifact, record, constraints.provider)

    def _update_one(
        self,
        job: _Job,
        directory: Path,
        constraints: Constraints,
        present: frozenset[Identity],
        claims: _DependencyClaims,
        reserved: frozenset[str],
        keep_previous: bool,
        cancel: threading.Event | None,
    ) -> ArtifactOutcome:
        name = job.artifact.canonical_name
        identity = job.resolved.identity
        installed: list[str] = []
        try:
            self._check_cancel(cancel)
            resolution = self.versions.resolve(identity, constraints, present - {identity})
            target = resolution.root

            if job.resolved.version_id == target.id:
                logger.info("%s is already at %s", name, target.name)
                return ArtifactOutcome(
                    name, OutcomeStatus.SKIPPED, identity, target.id, note="already up to date"
                )

            installed.extend(
                self._install_dependencies(resolution, directory, constraints, claims, reserved, cancel)
            )

            self._check_cancel(cancel)
            # The scan identified this file as ``identity``, tracked or not.
            self._install(target, directory, name, constraints, keep_previous, cancel, identified=True)
            installed.append(name)
            logger.info("Updated %s to %s", name, target.name)
            return ArtifactOutcome(
                name,
                OutcomeStatus.SUCCEEDED,
                identity,
                target.id,
                installed=installed,
                optional=list(resolution.optional),
            )
        except (ModSyncError, OSError) as e:
            logger.warning("Failed to update %s: %s", name, e)
            outcome = self._failure(name, e, job)
            outcome.installed = installed
            return outcome

    def _install_dependencies(
        self,
        resolution: Resolution,
        directory: Path,
        constraints: Constraints,
        claims: _DependencyClaims,
        reserved: frozenset[str],
        cancel: threading.Event | None,
    ) -> list[str]:
        installed = []
        for dependency in resolution.dependencies:
            if not claims.claim(dependency.identity):
                continue
            try:
                self._check_cancel(cancel)
                if dependency.filename in reserved:
                    raise NameConflict(
                        f"Cannot install {dependency.identity} as {dependency.filename}: "
                        "another mod in the directory has that name",
                        names=[dependency.filename],
                    )
                self._install(dependency, directory, dependency.filename, constraints, False, cancel)
            except BaseException as e:
                claims.finish(dependency.identity, e)
                raise
            claims.finish(dependency.identity)
            installed.append(dependency.filename)
            logger.info("Installed dependency %s", dependency.filename)
        return installed

    def _install(
        self,
        version: Version,
        directory: Path,
        canonical_name: str,
        constraints: Constraints,
        keep_previous: bool,
        cancel: threading.Event | None,
        identified: bool = False,
    ) -> None:
        """Fetch, verify, stamp and swap ``version`` in as ``canonical_name``."""
        downloaded = self._fetch(version, directory, cancel)
        record = MetadataRecord(
            provider=version.identity.provider,
            project_id=version.identity.project_id,
            version_id=version.id,
            platform_version=constraints.platform_version,
            loader=constraints.loader,
            slug=version.identity.slug,
        )
        try:
            # Stamp the staged download so the swap below is a single rename.
            self.metadata.write(downloaded.path, record)
            self._commit(directory, canonical_name, downloaded.path, record, keep_previous, identified)
        finally:
            downloaded.path.unlink(missing_ok=True)

    def _fetch(self, version: Version, directory: Path, cancel: threading.Event | None) -> DownloadedFile:
        """Download ``version``, retrying once if the checksum does not match."""
        client = self.providers.get(version.identity.provider)
        actual = ""
        for attempt in range(2):
            self._check_cancel(cancel)
            downloaded = client.download(version, directory, cancel)
            if version.checksum is None or parse_checksum(downloaded.checksum) == parse_checksum(version.checksum):
                return downloaded
            actual = downloaded.checksum
            downloaded.path.unlink(missing_ok=True)
            logger.warning("Checksum mismatch for %s (attempt %d)", version.filename, attempt + 1)
        raise ChecksumMismatch(version.filename, version.checksum, actual)

    def _commit(
        self,
        directory: Path,
        canonical_name: str,
        staged: Path,
        record: MetadataRecord,
        keep_previous: bool,
        identified: bool = False,
    ) -> None:
        """
        Swap ``staged`` in for the artifact under the per-artifact lock.

        An existing file is only replaced when the caller identified it as the
        same project, or when its own metadata says so. The lock covers replace
        through verification; cancellation is not checked here, so a started
        replace always ends as new or restored old.
        """
        with self.locks.for_artifact(directory, canonical_name):
            current = locate(directory, canonical_name)
            if current is not None and not identified:
                existing = self.metadata.read(current.path)
                if existing is None or existing.identity() != record.identity():
                    raise NameConflict(
                        f"{current.path.name} exists and is not a tracked copy of {record.identity()}",
                        names=[current.path.name],
                    )
            dest = current.path if current else directory / canonical_name
            backup: Path | None = None
            if current is not None:
                backup = temp_path_for(dest, prefix=".backup_")
                shutil.copy2(dest, backup)
            try:
                atomic_replace(staged, dest)
                if self.metadata.read(dest) != record:
                    raise ModSyncError(f"Metadata for {dest.name} did not persist")
            except BaseException:
                if backup is not None:
                    atomic_replace(backup, dest)
                    backup = None
                    logger.warning("Restored previous %s", canonical_name)
                elif dest.exists():
                    dest.unlink()
                raise
            finally:
                if backup is not None and not keep_previous:
                    backup.unlink(missing_ok=True)

            if backup is not None and keep_previous:
                previous_dir = directory / PREVIOUS_DIRNAME
                previous_dir.mkdir(exist_ok=True)
                shutil.move(str(backup), str(previous_dir / canonical_name))

    # -- helpers --

    def _apply_duplicate_policy(
        self,
        jobs: list[_Job],
        policy: DuplicatePolicy,
        outcomes: dict[str, ArtifactOutcome],
    ) -> list[_Job]:
        groups: dict[Identity, list[_Job]] = {}
        for job in jobs:
            groups.setdefault(job.resolved.identity, []).append(job)

        kept = []
        for identity, group in groups.items():
            if len(group) == 1:
                kept.append(group[0])
                continue
            names = [j.artifact.canonical_name for j in group]
            if policy == DuplicatePolicy.REJECT:
                for job in group:
                    outcomes[job.artifact.canonical_name] = ArtifactOutcome(
                        job.artifact.canonical_name,
                        OutcomeStatus.FAILED,
                        identity,
                        error=Ambiguous(f"{identity} is installed more than once: {', '.join(names)}", names),
                    )
                continue
            newest = max(group, key=self._install_age)
            kept.append(newest)
            for job in group:
                if job is not newest:
                    outcomes[job.artifact.canonical_name] = ArtifactOutcome(
                        job.artifact.canonical_name,
                        OutcomeStatus.SKIPPED,
                        identity,
                        job.resolved.version_id,
                        note=f"duplicate of {newest.artifact.canonical_name}",
                    )
        return kept

    @staticmethod
    def _install_age(job: _Job) -> tuple[str, float]:
        installed_at = job.record.installed_at if job.record else ""
        return installed_at, job.artifact.path.stat().st_mtime

    @staticmethod
    def _check_cancel(cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise Cancelled("Operation cancelled")

    @staticmethod
    def _failure(name: str, error: Exception, job: _Job | None = None) -> ArtifactOutcome:
        return ArtifactOutcome(
            name,
            OutcomeStatus.FAILED,
            identity=job.resolved.identity if job else None,
            version_id=job.resolved.version_id if job else None,
            error=error,
        )

    def _map(
        self,
        fn: Callable[[T], Any],
        items: list[T],
        progress: ProgressCallback,
        stage: str,
        span: tuple[float, float],
    ) -> list[tuple[T, Any]]:
        """
        Run ``fn`` over ``items`` on the worker pool.

        Results come back in input order; an exception is returned in place of its result.
        """
        if not items:
            return []
        start, end = span
        outcomes: dict[Any, Any] = {}
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = {executor.submit(fn, item): item for item in items}
            for done, future in enumerate(as_completed(futures), start=1):
                try:
                    outcomes[future] = future.result()
                except Exception as e:
                    outcomes[future] = e
                progress(stage, start + (end - start) * done / len(items), f"{done}/{len(items)}")
        return [(item, outcomes[future]) for future, item in futures.items()]
