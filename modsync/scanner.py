"""Enumerate the artifacts in a mods directory. Always re-read from disk."""

from collections import Counter
from pathlib import Path

from .models import DISABLED_SUFFIX, Artifact

DEFAULT_EXTENSIONS = (".jar",)


def is_artifact_name(name: str, extensions: tuple[str, ...] = DEFAULT_EXTENSIONS) -> bool:
    if name.startswith("."):
        return False
    if name.endswith(DISABLED_SUFFIX):
        name = name[: -len(DISABLED_SUFFIX)]
    return name.lower().endswith(extensions)


def scan_directory(directory: Path, extensions: tuple[str, ...] = DEFAULT_EXTENSIONS) -> list[Artifact]:
    """Every enabled or disabled artifact in ``directory``, sorted by canonical name."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    artifacts = [
        Artifact.from_path(entry)
        for entry in directory.iterdir()
        if entry.is_file() and is_artifact_name(entry.name, extensions)
    ]
    return sorted(artifacts, key=lambda a: (a.canonical_name, a.state.value))


def find_name_conflicts(artifacts: list[Artifact]) -> set[str]:
    """Canonical names that exist both enabled and disabled."""
    counts = Counter(a.canonical_name for a in artifacts)
    return {name for name, count in counts.items() if count > 1}


def locate(directory: Path, canonical_name: str) -> Artifact | None:
    """Current on-disk form of one logical artifact, or None if it is gone."""
    enabled = Path(directory) / canonical_name
    if enabled.is_file():
        return Artifact.from_path(enabled)
    disabled = Path(directory) / (canonical_name + DISABLED_SUFFIX)
    if disabled.is_file():
        return Artifact.from_path(disabled)
    return None
