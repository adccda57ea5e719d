"""Per-artifact locks shared by the update engine and the toggle manager."""

import threading
import weakref
from pathlib import Path


class ArtifactLock:
    """Mutex for one artifact. Lives only as long as someone holds a reference to it."""

    def __init__(self):
        self._lock = threading.Lock()

    def acquire(self, blocking: bool = True, timeout: float = -1) -> bool:
        return self._lock.acquire(blocking, timeout)

    def release(self) -> None:
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()

    def __enter__(self) -> "ArtifactLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class PathLocks:
    """
    One lock per logical artifact, keyed by directory and canonical name.

    Entries are weak: a lock nobody is holding or waiting on is dropped, so
    long-running callers do not accumulate one entry per file ever touched.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[tuple[str, str], ArtifactLock] = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def __len__(self) -> int:
        return len(self._locks)

    def for_artifact(self, directory: Path, canonical_name: str) -> ArtifactLock:
        key = (str(Path(directory).resolve()), canonical_name)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = ArtifactLock()
                self._locks[key] = lock
            return lock
