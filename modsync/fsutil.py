"""Atomic file helpers and content hashing."""

import hashlib
import os
import tempfile
from pathlib import Path

DEFAULT_HASH = "sha512"


def temp_path_for(dest: Path, prefix: str = ".tmp_") -> Path:
    """Create an empty temp file next to ``dest`` (same filesystem, so rename is atomic)."""
    fd, name = tempfile.mkstemp(prefix=f"{prefix}{dest.name}.", dir=dest.parent)
    os.close(fd)
    return Path(name)


def _fsync(path: Path) -> None:
    with open(path, "rb") as f:
        os.fsync(f.fileno())


def atomic_replace(src: Path, dest: Path) -> None:
    """Move ``src`` over ``dest`` in a single rename. Readers see old or new, never a mix."""
    _fsync(src)
    os.replace(src, dest)


def atomic_write_bytes(dest: Path, data: bytes) -> None:
    tmp = temp_path_for(dest)
    try:
        tmp.write_bytes(data)
        atomic_replace(tmp, dest)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def parse_checksum(checksum: str) -> tuple[str, str]:
    """Split ``"sha512:abcd"`` into ``("sha512", "abcd")``."""
    algorithm, _, digest = checksum.partition(":")
    if not digest:
        return DEFAULT_HASH, algorithm.lower()
    return algorithm.lower(), digest.lower()


def file_digest(path: Path, algorithm: str = DEFAULT_HASH) -> str:
    h = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()
