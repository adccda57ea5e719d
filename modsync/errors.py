"""Error taxonomy shared by providers, resolvers and the update engine."""

from typing import Any


class ModSyncError(Exception):
    """Base exception for modsync errors."""

    pass


class NotFound(ModSyncError):
    """Raised when a project, version or artifact does not exist."""

    pass


class Ambiguous(ModSyncError):
    """Raised when several remote identities are equally plausible."""

    def __init__(self, message: str, candidates: list[Any] | None = None):
        self.candidates = candidates or []
        super().__init__(message)


class Incompatible(ModSyncError):
    """Raised when no version satisfies the constraints, or dependencies conflict."""

    pass


class RateLimited(ModSyncError):
    """Raised when a provider rate limits us."""

    def __init__(self, retry_after: float = 60):
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Retry after {retry_after} seconds.")


class Unavailable(ModSyncError):
    """Raised when a provider is down, disabled or not implemented."""

    pass


class ChecksumMismatch(ModSyncError):
    """Raised when downloaded content does not match the published checksum."""

    def __init__(self, filename: str, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Checksum mismatch for {filename}: expected {expected}, got {actual}")


class NameConflict(ModSyncError):
    """Raised when a rename would collide with an existing artifact name."""

    def __init__(self, message: str, names: list[str] | None = None):
        self.names = names or []
        super().__init__(message)


class MetadataCorrupt(ModSyncError):
    """Raised when an embedded metadata record cannot be decoded."""

    pass


class InvalidArtifact(ModSyncError):
    """Raised when an artifact's container cannot hold a metadata record."""

    pass


class Cancelled(ModSyncError):
    """Raised when the user aborts an operation between pipeline stages."""

    pass


# Conditions every call site treats as "skip this provider for now".
TRANSIENT_ERRORS = (RateLimited, Unavailable)
