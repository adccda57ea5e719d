"""Map a local artifact onto the remote project it came from."""

import logging
import re
from dataclasses import dataclass
from difflib import SequenceMatcher

from .errors import TRANSIENT_ERRORS, Ambiguous, NotFound
from .metadata import MetadataRecord
from .models import DISABLED_SUFFIX, Artifact, Identity, ProviderTag
from .providers import ProviderRegistry

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.6
AMBIGUITY_MARGIN = 0.05
SEARCH_LIMIT = 10

_LOADER_TOKENS = {"fabric", "forge", "neoforge", "quilt", "mc", "minecraft", "mod"}
_SPLIT_RE = re.compile(r"[-_+\s]+")
_VERSIONISH_RE = re.compile(r"^(?:v|mc)?\d[\w.]*$", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


@dataclass(frozen=True)
class Resolved:
    """Outcome of identity resolution.

    ``version_id`` is the installed version when known (from metadata or an
    exact hash match), and ``source`` says which step produced the identity:
    ``metadata``, ``hash`` or ``search``.
    """

    identity: Identity
    version_id: str | None
    source: str


def query_from_filename(filename: str) -> str:
    """Derive a search query from a jar name: ``sodium-fabric-0.5.8+mc1.20.4.jar`` -> ``sodium``."""
    name = filename
    if name.endswith(DISABLED_SUFFIX):
        name = name[: -len(DISABLED_SUFFIX)]
    name = name.rsplit(".", 1)[0] if "." in name else name
    tokens = [
        t
        for t in _SPLIT_RE.split(name)
        if t and not _VERSIONISH_RE.match(t) and t.lower() not in _LOADER_TOKENS
    ]
    return " ".join(tokens) or name


def _normalize(text: str) -> str:
    return _NON_ALNUM_RE.sub("", text.lower())


def score(query: str, identity: Identity) -> float:
    """Similarity between a query and a candidate's slug or display name, 0..1."""
    q = _normalize(query)
    if not q:
        return 0.0
    return max(
        SequenceMatcher(None, q, _normalize(candidate)).ratio()
        for candidate in (identity.slug, identity.name, identity.project_id)
        if candidate
    )


class IdentityResolver:
    """Resolves artifacts through metadata, exact content hash, then fuzzy search."""

    def __init__(
        self,
        providers: ProviderRegistry,
        threshold: float = CONFIDENCE_THRESHOLD,
        margin: float = AMBIGUITY_MARGIN,
    ):
        self.providers = providers
        self.threshold = threshold
        self.margin = margin

    def resolve(
        self,
        artifact: Artifact,
        record: MetadataRecord | None = None,
        provider: ProviderTag | None = None,
    ) -> Resolved:
        # A metadata record is the source of truth; no network needed.
        if record is not None:
            return Resolved(record.identity(), record.version_id, "metadata")

        for client in self.providers.select(provider):
            try:
                version = client.lookup_by_hash(artifact.path)
            except TRANSIENT_ERRORS as e:
                logger.warning("Hash lookup on %s skipped for %s: %s", client.tag, artifact.canonical_name, e)
                continue
            if version is not None:
                logger.info("Identified %s by content hash as %s", artifact.canonical_name, version.identity)
                return Resolved(version.identity, version.id, "hash")

        identity = self.resolve_query(query_from_filename(artifact.canonical_name), provider)
        return Resolved(identity, None, "search")

    def resolve_query(self, query: str, provider: ProviderTag | None = None) -> Identity:
        """Pick the single confident match for ``query`` across providers."""
        candidates: list[Identity] = []
        for client in self.providers.select(provider):
            try:
                candidates.extend(client.search(query, limit=SEARCH_LIMIT))
            except NotFound:
                continue
            except TRANSIENT_ERRORS as e:
                logger.warning("Search on %s skipped for '%s': %s", client.tag, query, e)
                continue

        if not candidates:
            raise NotFound(f"No project matches '{query}'")
        candidates = list(dict.fromkeys(candidates))

        ranked = sorted(((score(query, c), c) for c in candidates), key=lambda sc: sc[0], reverse=True)
        best_score, best = ranked[0]
        runner_up = ranked[1][0] if len(ranked) > 1 else 0.0

        if best_score >= self.threshold and best_score - runner_up > self.margin:
            logger.debug("'%s' resolved to %s (score %.2f)", query, best, best_score)
            return best

        plausible = [c for s, c in ranked if best_score - s <= self.margin]
        raise Ambiguous(
            f"'{query}' matches {len(plausible)} projects equally well"
            if best_score >= self.threshold
            else f"No confident match for '{query}' (best score {best_score:.2f})",
            candidates=plausible,
        )
