"""Provider client capability and the HTTP plumbing shared by every variant."""

import hashlib
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import backoff
import requests

from ..errors import Cancelled, NotFound, RateLimited, Unavailable
from ..fsutil import DEFAULT_HASH, parse_checksum
from ..models import Identity, ProviderTag, Version

logger = logging.getLogger(__name__)

USER_AGENT = "modsync/0.1.0"
CHUNK_SIZE = 8192


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse the ISO-8601 timestamps catalogs return (``Z`` suffix included)."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class DownloadedFile:
    """A completed download sitting in a temp file next to its destination."""

    path: Path
    checksum: str  # "<algorithm>:<hexdigest>" of the bytes actually received


class ProviderClient(ABC):
    """Capability every catalog exposes: search, list versions, download."""

    tag: ProviderTag
    base_url: str = ""

    def __init__(
        self,
        session: requests.Session | None = None,
        max_retries: int = 3,
        backoff: float = 1.0,
        max_backoff: float = 30.0,
        min_request_interval: float = 0.25,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})
        self.max_retries = max_retries
        self.backoff = backoff
        self.max_backoff = max_backoff
        self.timeout = timeout
        self._sleep = sleep
        self._min_request_interval = min_request_interval
        self._last_request_time = 0.0
        self._throttle_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    # -- capability --

    @abstractmethod
    def search(self, query: str, limit: int = 10) -> list[Identity]:
        """Candidate identities for ``query``, most relevant first. Raises NotFound if none."""

    @abstractmethod
    def list_versions(self, identity: Identity, platform_version: str, loader: str) -> list[Version]:
        """Versions of ``identity``, most recent first. Raises NotFound for unknown projects."""

    def lookup_by_hash(self, path: Path) -> Version | None:
        """Exact version whose published file matches ``path``'s content, if the catalog supports it."""
        return None

    def top_projects(
        self,
        limit: int = 100,
        platform_version: str | None = None,
        loader: str | None = None,
    ) -> list[Identity]:
        """Most downloaded projects first. Not every catalog ranks by popularity."""
        raise Unavailable(f"{self.tag} does not rank projects by popularity")

    def download(
        self,
        version: Version,
        dest_dir: Path,
        cancel: threading.Event | None = None,
    ) -> DownloadedFile:
        """
        Stream ``version`` into a temp file inside ``dest_dir``.

        The checksum is computed with the algorithm of the version's published
        checksum (sha512 when it has none). The temp file is removed on any error,
        including cancellation.
        """
        algorithm = parse_checksum(version.checksum)[0] if version.checksum else DEFAULT_HASH
        dest_dir.mkdir(parents=True, exist_ok=True)
        temp_path = dest_dir / f".downloading_{version.filename}"
        h = hashlib.new(algorithm)

        try:
            response = self._request("GET", version.download_url, stream=True)
            with open(temp_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if cancel is not None and cancel.is_set():
                        raise Cancelled(f"Download of {version.filename} cancelled")
                    if chunk:
                        f.write(chunk)
                        h.update(chunk)
        except requests.RequestException as e:
            temp_path.unlink(missing_ok=True)
            raise Unavailable(f"Failed to download {version.filename}: {e}")
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        logger.debug("Downloaded %s from %s", version.filename, self.tag)
        return DownloadedFile(path=temp_path, checksum=f"{algorithm}:{h.hexdigest()}")

    # -- HTTP plumbing --

    def _rate_limit_wait(self) -> None:
        """Ensure we don't exceed the provider's request rate."""
        with self._throttle_lock:
            elapsed = time.monotonic() - self._last_request_time
            if elapsed < self._min_request_interval:
                self._sleep(self._min_request_interval - elapsed)
            self._last_request_time = time.monotonic()

    def _handle_response(self, response: requests.Response) -> requests.Response:
        """Map HTTP failures onto the error taxonomy."""
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "60")
            raise RateLimited(float(retry_after) if retry_after.isdigit() else 60)
        if response.status_code == 404:
            raise NotFound(f"Resource not found: {response.url}")
        if response.status_code in (401, 403):
            raise Unavailable(f"Access denied by {self.tag}: {response.status_code}")
        if response.status_code >= 400:
            raise Unavailable(f"{self.tag} returned {response.status_code} for {response.url}")
        return response

    def _log_retry(self, details: dict[str, Any]) -> None:
        logger.warning(
            "%s request failed (%s), retry %d/%d in %.1fs",
            self.tag,
            type(details["exception"]).__name__,
            details["tries"],
            self.max_retries,
            details["wait"],
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Send a request, retrying rate limits and network hiccups with bounded backoff."""
        kwargs.setdefault("timeout", self.timeout)

        @backoff.on_exception(
            backoff.runtime,
            RateLimited,
            value=lambda e: min(e.retry_after, self.max_backoff),
            max_tries=self.max_retries + 1,
            jitter=None,
            on_backoff=self._log_retry,
            logger=None,
        )
        @backoff.on_exception(
            backoff.expo,
            (requests.Timeout, requests.ConnectionError),
            factor=self.backoff,
            max_value=self.max_backoff,
            max_tries=self.max_retries + 1,
            jitter=None,
            on_backoff=self._log_retry,
            logger=None,
        )
        def send() -> requests.Response:
            self._rate_limit_wait()
            logger.debug("%s %s %s", method, url, kwargs.get("params") or "")
            return self._handle_response(self.session.request(method, url, **kwargs))

        try:
            return send()
        except (requests.Timeout, requests.ConnectionError) as e:
            raise Unavailable(f"{self.tag} unreachable: {e}")

    def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        return self._request("GET", url, params=params).json()
