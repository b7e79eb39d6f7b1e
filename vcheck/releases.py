"""Reference version resolution from source-control releases.

Resolution order for a repository:
  1) in-run memory cache (any value, including failures)
  2) on-disk cache (tag + timestamp file, TTL-bounded)
  3) release listing (gh CLI or GitHub REST API)

Only concrete tags and an explicit "no releases" answer reach the disk, so a
transient listing failure never poisons the cache for the TTL.
"""
from __future__ import annotations

import json
import os
import shutil
import subprocess
import tempfile
import time
from contextlib import contextmanager
from threading import Lock
from typing import Callable, Iterator, Protocol

import httpx

from . import db
from .settings import settings
from .status import Reading, ReadingKind

NO_RELEASES_MARKER = "NO_RELEASES"
CACHE_SUBDIR = "github_releases"


class ReleaseSource(Protocol):
    def latest_release(self, repo: str) -> Reading: ...


# ---------------------------------------------------------------------------
# Sources


Runner = Callable[[list[str], float], "subprocess.CompletedProcess[str]"]


def _run(cmd: list[str], timeout_s: float) -> "subprocess.CompletedProcess[str]":
    return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_s, check=False)


class GhCliReleaseSource:
    """Lists releases with the GitHub CLI (`gh release list`)."""

    def __init__(
        self,
        binary: str = "gh",
        timeout_s: float = 30.0,
        runner: Runner | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self.binary = binary
        self.timeout_s = timeout_s
        self._runner = runner or _run
        self._which = which

    def preflight(self) -> str | None:
        """Check that gh is installed and authenticated; return a problem or None."""
        if self._which(self.binary) is None:
            return f"Required command '{self.binary}' not found. Please install the GitHub CLI."
        try:
            proc = self._runner([self.binary, "auth", "status"], self.timeout_s)
        except (OSError, subprocess.TimeoutExpired) as e:
            return f"Could not run '{self.binary} auth status': {e}"
        if proc.returncode != 0:
            return f"GitHub CLI ('{self.binary}') is installed but not authenticated. Please run 'gh auth login'."
        return None

    def latest_release(self, repo: str) -> Reading:
        cmd = [self.binary, "release", "list", "--repo", repo, "--limit", "1", "--json", "tagName"]
        try:
            proc = self._runner(cmd, self.timeout_s)
        except FileNotFoundError:
            db.log_event("ERROR", f"gh CLI not found ('{self.binary}')", service_name=repo)
            return Reading.failure(ReadingKind.CLI_ERROR, 127)
        except subprocess.TimeoutExpired:
            db.log_event("ERROR", f"gh CLI timed out after {self.timeout_s}s", service_name=repo)
            return Reading.failure(ReadingKind.CLI_ERROR, 124)

        stderr = (proc.stderr or "").strip()
        if proc.returncode != 0:
            low = stderr.lower()
            if "could not resolve to a repository" in low:
                return Reading.failure(ReadingKind.NOT_FOUND)
            if "authentication required" in low:
                return Reading.failure(ReadingKind.AUTH_ERROR)
            if "no releases found" in low:
                return Reading(ReadingKind.NO_RELEASES)
            db.log_event("ERROR", f"gh CLI error (status {proc.returncode}): {stderr}", service_name=repo)
            return Reading.failure(ReadingKind.CLI_ERROR, proc.returncode)

        try:
            data = json.loads(proc.stdout or "[]")
        except json.JSONDecodeError:
            db.log_event("ERROR", f"gh CLI returned unparsable output: {proc.stdout!r}", service_name=repo)
            return Reading.failure(ReadingKind.CLI_ERROR, 0)
        return _first_tag(data, "tagName")


class GithubApiReleaseSource:
    """Lists releases with the GitHub REST API."""

    def __init__(
        self,
        base_url: str = "https://api.github.com",
        token: str | None = None,
        timeout_s: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_s = timeout_s
        self._client = client

    def _headers(self) -> dict[str, str]:
        h = {"Accept": "application/vnd.github+json"}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        return h

    def latest_release(self, repo: str) -> Reading:
        url = f"{self.base_url}/repos/{repo}/releases"
        try:
            if self._client is not None:
                resp = self._client.get(url, params={"per_page": 1}, headers=self._headers())
            else:
                with httpx.Client(timeout=self.timeout_s, follow_redirects=True) as client:
                    resp = client.get(url, params={"per_page": 1}, headers=self._headers())
        except httpx.HTTPError as e:
            db.log_event("ERROR", f"GitHub API error: {type(e).__name__}: {e}", service_name=repo)
            return Reading.failure(ReadingKind.CLI_ERROR, type(e).__name__)

        if resp.status_code == 404:
            return Reading.failure(ReadingKind.NOT_FOUND)
        if resp.status_code in (401, 403):
            return Reading.failure(ReadingKind.AUTH_ERROR)
        if resp.status_code >= 300:
            db.log_event("ERROR", f"GitHub API HTTP {resp.status_code}: {resp.text[:200]}", service_name=repo)
            return Reading.failure(ReadingKind.CLI_ERROR, resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            db.log_event("ERROR", "GitHub API returned invalid JSON", service_name=repo)
            return Reading.failure(ReadingKind.CLI_ERROR, 0)
        return _first_tag(data, "tag_name")


def _first_tag(data: object, field: str) -> Reading:
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return Reading(ReadingKind.NO_RELEASES)
    tag = data[0].get(field)
    if not tag or tag == "null":
        return Reading(ReadingKind.NO_RELEASES)
    return Reading.version(str(tag))


def source_from_settings() -> ReleaseSource:
    if settings.release_source == "api":
        return GithubApiReleaseSource(settings.github_api_url, settings.github_token, settings.gh_timeout_s)
    return GhCliReleaseSource(settings.gh_binary, settings.gh_timeout_s)


# ---------------------------------------------------------------------------
# Cache


class CacheStore(Protocol):
    def read(self, repo: str) -> tuple[str, float] | None: ...

    def write(self, repo: str, value: str, ts: float) -> None: ...


class MemoryCacheStore:
    """Durable-tier stand-in kept in memory (tests, ephemeral runs)."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.entries: dict[str, tuple[str, float]] = {}

    def read(self, repo: str) -> tuple[str, float] | None:
        with self._lock:
            return self.entries.get(repo)

    def write(self, repo: str, value: str, ts: float) -> None:
        with self._lock:
            self.entries[repo] = (value, ts)


class FileCacheStore:
    """One tag file and one timestamp file per repository."""

    def __init__(self, cache_dir: str):
        self.dir = os.path.join(cache_dir, CACHE_SUBDIR)

    def _paths(self, repo: str) -> tuple[str, str]:
        safe = repo.replace("/", "_")
        return (
            os.path.join(self.dir, f"gh_release_tag_{safe}.txt"),
            os.path.join(self.dir, f"gh_release_ts_{safe}.txt"),
        )

    def read(self, repo: str) -> tuple[str, float] | None:
        tag_path, ts_path = self._paths(repo)
        try:
            with open(tag_path, encoding="utf-8") as f:
                value = f.read().strip()
            with open(ts_path, encoding="utf-8") as f:
                ts = float(f.read().strip())
        except (OSError, ValueError):
            # Missing or half-written entry: treat as a miss.
            return None
        return value, ts

    def _atomic_write(self, path: str, content: str) -> None:
        fd, tmp = tempfile.mkstemp(dir=self.dir, prefix=".tmp_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content + "\n")
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def write(self, repo: str, value: str, ts: float) -> None:
        os.makedirs(self.dir, exist_ok=True)
        tag_path, ts_path = self._paths(repo)
        self._atomic_write(tag_path, value)
        self._atomic_write(ts_path, str(int(ts)))


class ReleaseCache:
    """Two-tier cache owned by a single run.

    The memory tier never expires within the run. The disk tier honours
    ``ttl_s``; ``ttl_s == 0`` disables it (no reads, no writes).
    """

    def __init__(self, store: CacheStore | None, ttl_s: int, clock: Callable[[], float] = time.time):
        if ttl_s < 0:
            raise ValueError("ttl_s must be >= 0")
        self.store = store
        self.ttl_s = int(ttl_s)
        self.clock = clock
        self._lock = Lock()
        self._memory: dict[str, Reading] = {}
        self._key_locks: dict[str, Lock] = {}

    @property
    def disk_enabled(self) -> bool:
        return self.store is not None and self.ttl_s > 0

    @contextmanager
    def locked(self, repo: str) -> Iterator[None]:
        """Serialize resolution per repository so concurrent callers fetch once."""
        with self._lock:
            key_lock = self._key_locks.setdefault(repo, Lock())
        with key_lock:
            yield

    def get_memory(self, repo: str) -> Reading | None:
        with self._lock:
            return self._memory.get(repo)

    def get_disk(self, repo: str) -> Reading | None:
        if not self.disk_enabled:
            return None
        try:
            entry = self.store.read(repo)  # type: ignore[union-attr]
        except OSError:
            return None
        if entry is None:
            return None
        value, ts = entry
        if self.clock() - ts >= self.ttl_s:
            return None
        if not value or value.startswith("ERR_"):
            return None
        if value == NO_RELEASES_MARKER:
            return Reading(ReadingKind.NO_RELEASES)
        return Reading.version(value)

    def remember(self, repo: str, reading: Reading) -> None:
        with self._lock:
            self._memory[repo] = reading

    def put(self, repo: str, reading: Reading) -> None:
        self.remember(repo, reading)
        if not (self.disk_enabled and reading.cacheable):
            return
        value = reading.value if reading.ok else NO_RELEASES_MARKER
        try:
            self.store.write(repo, value or "", self.clock())  # type: ignore[union-attr]
        except OSError as e:
            db.log_event("WARN", f"Could not write release cache: {e}", service_name=repo)


class ReleaseResolver:
    """resolve(repo) -> Reading; failures are returned, never raised."""

    def __init__(self, source: ReleaseSource, cache: ReleaseCache):
        self.source = source
        self.cache = cache
        self.fetches = 0
        self._count_lock = Lock()

    def resolve(self, repo: str) -> Reading:
        hit = self.cache.get_memory(repo)
        if hit is not None:
            return hit
        with self.cache.locked(repo):
            # A concurrent caller may have resolved it while we waited.
            hit = self.cache.get_memory(repo)
            if hit is not None:
                return hit
            disk = self.cache.get_disk(repo)
            if disk is not None:
                self.cache.remember(repo, disk)
                return disk
            with self._count_lock:
                self.fetches += 1
            try:
                reading = self.source.latest_release(repo)
            except Exception as e:
                db.log_event("ERROR", f"Release lookup failed: {type(e).__name__}: {e}", service_name=repo)
                reading = Reading.failure(ReadingKind.UNAVAILABLE)
            self.cache.put(repo, reading)
            return reading
