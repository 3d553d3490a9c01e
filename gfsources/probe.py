"""Repository probing: does a candidate repository carry a build config?"""

import enum, logging, shutil, sys, threading, time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from tqdm import tqdm

from gfsources import git
from gfsources.auth import GitHubTokenProvider
from gfsources.build_config import BadConfig, resolve_sources
from gfsources.cache_paths import get_cache_dir, get_repo_checkout_path
from gfsources.candidates import RepositoryCandidate, repository_key
from gfsources.errors import GitError, RunCancelled
from gfsources.metadata import is_known_repo_url


MARKER_DIRS = ("source", "sources")
MARKER_NAMES = ("config.yaml", "config.yml")
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_JOBS = 8
log = logging.getLogger(__name__)


class ProbeResult(enum.Enum):
    """Classification of one repository probe."""

    HAS_CONFIG = "has_config"
    NO_CONFIG = "no_config"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of probing one repository candidate."""

    repository: str
    result: ProbeResult
    config_path: str | None = None
    sources: tuple[str, ...] = ()
    detail: str = ""
    rev: str | None = None


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for transient failures inside a single probe."""

    max_attempts: int = 3
    backoff_s: float = 1.0
    backoff_factor: float = 2.0

    def __post_init__(self):
        assert self.max_attempts >= 1, f"max_attempts must be >= 1; got {self.max_attempts}"
        assert self.backoff_s >= 0, f"backoff_s must be >= 0; got {self.backoff_s}"
        assert self.backoff_factor >= 1, f"backoff_factor must be >= 1; got {self.backoff_factor}"

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before retry number `attempt` (1-based)."""
        return self.backoff_s * (self.backoff_factor ** (attempt - 1))

    def call(
        self,
        fn: Callable,
        is_transient: Callable[[Exception], bool],
        *,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: threading.Event | None = None,
    ):
        """Call fn, retrying exceptions that is_transient accepts until attempts run out."""
        attempt = 1
        while True:
            try:
                return fn()
            except Exception as err:
                if attempt >= self.max_attempts or not is_transient(err):
                    raise
                if cancel_event is not None and cancel_event.is_set():
                    raise
                delay = self.delay_for(attempt)
                log.debug(f"transient failure (attempt {attempt}/{self.max_attempts}), retrying in {delay:g}s: {err}")
                sleep(delay)
                attempt += 1


class _TransientHttpStatus(Exception):
    """HTTP status worth retrying (rate limiting, server errors)."""

    def __init__(self, url: str, code: int):
        self.code = code
        super().__init__(f"HTTP {code} for {url}")


_PERMANENT_GIT_MARKERS = (
    "not found",
    "does not exist",
    "could not read username",
    "authentication failed",
    "terminal prompts disabled",
)


def _is_transient(err: Exception) -> bool:
    if isinstance(err, GitError):
        # Missing or private repositories will not appear on retry.
        stderr = err.stderr.lower()
        return not any(marker in stderr for marker in _PERMANENT_GIT_MARKERS)
    return isinstance(err, (_TransientHttpStatus, URLError, TimeoutError))


def marker_paths(config_hint: str | None = None) -> list[str]:
    """Return repo-relative marker paths in the order they are checked."""
    paths = [f"{dir_name}/{file_name}" for dir_name in MARKER_DIRS for file_name in MARKER_NAMES]
    if config_hint:
        hint = config_hint.strip().lstrip("/")
        if hint in paths:
            paths.remove(hint)
        paths.insert(0, hint)
    return paths


def _looks_like_config_file(path: Path) -> bool:
    return path.is_file() and path.stem.startswith("config") and path.suffix in (".yaml", ".yml")


def find_config_file(repo_dir: str | Path, config_hint: str | None = None) -> str | None:
    """Return the repo-relative path of the build config in a checkout, if any."""
    repo_path = Path(repo_dir)
    for rel_path in marker_paths(config_hint):
        if (repo_path / rel_path).is_file():
            return rel_path

    # Fall back to any 'config*.yaml' in a sources directory; shortest name wins.
    for dir_name in MARKER_DIRS:
        sources_dir = repo_path / dir_name
        if not sources_dir.is_dir():
            continue
        matches = sorted(
            (entry for entry in sources_dir.iterdir() if _looks_like_config_file(entry)),
            key=lambda entry: (len(entry.name), entry.name),
        )
        if matches:
            return f"{dir_name}/{matches[0].name}"
    return None


class ProbeBackend:
    """Abstract probe strategy for one repository candidate."""

    name = "base"

    def probe(self, candidate: RepositoryCandidate) -> ProbeOutcome:
        """Classify one candidate; access failures must map to UNREACHABLE."""
        raise NotImplementedError


class HttpProbeBackend(ProbeBackend):
    """Probe GitHub repositories with HEAD requests, without cloning."""

    name = "http"

    def __init__(
        self,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        retry: RetryPolicy | None = None,
        token: str | None = None,
        discover_token: bool = True,
        opener: Callable = urlopen,
    ):
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self.tokens = GitHubTokenProvider(token, discover=discover_token)
        self._opener = opener

    def _head_once(self, url: str, token: str | None) -> int:
        headers = {"User-Agent": "gfsources"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        request = Request(url, headers=headers, method="HEAD")
        try:
            with self._opener(request, timeout=self.timeout) as response:  # nosec B310
                status = response.status
        except HTTPError as err:
            status = err.code
        if status == 429 or status >= 500:
            raise _TransientHttpStatus(url, status)
        return status

    def head(self, url: str, token: str | None = None) -> int:
        """Return the HTTP status of a HEAD request, retrying transient failures."""
        return self.retry.call(lambda: self._head_once(url, token), _is_transient)

    def _probe_visible(self, candidate: RepositoryCandidate, token: str | None) -> ProbeOutcome | None:
        """Probe with one credential; None when the repository itself is not visible."""
        repo_url = candidate.repository.removesuffix(".git")
        repo_status = self.head(repo_url, token)
        if repo_status in (401, 403, 404):
            return None
        if repo_status != 200:
            return ProbeOutcome(candidate.repository, ProbeResult.UNREACHABLE, detail=f"HTTP {repo_status}")

        for rel_path in marker_paths(candidate.config_yaml):
            status = self.head(f"{repo_url}/tree/HEAD/{rel_path}", token)
            if status == 200:
                return ProbeOutcome(
                    candidate.repository, ProbeResult.HAS_CONFIG, config_path=rel_path, rev=candidate.commit
                )
            if status != 404:
                log.debug(f"{repo_url}: unexpected HTTP {status} for {rel_path}")
        return ProbeOutcome(candidate.repository, ProbeResult.NO_CONFIG, rev=candidate.commit)

    def probe(self, candidate: RepositoryCandidate) -> ProbeOutcome:
        """Check marker paths over HTTP; non-GitHub hosts cannot be listed."""
        if not is_known_repo_url(candidate.repository.removesuffix(".git")):
            return ProbeOutcome(
                candidate.repository,
                ProbeResult.UNREACHABLE,
                detail="remote listing only supports https://github.com/<org>/<name> urls",
            )
        try:
            # First attempt: no credentials, then retry once with a token if the repo is hidden.
            outcome = self._probe_visible(candidate, None)
            if outcome is None:
                token = self.tokens.get()
                if token:
                    log.debug(f"retrying {candidate.repository} with token auth")
                    outcome = self._probe_visible(candidate, token)
        except (_TransientHttpStatus, URLError, TimeoutError, OSError) as err:
            return ProbeOutcome(candidate.repository, ProbeResult.UNREACHABLE, detail=str(err))
        if outcome is None:
            return ProbeOutcome(candidate.repository, ProbeResult.UNREACHABLE, detail="repository not found")
        return outcome


class CheckoutCache:
    """Shallow checkouts of probed repositories.

    The directory tree persists across runs; reservations and reuse are
    tracked per instance, so each run owns its own cache object.
    """

    def __init__(
        self,
        cache_dir: str | Path | None = None,
        refresh: bool = False,
        timeout: float | None = git.DEFAULT_GIT_TIMEOUT,
    ):
        self.cache_dir = get_cache_dir(cache_dir)
        self.refresh = refresh
        self.timeout = timeout
        self._lock = threading.Lock()
        self._claimed: dict[Path, str] = {}
        self._checkouts: dict[str, Path] = {}

    def _owned_on_disk(self, path: Path, repository: str) -> bool:
        """Return whether path is free, or already holds a checkout of repository."""
        if not path.exists():
            return True
        if not git.is_git_checkout(path):
            return path.is_dir() and not any(path.iterdir())
        try:
            origin = git.remote_url(path, timeout=self.timeout)
        except GitError as err:
            log.debug(f"cannot read origin of {path}: {err}")
            return False
        return repository_key(origin) == repository_key(repository)

    def path_for(self, repository: str) -> Path:
        """Return the checkout path reserved for a repository in this run.

        Distinct repositories with the same org/name, in this run or left over
        from an earlier one, get a suffixed directory ('{name}_1', ...).
        """
        with self._lock:
            base = get_repo_checkout_path(repository, cache_dir=self.cache_dir)
            path, suffix = base, 0
            while True:
                owner = self._claimed.get(path)
                if owner == repository:
                    return path
                if owner is None and self._owned_on_disk(path, repository):
                    self._claimed[path] = repository
                    return path
                suffix += 1
                path = base.with_name(f"{base.name}_{suffix}")

    def checkout(self, repository: str) -> Path:
        """Clone (or reuse) a shallow checkout of repository and return its path."""
        if repository in self._checkouts:
            return self._checkouts[repository]
        checkout_fp = self.path_for(repository)

        if checkout_fp.exists() and not git.is_git_checkout(checkout_fp):
            log.debug(f"{checkout_fp} exists but is not a repo, removing")
            try:
                checkout_fp.rmdir()
            except OSError as err:
                raise GitError(["clone", repository], None, f"cannot reuse {checkout_fp}: {err}") from err

        if checkout_fp.exists():
            if self.refresh:
                try:
                    git.update_checkout(checkout_fp, timeout=self.timeout)
                except GitError as err:
                    log.warning(f"could not refresh {repository}, using existing checkout: {err}")
        else:
            # Clone beside the target and rename so an interrupted clone is never reused.
            part_fp = checkout_fp.with_name(f"{checkout_fp.name}.part")
            if part_fp.exists():
                shutil.rmtree(part_fp)
            try:
                git.clone_repo(repository, part_fp, timeout=self.timeout)
                part_fp.replace(checkout_fp)
            finally:
                if part_fp.exists():
                    shutil.rmtree(part_fp, ignore_errors=True)

        self._checkouts[repository] = checkout_fp
        return checkout_fp


class CheckoutProbeBackend(ProbeBackend):
    """Probe by shallow-cloning the repository and inspecting the working tree."""

    name = "checkout"

    def __init__(self, cache: CheckoutCache, retry: RetryPolicy | None = None, read_configs: bool = True):
        self.cache = cache
        self.retry = retry or RetryPolicy()
        self.read_configs = read_configs

    def _checkout_rev(self, checkout_fp: Path, candidate: RepositoryCandidate) -> str | None:
        """Return the checked-out commit, else the commit the catalog recorded."""
        try:
            return git.head_rev(checkout_fp, timeout=self.cache.timeout)
        except GitError as err:
            log.debug(f"cannot read HEAD of {checkout_fp}: {err}")
            return candidate.commit

    def probe(self, candidate: RepositoryCandidate) -> ProbeOutcome:
        """Clone the candidate and look for a config in its sources directory."""
        try:
            checkout_fp = self.retry.call(lambda: self.cache.checkout(candidate.repository), _is_transient)
        except (GitError, OSError) as err:
            log.debug(f"checkout '{candidate.repository}' failed: {err}")
            return ProbeOutcome(candidate.repository, ProbeResult.UNREACHABLE, detail=str(err))

        rev = self._checkout_rev(checkout_fp, candidate)
        config_path = find_config_file(checkout_fp, candidate.config_yaml)
        if config_path is None:
            return ProbeOutcome(candidate.repository, ProbeResult.NO_CONFIG, rev=rev)

        sources: tuple[str, ...] = ()
        if self.read_configs:
            try:
                sources = resolve_sources(checkout_fp, config_path)
            except BadConfig as err:
                log.warning(f"{candidate.repository}: {err}")
        return ProbeOutcome(
            candidate.repository, ProbeResult.HAS_CONFIG, config_path=config_path, sources=sources, rev=rev
        )


class AutoProbeBackend(ProbeBackend):
    """Use HTTP for GitHub repositories, confirming anything short of a hit with a checkout."""

    name = "auto"

    def __init__(self, http: HttpProbeBackend, checkout: CheckoutProbeBackend):
        self.http = http
        self.checkout = checkout

    def probe(self, candidate: RepositoryCandidate) -> ProbeOutcome:
        """Probe remotely when possible; clone whenever the remote check finds no marker.

        HTTP only sees the fixed marker paths, so a remote NO_CONFIG is checked
        against the working tree. If that clone fails, the remote answer stands.
        """
        if not is_known_repo_url(candidate.repository.removesuffix(".git")):
            return self.checkout.probe(candidate)

        remote = self.http.probe(candidate)
        if remote.result is ProbeResult.HAS_CONFIG:
            return remote
        log.debug(f"remote probe found no marker for {candidate.repository} ({remote.result.value}); trying checkout")
        local = self.checkout.probe(candidate)
        if local.result is ProbeResult.UNREACHABLE and remote.result is ProbeResult.NO_CONFIG:
            return remote
        return local


def get_probe_backend(
    backend_name: str = "auto",
    *,
    cache_dir: str | Path | None = None,
    refresh: bool = False,
    timeout: float | None = None,
    retry: RetryPolicy | None = None,
) -> ProbeBackend:
    """Build a probe backend by name."""
    retry = retry or RetryPolicy()
    if backend_name == "http":
        return HttpProbeBackend(timeout=timeout or DEFAULT_HTTP_TIMEOUT, retry=retry)
    if backend_name in ("checkout", "auto"):
        cache = CheckoutCache(cache_dir, refresh=refresh, timeout=timeout or git.DEFAULT_GIT_TIMEOUT)
        checkout = CheckoutProbeBackend(cache, retry=retry)
        if backend_name == "checkout":
            return checkout
        return AutoProbeBackend(HttpProbeBackend(timeout=timeout or DEFAULT_HTTP_TIMEOUT, retry=retry), checkout)
    raise ValueError(f"unsupported probe backend '{backend_name}'")


def _safe_probe(backend: ProbeBackend, candidate: RepositoryCandidate) -> ProbeOutcome:
    """Run one probe; any escaped exception is recorded as UNREACHABLE."""
    try:
        return backend.probe(candidate)
    except Exception as err:
        log.debug(f"probe of {candidate.repository} raised", exc_info=True)
        return ProbeOutcome(candidate.repository, ProbeResult.UNREACHABLE, detail=f"{type(err).__name__}: {err}")


def probe_candidates(
    candidates: Iterable[RepositoryCandidate],
    backend: ProbeBackend,
    *,
    jobs: int = DEFAULT_JOBS,
    cancel_event: threading.Event | None = None,
    show_progress: bool | None = None,
    poll_interval: float = 0.2,
) -> dict[str, ProbeOutcome]:
    """Probe every candidate at most once with bounded concurrency; keyed by candidate key."""
    assert jobs >= 1, f"jobs must be >= 1; got {jobs}"
    candidate_l = list(candidates)
    cancel_event = cancel_event or threading.Event()
    if show_progress is None:
        show_progress = sys.stderr.isatty()

    outcomes: dict[str, ProbeOutcome] = {}
    pending_iter = iter(candidate_l)
    in_flight: dict[Future, RepositoryCandidate] = {}
    progress = tqdm(total=len(candidate_l), desc="probing", unit="repo", disable=not show_progress)
    executor = ThreadPoolExecutor(max_workers=jobs, thread_name_prefix="probe")
    try:
        while True:
            # Keep at most `jobs` probes in flight; stop dispatching once cancelled.
            while not cancel_event.is_set() and len(in_flight) < jobs:
                candidate = next(pending_iter, None)
                if candidate is None:
                    break
                if candidate.key in outcomes or any(c.key == candidate.key for c in in_flight.values()):
                    continue
                in_flight[executor.submit(_safe_probe, backend, candidate)] = candidate

            if cancel_event.is_set():
                raise RunCancelled(f"cancelled with {len(outcomes):,}/{len(candidate_l):,} repositories probed")
            if not in_flight:
                break

            done, _ = wait(in_flight, timeout=poll_interval, return_when=FIRST_COMPLETED)
            for future in done:
                candidate = in_flight.pop(future)
                outcome = future.result()
                outcomes[candidate.key] = outcome
                log.debug(f"{candidate.repository}: {outcome.result.value}")
                progress.update(1)
    finally:
        progress.close()
        # In-flight probes are abandoned on cancel; queued ones never start.
        executor.shutdown(wait=not cancel_event.is_set(), cancel_futures=True)
    return outcomes
