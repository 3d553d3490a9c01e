"""Cache path helpers for repository checkouts."""

import logging, os
from pathlib import Path
from urllib.parse import urlparse

from platformdirs import user_cache_dir


APP_NAME = "gfsources"
APP_AUTHOR = "gfsources"
CACHE_DIR_ENV = "GFSOURCES_CACHE_DIR"
log = logging.getLogger(__name__)


def get_cache_dir(cache_dir: str | Path | None = None) -> Path:
    """Return a writable cache directory and ensure it exists."""
    # Prefer an explicit cache directory, then the environment, then the platform default.
    if cache_dir is None and os.environ.get(CACHE_DIR_ENV):
        cache_dir = os.environ[CACHE_DIR_ENV]
    if cache_dir is not None:
        path = Path(cache_dir).expanduser().resolve()
    else:
        path = Path(user_cache_dir(APP_NAME, APP_AUTHOR))
    path.mkdir(parents=True, exist_ok=True)
    assert path.exists(), f"failed to create cache directory: {path}"
    log.debug(f"resolved cache directory to\n    {path}")
    return path


def repo_org_and_name(repo_url: str) -> tuple[str, str] | None:
    """Split a repository URL into its (org, name) path components."""
    parsed = urlparse(repo_url.strip())
    parts = [part for part in parsed.path.split("/") if part]
    if not parsed.netloc and len(parts) >= 3:
        # scheme-less 'host/org/name' form
        parts = parts[1:]
    if len(parts) == 1 and parsed.netloc:
        # repos hosted at the domain root are grouped under the host name
        parts = [parsed.netloc.lower(), parts[0]]
    if len(parts) < 2:
        return None
    org, name = parts[-2], parts[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    if not org or not name:
        return None
    return org, name


def get_repo_checkout_path(repo_url: str, cache_dir: str | Path | None = None) -> Path:
    """Return the checkout path for a repository, '{cache_dir}/{org}/{name}'."""
    assert repo_url, "repo_url cannot be empty"
    org_and_name = repo_org_and_name(repo_url)
    if org_and_name is None:
        raise ValueError(f"cannot derive org/name from repository url '{repo_url}'")

    # Group checkouts by org so same-named repos from different owners do not collide.
    org, name = org_and_name
    checkout_fp = get_cache_dir(cache_dir) / org / name
    checkout_fp.parent.mkdir(parents=True, exist_ok=True)
    log.debug(f"resolved checkout path for {repo_url} to\n    {checkout_fp}")
    return checkout_fp
