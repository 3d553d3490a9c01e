"""GitHub credentials for authenticated repository requests."""

import logging, os, subprocess, threading


TOKEN_ENV_VARS = ("GFSOURCES_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")
GH_CLI_TIMEOUT = 10.0
log = logging.getLogger(__name__)


def token_from_env(env_vars: tuple[str, ...] = TOKEN_ENV_VARS) -> str | None:
    """Return the first non-blank token among env_vars, in order."""
    for env_var in env_vars:
        token = os.environ.get(env_var, "").strip()
        if token:
            log.debug(f"using GitHub token from ${env_var}")
            return token
    return None


def token_from_gh_cli(timeout: float = GH_CLI_TIMEOUT) -> str | None:
    """Ask an installed, logged-in `gh` for its token; None on any failure."""
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as err:
        log.debug(f"gh auth token unavailable ({type(err).__name__})")
        return None
    if result.returncode != 0:
        log.debug(f"gh auth token exited {result.returncode}")
        return None
    return result.stdout.strip() or None


class GitHubTokenProvider:
    """Resolves a GitHub token once, on first use, and shares it across threads.

    An explicit token skips discovery. Otherwise the environment is checked
    before the `gh` CLI. With `discover=False` no token is ever looked up.
    """

    def __init__(self, token: str | None = None, discover: bool = True, gh_timeout: float = GH_CLI_TIMEOUT):
        self._token = token
        self._resolved = token is not None or not discover
        self._gh_timeout = gh_timeout
        self._lock = threading.Lock()

    def get(self) -> str | None:
        with self._lock:
            if not self._resolved:
                self._token = token_from_env() or token_from_gh_cli(self._gh_timeout)
                self._resolved = True
                if self._token is None:
                    log.debug("no GitHub token found; hidden repositories will be unreachable")
            return self._token
