"""Subprocess wrappers for the git operations used by discovery."""

import logging, os, shutil, subprocess
from pathlib import Path

from gfsources.errors import GitError, GitTimeout


DEFAULT_GIT_TIMEOUT = 120.0
log = logging.getLogger(__name__)


def git_available() -> bool:
    """Return whether a git executable is on PATH."""
    return shutil.which("git") is not None


def _git_env() -> dict[str, str]:
    """Build the environment for git subprocesses."""
    env = dict(os.environ)
    # Repositories that need credentials must fail instead of prompting.
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_ASKPASS", "echo")
    return env


def run_git(args: list[str], cwd: str | Path | None = None, timeout: float | None = DEFAULT_GIT_TIMEOUT) -> str:
    """Run one git command and return its stdout."""
    assert args, "git args cannot be empty"
    cmd = ["git", *args]
    log.debug(f"running {' '.join(cmd)}" + (f"\n    cwd={cwd}" if cwd else ""))
    try:
        result = subprocess.run(
            cmd,
            cwd=str(cwd) if cwd is not None else None,
            env=_git_env(),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as err:
        raise GitTimeout(args, timeout) from err
    except OSError as err:
        raise GitError(args, None, f"process failed: {err}") from err

    if result.returncode != 0:
        raise GitError(args, result.returncode, result.stderr)
    return result.stdout


def is_git_checkout(path: str | Path) -> bool:
    """Return whether path is the root of a git working copy."""
    return (Path(path) / ".git").exists()


def clone_repo(
    url: str,
    destination: str | Path,
    depth: int | None = 1,
    timeout: float | None = DEFAULT_GIT_TIMEOUT,
) -> Path:
    """Clone url into destination (shallow by default)."""
    destination = Path(destination)
    assert not destination.exists() or not any(destination.iterdir()), (
        f"clone destination must be empty: {destination}"
    )
    destination.parent.mkdir(parents=True, exist_ok=True)
    args = ["clone", "--quiet"]
    if depth is not None:
        args.extend(["--depth", str(depth)])
    args.extend([url, str(destination)])
    log.info(f"cloning {url} to\n    {destination}")
    run_git(args, timeout=timeout)
    return destination


def fetch_head(repo_dir: str | Path, timeout: float | None = DEFAULT_GIT_TIMEOUT) -> None:
    """Fetch the remote HEAD into FETCH_HEAD without touching the working tree."""
    run_git(["fetch", "--quiet", "--depth", "1", "origin", "HEAD"], cwd=repo_dir, timeout=timeout)


def reset_hard(repo_dir: str | Path, rev: str = "FETCH_HEAD", timeout: float | None = DEFAULT_GIT_TIMEOUT) -> None:
    """Move the working copy to rev, discarding local changes."""
    run_git(["reset", "--quiet", "--hard", rev], cwd=repo_dir, timeout=timeout)


def update_checkout(repo_dir: str | Path, timeout: float | None = DEFAULT_GIT_TIMEOUT) -> str:
    """Fetch and fast-forward a shallow checkout to the remote HEAD, returning the new rev."""
    # Fetch first; a failed fetch leaves the working copy exactly as it was.
    fetch_head(repo_dir, timeout=timeout)
    reset_hard(repo_dir, "FETCH_HEAD", timeout=timeout)
    return head_rev(repo_dir, timeout=timeout)


def head_rev(repo_dir: str | Path, timeout: float | None = DEFAULT_GIT_TIMEOUT) -> str:
    """Return the commit sha of HEAD in repo_dir."""
    return run_git(["rev-parse", "HEAD"], cwd=repo_dir, timeout=timeout).strip()


def remote_url(repo_dir: str | Path, remote: str = "origin", timeout: float | None = DEFAULT_GIT_TIMEOUT) -> str:
    """Return the configured fetch url of remote in repo_dir."""
    return run_git(["config", "--get", f"remote.{remote}.url"], cwd=repo_dir, timeout=timeout).strip()
