"""Pytest fixtures for gfsources tests."""

import logging, shutil, subprocess, textwrap, threading
from pathlib import Path

import pytest

from gfsources.candidates import RepositoryCandidate
from gfsources.probe import ProbeBackend, ProbeOutcome, ProbeResult


#===============================================================================
# pytest custom config------------
#===============================================================================


def pytest_report_header(config):
    """Show pytest invocation arguments in the test header."""
    return f"pytest arguments: {' '.join(config.invocation_params.args)}"


# -------------------
# ----- Helpers -----
# -------------------
def metadata_text(name: str | None, repository_url: str | None = None, config_yaml: str | None = None) -> str:
    """Render a small METADATA.pb record in catalog style."""
    lines = []
    if name is not None:
        lines.append(f'name: "{name}"')
    lines.extend(
        [
            'designer: "Test Designer"',
            'license: "OFL"',
            'category: "SANS_SERIF"',
            'date_added: "2020-01-01"',
            "fonts {",
            f'  name: "{name or "Unknown"}"',
            '  style: "normal"',
            "  weight: 400",
            '  filename: "Test-Regular.ttf"',
            "}",
            'subsets: "latin"',
        ]
    )
    if repository_url is not None or config_yaml is not None:
        lines.append("source {")
        if repository_url is not None:
            lines.append(f'  repository_url: "{repository_url}"')
        if config_yaml is not None:
            lines.append(f'  config_yaml: "{config_yaml}"')
        lines.append("}")
    return "\n".join(lines) + "\n"


def write_family(catalog_root: Path, family_dir: str, text: str | None, license_dir: str = "ofl") -> Path:
    """Create one family directory, with METADATA.pb when text is given."""
    fam_fp = catalog_root / license_dir / family_dir
    fam_fp.mkdir(parents=True, exist_ok=True)
    if text is not None:
        (fam_fp / "METADATA.pb").write_text(text, encoding="utf-8")
    return fam_fp


class FakeProbeBackend(ProbeBackend):
    """Probe backend that answers from a fixed table and counts calls."""

    name = "fake"

    def __init__(self, results: dict[str, ProbeResult] | None = None, default=ProbeResult.NO_CONFIG):
        self.results = dict(results or {})
        self.default = default
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def probe(self, candidate: RepositoryCandidate) -> ProbeOutcome:
        with self._lock:
            self.calls.append(candidate.repository)
        result = self.results.get(candidate.repository, self.default)
        config_path = "source/config.yaml" if result is ProbeResult.HAS_CONFIG else None
        return ProbeOutcome(candidate.repository, result, config_path=config_path)


# -------------------
# ----- Fixtures -----
# -------------------
@pytest.fixture(scope="session")
def logger():
    """Simple logger fixture for the function under test."""
    log = logging.getLogger("pytest")
    log.setLevel(logging.DEBUG)
    # keep handlers minimal to avoid duplicate logs across runs
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter("%(levelname)s:%(name)s:%(message)s")
        handler.setFormatter(formatter)
        log.addHandler(handler)
    return log


@pytest.fixture(scope="function")
def catalog_dir(tmp_path: Path) -> Path:
    """Create a plain (non-git) catalog snapshot with the Alpha/Beta/Gamma families."""
    root = tmp_path / "fonts"
    write_family(root, "alpha", metadata_text("Alpha", "https://example.com/a.git"))
    write_family(root, "beta", metadata_text("Beta", "https://example.com/a.git/"))
    write_family(root, "gamma", metadata_text("Gamma"))
    return root


@pytest.fixture(scope="function")
def fake_backend() -> FakeProbeBackend:
    """Fake backend where the shared example repo has a config."""
    return FakeProbeBackend({"https://example.com/a.git": ProbeResult.HAS_CONFIG})


@pytest.fixture(scope="function")
def git_repo_factory(tmp_path: Path):
    """Build local git repositories from {relative_path: text} file maps."""
    if shutil.which("git") is None:
        pytest.skip("git executable not available")

    def _make(name: str, files: dict[str, str]) -> Path:
        repo_fp = tmp_path / "upstream" / name
        repo_fp.mkdir(parents=True)
        for rel_path, text in files.items():
            file_fp = repo_fp / rel_path
            file_fp.parent.mkdir(parents=True, exist_ok=True)
            file_fp.write_text(textwrap.dedent(text), encoding="utf-8")
        env_args = ["-c", "user.name=gfsources", "-c", "user.email=gfsources@example.com"]
        subprocess.run(["git", "init", "--quiet", str(repo_fp)], check=True)
        subprocess.run(["git", *env_args, "-C", str(repo_fp), "add", "-A"], check=True)
        subprocess.run(
            ["git", *env_args, "-C", str(repo_fp), "commit", "--quiet", "--allow-empty", "-m", "init"],
            check=True,
        )
        return repo_fp

    return _make
