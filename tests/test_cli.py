"""Tests for the gfsources command line interface."""

import argparse, json, logging
from pathlib import Path

import pytest

import gfsources.cli as cli_module
import gfsources.pipeline as pipeline_module
from gfsources.cli import EXIT_CANCELLED, _resolve_log_level, main
from gfsources.errors import RunCancelled

from conftest import FakeProbeBackend


@pytest.fixture(scope="function")
def patched_backend(monkeypatch: pytest.MonkeyPatch, fake_backend: FakeProbeBackend) -> FakeProbeBackend:
    """Route backend construction in the pipeline to the fake backend."""
    requested = {}

    def _get_probe_backend(backend_name="auto", **kwargs):
        requested["name"] = backend_name
        requested.update(kwargs)
        return fake_backend

    monkeypatch.setattr(pipeline_module, "get_probe_backend", _get_probe_backend)
    fake_backend.requested = requested
    return fake_backend


def test_report_to_stdout(catalog_dir: Path, patched_backend: FakeProbeBackend, capsys):
    """Ensure the default run prints the JSON report to stdout."""
    assert main(["--catalog", str(catalog_dir), "--no-progress", "-q"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert sorted(report) == ["Alpha", "Beta", "Gamma"]
    assert report["Alpha"]["probe"] == "has_config"
    assert report["Gamma"]["probe"] is None
    assert patched_backend.requested["name"] == "auto"


def test_report_to_file(catalog_dir: Path, patched_backend: FakeProbeBackend, tmp_path: Path, capsys):
    out_fp = tmp_path / "report.json"
    argv = ["--catalog", str(catalog_dir), "--no-progress", "-o", str(out_fp), "--strategy", "checkout", "-j", "2"]
    assert main(argv) == 0
    assert json.loads(out_fp.read_text(encoding="utf-8"))["Beta"]["repository"] == "https://example.com/a.git"
    assert capsys.readouterr().out == ""
    assert patched_backend.requested["name"] == "checkout"


def test_retry_options_reach_backend(catalog_dir: Path, patched_backend: FakeProbeBackend):
    argv = ["--catalog", str(catalog_dir), "--no-progress", "--retries", "0", "--backoff", "0.5", "--timeout", "7"]
    assert main(argv) == 0
    assert patched_backend.requested["retry"].max_attempts == 1
    assert patched_backend.requested["retry"].backoff_s == 0.5
    assert patched_backend.requested["timeout"] == 7.0


def test_list_mode(catalog_dir: Path, capsys):
    """Ensure --list prints distinct repositories without probing."""
    assert main(["--catalog", str(catalog_dir), "--list"]) == 0
    assert capsys.readouterr().out == "https://example.com/a.git\n"


def test_missing_catalog_is_fatal(tmp_path: Path, capsys):
    (tmp_path / "empty").mkdir()
    assert main(["--catalog", str(tmp_path / "empty")]) == 1
    assert capsys.readouterr().out == ""


@pytest.mark.parametrize(
    "argv",
    [
        pytest.param(["--jobs", "0"], id="zero_jobs"),
        pytest.param(["--retries", "-1"], id="negative_retries"),
        pytest.param(["--timeout", "0"], id="zero_timeout"),
    ],
)
def test_invalid_options_are_fatal(catalog_dir: Path, argv: list[str]):
    assert main(["--catalog", str(catalog_dir), *argv]) == 1


def test_cancelled_run_writes_nothing(catalog_dir: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Ensure a cancelled run exits 130 and leaves no report behind."""

    def _cancelled(options, cancel_event=None):
        raise RunCancelled("cancelled with 0/1 repositories probed")

    monkeypatch.setattr(cli_module, "run_discovery", _cancelled)
    out_fp = tmp_path / "report.json"
    assert main(["--catalog", str(catalog_dir), "-o", str(out_fp)]) == EXIT_CANCELLED
    assert not out_fp.exists()


@pytest.mark.parametrize(
    "log_level, verbose, quiet, env_level, expected",
    [
        pytest.param(None, 0, 0, None, logging.INFO, id="default"),
        pytest.param(None, 1, 0, None, logging.DEBUG, id="verbose"),
        pytest.param(None, 0, 1, None, logging.WARNING, id="quiet"),
        pytest.param(None, 0, 5, None, logging.ERROR, id="quiet_clamped"),
        pytest.param(None, 0, 0, "debug", logging.DEBUG, id="env"),
        pytest.param(None, 0, 1, "DEBUG", logging.WARNING, id="flags_beat_env"),
        pytest.param("ERROR", 2, 0, "DEBUG", logging.ERROR, id="explicit_wins"),
    ],
)
def test_resolve_log_level(monkeypatch: pytest.MonkeyPatch, log_level, verbose, quiet, env_level, expected):
    if env_level is None:
        monkeypatch.delenv(cli_module.LOG_LEVEL_ENV, raising=False)
    else:
        monkeypatch.setenv(cli_module.LOG_LEVEL_ENV, env_level)
    args = argparse.Namespace(log_level=log_level, verbose=verbose, quiet=quiet)
    assert _resolve_log_level(args) == expected


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--version"])
    assert excinfo.value.code == 0
    assert capsys.readouterr().out.startswith("gfsources ")
