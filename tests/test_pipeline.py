"""End-to-end tests for a discovery run with a fake probe backend."""

from pathlib import Path

import pytest

from gfsources.metadata import FontRecord
from gfsources.pipeline import DiscoveryOptions, list_repositories, run_discovery
from gfsources.probe import ProbeResult

from conftest import FakeProbeBackend, metadata_text, write_family


def test_shared_repository_probed_once(catalog_dir: Path, fake_backend: FakeProbeBackend):
    """Ensure two fonts sharing a repo cause one probe and both get its result."""
    options = DiscoveryOptions(catalog_path=catalog_dir, show_progress=False)
    result = run_discovery(options, backend=fake_backend)

    assert fake_backend.calls == ["https://example.com/a.git"]
    assert result.report == {
        "Alpha": {"repository": "https://example.com/a.git", "probe": "has_config", "config": "source/config.yaml"},
        "Beta": {"repository": "https://example.com/a.git", "probe": "has_config", "config": "source/config.yaml"},
        "Gamma": {"repository": None, "probe": None},
    }
    assert result.summary["repositories"] == 1
    assert result.summary["fonts_with_repository"] == 2


def test_malformed_record_omitted(catalog_dir: Path, fake_backend: FakeProbeBackend):
    write_family(catalog_dir, "broken", "name: {\n")
    result = run_discovery(DiscoveryOptions(catalog_path=catalog_dir, show_progress=False), backend=fake_backend)
    assert sorted(result.report) == ["Alpha", "Beta", "Gamma"]


def test_unreachable_repository_reported(catalog_dir: Path):
    write_family(catalog_dir, "delta", metadata_text("Delta", "https://github.com/org/gone"))
    backend = FakeProbeBackend(
        {"https://example.com/a.git": ProbeResult.NO_CONFIG, "https://github.com/org/gone": ProbeResult.UNREACHABLE}
    )
    result = run_discovery(DiscoveryOptions(catalog_path=catalog_dir, jobs=2, show_progress=False), backend=backend)
    assert result.report["Delta"] == {"repository": "https://github.com/org/gone", "probe": "unreachable"}
    assert result.report["Alpha"]["probe"] == "no_config"
    assert result.summary["results"]["unreachable"] == 1


def test_run_is_repeatable(catalog_dir: Path):
    """Ensure two runs over an unchanged catalog give identical reports."""
    options = DiscoveryOptions(catalog_path=catalog_dir, show_progress=False)
    first = run_discovery(options, backend=FakeProbeBackend()).report
    second = run_discovery(options, backend=FakeProbeBackend()).report
    assert first == second


def test_run_with_supplied_records():
    records = (FontRecord(name="Solo", repository="https://github.com/org/solo"),)
    backend = FakeProbeBackend({"https://github.com/org/solo": ProbeResult.HAS_CONFIG})
    result = run_discovery(DiscoveryOptions(show_progress=False), backend=backend, records=records)
    assert result.report["Solo"]["probe"] == "has_config"
    assert result.catalog_rev is None


def test_list_repositories(catalog_dir: Path):
    write_family(catalog_dir, "delta", metadata_text("Delta", "https://www.github.com/org/delta/"))
    assert list_repositories(DiscoveryOptions(catalog_path=catalog_dir)) == [
        "https://example.com/a.git",
        "https://github.com/org/delta",
    ]
