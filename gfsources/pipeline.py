"""One discovery run: catalog -> records -> candidates -> probes -> report."""

import logging, threading
from dataclasses import dataclass
from pathlib import Path

from gfsources.candidates import RepositoryCandidate, group_candidates
from gfsources.catalog import GF_REPO_URL, LICENSE_DIRS, open_catalog
from gfsources.metadata import FontRecord, is_known_repo_url
from gfsources.probe import DEFAULT_JOBS, ProbeBackend, RetryPolicy, get_probe_backend, probe_candidates
from gfsources.report import build_report, log_summary, summarize


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoveryOptions:
    """Parameters for one discovery run."""

    catalog_path: Path | None = None
    catalog_url: str = GF_REPO_URL
    update_catalog: bool = True
    license_dirs: tuple[str, ...] = LICENSE_DIRS
    strategy: str = "auto"
    cache_dir: Path | None = None
    refresh: bool = False
    jobs: int = DEFAULT_JOBS
    timeout: float | None = None
    retry: RetryPolicy = RetryPolicy()
    show_progress: bool | None = None


@dataclass(frozen=True)
class DiscoveryResult:
    """Report and bookkeeping from a completed run."""

    report: dict[str, dict]
    summary: dict[str, object]
    records: tuple[FontRecord, ...]
    candidates: tuple[RepositoryCandidate, ...]
    catalog_rev: str | None = None


def collect_records(options: DiscoveryOptions) -> tuple[tuple[FontRecord, ...], str | None]:
    """Read every decodable record from the catalog, in catalog order."""
    with open_catalog(
        options.catalog_path,
        catalog_url=options.catalog_url,
        update=options.update_catalog,
        license_dirs=options.license_dirs,
    ) as checkout:
        records = tuple(checkout.iter_records())
        rev = checkout.rev
    log.info(f"read {len(records):,} font records from catalog")

    unknown = [record for record in records if record.repository and not is_known_repo_url(record.repository)]
    if unknown:
        log.info(f"{len(unknown):,} fonts reference repositories outside github.com")
    return records, rev


def list_repositories(options: DiscoveryOptions) -> list[str]:
    """Return the distinct repository URLs referenced by the catalog."""
    records, _ = collect_records(options)
    return [candidate.repository for candidate in group_candidates(records)]


def run_discovery(
    options: DiscoveryOptions,
    *,
    backend: ProbeBackend | None = None,
    cancel_event: threading.Event | None = None,
    records: tuple[FontRecord, ...] | None = None,
) -> DiscoveryResult:
    """Run one full discovery pass and return the assembled report."""
    rev = None
    if records is None:
        records, rev = collect_records(options)
    candidates = tuple(group_candidates(records))
    log.info(f"probing {len(candidates):,} distinct repositories with {options.jobs} worker(s)")

    if backend is None:
        backend = get_probe_backend(
            options.strategy,
            cache_dir=options.cache_dir,
            refresh=options.refresh,
            timeout=options.timeout,
            retry=options.retry,
        )
    log.debug(f"using probe backend '{backend.name}'")
    outcomes = probe_candidates(
        candidates,
        backend,
        jobs=options.jobs,
        cancel_event=cancel_event,
        show_progress=options.show_progress,
    )

    report = build_report(records, outcomes)
    summary = summarize(records, outcomes)
    log_summary(summary, logger=log)
    return DiscoveryResult(
        report=report,
        summary=summary,
        records=tuple(records),
        candidates=candidates,
        catalog_rev=rev,
    )
