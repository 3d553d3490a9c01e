"""Assembly and serialization of the discovery report."""

import json, logging, os, sys
from collections import Counter
from pathlib import Path
from typing import Iterable, Mapping

from gfsources.candidates import repository_key
from gfsources.errors import OutputWriteFailure
from gfsources.metadata import FontRecord
from gfsources.probe import ProbeOutcome, ProbeResult


log = logging.getLogger(__name__)


def build_report(records: Iterable[FontRecord], outcomes: Mapping[str, ProbeOutcome]) -> dict[str, dict]:
    """Map each font name to its repository and probe result, sorted by font name.

    `outcomes` is keyed by repository key (see `candidates.repository_key`).
    Fonts without a repository get a null probe. "rev" is the probed
    commit when one is known.
    """
    entries: dict[str, dict] = {}
    for record in records:
        if record.name in entries:
            log.warning(f"duplicate font name '{record.name}' in catalog; keeping first entry")
            continue
        entry: dict[str, object] = {"repository": record.repository, "probe": None}
        if record.repository is not None:
            outcome = outcomes.get(repository_key(record.repository))
            if outcome is None:
                raise KeyError(f"no probe outcome for repository '{record.repository}' ({record.name})")
            entry["probe"] = outcome.result.value
            if outcome.rev:
                entry["rev"] = outcome.rev
            if outcome.result is ProbeResult.HAS_CONFIG and outcome.config_path:
                entry["config"] = outcome.config_path
                if outcome.sources:
                    entry["sources"] = list(outcome.sources)
        entries[record.name] = entry

    # Order never depends on probe completion order.
    return {name: entries[name] for name in sorted(entries)}


def render_report(report: Mapping[str, dict]) -> str:
    """Serialize a report to JSON text."""
    return json.dumps(report, indent=2, ensure_ascii=False) + "\n"


def write_report(report: Mapping[str, dict], output_fp: str | Path | None = None) -> Path | None:
    """Write the report to output_fp (atomically) or to stdout when None."""
    try:
        payload = render_report(report)
    except (TypeError, ValueError) as err:
        raise OutputWriteFailure(output_fp, f"serialization failed ({err})") from err

    if output_fp is None:
        try:
            sys.stdout.write(payload)
            sys.stdout.flush()
        except OSError as err:
            raise OutputWriteFailure(None, str(err)) from err
        return None

    out_path = Path(output_fp).expanduser().resolve()
    part_fp = out_path.with_name(f"{out_path.name}.part")

    # Write to a temporary file first and atomically replace on success.
    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with part_fp.open("w", encoding="utf-8") as stream:
            stream.write(payload)
            stream.flush()
            os.fsync(stream.fileno())
        part_fp.replace(out_path)
    except OSError as err:
        raise OutputWriteFailure(out_path, str(err)) from err
    finally:
        if part_fp.exists():
            part_fp.unlink()
    log.info(f"wrote report for {len(report):,} fonts to\n    {out_path}")
    return out_path


def summarize(records: Iterable[FontRecord], outcomes: Mapping[str, ProbeOutcome]) -> dict[str, object]:
    """Count fonts, repositories and probe results for the end-of-run summary."""
    record_l = list(records)
    with_repo = [record for record in record_l if record.repository is not None]
    result_counts = Counter(outcome.result.value for outcome in outcomes.values())
    config_names = Counter(
        Path(outcome.config_path).name
        for outcome in outcomes.values()
        if outcome.result is ProbeResult.HAS_CONFIG and outcome.config_path
    )
    return {
        "fonts": len(record_l),
        "fonts_with_repository": len(with_repo),
        "repositories": len(outcomes),
        "results": {result.value: result_counts.get(result.value, 0) for result in ProbeResult},
        "config_files": dict(config_names.most_common()),
    }


def log_summary(summary: Mapping[str, object], logger=None) -> None:
    """Log a run summary in human-readable form."""
    log = logger or logging.getLogger(__name__)
    results = summary["results"]
    log.info(f"{summary['fonts_with_repository']:,} of {summary['fonts']:,} fonts have a known repo url")
    log.info(
        f"{results['has_config']:,} of {summary['repositories']:,} repositories have a config file "
        f"({results['no_config']:,} without, {results['unreachable']:,} unreachable)"
    )
    for file_name, count in summary["config_files"].items():
        log.info(f"{count:<4} {file_name}")
