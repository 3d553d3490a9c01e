"""Command line interface for font source discovery."""

import argparse, logging, os, signal, sys, threading
from contextlib import contextmanager
from pathlib import Path

from gfsources import __version__
from gfsources.catalog import GF_REPO_URL
from gfsources.errors import RunCancelled
from gfsources.pipeline import DiscoveryOptions, list_repositories, run_discovery
from gfsources.probe import DEFAULT_JOBS, RetryPolicy
from gfsources.report import write_report


LOG_LEVEL_ENV = "GFSOURCES_LOG_LEVEL"
EXIT_CANCELLED = 130
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
log = logging.getLogger(__name__)


def _resolve_log_level(args: argparse.Namespace) -> int:
    """Resolve effective logging level from explicit level, environment, or verbosity flags."""
    if args.log_level is not None:
        return getattr(logging, args.log_level)

    env_level = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    if env_level in _LOG_LEVELS and not (args.verbose or args.quiet):
        return getattr(logging, env_level)

    # Start from INFO, then apply -v and -q offsets with DEBUG/ERROR clamp.
    level = logging.INFO - (10 * int(args.verbose)) + (10 * int(args.quiet))
    return max(logging.DEBUG, min(logging.ERROR, level))


def _configure_logging(args: argparse.Namespace) -> None:
    """Configure stdlib logging using Python default handler routing."""
    effective_level = _resolve_log_level(args)
    root_logger = logging.getLogger()
    root_logger.setLevel(effective_level)
    if not root_logger.handlers:
        logging.basicConfig(level=effective_level)


@contextmanager
def _cancel_on_signals(cancel_event: threading.Event):
    """Set cancel_event on SIGINT/SIGTERM for the duration of the block."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        log.warning(f"received signal {signum}, stopping after in-flight probes")
        cancel_event.set()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def _build_options(args: argparse.Namespace) -> DiscoveryOptions:
    """Collect parsed arguments into run options."""
    if args.jobs < 1:
        raise ValueError(f"--jobs must be >= 1, got {args.jobs}")
    if args.retries < 0:
        raise ValueError(f"--retries must be >= 0, got {args.retries}")
    if args.timeout is not None and args.timeout <= 0:
        raise ValueError(f"--timeout must be > 0, got {args.timeout}")
    show_progress = False if args.no_progress else None
    return DiscoveryOptions(
        catalog_path=args.catalog,
        catalog_url=args.catalog_url,
        update_catalog=not args.no_update,
        strategy=args.strategy,
        cache_dir=args.cache_dir,
        refresh=args.refresh,
        jobs=args.jobs,
        timeout=args.timeout,
        retry=RetryPolicy(max_attempts=args.retries + 1, backoff_s=args.backoff),
        show_progress=show_progress,
    )


def main_cli(args: argparse.Namespace) -> int:
    """Run the discovery selected by parsed arguments."""
    options = _build_options(args)

    # Route list-only mode.
    if args.list:
        repositories = list_repositories(options)
        output = "".join(f"{url}\n" for url in repositories)
        if args.out is None:
            sys.stdout.write(output)
        else:
            args.out.expanduser().resolve().write_text(output, encoding="utf-8")
        return 0

    cancel_event = threading.Event()
    with _cancel_on_signals(cancel_event):
        result = run_discovery(options, cancel_event=cancel_event)
    write_report(result.report, args.out)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the gfsources CLI and return an exit code."""
    args = _parse_arguments(argv)
    _configure_logging(args)
    try:
        return main_cli(args)
    except RunCancelled as err:
        log.error(f"run cancelled, no report written: {err}")
        return EXIT_CANCELLED
    except KeyboardInterrupt:
        log.error("interrupted, no report written")
        return EXIT_CANCELLED
    except Exception as err:
        log.error(f"{err}")
        log.debug("unhandled CLI exception", exc_info=True)
        return 1


def _parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for gfsources."""
    parser = argparse.ArgumentParser(
        prog="gfsources",
        description="Find upstream source repositories for Google Fonts families and check for build configs.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (repeatable).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease logging verbosity (repeatable).",
    )
    parser.add_argument(
        "--log-level",
        choices=_LOG_LEVELS,
        default=None,
        help=f"Explicit log level override (else ${LOG_LEVEL_ENV}, else -v/-q).",
    )
    parser.add_argument(
        "-o",
        "--out",
        "--output",
        dest="out",
        type=Path,
        default=None,
        help="Path to write the JSON report. Defaults to stdout.",
    )
    parser.add_argument(
        "-l",
        "--list",
        action="store_true",
        help="Only print the distinct repository URLs found in the catalog.",
    )

    catalog_group = parser.add_argument_group("catalog")
    catalog_group.add_argument(
        "--catalog",
        type=Path,
        default=None,
        help="Reusable local catalog checkout. Omit to clone into a temporary directory.",
    )
    catalog_group.add_argument(
        "--catalog-url",
        default=GF_REPO_URL,
        help="Catalog repository to clone.",
    )
    catalog_group.add_argument(
        "--no-update",
        action="store_true",
        help="Use an existing --catalog checkout without fetching.",
    )

    probe_group = parser.add_argument_group("probing")
    probe_group.add_argument(
        "--strategy",
        choices=("auto", "http", "checkout"),
        default="auto",
        help="How repositories are inspected: remote listing, local clone, or HTTP with clone fallback.",
    )
    probe_group.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Directory for repository checkouts. Defaults to the platform cache directory.",
    )
    probe_group.add_argument(
        "--refresh",
        action="store_true",
        help="Fetch cached repository checkouts before inspecting them.",
    )
    probe_group.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=DEFAULT_JOBS,
        help="Maximum concurrent probes.",
    )
    probe_group.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-operation timeout in seconds for git and HTTP calls.",
    )
    probe_group.add_argument(
        "--retries",
        type=int,
        default=2,
        help="Retries for transient failures within one probe.",
    )
    probe_group.add_argument(
        "--backoff",
        type=float,
        default=1.0,
        help="Initial retry backoff in seconds (doubles per retry).",
    )
    probe_group.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the progress bar.",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":
    raise SystemExit(main())
