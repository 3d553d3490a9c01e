"""Access to the font catalog repository and its per-family metadata files."""

import logging, shutil, tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from gfsources import git
from gfsources.errors import GitError, MalformedRecord, SourceUnavailable
from gfsources.metadata import METADATA_FILE, FontRecord, load_metadata


GF_REPO_URL = "https://github.com/google/fonts"
LICENSE_DIRS = ("ofl", "apache", "ufl")
log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogCheckout:
    """A local, read-only view of the catalog repository."""

    root: Path
    rev: str | None = None
    license_dirs: tuple[str, ...] = LICENSE_DIRS

    def iter_family_dirs(self) -> Iterator[Path]:
        """Yield family directories under each license directory, sorted."""
        for license_dir in self.license_dirs:
            base = self.root / license_dir
            if not base.is_dir():
                continue
            for family_dir in sorted(p for p in base.iterdir() if p.is_dir()):
                yield family_dir

    def iter_metadata_files(self) -> Iterator[Path]:
        """Yield METADATA.pb paths, one per family directory."""
        for family_dir in self.iter_family_dirs():
            metadata_fp = family_dir / METADATA_FILE
            if not metadata_fp.is_file():
                log.warning(f"no metadata for font directory\n    {family_dir}")
                continue
            yield metadata_fp

    def iter_records(self) -> Iterator[FontRecord]:
        """Yield decoded records, skipping (and logging) malformed ones."""
        for metadata_fp in self.iter_metadata_files():
            try:
                yield load_metadata(metadata_fp)
            except MalformedRecord as err:
                log.warning(f"skipping {err}")


def _validate_catalog_root(root: Path, license_dirs: tuple[str, ...]) -> None:
    if not any((root / license_dir).is_dir() for license_dir in license_dirs):
        raise SourceUnavailable(
            f"no catalog license directory ({', '.join(license_dirs)}) found under\n    {root}"
        )


def _clone_catalog(catalog_url: str, destination: Path, timeout: float | None) -> str | None:
    """Clone the catalog into destination via a sibling .part directory."""
    part_fp = destination.with_name(f"{destination.name}.part")
    if part_fp.exists():
        shutil.rmtree(part_fp)
    try:
        git.clone_repo(catalog_url, part_fp, timeout=timeout)
        part_fp.replace(destination)
    except GitError as err:
        raise SourceUnavailable(f"failed to checkout {catalog_url}: {err.stderr or err}") from err
    finally:
        if part_fp.exists():
            shutil.rmtree(part_fp, ignore_errors=True)
    try:
        return git.head_rev(destination, timeout=timeout)
    except GitError:
        return None


def prepare_local_catalog(
    root: str | Path,
    *,
    catalog_url: str = GF_REPO_URL,
    update: bool = True,
    timeout: float | None = git.DEFAULT_GIT_TIMEOUT,
) -> str | None:
    """Make a reusable local catalog copy current and return its rev when known."""
    root = Path(root)
    if not root.exists():
        root.parent.mkdir(parents=True, exist_ok=True)
        return _clone_catalog(catalog_url, root, timeout)

    if not root.is_dir():
        raise SourceUnavailable(f"catalog path is not a directory: {root}")
    if not git.is_git_checkout(root):
        log.debug(f"catalog path is not a git checkout, reading as snapshot\n    {root}")
        return None

    if update:
        # A failed fetch leaves the working copy as it was.
        try:
            return git.update_checkout(root, timeout=timeout)
        except GitError as err:
            raise SourceUnavailable(f"failed to update catalog at {root}: {err.stderr or err}") from err
    try:
        return git.head_rev(root, timeout=timeout)
    except GitError:
        return None


@contextmanager
def open_catalog(
    catalog_path: str | Path | None = None,
    *,
    catalog_url: str = GF_REPO_URL,
    update: bool = True,
    timeout: float | None = git.DEFAULT_GIT_TIMEOUT,
    license_dirs: tuple[str, ...] = LICENSE_DIRS,
) -> Iterator[CatalogCheckout]:
    """Yield an up-to-date CatalogCheckout.

    With no catalog_path the catalog is cloned into a temporary directory that
    is removed on exit. An existing git checkout is fetched and reset to the
    remote HEAD unless update is False. A plain directory is read as-is, and a
    missing path is cloned into.
    """
    license_dirs = tuple(license_dirs)
    if catalog_path is None:
        with tempfile.TemporaryDirectory(prefix="gfsources-catalog-") as temp_dir:
            root = Path(temp_dir) / "fonts"
            log.info(f"checking out catalog {catalog_url} to a temporary directory")
            rev = _clone_catalog(catalog_url, root, timeout)
            _validate_catalog_root(root, license_dirs)
            yield CatalogCheckout(root=root, rev=rev, license_dirs=license_dirs)
        return

    root = Path(catalog_path).expanduser().resolve()
    rev = prepare_local_catalog(root, catalog_url=catalog_url, update=update, timeout=timeout)
    _validate_catalog_root(root, license_dirs)
    log.info(f"using catalog at\n    {root}" + (f"\n    rev={rev}" if rev else ""))
    yield CatalogCheckout(root=root, rev=rev, license_dirs=license_dirs)
