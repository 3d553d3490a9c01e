"""Grouping of font records into distinct repository candidates."""

import logging
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import urlsplit, urlunsplit

from gfsources.metadata import FontRecord, normalize_repo_url


_CASE_INSENSITIVE_HOSTS = ("github.com",)
log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepositoryCandidate:
    """One distinct repository and the fonts that reference it."""

    repository: str
    font_names: tuple[str, ...]
    config_yaml: str | None = None
    commit: str | None = None

    @property
    def key(self) -> str:
        return repository_key(self.repository)


def repository_key(repository: str) -> str:
    """Return the deduplication key for an already-normalized repository identifier.

    Scheme and host are case-insensitive everywhere; the path is only folded
    for github.com, which treats org and repository names case-insensitively.
    """
    normalized = (normalize_repo_url(repository) or "").rstrip("/")
    if normalized.endswith(".git"):
        normalized = normalized[: -len(".git")]
    parsed = urlsplit(normalized)
    if not parsed.netloc:
        return normalized
    host = parsed.netloc.lower()
    path = parsed.path.lower() if host in _CASE_INSENSITIVE_HOSTS else parsed.path
    return urlunsplit((parsed.scheme.lower(), host, path, parsed.query, parsed.fragment)).rstrip("/")


def group_candidates(records: Iterable[FontRecord]) -> list[RepositoryCandidate]:
    """Collapse records that share a repository into one candidate each, in source order."""
    order: list[str] = []
    repositories: dict[str, str] = {}
    font_names: dict[str, list[str]] = {}
    config_hints: dict[str, str | None] = {}
    commits: dict[str, str | None] = {}

    for record in records:
        if record.repository is None:
            continue
        key = repository_key(record.repository)
        if key not in repositories:
            order.append(key)
            repositories[key] = record.repository
            font_names[key] = []
            config_hints[key] = None
            commits[key] = None
        else:
            log.debug(f"duplicate repo '{record.repository}' for font {record.name}")
        font_names[key].append(record.name)
        # First non-empty catalog hint wins.
        if config_hints[key] is None and record.config_yaml:
            config_hints[key] = record.config_yaml
        if commits[key] is None and record.commit:
            commits[key] = record.commit

    candidates = [
        RepositoryCandidate(
            repository=repositories[key],
            font_names=tuple(font_names[key]),
            config_yaml=config_hints[key],
            commit=commits[key],
        )
        for key in order
    ]
    shared = sum(1 for candidate in candidates if len(candidate.font_names) > 1)
    log.debug(f"grouped fonts into {len(candidates):,} repositories ({shared:,} shared by several fonts)")
    return candidates
