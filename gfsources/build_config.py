"""Reading of font build configuration files ('sources/config.yaml')."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml


log = logging.getLogger(__name__)


class BadConfig(ValueError):
    """Raised when a build config cannot be read or has an unexpected shape."""


@dataclass(frozen=True)
class BuildConfig:
    """Subset of the googlefonts-project-template build config."""

    sources: tuple[str, ...]
    family_name: str | None = None
    build_variable: bool = True
    build_static: bool = True
    build_ttf: bool = True
    build_otf: bool = False
    recipe_provider: str | None = None
    extra: dict = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_mapping(cls, payload: dict, config_fp: str | Path | None = None) -> "BuildConfig":
        """Build a config from a parsed YAML mapping."""
        if not isinstance(payload, dict):
            raise BadConfig(f"config must be a mapping: {config_fp}")
        sources = payload.get("sources")
        if not isinstance(sources, list) or not all(isinstance(s, str) for s in sources):
            raise BadConfig(f"config field 'sources' must be a list of strings: {config_fp}")

        def _flag(key: str, default: bool) -> bool:
            value = payload.get(key, default)
            if not isinstance(value, bool):
                raise BadConfig(f"config field '{key}' must be a boolean: {config_fp}")
            return value

        known = {"sources", "familyName", "buildVariable", "buildStatic", "buildTTF", "buildOTF", "recipeProvider"}
        return cls(
            sources=tuple(sources),
            family_name=payload.get("familyName"),
            build_variable=_flag("buildVariable", True),
            build_static=_flag("buildStatic", True),
            build_ttf=_flag("buildTTF", True),
            build_otf=_flag("buildOTF", False),
            recipe_provider=payload.get("recipeProvider"),
            extra={k: v for k, v in payload.items() if k not in known},
        )

    @classmethod
    def load(cls, config_fp: str | Path) -> "BuildConfig":
        """Parse a config.yaml file from disk."""
        path = Path(config_fp)
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as err:
            raise BadConfig(f"could not read {path} ({err})") from err
        except yaml.YAMLError as err:
            raise BadConfig(f"invalid yaml in {path} ({err})") from err
        return cls.from_mapping(payload, config_fp=path)


def resolve_sources(repo_dir: str | Path, config_rel_fp: str | Path) -> tuple[str, ...]:
    """Return repo-relative paths of the sources a config declares that exist on disk."""
    repo_path = Path(repo_dir).resolve()
    config_fp = repo_path / config_rel_fp
    config = BuildConfig.load(config_fp)

    # Sources are declared relative to the directory holding the config.
    found = set()
    for source in config.sources:
        source_fp = (config_fp.parent / source).resolve()
        if not source_fp.exists():
            log.debug(f"declared source missing in checkout\n    {source_fp}")
            continue
        try:
            found.add(source_fp.relative_to(repo_path).as_posix())
        except ValueError:
            log.warning(f"declared source escapes repository root: {source}")
    return tuple(sorted(found))
