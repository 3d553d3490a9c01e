"""gfsources package."""

from importlib.metadata import PackageNotFoundError, version

try:
    # Read installed package metadata so version stays tied to pyproject.toml.
    __version__ = version("google-fonts-sources")
except PackageNotFoundError:
    __version__ = "0+unknown"
