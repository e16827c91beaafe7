"""
Version information for the oracle kit.
"""
import importlib.metadata
import pathlib

import tomli

DISTRIBUTION_NAME = "threshold-oracle-kit"

# Installed metadata first, pyproject.toml for source checkouts
try:
    __version__ = importlib.metadata.version(DISTRIBUTION_NAME)
except importlib.metadata.PackageNotFoundError:
    try:
        path = pathlib.Path(__file__).parent.parent / "pyproject.toml"
        with path.open("rb") as f:
            __version__ = tomli.load(f)["project"]["version"]
    except (FileNotFoundError, KeyError):
        __version__ = "0.0.0"
