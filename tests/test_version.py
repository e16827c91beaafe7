"""
Tests for the version module.
"""
import importlib
import re
from importlib import metadata as importlib_metadata
from unittest.mock import mock_open, patch

import pytest

import oraclekit.version as vmod
from oraclekit import __version__


def _raise(exc):
    def raiser(*_args, **_kwargs):
        raise exc
    return raiser


@pytest.fixture(autouse=True)
def _restore_version():
    yield
    importlib.reload(vmod)


def test_version_format():
    """The version string follows semantic versioning"""
    assert re.match(r"^\d+\.\d+\.\d+$", __version__)


@patch("importlib.metadata.version")
def test_version_from_metadata(mock_metadata_version):
    mock_metadata_version.return_value = "2.3.4"
    importlib.reload(vmod)
    assert vmod.__version__ == "2.3.4"
    mock_metadata_version.assert_called_with("threshold-oracle-kit")


@patch("importlib.metadata.version")
@patch("pathlib.Path.open", new_callable=mock_open, read_data=b'[project]\nversion = "1.2.3"\n')
def test_version_from_pyproject(mock_open_file, mock_metadata_version):
    """Source checkouts read the version from pyproject.toml"""
    mock_metadata_version.side_effect = importlib_metadata.PackageNotFoundError
    importlib.reload(vmod)
    assert vmod.__version__ == "1.2.3"


def test_version_pyproject_missing(monkeypatch):
    monkeypatch.setattr(importlib_metadata, "version", _raise(importlib_metadata.PackageNotFoundError()))
    monkeypatch.setattr("pathlib.Path.open", _raise(FileNotFoundError()))
    importlib.reload(vmod)
    assert vmod.__version__ == "0.0.0"


def test_version_key_missing(monkeypatch):
    monkeypatch.setattr(importlib_metadata, "version", _raise(importlib_metadata.PackageNotFoundError()))
    monkeypatch.setattr("pathlib.Path.open", mock_open(read_data=b'[project]\nname = "threshold-oracle-kit"\n'))
    importlib.reload(vmod)
    assert vmod.__version__ == "0.0.0"
