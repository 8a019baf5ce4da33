"""Shared test fixtures for the mdview test suite."""

import socket

import pytest

from mdview.registry import InstanceRegistry


@pytest.fixture(autouse=True)
def _isolated_data_dir(tmp_path, monkeypatch):
    """Point the registry and logs at a per-test directory.

    Keeps tests from touching (or being confused by) a real user's
    running instances.
    """
    data_dir = tmp_path / "mdview-data"
    monkeypatch.setenv("MDVIEW_DATA_DIR", str(data_dir))
    yield data_dir


@pytest.fixture
def registry(_isolated_data_dir):
    return InstanceRegistry(_isolated_data_dir)


@pytest.fixture
def md_file(tmp_path):
    """A small markdown document in its own directory."""
    doc_dir = tmp_path / "docs"
    doc_dir.mkdir()
    path = doc_dir / "notes.md"
    path.write_text("# Notes\n\nFirst draft.\n")
    return path


@pytest.fixture
def free_port():
    """A port that was free a moment ago, used as a base port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
