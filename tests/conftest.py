"""Pytest fixtures shared across the test suite."""

import os

import pytest


@pytest.fixture
def milicron_home(tmp_path, monkeypatch):
    """Point MILICRON_HOME at an empty temporary directory."""
    home = tmp_path / "milicron"
    monkeypatch.setenv("MILICRON_HOME", str(home))
    return home


@pytest.fixture
def clean_env():
    """Remove environment variables a test loads from a .env file."""
    names: list[str] = []
    yield names
    for name in names:
        os.environ.pop(name, None)
