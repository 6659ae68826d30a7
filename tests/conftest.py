"""Shared test fixtures for repovault."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from repovault.config import ENV_OVERRIDES
from repovault.models import BackendType, StoreConfig
from repovault.remote import LocalRemote


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep real deployment variables out of every test."""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("REPOVAULT_HOME", raising=False)


@pytest.fixture
def store_root(tmp_path: Path) -> Path:
    """Directory backing a LocalRemote."""
    return tmp_path / "remote"


@pytest.fixture
def local_remote(store_root: Path) -> LocalRemote:
    """A fresh directory-backed remote on branch main."""
    return LocalRemote(store_root, branch="main")


@pytest.fixture
def local_config(tmp_path: Path, store_root: Path) -> StoreConfig:
    """Configuration for the local backend with fast timers."""
    return StoreConfig(
        backend=BackendType.LOCAL,
        local_root=store_root,
        local_db_path=tmp_path / "data" / "app.db",
        remote_db_path="data/app.db",
        debounce_seconds=0.05,
        flush_interval_seconds=30,
        shutdown_timeout_seconds=2,
    )


@pytest.fixture
def wait_for():
    """Poll a condition until it holds or the timeout expires."""

    def _wait(condition, timeout: float = 3.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if condition():
                return True
            time.sleep(interval)
        return condition()

    return _wait
