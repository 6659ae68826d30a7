"""Tests for SyncedFile -- hydration, debounce, conflicts, and shutdown."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock

import pytest

from repovault.errors import (
    PayloadTooLarge,
    PersistentConflictError,
    Unavailable,
    VersionConflict,
)
from repovault.models import SyncPhase
from repovault.remote import LocalRemote, content_id
from repovault.synced_file import SyncedFile


class RecordingRemote(LocalRemote):
    """LocalRemote that counts calls and can inject failures."""

    def __init__(self, root: Path, **kwargs):
        super().__init__(root, **kwargs)
        self.put_calls = 0
        self.commit_calls = 0
        self.conflicts_remaining = 0
        self.put_error: Optional[Exception] = None
        self.put_error_once: Optional[Exception] = None
        self.put_gate: Optional[threading.Event] = None

    def put_object(self, path, content, expected_token, message=None):
        self.put_calls += 1
        if self.put_gate is not None:
            self.put_gate.wait(timeout=5)
        if self.put_error_once is not None:
            error, self.put_error_once = self.put_error_once, None
            raise error
        if self.put_error is not None:
            raise self.put_error
        if self.conflicts_remaining > 0:
            self.conflicts_remaining -= 1
            raise VersionConflict(path, expected_token, "someone-else", status=409)
        return super().put_object(path, content, expected_token, message)

    def commit_multi_write(self, base_ref, writes, message):
        self.commit_calls += 1
        return super().commit_multi_write(base_ref, writes, message)


@pytest.fixture
def remote(store_root: Path) -> RecordingRemote:
    return RecordingRemote(store_root)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "app.db"


@pytest.fixture
def synced(remote: RecordingRemote, db_path: Path):
    sf = SyncedFile(
        remote,
        db_path,
        "data/app.db",
        debounce_seconds=0.05,
        flush_interval_seconds=30,
        shutdown_timeout_seconds=2,
    )
    yield sf
    if remote.put_gate is not None:
        remote.put_gate.set()
    sf.shutdown_flush(timeout=1)


class TestHydrate:
    """Startup hydration and bootstrap."""

    def test_both_absent_bootstraps_empty(self, synced, remote, db_path):
        synced.hydrate()

        assert db_path.exists()
        assert db_path.read_bytes() == b""
        obj = remote.get_object("data/app.db")
        assert obj is not None
        assert obj.content == b""
        assert synced.version_token == obj.version_token
        assert synced.dirty is False
        assert synced.phase == SyncPhase.CLEAN

    def test_remote_wins_over_local(self, synced, remote, db_path):
        remote.put_object("data/app.db", b"X", None)
        db_path.parent.mkdir(parents=True)
        db_path.write_bytes(b"Y")

        synced.hydrate()

        assert db_path.read_bytes() == b"X"
        assert synced.version_token == content_id(b"X")
        assert synced.dirty is False

    def test_local_seeds_missing_remote(self, synced, remote, db_path):
        db_path.parent.mkdir(parents=True)
        db_path.write_bytes(b"existing")

        synced.hydrate()

        assert remote.get_object("data/app.db").content == b"existing"
        assert db_path.read_bytes() == b"existing"

    def test_transport_error_is_fatal(self, db_path):
        broken = MagicMock()
        broken.get_object.side_effect = Unavailable("network down")
        sf = SyncedFile(broken, db_path, "data/app.db")

        with pytest.raises(Unavailable):
            sf.hydrate()
        assert not db_path.exists()


class TestDebounce:
    """mark_dirty coalescing."""

    def test_burst_coalesces_into_one_flush(self, synced, remote, db_path, wait_for):
        synced.hydrate()
        synced.debounce_seconds = 0.5
        baseline = remote.put_calls

        for i in range(10):
            db_path.write_bytes(f"row {i}".encode())
            synced.mark_dirty()

        assert wait_for(lambda: not synced.dirty)
        assert remote.put_calls == baseline + 1
        assert remote.get_object("data/app.db").content == b"row 9"

    def test_mark_dirty_does_not_block(self, synced, remote, db_path):
        synced.hydrate()
        synced.debounce_seconds = 1.0
        remote.put_gate = threading.Event()

        db_path.write_bytes(b"change")
        synced.mark_dirty()

        assert synced.dirty is True
        assert synced.phase == SyncPhase.DIRTY_PENDING
        remote.put_gate.set()

    def test_change_during_flush_is_not_lost(self, synced, remote, db_path, wait_for):
        synced.hydrate()
        remote.put_gate = threading.Event()

        db_path.write_bytes(b"first")
        synced.mark_dirty()
        assert wait_for(lambda: synced.phase == SyncPhase.FLUSHING)

        db_path.write_bytes(b"second")
        synced.mark_dirty()
        remote.put_gate.set()

        assert wait_for(
            lambda: not synced.dirty
            and remote.get_object("data/app.db").content == b"second"
        )

    def test_change_during_failed_flush_is_retried(self, synced, remote, db_path, wait_for):
        synced.hydrate()
        remote.put_gate = threading.Event()
        remote.put_error_once = Unavailable("remote 503", status=503)

        db_path.write_bytes(b"first")
        synced.mark_dirty()
        assert wait_for(lambda: synced.phase == SyncPhase.FLUSHING)

        db_path.write_bytes(b"second")
        synced.mark_dirty()
        remote.put_gate.set()

        assert wait_for(
            lambda: not synced.dirty
            and remote.get_object("data/app.db").content == b"second"
        )

    def test_failed_background_flush_keeps_dirty(self, synced, remote, db_path, wait_for, caplog):
        synced.hydrate()
        remote.put_error = Unavailable("remote 503", status=503)

        db_path.write_bytes(b"change")
        with caplog.at_level(logging.ERROR, logger="repovault.synced_file"):
            synced.mark_dirty()
            assert wait_for(lambda: synced.status().last_error is not None)

        assert synced.dirty is True
        assert "Debounced flush" in caplog.text

        remote.put_error = None
        assert synced.flush() is True
        assert synced.dirty is False


class TestFlush:
    """Direct flush behaviour."""

    def test_noop_when_clean(self, synced, remote):
        synced.hydrate()
        baseline = remote.put_calls
        assert synced.flush() is False
        assert remote.put_calls == baseline

    def test_single_conflict_recovers(self, synced, remote, db_path):
        synced.hydrate()
        db_path.write_bytes(b"new")
        synced.dirty = True
        remote.conflicts_remaining = 1
        baseline = remote.put_calls

        assert synced.flush() is True

        assert remote.put_calls == baseline + 2
        assert synced.dirty is False
        assert synced.version_token == content_id(b"new")

    def test_stale_token_recovers(self, synced, remote, db_path):
        synced.hydrate()
        remote.put_object("data/app.db", b"written elsewhere", synced.version_token)
        db_path.write_bytes(b"mine")
        synced.dirty = True

        assert synced.flush() is True
        assert remote.get_object("data/app.db").content == b"mine"

    def test_second_conflict_is_hard_failure(self, synced, remote, db_path):
        synced.hydrate()
        db_path.write_bytes(b"new")
        synced.dirty = True
        remote.conflicts_remaining = 2

        with pytest.raises(PersistentConflictError):
            synced.flush()

        assert synced.dirty is True
        assert remote.get_object("data/app.db").content == b""

    def test_unknown_token_is_fetched_first(self, synced, remote, db_path):
        remote.put_object("data/app.db", b"from a previous run", None)
        db_path.parent.mkdir(parents=True)
        db_path.write_bytes(b"local")
        synced.dirty = True

        synced.flush()

        assert remote.put_calls == 2
        assert remote.get_object("data/app.db").content == b"local"

    def test_large_payload_uses_commit_path(self, store_root, db_path):
        remote = RecordingRemote(store_root, large_payload_threshold=16)
        sf = SyncedFile(remote, db_path, "data/app.db")
        sf.hydrate()
        puts = remote.put_calls

        db_path.write_bytes(b"x" * 64)
        sf.dirty = True
        sf.flush()

        assert remote.put_calls == puts
        assert remote.commit_calls == 1
        assert remote.get_object("data/app.db").content == b"x" * 64
        assert sf.version_token == content_id(b"x" * 64)

    def test_payload_rejected_by_remote_falls_back(self, synced, remote, db_path):
        synced.hydrate()
        remote.put_error = PayloadTooLarge("too big", status=413)
        db_path.write_bytes(b"payload")
        synced.dirty = True

        synced.flush()

        assert remote.commit_calls == 1
        assert synced.dirty is False
        assert remote.get_object("data/app.db").content == b"payload"


class TestPeriodicAndShutdown:
    """Safety-net loop and final flush."""

    def test_periodic_flush(self, remote, db_path, wait_for):
        sf = SyncedFile(
            remote, db_path, "data/app.db",
            debounce_seconds=30, flush_interval_seconds=0.05,
        )
        sf.hydrate()
        sf.start()
        try:
            db_path.write_bytes(b"periodic")
            sf.mark_dirty()
            assert wait_for(lambda: not sf.dirty)
            assert remote.get_object("data/app.db").content == b"periodic"
        finally:
            sf.shutdown_flush(timeout=1)

    def test_shutdown_flushes_pending_change(self, remote, db_path):
        sf = SyncedFile(remote, db_path, "data/app.db", debounce_seconds=30)
        sf.hydrate()
        db_path.write_bytes(b"last words")
        sf.mark_dirty()

        assert sf.shutdown_flush() is True

        assert remote.get_object("data/app.db").content == b"last words"
        assert sf.phase == SyncPhase.STOPPED
        assert sf.dirty is False

    def test_shutdown_when_clean(self, synced, remote):
        synced.hydrate()
        baseline = remote.put_calls
        assert synced.shutdown_flush() is True
        assert remote.put_calls == baseline
        assert synced.phase == SyncPhase.STOPPED

    def test_shutdown_is_bounded(self, remote, db_path):
        sf = SyncedFile(remote, db_path, "data/app.db", debounce_seconds=30)
        sf.hydrate()
        remote.put_gate = threading.Event()
        db_path.write_bytes(b"stuck")
        sf.mark_dirty()

        try:
            assert sf.shutdown_flush(timeout=0.2) is False
            assert sf.phase == SyncPhase.STOPPED
        finally:
            remote.put_gate.set()

    def test_status_snapshot(self, synced):
        synced.hydrate()
        st = synced.status()
        assert st.remote_path == "data/app.db"
        assert st.phase == SyncPhase.CLEAN
        assert st.flush_count == 1
        assert st.version_token == content_id(b"")
