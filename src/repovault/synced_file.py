"""
SyncedFile -- one local file mirrored to one remote path.

The remote has no partial writes, so every flush uploads the whole
file. Mutations are coalesced with a debounce timer, a periodic loop
bounds staleness, and shutdown performs one last bounded flush.

    hydrate()      remote -> local (or bootstrap the remote copy)
    mark_dirty()   schedule a debounced flush
    flush()        local -> remote, retrying a stale token once
    shutdown_flush()  final forced flush with a timeout

Flushes are single-flight: a second flush waits for the first.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .errors import (
    PayloadTooLarge,
    PersistentConflictError,
    RemoteError,
    VersionConflict,
)
from .models import SyncPhase, SyncStatus
from .remote import RemoteObjectClient

logger = logging.getLogger("repovault.synced_file")

MAX_RECORDED_ERRORS = 10


class SyncedFile:
    """Owns the lifecycle of a local file backed by a remote object.

    Args:
        remote: Remote client.
        local_path: Local file (the embedded database).
        remote_path: Path of the mirrored object in the repository.
        debounce_seconds: Quiet period before a marked change is flushed.
        flush_interval_seconds: Period of the safety-net flush loop.
        shutdown_timeout_seconds: Upper bound on the final flush.
    """

    def __init__(
        self,
        remote: RemoteObjectClient,
        local_path: Path,
        remote_path: str,
        debounce_seconds: float = 5.0,
        flush_interval_seconds: float = 60.0,
        shutdown_timeout_seconds: float = 20.0,
    ):
        self.remote = remote
        self.local_path = Path(local_path)
        self.remote_path = remote_path.strip("/")
        self.debounce_seconds = debounce_seconds
        self.flush_interval_seconds = flush_interval_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds

        self.version_token: Optional[str] = None
        self.dirty = False
        self.phase = SyncPhase.UNINITIALIZED
        self.last_flush: Optional[datetime] = None
        self.flush_count = 0
        self.errors: list[str] = []

        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._timer: Optional[threading.Timer] = None
        self._periodic: Optional[threading.Thread] = None
        self._generation = 0
        self._flushing = False

    @property
    def commit_message(self) -> str:
        return f"Sync {self.remote_path}"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def hydrate(self) -> None:
        """Make the local file match the remote, or seed the remote.

        The remote copy always wins over a leftover local file. When the
        remote object is absent, the local file (created empty if needed)
        becomes the initial remote object.

        Raises:
            RemoteError: Any failure other than absence. Startup must
                not continue with an unknown database state.
        """
        self._set_phase(SyncPhase.HYDRATING)
        logger.info("Hydrating %s from %s", self.local_path, self.remote_path)

        remote_obj = self.remote.get_object(self.remote_path)
        if remote_obj is not None:
            if self.local_path.exists():
                logger.info("Replacing local %s with the remote copy", self.local_path)
            self._write_local(remote_obj.content)
            with self._lock:
                self.version_token = remote_obj.version_token
                self.dirty = False
            logger.info(
                "Pulled %s from remote (%d bytes)",
                self.remote_path,
                len(remote_obj.content),
            )
        else:
            self.local_path.parent.mkdir(parents=True, exist_ok=True)
            if not self.local_path.exists():
                self.local_path.write_bytes(b"")
            self.flush(force=True)
            logger.info("Initialized remote %s (created new object)", self.remote_path)

        self._set_phase(SyncPhase.CLEAN)

    def start(self) -> None:
        """Start the periodic flush loop."""
        if self._periodic and self._periodic.is_alive():
            return
        self._stop_event.clear()
        self._periodic = threading.Thread(
            target=self._periodic_loop, name="repovault-periodic-flush", daemon=True
        )
        self._periodic.start()

    def mark_dirty(self) -> None:
        """Record a local mutation. Never blocks on the network."""
        with self._lock:
            self.dirty = True
            self._generation += 1
            if self._stop_event.is_set() and self.phase == SyncPhase.STOPPED:
                logger.warning("%s marked dirty after shutdown", self.local_path)
                return
            if self._flushing:
                # Picked up when the in-flight flush finishes.
                return
            if self.phase == SyncPhase.CLEAN:
                self.phase = SyncPhase.DIRTY_PENDING
            self._schedule_locked()

    def shutdown_flush(self, timeout: Optional[float] = None) -> bool:
        """Stop background work and flush one last time if dirty.

        Args:
            timeout: Seconds to wait for the final flush. Defaults to
                shutdown_timeout_seconds.

        Returns:
            True if nothing was pending or the final flush completed.
        """
        timeout = self.shutdown_timeout_seconds if timeout is None else timeout

        with self._lock:
            if self.phase == SyncPhase.STOPPED:
                return True
            self._stop_event.set()
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            pending = self.dirty

        if not pending:
            self._set_phase(SyncPhase.STOPPED)
            logger.info("%s clean at shutdown", self.local_path)
            return True

        outcome: dict = {}

        def _final() -> None:
            try:
                self.flush(force=True)
                outcome["ok"] = True
            except Exception as exc:
                logger.error("Final flush of %s failed: %s", self.remote_path, exc)

        self._set_phase(SyncPhase.FINAL_FLUSH)
        worker = threading.Thread(target=_final, name="repovault-final-flush", daemon=True)
        worker.start()
        worker.join(timeout)

        if worker.is_alive():
            logger.error(
                "Final flush of %s did not finish within %.1fs; exiting with unsynced changes",
                self.remote_path,
                timeout,
            )
        self._set_phase(SyncPhase.STOPPED)
        return bool(outcome.get("ok"))

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def flush(self, force: bool = False) -> bool:
        """Upload the local file if it changed.

        Args:
            force: Upload even when not dirty, and skip the token lookup
                when no token is known yet.

        Returns:
            True if an upload happened.

        Raises:
            PersistentConflictError: The write conflicted twice. The file
                stays dirty.
            RemoteError, OSError: The file stays dirty for the next attempt.
        """
        with self._flush_lock:
            with self._lock:
                if not self.dirty and not force:
                    return False
                generation = self._generation
                self._flushing = True
                if self.phase != SyncPhase.FINAL_FLUSH:
                    self.phase = SyncPhase.FLUSHING

            try:
                data = self.local_path.read_bytes()
                token = self._upload(data, force)
            except Exception as exc:
                with self._lock:
                    self._flushing = False
                    self._record_error(f"{type(exc).__name__}: {exc}")
                    if self.phase not in (SyncPhase.FINAL_FLUSH, SyncPhase.STOPPED):
                        self.phase = (
                            SyncPhase.DIRTY_PENDING if self.dirty else SyncPhase.CLEAN
                        )
                    if self._generation != generation:
                        self._schedule_locked()
                raise

            with self._lock:
                self._flushing = False
                self.version_token = token
                self.last_flush = datetime.now(timezone.utc)
                self.flush_count += 1
                changed_meanwhile = self._generation != generation
                if not changed_meanwhile:
                    self.dirty = False
                if self.phase not in (SyncPhase.FINAL_FLUSH, SyncPhase.STOPPED):
                    self.phase = (
                        SyncPhase.DIRTY_PENDING if changed_meanwhile else SyncPhase.CLEAN
                    )
                if changed_meanwhile:
                    self._schedule_locked()

        logger.info("Flushed %s (%d bytes)", self.remote_path, len(data))
        return True

    def _upload(self, data: bytes, force: bool) -> Optional[str]:
        if len(data) > self.remote.large_payload_threshold:
            return self._upload_large(data)

        token = self.version_token
        if token is None and not force:
            token = self.remote.get_version_token(self.remote_path)

        try:
            return self._put_with_retry(data, token)
        except PayloadTooLarge:
            return self._upload_large(data)

    def _put_with_retry(self, data: bytes, token: Optional[str]) -> str:
        try:
            return self.remote.put_object(
                self.remote_path, data, token, self.commit_message
            )
        except VersionConflict as first:
            self._set_phase(SyncPhase.FLUSHING_RETRY)
            fresh = self.remote.get_version_token(self.remote_path)
            logger.warning(
                "Stale token for %s (sent %s, remote has %s); retrying once",
                self.remote_path,
                first.expected,
                fresh,
            )
            try:
                return self.remote.put_object(
                    self.remote_path, data, fresh, self.commit_message
                )
            except VersionConflict as second:
                observed = second.observed or self._observed_token()
                logger.error(
                    "Second version conflict on %s: attempted %s, remote has %s",
                    self.remote_path,
                    fresh,
                    observed,
                )
                raise PersistentConflictError(
                    self.remote_path, fresh, observed, status=second.status
                ) from second

    def _upload_large(self, data: bytes) -> Optional[str]:
        logger.info(
            "%s is %d bytes; writing through a multi-step commit",
            self.remote_path,
            len(data),
        )
        # An orphaned blob after a failed commit is harmless.
        blob_id = self.remote.create_blob(data)
        writes = [(self.remote_path, blob_id)]
        try:
            self.remote.commit_multi_write(None, writes, self.commit_message)
        except VersionConflict as first:
            self._set_phase(SyncPhase.FLUSHING_RETRY)
            logger.warning("Branch moved during commit of %s; retrying once", self.remote_path)
            try:
                self.remote.commit_multi_write(None, writes, self.commit_message)
            except VersionConflict as second:
                logger.error(
                    "Second branch conflict committing %s: attempted %s, remote has %s",
                    self.remote_path,
                    second.expected,
                    second.observed,
                )
                raise PersistentConflictError(
                    second.path, second.expected, second.observed, status=second.status
                ) from first
        return self.remote.get_version_token(self.remote_path)

    def _observed_token(self) -> Optional[str]:
        try:
            return self.remote.get_version_token(self.remote_path)
        except RemoteError as exc:
            logger.debug("Could not read back token for %s: %s", self.remote_path, exc)
            return None

    # ------------------------------------------------------------------
    # Background scheduling
    # ------------------------------------------------------------------

    def _schedule_locked(self) -> None:
        if self._timer is not None or self._stop_event.is_set():
            return
        self._timer = threading.Timer(self.debounce_seconds, self._debounced_flush)
        self._timer.daemon = True
        self._timer.start()

    def _debounced_flush(self) -> None:
        with self._lock:
            self._timer = None
        self._background_flush("Debounced")

    def _periodic_loop(self) -> None:
        while not self._stop_event.wait(timeout=self.flush_interval_seconds):
            if self.dirty:
                self._background_flush("Periodic")

    def _background_flush(self, reason: str) -> None:
        try:
            self.flush()
        except Exception as exc:
            logger.error("%s flush of %s failed: %s", reason, self.remote_path, exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _write_local(self, content: bytes) -> None:
        self.local_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.local_path.with_name(self.local_path.name + ".hydrate")
        tmp.write_bytes(content)
        os.replace(tmp, self.local_path)

    def _set_phase(self, phase: SyncPhase) -> None:
        with self._lock:
            if self.phase != SyncPhase.STOPPED:
                self.phase = phase

    def _record_error(self, error: str) -> None:
        ts = datetime.now(timezone.utc).isoformat()
        self.errors.append(f"[{ts}] {error}")
        if len(self.errors) > MAX_RECORDED_ERRORS:
            self.errors = self.errors[-MAX_RECORDED_ERRORS:]

    def status(self) -> SyncStatus:
        """Snapshot of the current state."""
        with self._lock:
            return SyncStatus(
                local_path=str(self.local_path),
                remote_path=self.remote_path,
                phase=self.phase,
                dirty=self.dirty,
                version_token=self.version_token,
                last_flush=self.last_flush,
                flush_count=self.flush_count,
                last_error=self.errors[-1] if self.errors else None,
                recent_errors=list(self.errors),
            )
