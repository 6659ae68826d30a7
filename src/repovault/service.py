"""
StorageService -- the surface the rest of the application uses.

    hydrate()         pull the database file at startup
    mark_dirty()      after every database mutation
    shutdown_flush()  once, on graceful termination
    put_blob() / get_blob() / move_blob()  for uploaded documents

One instance per process and per database file.
"""

from __future__ import annotations

import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from .blobs import BlobStore
from .config import config_summary
from .models import StoreConfig, StoredBlob, SyncStatus
from .remote import RemoteObjectClient, create_remote
from .synced_file import SyncedFile
from .validator import AccessReport, verify_access

logger = logging.getLogger("repovault.service")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(log_file: Optional[Path] = None, level: int = logging.INFO) -> None:
    """Configure file or console logging on the root logger."""
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level)


class StorageService:
    """Durable database file plus blob storage over one remote.

    Args:
        config: Storage configuration.
        remote: Remote client. Built from config when omitted.
    """

    def __init__(self, config: StoreConfig, remote: Optional[RemoteObjectClient] = None):
        self.config = config
        self.remote = remote or create_remote(config)
        self.synced_file = SyncedFile(
            self.remote,
            config.local_db_path,
            config.remote_db_path,
            debounce_seconds=config.debounce_seconds,
            flush_interval_seconds=config.flush_interval_seconds,
            shutdown_timeout_seconds=config.shutdown_timeout_seconds,
        )
        self.blobs = BlobStore(
            self.remote,
            area=config.blob_area,
            quarantine_area=config.quarantine_area,
        )

    def start(self, verify: bool = True, install_signals: bool = False) -> Optional[AccessReport]:
        """Verify access, hydrate, and start the periodic flush.

        Raises:
            ConfigurationError: If verification fails.
            RemoteError: If hydration fails. The caller must not serve.
        """
        logger.info(config_summary(self.config))
        report = verify_access(self.config, self.remote) if verify else None
        self.hydrate()
        self.synced_file.start()
        if install_signals:
            self.install_signal_handlers()
        logger.info("Storage service started (%s backend)", self.remote.name)
        return report

    def stop(self) -> bool:
        """Flush what is pending and stop background work."""
        return self.shutdown_flush()

    # -- database file --------------------------------------------------

    def hydrate(self) -> None:
        self.synced_file.hydrate()

    def mark_dirty(self) -> None:
        self.synced_file.mark_dirty()

    def shutdown_flush(self) -> bool:
        return self.synced_file.shutdown_flush()

    def status(self) -> SyncStatus:
        return self.synced_file.status()

    # -- blobs ------------------------------------------------------------

    def put_blob(self, data: bytes, suggested_name: str, logical_key: str) -> StoredBlob:
        return self.blobs.put(data, suggested_name, logical_key)

    def get_blob(self, blob_id: str) -> bytes:
        return self.blobs.get(blob_id)

    def move_blob(self, old_location: str, blob_id: str, new_logical_key: str) -> str:
        return self.blobs.move(old_location, blob_id, new_logical_key)

    # -- signals ------------------------------------------------------------

    def install_signal_handlers(self) -> None:
        """Flush on SIGTERM/SIGINT, then exit."""
        for sig in (signal.SIGTERM, signal.SIGINT):
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        logger.info("Received signal %s; flushing before exit", signal.Signals(signum).name)
        ok = self.shutdown_flush()
        sys.exit(0 if ok else 1)
