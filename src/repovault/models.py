"""
Data models -- configuration, remote objects, and sync state.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from . import __version__

MB = 1024 * 1024

# Absolute single-object ceiling of the remote. Writes above the
# configured threshold take the multi-step commit path instead.
REMOTE_OBJECT_CEILING = 100 * MB
DEFAULT_LARGE_PAYLOAD_THRESHOLD = 90 * MB


class BackendType(str, Enum):
    """Supported remote backends."""

    GITHUB = "github"
    LOCAL = "local"


class StoreConfig(BaseModel):
    """Complete storage configuration."""

    backend: BackendType = BackendType.GITHUB

    # Remote repository
    api_url: str = "https://api.github.com"
    owner: str = ""
    repo: str = ""
    branch: str = "main"
    token: str = ""

    # Local filesystem backend
    local_root: Optional[Path] = None

    # Synced database file
    local_db_path: Path = Path("./data/app.db")
    remote_db_path: str = "data/app.db"

    # Tuning
    large_payload_threshold: int = DEFAULT_LARGE_PAYLOAD_THRESHOLD
    debounce_seconds: float = 5.0
    flush_interval_seconds: float = 60.0
    shutdown_timeout_seconds: float = 20.0
    request_timeout_seconds: float = 15.0

    # Blob areas
    blob_area: str = "pdfs"
    quarantine_area: str = "banned-pdfs"

    user_agent: str = f"repovault/{__version__}"


class RemoteObject(BaseModel):
    """An object read from a path, with its version token."""

    path: str
    content: bytes
    version_token: str


class StoredBlob(BaseModel):
    """Where an uploaded binary lives and how to fetch it back."""

    location: str
    content_id: str
    size: int = 0


class RepositoryInfo(BaseModel):
    """Repository metadata used by access verification."""

    full_name: str
    default_branch: str = "main"
    private: bool = False
    can_push: bool = True


class SyncPhase(str, Enum):
    """Lifecycle of a synced file."""

    UNINITIALIZED = "uninitialized"
    HYDRATING = "hydrating"
    CLEAN = "clean"
    DIRTY_PENDING = "dirty_pending"
    FLUSHING = "flushing"
    FLUSHING_RETRY = "flushing_retry"
    FINAL_FLUSH = "final_flush"
    STOPPED = "stopped"


class SyncStatus(BaseModel):
    """Point-in-time snapshot of a synced file."""

    local_path: str
    remote_path: str
    phase: SyncPhase
    dirty: bool
    version_token: Optional[str] = None
    last_flush: Optional[datetime] = None
    flush_count: int = 0
    last_error: Optional[str] = None
    recent_errors: list[str] = Field(default_factory=list)
