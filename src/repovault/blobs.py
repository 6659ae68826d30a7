"""
BlobStore -- content-addressed storage for uploaded binaries.

A binary is filed under a readable logical path
(``<area>/<logical key>/<sanitized name>``) and fetched back by its
content id, so later path changes never break reads.

Moving between areas is copy-then-delete because the remote has no
rename. A crash between the two steps leaves the content reachable at
both paths; re-running the move finishes the job.
"""

from __future__ import annotations

import logging
import posixpath
import re
from typing import Optional

from .errors import BlobIntegrityError, NotFound, PersistentConflictError, VersionConflict
from .models import StoredBlob
from .remote import RemoteObjectClient, content_id

logger = logging.getLogger("repovault.blobs")

_UNSAFE = re.compile(r"[^a-zA-Z0-9._-]+")
_DASHES = re.compile(r"-+")


def sanitize_name(name: str) -> str:
    """Reduce a user-supplied filename to a safe path segment."""
    safe = _UNSAFE.sub("-", name or "")
    safe = _DASHES.sub("-", safe)
    return safe.strip("-")


class BlobStore:
    """Stores binaries in the remote repository.

    Args:
        remote: Remote client.
        area: Logical area for active content.
        quarantine_area: Default destination of move().
    """

    def __init__(
        self,
        remote: RemoteObjectClient,
        area: str = "pdfs",
        quarantine_area: str = "banned-pdfs",
    ):
        self.remote = remote
        self.area = area.strip("/")
        self.quarantine_area = quarantine_area.strip("/")

    def location_for(self, logical_key: str, filename: str, area: Optional[str] = None) -> str:
        """Deterministic logical path for a key and filename.

        The key becomes a single path segment, sanitized like a filename.

        Raises:
            ValueError: If nothing usable is left of the key.
        """
        safe_key = sanitize_name(logical_key)
        if safe_key in ("", ".", ".."):
            raise ValueError(f"Invalid logical key: {logical_key!r}")
        return posixpath.join(area or self.area, safe_key, filename)

    def put(self, data: bytes, suggested_name: str, logical_key: str) -> StoredBlob:
        """Store bytes under a path derived from the key and name.

        Storing identical bytes at the same key again writes nothing and
        returns the same content id.

        Returns:
            StoredBlob with the logical location and content id.
        """
        fallback = f"document-{logical_key}.pdf"
        safe_name = sanitize_name(suggested_name or fallback) or fallback
        location = self.location_for(logical_key, safe_name)

        blob_id = self._write(
            location, data, f"Add {safe_name} ({logical_key})"
        )
        logger.info("Stored %s (%d bytes, %s)", location, len(data), blob_id[:12])
        return StoredBlob(location=location, content_id=blob_id, size=len(data))

    def get(self, blob_id: str) -> bytes:
        """Fetch bytes by content id.

        Raises:
            NotFound: If the remote does not know the id.
            BlobIntegrityError: If the bytes do not hash to the id.
        """
        data = self.remote.get_blob(blob_id)
        actual = content_id(data)
        if actual != blob_id:
            raise BlobIntegrityError(
                f"Blob hash mismatch: requested {blob_id}, received {actual}"
            )
        return data

    def move(
        self,
        old_location: str,
        blob_id: str,
        new_logical_key: str,
        area: Optional[str] = None,
    ) -> str:
        """Relocate content to another logical path.

        Args:
            old_location: Current logical path.
            blob_id: Content id of the bytes at old_location.
            new_logical_key: Key for the destination path.
            area: Destination area. Defaults to the quarantine area.

        Returns:
            The new logical path.
        """
        target_area = (area or self.quarantine_area).strip("/")
        filename = posixpath.basename(old_location)
        new_location = self.location_for(new_logical_key, filename, target_area)
        if new_location == old_location:
            logger.info("%s is already in place", old_location)
            return new_location

        data = self.get(blob_id)
        self._write(
            new_location, data, f"Move {filename} to {target_area} ({new_logical_key})"
        )
        # Not atomic: from here until the delete lands, the content is
        # reachable at both locations.
        self._delete(
            old_location,
            blob_id,
            f"Remove original after moving to {target_area} ({new_logical_key})",
        )
        logger.info("Moved %s -> %s", old_location, new_location)
        return new_location

    def _write(self, location: str, data: bytes, message: str) -> str:
        blob_id = content_id(data)

        if len(data) > self.remote.large_payload_threshold:
            stored = self.remote.create_blob(data)
            self.remote.commit_multi_write(None, [(location, stored)], message)
            return stored

        current = self.remote.get_version_token(location)
        if current == blob_id:
            logger.debug("%s already holds %s", location, blob_id[:12])
            return blob_id

        try:
            return self.remote.put_object(location, data, current, message)
        except VersionConflict:
            fresh = self.remote.get_version_token(location)
            if fresh == blob_id:
                return blob_id
            try:
                return self.remote.put_object(location, data, fresh, message)
            except VersionConflict as exc:
                raise PersistentConflictError(
                    location, fresh, exc.observed, status=exc.status
                ) from exc

    def _delete(self, location: str, token: str, message: str) -> None:
        try:
            self.remote.delete_object(location, token, message)
        except NotFound:
            logger.warning("%s already gone; treating as moved", location)
        except VersionConflict:
            fresh = self.remote.get_version_token(location)
            if fresh is None:
                logger.warning("%s already gone; treating as moved", location)
                return
            logger.warning(
                "Token for %s changed (expected %s, remote has %s); retrying delete",
                location,
                token,
                fresh,
            )
            try:
                self.remote.delete_object(location, fresh, message)
            except VersionConflict as exc:
                raise PersistentConflictError(
                    location, fresh, exc.observed, status=exc.status
                ) from exc
