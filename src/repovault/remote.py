"""
Remote object clients -- where the bytes actually live.

Every client speaks the same small contract: whole-object reads and
writes guarded by a version token, plus content-addressed blobs and a
multi-step commit for payloads too large for a single write.

GitHub: contents API for objects, git data API for blobs/trees/commits.
Local: a plain directory with the same rules. For offline work and tests.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

import requests

from .errors import (
    AccessDenied,
    ConfigurationError,
    NotFound,
    PayloadTooLarge,
    RemoteError,
    Unavailable,
    VersionConflict,
)
from .models import (
    DEFAULT_LARGE_PAYLOAD_THRESHOLD,
    BackendType,
    RemoteObject,
    RepositoryInfo,
    StoreConfig,
)

logger = logging.getLogger("repovault.remote")

WRITE_REQUIREMENTS = (
    "Requirements:\n"
    "- The repository must exist and be accessible by your token.\n"
    "- The branch must already exist in the repository "
    "(create it or use the repo's default branch).\n"
    "- For a private repository, the token must have "
    '"Contents: Read and write" permission (classic "repo" scope, '
    "or fine-grained with contents write on this repository)."
)


def content_id(data: bytes) -> str:
    """Content identifier the remote assigns to a byte sequence.

    This is the git blob hash, so it matches the id returned by the
    remote for the same bytes and doubles as the object version token.
    """
    h = hashlib.sha1()
    h.update(f"blob {len(data)}\0".encode("ascii"))
    h.update(data)
    return h.hexdigest()


class RemoteObjectClient(ABC):
    """Abstract remote repository client.

    Args:
        large_payload_threshold: Writes above this many bytes are refused
            by put_object with PayloadTooLarge.
    """

    def __init__(self, large_payload_threshold: int = DEFAULT_LARGE_PAYLOAD_THRESHOLD):
        self.large_payload_threshold = large_payload_threshold

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name."""

    @abstractmethod
    def get_object(self, path: str) -> Optional[RemoteObject]:
        """Fetch an object and its version token.

        Returns:
            The object, or None when nothing exists at the path.

        Raises:
            AccessDenied, Unavailable: On any failure other than absence.
        """

    @abstractmethod
    def get_version_token(self, path: str) -> Optional[str]:
        """Current version token at a path, or None when absent."""

    @abstractmethod
    def get_blob(self, blob_id: str) -> bytes:
        """Fetch immutable content by its content id.

        Raises:
            NotFound: If the remote never had or no longer has the blob.
        """

    @abstractmethod
    def put_object(
        self,
        path: str,
        content: bytes,
        expected_token: Optional[str],
        message: Optional[str] = None,
    ) -> str:
        """Create or replace the object at a path.

        Args:
            path: Remote path.
            content: Full new content.
            expected_token: Token last observed for the path, or None to create.
            message: Commit message.

        Returns:
            The new version token.

        Raises:
            VersionConflict: If the token does not match the remote's.
            PayloadTooLarge: If the content is above the single-call ceiling.
        """

    @abstractmethod
    def create_blob(self, data: bytes) -> str:
        """Store immutable content. Idempotent. Returns its content id."""

    @abstractmethod
    def commit_multi_write(
        self,
        base_ref: Optional[str],
        writes: list[tuple[str, str]],
        message: str,
    ) -> str:
        """Point several paths at existing blobs in one commit.

        Args:
            base_ref: Commit to build on. None means the current branch head.
            writes: (path, blob_id) pairs.
            message: Commit message.

        Returns:
            The new head commit id.

        Raises:
            VersionConflict: If the branch moved past base_ref meanwhile.
        """

    @abstractmethod
    def delete_object(
        self, path: str, expected_token: str, message: Optional[str] = None
    ) -> None:
        """Delete the object at a path.

        Raises:
            NotFound: If nothing exists at the path.
            VersionConflict: If the token does not match the remote's.
        """

    @abstractmethod
    def get_repository(self) -> RepositoryInfo:
        """Repository metadata. Raises NotFound when missing or hidden."""

    @abstractmethod
    def get_branch(self, branch: str) -> str:
        """Head commit of a branch. Raises NotFound when it does not exist."""

    def _check_size(self, path: str, content: bytes) -> None:
        if len(content) > self.large_payload_threshold:
            raise PayloadTooLarge(
                f"{path}: {len(content)} bytes exceeds single-write "
                f"threshold of {self.large_payload_threshold} bytes"
            )


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class GitHubRemote(RemoteObjectClient):
    """Remote client for a GitHub (or GitHub Enterprise) repository.

    Args:
        owner: Repository owner.
        repo: Repository name.
        branch: Branch every read and write targets.
        token: Access token with contents read/write.
        api_url: API root.
        timeout: Per-request timeout in seconds.
        user_agent: User-Agent header value.
        session: Preconfigured requests session (mainly for tests).
    """

    JSON_MEDIA = "application/vnd.github+json"
    RAW_MEDIA = "application/vnd.github.raw"

    def __init__(
        self,
        owner: str,
        repo: str,
        branch: str = "main",
        token: str = "",
        api_url: str = "https://api.github.com",
        timeout: float = 15.0,
        user_agent: str = "repovault",
        large_payload_threshold: int = DEFAULT_LARGE_PAYLOAD_THRESHOLD,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(large_payload_threshold)
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": self.JSON_MEDIA,
            "User-Agent": user_agent,
            "X-GitHub-Api-Version": "2022-11-28",
        })
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    @property
    def name(self) -> str:
        return "github"

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[dict] = None,
        payload: Optional[dict] = None,
        accept: Optional[str] = None,
    ) -> requests.Response:
        """Make an authenticated API call.

        Transport failures become Unavailable. HTTP errors are left on
        the response for the caller to classify.
        """
        url = f"{self.api_url}{endpoint}"
        headers = {"Accept": accept} if accept else None
        try:
            resp = self._session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise Unavailable(f"GitHub {method} {endpoint}: {exc}")
        logger.debug("GitHub %s %s -> %s", method, endpoint, resp.status_code)
        return resp

    def _raise_for_status(self, resp: requests.Response, what: str) -> None:
        """Map an HTTP error status to an error kind."""
        status = resp.status_code
        if status < 400:
            return
        detail = _error_message(resp)
        message = f"{what}: {status} {detail}".rstrip()
        if status == 404:
            raise NotFound(message, status=status)
        if status in (401, 403):
            raise AccessDenied(message, status=status)
        if status == 413:
            raise PayloadTooLarge(message, status=status)
        if status >= 500:
            raise Unavailable(message, status=status)
        raise RemoteError(message, status=status)

    def _contents_endpoint(self, path: str) -> str:
        return f"{self._repo_path}/contents/{quote(path.strip('/'))}"

    def _get_contents(self, path: str) -> Optional[dict]:
        resp = self._request(
            "GET", self._contents_endpoint(path), params={"ref": self.branch}
        )
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, f"get {path}")
        data = resp.json()
        if isinstance(data, list):
            raise RemoteError(f"Expected file at {path}, found directory")
        return data

    def get_object(self, path: str) -> Optional[RemoteObject]:
        data = self._get_contents(path)
        if data is None:
            return None
        sha = data["sha"]
        if data.get("size") == 0:
            content = b""
        elif data.get("encoding") == "base64" and data.get("content"):
            content = base64.b64decode(data["content"])
        else:
            # Bodies above 1 MB are omitted from the contents API.
            content = self.get_blob(sha)
        return RemoteObject(path=path, content=content, version_token=sha)

    def get_version_token(self, path: str) -> Optional[str]:
        data = self._get_contents(path)
        return data["sha"] if data else None

    def get_blob(self, blob_id: str) -> bytes:
        resp = self._request(
            "GET", f"{self._repo_path}/git/blobs/{blob_id}", accept=self.RAW_MEDIA
        )
        self._raise_for_status(resp, f"get blob {blob_id}")
        return _decode_blob_body(resp)

    def put_object(
        self,
        path: str,
        content: bytes,
        expected_token: Optional[str],
        message: Optional[str] = None,
    ) -> str:
        self._check_size(path, content)
        payload = {
            "message": message or f"Update {path}",
            "content": base64.b64encode(content).decode("ascii"),
            "branch": self.branch,
        }
        if expected_token:
            payload["sha"] = expected_token

        resp = self._request("PUT", self._contents_endpoint(path), payload=payload)
        if resp.status_code in (409, 422):
            # 422 is what the remote answers when the token is omitted
            # for an existing path; 409 when the token is stale.
            raise VersionConflict(path, expected_token, status=resp.status_code)
        if resp.status_code == 404:
            raise ConfigurationError(
                [f"Remote write to {path} failed with 404 (Not Found)"],
                WRITE_REQUIREMENTS,
            )
        self._raise_for_status(resp, f"put {path}")
        return resp.json()["content"]["sha"]

    def create_blob(self, data: bytes) -> str:
        resp = self._request(
            "POST",
            f"{self._repo_path}/git/blobs",
            payload={
                "content": base64.b64encode(data).decode("ascii"),
                "encoding": "base64",
            },
        )
        self._raise_for_status(resp, "create blob")
        return resp.json()["sha"]

    def commit_multi_write(
        self,
        base_ref: Optional[str],
        writes: list[tuple[str, str]],
        message: str,
    ) -> str:
        base_commit = base_ref or self._head_commit()

        resp = self._request("GET", f"{self._repo_path}/git/commits/{base_commit}")
        self._raise_for_status(resp, f"get commit {base_commit}")
        base_tree = resp.json()["tree"]["sha"]

        resp = self._request(
            "POST",
            f"{self._repo_path}/git/trees",
            payload={
                "base_tree": base_tree,
                "tree": [
                    {"path": path, "mode": "100644", "type": "blob", "sha": blob_id}
                    for path, blob_id in writes
                ],
            },
        )
        self._raise_for_status(resp, "create tree")
        tree_sha = resp.json()["sha"]

        resp = self._request(
            "POST",
            f"{self._repo_path}/git/commits",
            payload={"message": message, "tree": tree_sha, "parents": [base_commit]},
        )
        self._raise_for_status(resp, "create commit")
        commit_sha = resp.json()["sha"]

        ref = f"heads/{self.branch}"
        resp = self._request(
            "PATCH",
            f"{self._repo_path}/git/refs/{ref}",
            payload={"sha": commit_sha, "force": False},
        )
        if resp.status_code in (409, 422):
            # Not a fast-forward: the branch moved since base_commit.
            raise VersionConflict(f"refs/{ref}", base_commit, status=resp.status_code)
        self._raise_for_status(resp, f"update ref {ref}")

        logger.info(
            "Committed %d path(s) to %s in %s", len(writes), self.branch, commit_sha[:12]
        )
        return commit_sha

    def delete_object(
        self, path: str, expected_token: str, message: Optional[str] = None
    ) -> None:
        resp = self._request(
            "DELETE",
            self._contents_endpoint(path),
            payload={
                "message": message or f"Delete {path}",
                "sha": expected_token,
                "branch": self.branch,
            },
        )
        if resp.status_code in (409, 422):
            raise VersionConflict(path, expected_token, status=resp.status_code)
        self._raise_for_status(resp, f"delete {path}")

    def get_repository(self) -> RepositoryInfo:
        resp = self._request("GET", self._repo_path)
        self._raise_for_status(resp, f"get repository {self.owner}/{self.repo}")
        data = resp.json()
        permissions = data.get("permissions") or {}
        return RepositoryInfo(
            full_name=data.get("full_name", f"{self.owner}/{self.repo}"),
            default_branch=data.get("default_branch") or "main",
            private=bool(data.get("private", False)),
            can_push=bool(permissions.get("push", True)),
        )

    def get_branch(self, branch: str) -> str:
        resp = self._request("GET", f"{self._repo_path}/branches/{quote(branch)}")
        self._raise_for_status(resp, f"get branch {branch}")
        return resp.json()["commit"]["sha"]

    def _head_commit(self) -> str:
        resp = self._request("GET", f"{self._repo_path}/git/ref/heads/{self.branch}")
        self._raise_for_status(resp, f"get ref heads/{self.branch}")
        return resp.json()["object"]["sha"]


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return (resp.text or "")[:200]
    if isinstance(body, dict):
        return str(body.get("message", ""))
    return ""


def _decode_blob_body(resp: requests.Response) -> bytes:
    """Normalize a blob response to bytes.

    The raw media type yields the bytes directly; some servers ignore it
    and answer with the JSON envelope instead.
    """
    content_type = resp.headers.get("Content-Type", "")
    if "json" not in content_type:
        return resp.content

    body = resp.json()
    if isinstance(body, str):
        return body.encode("latin-1")
    if isinstance(body, dict) and "content" in body:
        encoding = body.get("encoding")
        if encoding == "base64":
            return base64.b64decode(body["content"])
        if encoding == "utf-8":
            return body["content"].encode("utf-8")
    raise RemoteError("Unable to decode blob content")


# ---------------------------------------------------------------------------
# Local directory
# ---------------------------------------------------------------------------


class LocalRemote(RemoteObjectClient):
    """Directory-backed remote with the same rules as the real one.

    Layout under ``root``::

        tree/<branch>/<path>   current objects
        blobs/<content id>     every blob ever stored
        refs/<branch>          head commit id

    Args:
        root: Directory holding the store. Created when missing.
        branch: Branch every read and write targets.
    """

    def __init__(
        self,
        root: Path,
        branch: str = "main",
        large_payload_threshold: int = DEFAULT_LARGE_PAYLOAD_THRESHOLD,
    ):
        super().__init__(large_payload_threshold)
        self.root = Path(root).expanduser()
        self.branch = branch
        self._lock = threading.RLock()

        self.blobs_dir = self.root / "blobs"
        self.refs_dir = self.root / "refs"
        self.tree_dir = self.root / "tree" / branch
        for d in (self.blobs_dir, self.refs_dir, self.tree_dir):
            d.mkdir(parents=True, exist_ok=True)

        ref_file = self.refs_dir / branch
        if not ref_file.exists():
            ref_file.write_text(hashlib.sha1(b"root").hexdigest(), encoding="utf-8")

    @property
    def name(self) -> str:
        return "local"

    def _object_file(self, path: str) -> Path:
        parts = [p for p in path.strip("/").split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise ValueError(f"Invalid object path: {path!r}")
        return self.tree_dir.joinpath(*parts)

    def _head(self) -> str:
        return (self.refs_dir / self.branch).read_text(encoding="utf-8").strip()

    def _advance(self, parent: str, change: Any) -> str:
        commit = hashlib.sha1(
            json.dumps([parent, change], sort_keys=True).encode("utf-8")
        ).hexdigest()
        (self.refs_dir / self.branch).write_text(commit, encoding="utf-8")
        return commit

    def _store_blob(self, data: bytes) -> str:
        blob_id = content_id(data)
        blob_file = self.blobs_dir / blob_id
        if not blob_file.exists():
            tmp = blob_file.with_suffix(".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, blob_file)
        return blob_id

    def _current_token(self, path: str) -> Optional[str]:
        obj_file = self._object_file(path)
        if not obj_file.is_file():
            return None
        return content_id(obj_file.read_bytes())

    def get_object(self, path: str) -> Optional[RemoteObject]:
        with self._lock:
            obj_file = self._object_file(path)
            if not obj_file.is_file():
                return None
            content = obj_file.read_bytes()
        return RemoteObject(path=path, content=content, version_token=content_id(content))

    def get_version_token(self, path: str) -> Optional[str]:
        with self._lock:
            return self._current_token(path)

    def get_blob(self, blob_id: str) -> bytes:
        blob_file = self.blobs_dir / blob_id
        if not blob_file.is_file():
            raise NotFound(f"blob {blob_id} not found", status=404)
        return blob_file.read_bytes()

    def put_object(
        self,
        path: str,
        content: bytes,
        expected_token: Optional[str],
        message: Optional[str] = None,
    ) -> str:
        self._check_size(path, content)
        with self._lock:
            current = self._current_token(path)
            if current != expected_token:
                raise VersionConflict(path, expected_token, current, status=409)
            blob_id = self._store_blob(content)
            obj_file = self._object_file(path)
            obj_file.parent.mkdir(parents=True, exist_ok=True)
            tmp = obj_file.with_name(obj_file.name + ".tmp")
            tmp.write_bytes(content)
            os.replace(tmp, obj_file)
            self._advance(self._head(), ["put", path, blob_id, message])
        return blob_id

    def create_blob(self, data: bytes) -> str:
        with self._lock:
            return self._store_blob(data)

    def commit_multi_write(
        self,
        base_ref: Optional[str],
        writes: list[tuple[str, str]],
        message: str,
    ) -> str:
        with self._lock:
            head = self._head()
            if base_ref and base_ref != head:
                raise VersionConflict(f"refs/{self.branch}", base_ref, head, status=409)
            for path, blob_id in writes:
                data = self.get_blob(blob_id)
                obj_file = self._object_file(path)
                obj_file.parent.mkdir(parents=True, exist_ok=True)
                obj_file.write_bytes(data)
            return self._advance(head, ["commit", writes, message])

    def delete_object(
        self, path: str, expected_token: str, message: Optional[str] = None
    ) -> None:
        with self._lock:
            current = self._current_token(path)
            if current is None:
                raise NotFound(f"{path} not found", status=404)
            if current != expected_token:
                raise VersionConflict(path, expected_token, current, status=409)
            obj_file = self._object_file(path)
            obj_file.unlink()
            parent = obj_file.parent
            while parent != self.tree_dir and not any(parent.iterdir()):
                parent.rmdir()
                parent = parent.parent
            self._advance(self._head(), ["delete", path, message])

    def get_repository(self) -> RepositoryInfo:
        if not self.root.is_dir():
            raise NotFound(f"{self.root} does not exist", status=404)
        branches = sorted(p.name for p in self.refs_dir.iterdir())
        default = "main" if "main" in branches else (branches[0] if branches else "main")
        return RepositoryInfo(full_name=str(self.root), default_branch=default)

    def get_branch(self, branch: str) -> str:
        ref_file = self.refs_dir / branch
        if not ref_file.is_file():
            raise NotFound(f"branch {branch} not found", status=404)
        return ref_file.read_text(encoding="utf-8").strip()


def create_remote(config: StoreConfig) -> RemoteObjectClient:
    """Factory function to create the configured remote client.

    Raises:
        ConfigurationError: If the local backend has no root directory.
    """
    if config.backend == BackendType.LOCAL:
        if not config.local_root:
            raise ConfigurationError(["local_root is not set for the local backend"])
        return LocalRemote(
            config.local_root,
            branch=config.branch,
            large_payload_threshold=config.large_payload_threshold,
        )
    return GitHubRemote(
        owner=config.owner,
        repo=config.repo,
        branch=config.branch,
        token=config.token,
        api_url=config.api_url,
        timeout=config.request_timeout_seconds,
        user_agent=config.user_agent,
        large_payload_threshold=config.large_payload_threshold,
    )
