"""
Error taxonomy shared by every layer.

Kinds are decided from structured data (HTTP status, operation),
never by matching words in an error message.
"""

from __future__ import annotations

from typing import Optional


class RepoVaultError(Exception):
    """Base class for all repovault errors."""


class ConfigurationError(RepoVaultError):
    """Unrecoverable setup problem.

    Carries every problem found, not only the first one.

    Args:
        problems: One human-readable line per problem.
        requirements: Extra guidance appended after the problem list.
    """

    def __init__(self, problems: list[str], requirements: str = ""):
        self.problems = list(problems)
        self.requirements = requirements
        lines = ["Storage configuration is invalid:"]
        lines.extend(f"- {p}" for p in self.problems)
        if requirements:
            lines.append("")
            lines.append(requirements)
        super().__init__("\n".join(lines))


class RemoteError(RepoVaultError):
    """A remote call failed.

    Args:
        message: Description of the failure.
        status: HTTP status code, when the remote answered.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFound(RemoteError):
    """The object or blob does not exist at the remote."""


class AccessDenied(RemoteError):
    """Credentials were rejected or lack the needed scope."""


class Unavailable(RemoteError):
    """Transport failure, timeout, or server-side error."""


class PayloadTooLarge(RemoteError):
    """The payload exceeds the single-call write ceiling."""


class VersionConflict(RemoteError):
    """The supplied version token is stale.

    Attributes:
        path: Remote path of the write.
        expected: Token the caller supplied (None when omitted).
        observed: Token the remote holds, when known.
    """

    def __init__(
        self,
        path: str,
        expected: Optional[str],
        observed: Optional[str] = None,
        status: Optional[int] = None,
    ):
        self.path = path
        self.expected = expected
        self.observed = observed
        super().__init__(
            f"Version conflict on {path}: sent {expected or '(none)'}, "
            f"remote has {observed or '(unknown)'}",
            status=status,
        )


class PersistentConflictError(VersionConflict):
    """A write conflicted again after its single retry."""


class BlobIntegrityError(RepoVaultError):
    """Fetched bytes do not hash to the requested content id."""
