"""
Access verification -- catch configuration mistakes before any sync runs.

Static settings are checked first and every problem is reported at
once. Only a clean static config is tested against the remote:
repository reachable, then branch present.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import ConfigurationError, NotFound
from .models import REMOTE_OBJECT_CEILING, BackendType, StoreConfig
from .remote import WRITE_REQUIREMENTS, RemoteObjectClient, create_remote

logger = logging.getLogger("repovault.validator")


@dataclass
class Check:
    """A single verification result.

    Attributes:
        name: Short check identifier.
        passed: Whether the check passed.
        detail: Extra info (repository name, head commit, ...).
        fix: Suggested fix if the check failed.
    """

    name: str
    passed: bool
    detail: str = ""
    fix: str = ""


@dataclass
class AccessReport:
    """Every check run by verify_access."""

    checks: list[Check] = field(default_factory=list)

    @property
    def all_passed(self) -> bool:
        return all(c.passed for c in self.checks)

    @property
    def warnings(self) -> list[Check]:
        return [c for c in self.checks if not c.passed]

    def to_dict(self) -> dict:
        return {
            "all_passed": self.all_passed,
            "checks": [
                {"name": c.name, "passed": c.passed, "detail": c.detail, "fix": c.fix}
                for c in self.checks
            ],
        }


def static_problems(config: StoreConfig) -> list[str]:
    """Every unset or invalid setting, without touching the network."""
    problems: list[str] = []

    if config.backend == BackendType.GITHUB:
        if not config.owner:
            problems.append("GITHUB_REPO_OWNER is not set")
        if not config.repo:
            problems.append("GITHUB_REPO_NAME is not set")
        if not config.token:
            problems.append("GITHUB_TOKEN is not set")
    elif not config.local_root:
        problems.append("REPOVAULT_LOCAL_ROOT is not set for the local backend")

    if not config.branch:
        problems.append("GITHUB_REPO_BRANCH is not set")
    if not config.remote_db_path.strip("/"):
        problems.append("REPOVAULT_REMOTE_DB_PATH is empty")

    if config.large_payload_threshold <= 0:
        problems.append("large_payload_threshold must be positive")
    elif config.large_payload_threshold > REMOTE_OBJECT_CEILING:
        problems.append(
            f"large_payload_threshold ({config.large_payload_threshold}) exceeds "
            f"the remote's {REMOTE_OBJECT_CEILING}-byte object ceiling"
        )
    for name in ("debounce_seconds", "flush_interval_seconds", "shutdown_timeout_seconds"):
        if getattr(config, name) <= 0:
            problems.append(f"{name} must be positive")

    return problems


def verify_access(
    config: StoreConfig, remote: Optional[RemoteObjectClient] = None
) -> AccessReport:
    """Verify settings, repository, and branch before syncing.

    Args:
        config: Storage configuration.
        remote: Client to probe. Built from config when omitted.

    Returns:
        AccessReport. Non-fatal findings (no push permission) are
        failed checks in the report.

    Raises:
        ConfigurationError: Listing every static problem, or the missing
            repository / branch with a suggested fix.
        RemoteError: Transport errors other than absence propagate.
    """
    problems = static_problems(config)
    if problems:
        raise ConfigurationError(problems, WRITE_REQUIREMENTS)

    report = AccessReport()
    report.checks.append(Check(name="settings", passed=True, detail="all required settings present"))

    remote = remote or create_remote(config)

    try:
        repo = remote.get_repository()
    except NotFound:
        raise ConfigurationError(
            ["Repository not found or token does not have access."],
            WRITE_REQUIREMENTS,
        )
    report.checks.append(Check(name="repository", passed=True, detail=repo.full_name))

    if not repo.can_push:
        logger.warning("Token has no push permission on %s", repo.full_name)
        report.checks.append(Check(
            name="push-permission",
            passed=False,
            detail="token cannot push",
            fix="Grant contents write on the repository to the token.",
        ))

    try:
        head = remote.get_branch(config.branch)
    except NotFound:
        raise ConfigurationError(
            [
                f'Configured branch "{config.branch}" does not exist. Create it '
                f"or set GITHUB_REPO_BRANCH={repo.default_branch}."
            ],
            WRITE_REQUIREMENTS,
        )
    report.checks.append(Check(name="branch", passed=True, detail=f"{config.branch} @ {head[:12]}"))

    logger.info("Remote access verified: %s (%s)", repo.full_name, config.branch)
    return report
