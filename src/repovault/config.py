"""
Configuration loading -- YAML file first, environment on top.

The environment names match what deployments already export
(GITHUB_TOKEN, DATABASE_URL, ...), so a container can run with
no config file at all.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import ValidationError

from . import REPOVAULT_HOME
from .errors import ConfigurationError
from .models import StoreConfig

logger = logging.getLogger("repovault.config")

CONFIG_FILENAME = "config.yaml"

ENV_OVERRIDES = {
    "REPOVAULT_BACKEND": "backend",
    "GITHUB_API_URL": "api_url",
    "GITHUB_REPO_OWNER": "owner",
    "GITHUB_REPO_NAME": "repo",
    "GITHUB_REPO_BRANCH": "branch",
    "GITHUB_TOKEN": "token",
    "REPOVAULT_LOCAL_ROOT": "local_root",
    "DATABASE_URL": "local_db_path",
    "REPOVAULT_REMOTE_DB_PATH": "remote_db_path",
    "REPOVAULT_LARGE_PAYLOAD_THRESHOLD": "large_payload_threshold",
    "REPOVAULT_DEBOUNCE_SECONDS": "debounce_seconds",
    "REPOVAULT_FLUSH_INTERVAL_SECONDS": "flush_interval_seconds",
    "REPOVAULT_SHUTDOWN_TIMEOUT_SECONDS": "shutdown_timeout_seconds",
    "REPOVAULT_REQUEST_TIMEOUT_SECONDS": "request_timeout_seconds",
    "REPOVAULT_BLOB_AREA": "blob_area",
    "REPOVAULT_QUARANTINE_AREA": "quarantine_area",
}


def default_config_path() -> Path:
    """Location of the config file when none is given."""
    return Path(REPOVAULT_HOME).expanduser() / CONFIG_FILENAME


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> StoreConfig:
    """Load storage configuration.

    Args:
        path: YAML config file. Defaults to ~/.repovault/config.yaml.
            A missing file is not an error.
        environ: Environment mapping. Defaults to os.environ.

    Returns:
        Validated StoreConfig.

    Raises:
        ConfigurationError: If the file is malformed or a value is invalid.
            Every invalid field is listed.
    """
    config_file = Path(path).expanduser() if path else default_config_path()
    env = os.environ if environ is None else environ

    data: dict = {}
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError([f"{config_file} is not valid YAML: {exc}"])
        if not isinstance(data, dict):
            raise ConfigurationError(
                [f"{config_file} must contain a mapping of settings"]
            )

    for env_name, field_name in ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value:
            data[field_name] = value

    try:
        return StoreConfig(**data)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ConfigurationError(problems)


def save_config(config: StoreConfig, path: Optional[Path] = None) -> Path:
    """Persist configuration to YAML.

    The token is never written; keep it in GITHUB_TOKEN.

    Returns:
        Path of the written file.
    """
    config_file = Path(path).expanduser() if path else default_config_path()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude={"token"})
    config_file.write_text(
        yaml.dump(data, default_flow_style=False), encoding="utf-8"
    )
    logger.info("Saved config to %s", config_file)
    return config_file


def mask_token(token: str) -> str:
    """Render a credential safe for logs."""
    if not token:
        return "(unset)"
    if len(token) <= 8:
        return "********"
    return f"{token[:4]}...{token[-4:]}"


def config_summary(config: StoreConfig, prefix: str = "Storage config") -> str:
    """Multi-line summary with the token masked."""
    lines = [
        f"{prefix}:",
        f"- backend: {config.backend.value}",
    ]
    if config.backend.value == "local":
        lines.append(f"- local_root: {config.local_root or '(unset)'}")
    else:
        lines.extend([
            f"- owner: {config.owner or '(unset)'}",
            f"- repo: {config.repo or '(unset)'}",
            f"- branch: {config.branch or '(unset)'}",
            f"- token: {mask_token(config.token)}",
        ])
    lines.extend([
        f"- database: {config.local_db_path} -> {config.remote_db_path}",
        f"- debounce: {config.debounce_seconds}s, "
        f"periodic flush: {config.flush_interval_seconds}s",
    ])
    return "\n".join(lines)
