"""Shared utilities for all CLI command modules."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from ..config import default_config_path, load_config
from ..errors import ConfigurationError, RepoVaultError
from ..models import StoreConfig

console = Console()

config_option = click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help=f"Config file (default: {default_config_path()}).",
)


def load_or_exit(config_path: Optional[str]) -> StoreConfig:
    """Load configuration, printing the diagnostic and exiting on error."""
    try:
        return load_config(Path(config_path) if config_path else None)
    except ConfigurationError as exc:
        fail(exc)


def fail(exc: RepoVaultError) -> None:
    """Print an error and exit with status 1."""
    console.print(f"[bold red]{type(exc).__name__}[/]")
    console.print(str(exc), markup=False)
    sys.exit(1)
