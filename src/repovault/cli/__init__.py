"""
RepoVault CLI -- inspect and drive the storage layer by hand.

Each command group lives in its own module and is registered here.

Entry point: repovault.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="repovault")
def main():
    """RepoVault — durable storage in a version-controlled repository."""


from .verify_cmd import register_verify_commands
from .db_cmd import register_db_commands
from .blob_cmd import register_blob_commands

register_verify_commands(main)
register_db_commands(main)
register_blob_commands(main)
