"""Blob commands: put, get, move."""

from __future__ import annotations

from pathlib import Path

import click

from ._common import config_option, console, fail, load_or_exit
from ..errors import RepoVaultError


def _store(config):
    from ..blobs import BlobStore
    from ..remote import create_remote

    return BlobStore(
        create_remote(config),
        area=config.blob_area,
        quarantine_area=config.quarantine_area,
    )


def register_blob_commands(main: click.Group) -> None:
    """Register the blob command group."""

    @main.group()
    def blob():
        """Uploaded binaries."""

    @blob.command("put")
    @click.argument("file", type=click.Path(exists=True, dir_okay=False))
    @click.option("--key", required=True, help="Logical key (e.g. document id).")
    @click.option("--name", default=None, help="Stored filename (default: file name).")
    @config_option
    def blob_put(file, key, name, config_path):
        """Store FILE and print its location and content id."""
        config = load_or_exit(config_path)
        path = Path(file)
        try:
            stored = _store(config).put(path.read_bytes(), name or path.name, key)
        except RepoVaultError as exc:
            fail(exc)
        console.print(f"  location: [cyan]{stored.location}[/]")
        console.print(f"  content_id: [cyan]{stored.content_id}[/]")

    @blob.command("get")
    @click.argument("content_id")
    @click.option("-o", "--output", required=True, type=click.Path(dir_okay=False))
    @config_option
    def blob_get(content_id, output, config_path):
        """Fetch CONTENT_ID into OUTPUT."""
        config = load_or_exit(config_path)
        try:
            data = _store(config).get(content_id)
        except RepoVaultError as exc:
            fail(exc)
        Path(output).write_bytes(data)
        console.print(f"  [green]Wrote[/] {len(data)} bytes to {output}")

    @blob.command("move")
    @click.argument("location")
    @click.argument("content_id")
    @click.argument("new_key")
    @click.option("--area", default=None, help="Destination area (default: quarantine).")
    @config_option
    def blob_move(location, content_id, new_key, area, config_path):
        """Move LOCATION (holding CONTENT_ID) under NEW_KEY."""
        config = load_or_exit(config_path)
        try:
            new_location = _store(config).move(location, content_id, new_key, area=area)
        except RepoVaultError as exc:
            fail(exc)
        console.print(f"  [green]Moved[/] {location} -> [cyan]{new_location}[/]")
