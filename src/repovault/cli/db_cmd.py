"""Database file commands: pull, push, status."""

from __future__ import annotations

import sys

import click
from rich.panel import Panel

from ._common import config_option, console, fail, load_or_exit
from ..errors import RepoVaultError


def _synced_file(config):
    from ..remote import create_remote
    from ..synced_file import SyncedFile

    return SyncedFile(
        create_remote(config),
        config.local_db_path,
        config.remote_db_path,
        debounce_seconds=config.debounce_seconds,
        flush_interval_seconds=config.flush_interval_seconds,
        shutdown_timeout_seconds=config.shutdown_timeout_seconds,
    )


def register_db_commands(main: click.Group) -> None:
    """Register the db command group."""

    @main.group()
    def db():
        """The synced database file."""

    @db.command("pull")
    @config_option
    def db_pull(config_path):
        """Hydrate the local database file from the remote.

        Overwrites the local file. Seeds the remote when it has no copy.
        """
        config = load_or_exit(config_path)
        synced = _synced_file(config)
        try:
            synced.hydrate()
        except RepoVaultError as exc:
            fail(exc)
        st = synced.status()
        console.print(
            f"\n  [green]Hydrated[/] {st.local_path} "
            f"[dim]({st.version_token or 'no token'})[/]\n"
        )

    @db.command("push")
    @config_option
    def db_push(config_path):
        """Upload the local database file now."""
        config = load_or_exit(config_path)
        if not config.local_db_path.exists():
            console.print(f"[bold red]No local file at {config.local_db_path}[/]")
            sys.exit(1)

        synced = _synced_file(config)
        try:
            # Look up the current token so an existing object is not a conflict.
            synced.dirty = True
            synced.flush()
        except RepoVaultError as exc:
            fail(exc)
        st = synced.status()
        console.print(
            f"\n  [green]Pushed[/] {st.local_path} -> {st.remote_path} "
            f"[dim]({st.version_token})[/]\n"
        )

    @db.command("status")
    @config_option
    def db_status(config_path):
        """Compare the local file with the remote object."""
        from ..remote import content_id, create_remote

        config = load_or_exit(config_path)
        try:
            remote_token = create_remote(config).get_version_token(config.remote_db_path)
        except RepoVaultError as exc:
            fail(exc)

        local = config.local_db_path
        local_id = content_id(local.read_bytes()) if local.exists() else None

        if remote_token is None:
            state = "[yellow]remote missing[/]"
        elif local_id is None:
            state = "[yellow]local missing[/]"
        elif local_id == remote_token:
            state = "[green]in sync[/]"
        else:
            state = "[yellow]differs[/]"

        console.print()
        console.print(
            Panel(
                f"Local: [cyan]{local}[/] {local_id or '[dim]absent[/]'}\n"
                f"Remote: [cyan]{config.remote_db_path}[/] {remote_token or '[dim]absent[/]'}\n"
                f"State: {state}",
                title="Database file",
                border_style="magenta",
            )
        )
        console.print()
