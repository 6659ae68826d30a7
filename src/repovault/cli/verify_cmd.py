"""Verification commands: verify, config show, config save."""

from __future__ import annotations

import json
from pathlib import Path

import click
from rich.panel import Panel
from rich.table import Table

from ._common import config_option, console, fail, load_or_exit
from ..config import config_summary, save_config
from ..errors import RepoVaultError


def register_verify_commands(main: click.Group) -> None:
    """Register verify and the config group."""

    @main.command("verify")
    @config_option
    @click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
    def verify(config_path, as_json):
        """Check settings, repository access, and branch."""
        from ..validator import verify_access

        config = load_or_exit(config_path)
        try:
            report = verify_access(config)
        except RepoVaultError as exc:
            fail(exc)

        if as_json:
            click.echo(json.dumps(report.to_dict(), indent=2))
            return

        table = Table(title="Remote access", show_lines=False)
        table.add_column("Check", style="cyan")
        table.add_column("Result")
        table.add_column("Detail")
        for check in report.checks:
            result = "[green]ok[/]" if check.passed else "[yellow]warn[/]"
            detail = check.detail if check.passed else f"{check.detail} — {check.fix}"
            table.add_row(check.name, result, detail)
        console.print()
        console.print(table)
        console.print()

    @main.group("config")
    def config_group():
        """Inspect or save the effective configuration."""

    @config_group.command("show")
    @config_option
    def config_show(config_path):
        """Show the effective configuration with the token masked."""
        config = load_or_exit(config_path)
        console.print()
        console.print(
            Panel(config_summary(config), title="RepoVault", border_style="cyan"),
        )
        console.print()

    @config_group.command("save")
    @config_option
    @click.option(
        "--output", "-o", default=None, type=click.Path(dir_okay=False),
        help="Destination file (default: the --config path).",
    )
    def config_save(config_path, output):
        """Write the effective configuration (file plus environment) to YAML.

        The token is left out; keep it in GITHUB_TOKEN.
        """
        config = load_or_exit(config_path)
        target = output or config_path
        written = save_config(config, Path(target) if target else None)
        console.print(f"\n  [green]Saved[/] {written}\n")
