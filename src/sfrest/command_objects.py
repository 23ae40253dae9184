from __future__ import annotations

import click

from .cli_support import connected_session


@click.command("objects")
@click.option(
    "--all",
    "show_all",
    is_flag=True,
    help="Show all sObjects (default: only queryable).",
)
@click.option("--tooling", is_flag=True, help="List Tooling API objects instead.")
def objects_cmd(show_all: bool, tooling: bool) -> None:
    """List sObjects (queryable by default).

    Uses environment-based Salesforce auth (see `sfrest login --help`).
    """
    session = connected_session(tooling=tooling)
    g = session.describe_global()
    sobjs = g.get("sobjects", [])

    def want(s: dict) -> bool:
        return show_all or s.get("queryable")

    names = sorted(s["name"] for s in sobjs if want(s))
    for n in names:
        click.echo(n)
