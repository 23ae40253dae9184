from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional, Tuple, cast

import click
from click import Command

from . import __version__
from .cli_support import connected_session, echo_json, parse_fields, split_csv
from .command_objects import objects_cmd
from .env_loader import load_env_files
from .exceptions import SalesforceClientError
from .logging_config import configure_logging

_logger = logging.getLogger(__name__)

# Load .env very early, so everything else sees env vars
load_env_files()


class _ReportErrors(click.Group):
    """Turn library errors into a one-line message instead of a traceback."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except SalesforceClientError as e:
            raise click.ClickException(str(e)) from e


@click.group(
    cls=_ReportErrors,
    context_settings={"help_option_names": ["-h", "--help"]},
    invoke_without_command=True,
)
@click.version_option(__version__, "--version", prog_name="sfrest")
@click.option(
    "-v",
    "--verbose",
    "loglevel",
    flag_value=logging.INFO,
    default=None,
    help="Enable INFO logs.",
)
@click.option(
    "-vv",
    "--very-verbose",
    "loglevel",
    flag_value=logging.DEBUG,
    help="Enable DEBUG logs.",
)
@click.pass_context
def cli(ctx: click.Context, loglevel: Optional[int]) -> None:
    """Salesforce REST CLI. Use subcommands like 'login', 'query' or 'get'."""
    configure_logging(loglevel)
    _logger.debug("CLI start, version=%s", __version__)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("login")
@click.option("--show-json", is_flag=True, help="Also print the userinfo response.")
def cmd_login(show_json: bool) -> None:
    """Authenticate and print the instance details."""
    session = connected_session()
    click.echo("Connected to Salesforce.")
    click.echo(f"Instance URL: {session.instance_url}")
    click.echo(f"API Version:  {session.api_version}")
    if session.user.name:
        click.echo(f"User:         {session.user.name}")
    if show_json:
        click.echo("# whoami (userinfo)")
        echo_json(session.whoami(), pretty=True)


@cli.command("query")
@click.argument("soql")
@click.option("--all", "all_pages", is_flag=True, help="Follow nextRecordsUrl and return every page.")
@click.option("--tooling", is_flag=True, help="Query the Tooling API.")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
def cmd_query(soql: str, all_pages: bool, tooling: bool, pretty: bool) -> None:
    """Run a SOQL query (or fetch a nextRecordsUrl page)."""
    session = connected_session(tooling=tooling)
    if all_pages:
        records = list(session.query_all(soql))
        echo_json({"totalSize": len(records), "done": True, "records": records}, pretty)
        return

    res = session.query(soql)
    echo_json(
        {
            "totalSize": res.total_size,
            "done": res.done,
            "nextRecordsUrl": res.next_records_url,
            "records": res.records,
        },
        pretty,
    )


@cli.command("describe")
@click.argument("sobject")
@click.option("--tooling", is_flag=True, help="Use the Tooling API.")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
def cmd_describe(sobject: str, tooling: bool, pretty: bool) -> None:
    """Print describe metadata for an sObject type."""
    session = connected_session(tooling=tooling)
    echo_json(session.record(sobject).describe(), pretty)


@cli.command("get")
@click.argument("sobject")
@click.argument("record_id")
@click.option("--tooling", is_flag=True, help="Use the Tooling API.")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
def cmd_get(sobject: str, record_id: str, tooling: bool, pretty: bool) -> None:
    """Fetch one record by Id."""
    session = connected_session(tooling=tooling)
    echo_json(session.record(sobject).fetch(record_id), pretty)


@cli.command("create")
@click.argument("sobject")
@click.option("-f", "--field", "fields", multiple=True, help="Field value as Name=Value (repeatable).")
@click.option("--allow-duplicates", is_flag=True, help="Save even if duplicate rules match.")
@click.option("--tooling", is_flag=True, help="Use the Tooling API.")
def cmd_create(sobject: str, fields: Tuple[str, ...], allow_duplicates: bool, tooling: bool) -> None:
    """Create a record and print its new Id."""
    session = connected_session(tooling=tooling)
    rec = session.record(sobject)
    rec.data.update(parse_fields(fields))
    rec.create(allow_duplicates=allow_duplicates)
    click.echo(rec.id)


@cli.command("update")
@click.argument("sobject")
@click.argument("record_id")
@click.option("-f", "--field", "fields", multiple=True, help="Field value as Name=Value (repeatable).")
@click.option("--exclude", multiple=True, help="Fields to leave out of the request (comma-separated).")
@click.option("--tooling", is_flag=True, help="Use the Tooling API.")
def cmd_update(
    sobject: str,
    record_id: str,
    fields: Tuple[str, ...],
    exclude: Tuple[str, ...],
    tooling: bool,
) -> None:
    """Update fields on an existing record."""
    session = connected_session(tooling=tooling)
    rec = session.record(sobject).set_id(record_id)
    rec.data.update(parse_fields(fields))
    rec.update(exclude=split_csv(exclude))
    click.echo(f"Updated {sobject} {record_id}")


@cli.command("upsert")
@click.argument("sobject")
@click.argument("external_id_field")
@click.argument("external_id_value")
@click.option("-f", "--field", "fields", multiple=True, help="Field value as Name=Value (repeatable).")
@click.option("--tooling", is_flag=True, help="Use the Tooling API.")
def cmd_upsert(
    sobject: str,
    external_id_field: str,
    external_id_value: str,
    fields: Tuple[str, ...],
    tooling: bool,
) -> None:
    """Create or update a record keyed by an external Id field."""
    session = connected_session(tooling=tooling)
    rec = session.record(sobject)
    rec.data.update(parse_fields(fields))
    rec.upsert(external_id_field, external_id_value)
    click.echo(rec.id or f"Updated {sobject} {external_id_field}={external_id_value}")


@cli.command("delete")
@click.argument("sobject")
@click.argument("record_id")
@click.option("--tooling", is_flag=True, help="Use the Tooling API.")
def cmd_delete(sobject: str, record_id: str, tooling: bool) -> None:
    """Delete a record by Id."""
    session = connected_session(tooling=tooling)
    session.record(sobject).delete(record_id)
    click.echo(f"Deleted {sobject} {record_id}")


@cli.command("download")
@click.argument("content_version_id")
@click.argument("target", type=click.Path(dir_okay=False))
@click.option("--progress/--no-progress", default=True, help="Show a progress bar.")
def cmd_download(content_version_id: str, target: str, progress: bool) -> None:
    """Download the binary body of a ContentVersion."""
    session = connected_session()
    size = session.download_file(content_version_id, target, progress=progress)
    click.echo(f"Wrote {size} bytes to {target}")


@cli.command("apex")
@click.argument("method", type=click.Choice(["GET", "POST", "PUT", "PATCH", "DELETE"], case_sensitive=False))
@click.argument("path")
@click.option("-d", "--data", "body", default=None, help="Request body (JSON).")
def cmd_apex(method: str, path: str, body: Optional[str]) -> None:
    """Call a custom Apex REST endpoint under /services/apexrest/."""
    session = connected_session()
    out = session.apex_rest(method.upper(), path, body.encode("utf-8") if body else None)
    click.echo(out.decode("utf-8", errors="replace"))


@cli.command("exec-anon")
@click.argument("apex_body")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
def cmd_exec_anon(apex_body: str, pretty: bool) -> None:
    """Execute anonymous Apex through the Tooling API."""
    session = connected_session()
    result = session.execute_anonymous(apex_body)
    echo_json(asdict(result), pretty)
    if not result.success:
        raise click.ClickException(str(result.exception_message or result.compile_problem or "Apex failed"))


# Cast ensures IDE knows of the Command type
cli.add_command(cast(Command, objects_cmd))
