"""Helpers shared by the CLI commands."""

from __future__ import annotations

import json
from typing import Any, Iterable, Tuple

import click

from .exceptions import MissingCredentialsError, SalesforceClientError
from .record import json_default
from .session import Session, SessionConfig

CREDENTIALS_HELP = (
    "Set these environment variables (or create a .env file), e.g. for "
    "username/password auth:\n"
    "  SF_AUTH_FLOW=password\n"
    "  SF_USERNAME=...\n"
    "  SF_PASSWORD=...\n"
    "  SF_SECURITY_TOKEN=...        # optional for trusted IP ranges\n"
    "or for client-credentials auth:\n"
    "  SF_AUTH_FLOW=client_credentials\n"
    "  SF_CLIENT_ID=...             # Connected App Consumer Key\n"
    "  SF_CLIENT_SECRET=...         # Connected App Client Secret\n"
    "  SF_LOGIN_URL=https://login.salesforce.com  # or your custom domain URL\n"
    "  SF_API_VERSION=v60.0         # optional; will auto-discover if omitted"
)


def connected_session(tooling: bool = False) -> Session:
    """Build a Session from the environment and log in, with friendly errors."""
    session = Session(SessionConfig.from_env())
    try:
        session.connect()
    except MissingCredentialsError as e:
        needed = ", ".join(e.missing)
        raise click.ClickException(f"Missing Salesforce credentials: {needed}\n\n{CREDENTIALS_HELP}") from e
    except SalesforceClientError as e:
        raise click.ClickException(f"Login failed: {e}") from e
    return session.tooling() if tooling else session


def parse_fields(pairs: Iterable[str]) -> dict[str, Any]:
    """Turn ``Name=Value`` pairs into a dict; values are JSON-decoded when possible."""
    fields: dict[str, Any] = {}
    for pair in pairs:
        name, sep, raw = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected Name=Value, got {pair!r}", param_hint="--field")
        try:
            fields[name] = json.loads(raw)
        except ValueError:
            fields[name] = raw
    return fields


def split_csv(values: Tuple[str, ...]) -> list[str]:
    out: list[str] = []
    for v in values:
        out.extend(p.strip() for p in v.split(",") if p.strip())
    return out


def echo_json(data: Any, pretty: bool = False) -> None:
    click.echo(json.dumps(data, indent=2 if pretty else None, default=json_default))
