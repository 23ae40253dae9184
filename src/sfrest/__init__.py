from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sfrest")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

from .error_parser import parse_error
from .exceptions import (
    AuthenticationError,
    DecodeError,
    MissingCredentialsError,
    PreconditionError,
    SalesforceClientError,
    SalesforceError,
)
from .record import Record, RecordAttributes
from .session import QueryResult, Session, SessionConfig

__all__ = [
    "AuthenticationError",
    "DecodeError",
    "MissingCredentialsError",
    "PreconditionError",
    "QueryResult",
    "Record",
    "RecordAttributes",
    "SalesforceClientError",
    "SalesforceError",
    "Session",
    "SessionConfig",
    "parse_error",
]

# Keep library modules quiet unless the app configures logging:
logging.getLogger(__name__).addHandler(logging.NullHandler())
