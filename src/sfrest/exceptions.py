from __future__ import annotations

from typing import Optional


class SalesforceClientError(RuntimeError):
    """Base class for every error raised by sfrest."""


class PreconditionError(SalesforceClientError):
    """Raised when a record operation is missing its type, session or Id.

    Always raised before any request is sent.
    """


class AuthenticationError(SalesforceClientError):
    """Raised when there is no usable Salesforce session."""


class MissingCredentialsError(AuthenticationError):
    """Raised when the required Salesforce env vars are not present."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__("Missing required environment variables: " + ", ".join(missing))


class SalesforceError(SalesforceClientError):
    """A non-2xx response from Salesforce, normalised by ``parse_error``."""

    def __init__(
        self,
        http_status: int,
        message: str,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        body: str = "",
    ):
        self.http_status = http_status
        self.message = message
        self.error_code = error_code
        self.error_message = error_message
        self.body = body
        super().__init__(message)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SalesforceError):
            return NotImplemented
        return (
            self.http_status == other.http_status
            and self.message == other.message
            and self.error_code == other.error_code
            and self.error_message == other.error_message
        )

    def __hash__(self) -> int:
        return hash((self.http_status, self.message, self.error_code, self.error_message))

    def __repr__(self) -> str:
        return (
            f"SalesforceError(http_status={self.http_status!r}, "
            f"error_code={self.error_code!r}, message={self.message!r})"
        )


class DecodeError(SalesforceClientError):
    """A 2xx response whose body did not have the expected shape."""

    def __init__(self, message: str, body: str = ""):
        self.body = body
        super().__init__(message)
