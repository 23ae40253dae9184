from __future__ import annotations

import copy
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union
from urllib.parse import quote, urlsplit
from xml.etree import ElementTree as ET
from xml.sax.saxutils import escape

import requests
from tqdm import tqdm

from .env_loader import load_env_files
from .error_parser import parse_error
from .exceptions import (
    AuthenticationError,
    DecodeError,
    MissingCredentialsError,
    PreconditionError,
    SalesforceError,
)
from .record import Record, json_default

__author__ = "sfrest contributors"
__copyright__ = "sfrest contributors"
__license__ = "MIT"

_logger = logging.getLogger(__name__)

# Ensure .env is loaded for library use as well (e.g., scripts importing Session)
load_env_files(quiet=True)

DEFAULT_LOGIN_URL = "https://login.salesforce.com"
DEFAULT_API_VERSION = "v60.0"
DEFAULT_CLIENT_ID = "sfrest"
DEFAULT_TIMEOUT = 30.0

_SOAP_LOGIN_TEMPLATE = """<?xml version="1.0" encoding="utf-8" ?>
<env:Envelope
        xmlns:xsd="http://www.w3.org/2001/XMLSchema"
        xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
        xmlns:env="http://schemas.xmlsoap.org/soap/envelope/"
        xmlns:urn="urn:partner.soap.sforce.com">
    <env:Header>
        <urn:CallOptions>
            <urn:client>{client_id}</urn:client>
            <urn:defaultNamespace>sf</urn:defaultNamespace>
        </urn:CallOptions>
    </env:Header>
    <env:Body>
        <n1:login xmlns:n1="urn:partner.soap.sforce.com">
            <n1:username>{username}</n1:username>
            <n1:password>{password}{token}</n1:password>
        </n1:login>
    </env:Body>
</env:Envelope>"""


def normalize_api_version(version: str) -> str:
    """'60', '60.0' and 'v60.0' all become 'v60.0'."""
    v = version.strip().lstrip("vV")
    if "." not in v:
        v = f"{v}.0"
    return f"v{v}"


def collapse_slashes(url: str) -> str:
    """Collapse repeated '/' in the path part of a URL, keeping 'scheme://'."""
    scheme, sep, rest = url.partition("://")
    if not sep:
        return re.sub(r"/{2,}", "/", url)
    return f"{scheme}{sep}{re.sub(r'/{2,}', '/', rest)}"


def _origin(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise AuthenticationError(f"Cannot parse instance URL from {url!r}")
    return f"{parts.scheme}://{parts.netloc}"


def _find_text(root: ET.Element, name: str) -> str:
    for elem in root.iter():
        if elem.tag.rsplit("}", 1)[-1] == name:
            return (elem.text or "").strip()
    return ""


# ----------------------------------------------------------------------
# Configuration dataclass
# ----------------------------------------------------------------------
@dataclass
class SessionConfig:
    """Configuration for Salesforce authentication and transport."""

    # "password" (SOAP partner login) or "client_credentials" (OAuth2)
    auth_flow: str = "password"

    # Base login URL (not the instance URL)
    login_url: str = DEFAULT_LOGIN_URL

    client_id: str = DEFAULT_CLIENT_ID
    client_secret: Optional[str] = None

    username: Optional[str] = None
    password: Optional[str] = None
    security_token: str = ""

    # Optional: pre-provided token / instance URL (e.g. from another tool)
    access_token: Optional[str] = None
    instance_url: Optional[str] = None

    # Optional: pin the API version (e.g. "v60.0"); otherwise auto-discover
    api_version: Optional[str] = None

    timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls) -> SessionConfig:
        """Load configuration from environment variables."""
        return cls(
            auth_flow=os.getenv("SF_AUTH_FLOW", "password"),
            login_url=os.getenv("SF_LOGIN_URL", DEFAULT_LOGIN_URL),
            client_id=os.getenv("SF_CLIENT_ID", DEFAULT_CLIENT_ID),
            client_secret=os.getenv("SF_CLIENT_SECRET"),
            username=os.getenv("SF_USERNAME"),
            password=os.getenv("SF_PASSWORD"),
            security_token=os.getenv("SF_SECURITY_TOKEN", ""),
            access_token=os.getenv("SF_ACCESS_TOKEN"),
            instance_url=os.getenv("SF_INSTANCE_URL"),
            api_version=os.getenv("SF_API_VERSION"),
            timeout=float(os.getenv("SF_TIMEOUT", DEFAULT_TIMEOUT)),
        )


@dataclass
class UserInfo:
    id: str = ""
    name: str = ""
    full_name: str = ""
    email: str = ""


@dataclass
class _AuthState:
    """Credential state shared by a Session and its tooling/standard handles."""

    access_token: Optional[str] = None
    instance_url: Optional[str] = None
    api_version: Optional[str] = None
    user: UserInfo = field(default_factory=UserInfo)

    def clear(self) -> None:
        self.access_token = None
        self.instance_url = None
        self.user = UserInfo()


# ----------------------------------------------------------------------
# Result types
# ----------------------------------------------------------------------
@dataclass
class QueryResult:
    """One page of a SOQL query."""

    total_size: int = 0
    done: bool = True
    next_records_url: Optional[str] = None
    records: List[Record] = field(default_factory=list)
    session: Optional[Session] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_payload(cls, payload: Any, session: Optional[Session] = None) -> QueryResult:
        if not isinstance(payload, dict) or not isinstance(payload.get("records", []), list):
            raise DecodeError("Query response is not a query result object")
        rows = payload.get("records") or []
        return cls(
            total_size=int(payload.get("totalSize") or 0),
            done=bool(payload.get("done", True)),
            next_records_url=payload.get("nextRecordsUrl") or None,
            records=[Record.from_wire(r, session) for r in rows if isinstance(r, dict)],
            session=session,
        )

    def next_page(self) -> Optional[QueryResult]:
        """Fetch the following page, or ``None`` when this is the last one."""
        if not self.next_records_url:
            return None
        if self.session is None:
            raise PreconditionError("Query result is not bound to a session")
        return self.session.query(self.next_records_url)


@dataclass
class ExecuteAnonymousResult:
    line: int = -1
    column: int = -1
    compiled: bool = False
    success: bool = False
    compile_problem: Any = None
    exception_stack_trace: Any = None
    exception_message: Any = None

    @classmethod
    def from_payload(cls, payload: Any) -> ExecuteAnonymousResult:
        if not isinstance(payload, dict):
            raise DecodeError("executeAnonymous response is not a JSON object")
        return cls(
            line=payload.get("line", -1),
            column=payload.get("column", -1),
            compiled=bool(payload.get("compiled")),
            success=bool(payload.get("success")),
            compile_problem=payload.get("compileProblem"),
            exception_stack_trace=payload.get("exceptionStackTrace"),
            exception_message=payload.get("exceptionMessage"),
        )


# ----------------------------------------------------------------------
# Main session
# ----------------------------------------------------------------------
class Session:
    """Authenticated handle on one Salesforce org."""

    def __init__(
        self,
        cfg: Optional[SessionConfig] = None,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.cfg = cfg or SessionConfig.from_env()
        self.http = http or requests.Session()
        self._auth = _AuthState()
        self._tooling = False

    # --------------------------- State --------------------------------

    @property
    def access_token(self) -> Optional[str]:
        return self._auth.access_token

    @property
    def instance_url(self) -> Optional[str]:
        return self._auth.instance_url

    @property
    def api_version(self) -> Optional[str]:
        return self._auth.api_version

    @property
    def user(self) -> UserInfo:
        return self._auth.user

    @property
    def is_logged_in(self) -> bool:
        return bool(self._auth.access_token and self._auth.instance_url)

    @property
    def is_tooling(self) -> bool:
        return self._tooling

    def tooling(self) -> Session:
        """Return a handle that targets the Tooling API; ``self`` is unchanged."""
        return self._with_mode(True)

    def standard(self) -> Session:
        """Return a handle that targets the regular REST API."""
        return self._with_mode(False)

    def _with_mode(self, tooling: bool) -> Session:
        if tooling == self._tooling:
            return self
        other = copy.copy(self)
        other._tooling = tooling
        return other

    # --------------------------- Authentication -----------------------

    def connect(self) -> None:
        """Authenticate using either an existing token or the configured auth flow."""
        self._auth.clear()
        if self.cfg.access_token and self.cfg.instance_url:
            _logger.debug("Using existing access token from configuration.")
            self.set_session(self.cfg.access_token, self.cfg.instance_url)
        elif self.cfg.auth_flow == "password":
            missing = [
                k
                for k, v in {
                    "SF_USERNAME": self.cfg.username,
                    "SF_PASSWORD": self.cfg.password,
                }.items()
                if not v
            ]
            if missing:
                raise MissingCredentialsError(missing)
            self.login(self.cfg.username or "", self.cfg.password or "", self.cfg.security_token)
        elif self.cfg.auth_flow == "client_credentials":
            self._client_credentials_login()
        else:
            raise AuthenticationError(f"Unsupported SF_AUTH_FLOW: {self.cfg.auth_flow!r}")

        if not self._auth.api_version:
            self._auth.api_version = self._discover_latest_api_version()
        _logger.info(
            "Connected to Salesforce instance=%s api=%s",
            self.instance_url,
            self.api_version,
        )

    def set_session(
        self,
        access_token: str,
        instance_url: str,
        api_version: Optional[str] = None,
    ) -> None:
        """Use a session id / instance URL obtained elsewhere."""
        self._auth.clear()
        if not access_token or not instance_url:
            raise AuthenticationError("Both access token and instance URL are required")
        self._auth.access_token = access_token
        self._auth.instance_url = instance_url.rstrip("/")
        version = api_version or self.cfg.api_version
        if version:
            self._auth.api_version = normalize_api_version(version)

    def login(self, username: str, password: str, security_token: str = "") -> None:
        """Sign in through the SOAP partner API.

        The security token may be empty when the caller's IP is trusted.
        """
        self._auth.clear()
        version = normalize_api_version(self.cfg.api_version or DEFAULT_API_VERSION)
        url = f"{self.cfg.login_url.rstrip('/')}/services/Soap/u/{version.lstrip('v')}"
        body = _SOAP_LOGIN_TEMPLATE.format(
            client_id=escape(self.cfg.client_id),
            username=escape(username),
            password=escape(password),
            token=escape(security_token or ""),
        )

        _logger.debug("Requesting session id from %s", url)
        try:
            r = self.request(
                "POST",
                url,
                data=body.encode("utf-8"),
                headers={"Content-Type": "text/xml; charset=UTF-8", "SOAPAction": "login"},
                auth_required=False,
            )
        except SalesforceError as e:
            raise AuthenticationError(f"Login failed: {e.message}") from e

        try:
            root = ET.fromstring(r.content)
        except ET.ParseError as e:
            raise DecodeError(f"Cannot parse login response: {e}", body=r.text) from e

        session_id = _find_text(root, "sessionId")
        server_url = _find_text(root, "serverUrl")
        if not session_id or not server_url:
            raise AuthenticationError("Login response did not contain a session id and server URL")

        self._auth.access_token = session_id
        self._auth.instance_url = _origin(server_url)
        self._auth.api_version = version
        self._auth.user = UserInfo(
            id=_find_text(root, "userId"),
            name=_find_text(root, "userName"),
            full_name=_find_text(root, "userFullName"),
            email=_find_text(root, "userEmail"),
        )
        _logger.info("User %s authenticated.", self._auth.user.name)

    def _client_credentials_login(self) -> None:
        """Perform OAuth2 client credentials flow."""
        self._auth.clear()
        missing = [
            k
            for k, v in {
                "SF_CLIENT_ID": self.cfg.client_id,
                "SF_CLIENT_SECRET": self.cfg.client_secret,
                "SF_LOGIN_URL": self.cfg.login_url,
            }.items()
            if not v
        ]
        if missing:
            raise MissingCredentialsError(missing)

        token_url = f"{self.cfg.login_url.rstrip('/')}/services/oauth2/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": self.cfg.client_id,
            "client_secret": self.cfg.client_secret,
        }

        _logger.debug("Requesting access token from %s", token_url)
        try:
            r = self.request(
                "POST",
                token_url,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                auth_required=False,
            )
        except SalesforceError as e:
            raise AuthenticationError(f"Token request failed: {e.message}") from e
        payload = self.decode_json(r)

        if not isinstance(payload, dict) or not payload.get("access_token") or not payload.get("instance_url"):
            raise AuthenticationError("Authentication did not yield access_token and instance_url.")
        self._auth.access_token = payload["access_token"]
        self._auth.instance_url = payload["instance_url"].rstrip("/")
        if self.cfg.api_version:
            self._auth.api_version = normalize_api_version(self.cfg.api_version)

    def _discover_latest_api_version(self) -> str:
        """Find the latest available API version."""
        versions = self.call_json("GET", f"{self._require_instance()}/services/data/")
        if not isinstance(versions, list) or not versions:
            raise DecodeError("Unexpected /services/data/ response")
        best = sorted(versions, key=lambda v: float(v.get("version", "0")), reverse=True)[0]
        version_str = best.get("url", "").split("/")[-1]
        _logger.debug("Latest API version discovered: %s", version_str)
        return version_str

    def _require_login(self) -> str:
        if not self.is_logged_in:
            raise AuthenticationError("Not logged in; call connect() or login() first")
        return self._auth.access_token or ""

    def _require_instance(self) -> str:
        self._require_login()
        return self._auth.instance_url or ""

    # --------------------------- URLs ---------------------------------

    def resolve_url(self, fragment: str) -> str:
        """Absolute REST URL for a path relative to ``/services/data/vNN.N/``."""
        instance = self._require_instance()
        version = self._auth.api_version or DEFAULT_API_VERSION
        return collapse_slashes(f"{instance}/services/data/{version}/{fragment}")

    def sobject_url(self, *parts: str) -> str:
        """URL under ``sobjects/`` (or ``tooling/sobjects/`` in tooling mode)."""
        prefix = "tooling/sobjects" if self._tooling else "sobjects"
        tail = "/".join(quote(str(p), safe="") for p in parts)
        return self.resolve_url(f"{prefix}/{tail}" if tail else prefix)

    def _absolute(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if path.startswith("/"):
            return collapse_slashes(f"{self._require_instance()}{path}")
        return self.resolve_url(path)

    # --------------------------- HTTP ---------------------------------

    def request(
        self,
        method: str,
        url: str,
        *,
        data: Union[bytes, str, Dict[str, Any], None] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        stream: bool = False,
        auth_required: bool = True,
    ) -> requests.Response:
        """Single request; any status outside 2xx is raised as ``SalesforceError``."""
        req_headers: Dict[str, str] = {"Content-Type": "application/json"}
        if auth_required:
            req_headers["Authorization"] = f"Bearer {self._require_login()}"
        if headers:
            req_headers.update(headers)

        r = self.http.request(
            method,
            url,
            params=params,
            data=data,
            headers=req_headers,
            timeout=self.cfg.timeout,
            stream=stream,
        )
        if 200 <= r.status_code < 300:
            return r

        err = parse_error(r.status_code, r.content)
        _logger.error("HTTP %s error for %s %s: %s", r.status_code, method, url, err.message)
        raise err

    def call(
        self,
        method: str,
        url: str,
        body: Union[bytes, str, Dict[str, Any], List[Any], None] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> bytes:
        """Perform an authenticated call and return the raw response body."""
        if isinstance(body, (dict, list)):
            body = json.dumps(body, default=json_default).encode("utf-8")
        return self.request(method, url, data=body, headers=headers).content

    def call_json(
        self,
        method: str,
        url: str,
        body: Union[bytes, str, Dict[str, Any], List[Any], None] = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if isinstance(body, (dict, list)):
            body = json.dumps(body, default=json_default).encode("utf-8")
        return self.decode_json(self.request(method, url, data=body, headers=headers, params=params))

    @staticmethod
    def decode_json(r: requests.Response) -> Any:
        if not r.content:
            raise DecodeError(f"Empty response body from {r.url}")
        try:
            return r.json()
        except ValueError as e:
            raise DecodeError(f"Invalid JSON from {r.url}: {e}", body=r.text) from e

    # --------------------------- Records & queries --------------------

    def record(self, type_name: Optional[str] = None) -> Record:
        """Create an empty record bound to this session."""
        return Record(type_name, session=self)

    def query(self, q: str) -> QueryResult:
        """Run a SOQL query, or fetch the page behind a ``nextRecordsUrl``."""
        if q.startswith("/services/data"):
            url = collapse_slashes(f"{self._require_instance()}{q}")
            params = None
        else:
            url = self.resolve_url("tooling/query" if self._tooling else "query")
            params = {"q": q}
        return QueryResult.from_payload(self.call_json("GET", url, params=params), self)

    def query_all(self, soql: str) -> Iterator[Record]:
        """Yield records across pages via nextRecordsUrl."""
        page: Optional[QueryResult] = self.query(soql)
        while page is not None:
            yield from page.records
            page = page.next_page()

    def describe_global(self) -> Dict[str, Any]:
        """Return /sobjects (global describe)."""
        return self.call_json("GET", self.sobject_url())

    def limits(self) -> Dict[str, Any]:
        """Return API usage limits."""
        return self.call_json("GET", self.resolve_url("limits"))

    def whoami(self) -> Dict[str, Any]:
        """Return identity information for the current user."""
        return self.call_json("GET", f"{self._require_instance()}/services/oauth2/userinfo")

    # --------------------------- Apex ---------------------------------

    def apex_rest(
        self,
        method: str,
        path: str,
        body: Union[bytes, str, Dict[str, Any], List[Any], None] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> bytes:
        """Call a custom ``@RestResource`` endpoint under /services/apexrest/."""
        url = collapse_slashes(f"{self._require_instance()}/services/apexrest/{path}")
        return self.call(method, url, body, headers)

    def execute_anonymous(self, apex_body: str) -> ExecuteAnonymousResult:
        """Run a block of anonymous Apex through the Tooling API."""
        url = self.resolve_url("tooling/executeAnonymous/")
        payload = self.call_json("GET", url, params={"anonymousBody": apex_body})
        return ExecuteAnonymousResult.from_payload(payload)

    # --------------------------- Files --------------------------------

    def download_file(self, content_version_id: str, target: str, progress: bool = False) -> int:
        """Save the binary body of a ContentVersion to ``target``."""
        rel = f"sobjects/ContentVersion/{quote(content_version_id, safe='')}/VersionData"
        return self.download_path_to_file(self.resolve_url(rel), target, progress=progress)

    def download_path_to_file(self, rel_path: str, target: str, progress: bool = False) -> int:
        """Stream a REST resource to disk; returns the number of bytes written.

        The body goes to ``<target>.part`` first and replaces ``target`` only
        once it is complete.
        """
        url = self._absolute(rel_path)
        parent = os.path.dirname(target)
        if parent:
            os.makedirs(parent, exist_ok=True)

        written = 0
        tmp = f"{target}.part"
        r = self.request("GET", url, headers={"Accept": "*/*"}, stream=True)
        with r:
            total = int(r.headers.get("Content-Length") or 0) or None
            try:
                with open(tmp, "wb") as f, tqdm(
                    total=total,
                    unit="B",
                    unit_scale=True,
                    desc=os.path.basename(target),
                    disable=not progress,
                ) as bar:
                    for chunk in r.iter_content(chunk_size=1024 * 1024):
                        if not chunk:
                            continue
                        f.write(chunk)
                        written += len(chunk)
                        bar.update(len(chunk))
            except BaseException:
                if os.path.exists(tmp):
                    os.remove(tmp)
                raise
        os.replace(tmp, target)
        _logger.debug("Downloaded %s -> %s (%d bytes)", url, target, written)
        return written
