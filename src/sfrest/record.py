"""
Record: one Salesforce sObject instance.

A Record holds the field data exactly as Salesforce sends it, including the
``attributes`` envelope (``{"type": ..., "url": ...}``) and the ``Id``, in a
plain dict (``record.data``).  The owning :class:`~sfrest.session.Session` is
kept next to the data, never inside it, so it is not part of JSON output,
``to_wire()`` copies or equality.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from .exceptions import DecodeError, PreconditionError, SalesforceError

if TYPE_CHECKING:  # pragma: no cover
    from .session import Session

_logger = logging.getLogger(__name__)

ATTRIBUTES_KEY = "attributes"
ID_KEY = "Id"

DUPLICATE_RULE_HEADER = "Sforce-Duplicate-Rule-Header"

# Read-only fields rejected by INVALID_FIELD_FOR_INSERT_UPDATE on create/update.
SERVER_MANAGED_FIELDS = frozenset(
    {
        "LastModifiedDate",
        "LastReferencedDate",
        "IsClosed",
        "ContactPhone",
        "CreatedById",
        "CaseNumber",
        "ContactFax",
        "ContactMobile",
        "IsDeleted",
        "LastViewedDate",
        "SystemModstamp",
        "CreatedDate",
        "ContactEmail",
        "ClosedDate",
        "LastModifiedById",
    }
)


def json_default(obj: Any) -> Any:
    """``json.dumps`` hook that serialises nested records as plain objects."""
    if isinstance(obj, Record):
        return obj.data
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


@dataclass(frozen=True)
class RecordAttributes:
    """The ``attributes`` envelope of a record."""

    type: str = ""
    url: str = ""

    @classmethod
    def from_value(cls, value: Any) -> Optional[RecordAttributes]:
        """Read an envelope; anything malformed reads as absent."""
        if isinstance(value, RecordAttributes):
            return value
        if isinstance(value, Record):
            value = value.data
        if not isinstance(value, Mapping):
            return None
        type_ = value.get("type")
        url = value.get("url")
        if type_ is not None and not isinstance(type_, str):
            return None
        if url is not None and not isinstance(url, str):
            return None
        return cls(type=type_ or "", url=url or "")


class Record:
    """A schema-less Salesforce record, optionally bound to a Session.

    Supports dict-style access to its fields::

        case = session.record("Case").set("Subject", "Printer on fire")
        case["Priority"] = "High"
        case.create()
        print(case.id)
    """

    __slots__ = ("data", "session")

    def __init__(
        self,
        type_name: Optional[str] = None,
        session: Optional[Session] = None,
        data: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.data: Dict[str, Any] = dict(data or {})
        self.session = session
        if type_name:
            self.set_type(type_name)

    @classmethod
    def from_wire(cls, data: Mapping[str, Any], session: Optional[Session] = None) -> Record:
        """Wrap a decoded JSON object (query row, GET body) as a Record."""
        return cls(session=session, data=data)

    # Dict-like access

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __delitem__(self, key: str) -> None:
        del self.data[key]

    def __contains__(self, key: object) -> bool:
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def __eq__(self, other: object) -> bool:
        # Only field data takes part in equality.
        if isinstance(other, Record):
            return self.data == other.data
        if isinstance(other, Mapping):
            return self.data == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Record({self.data!r})"

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def keys(self):
        return self.data.keys()

    def items(self):
        return self.data.items()

    def to_dict(self) -> Dict[str, Any]:
        """Shallow copy of all fields, including ``attributes`` and ``Id``."""
        return dict(self.data)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def attributes(self) -> Optional[RecordAttributes]:
        return RecordAttributes.from_value(self.data.get(ATTRIBUTES_KEY))

    @property
    def type_name(self) -> str:
        attrs = self.attributes
        return attrs.type if attrs is not None else ""

    @property
    def id(self) -> str:
        return self.string_field(ID_KEY)

    def field(self, name: str) -> Any:
        """Raw lookup; ``None`` when the field is missing."""
        return self.data.get(name)

    def string_field(self, name: str) -> str:
        """Return the field if it is a string, otherwise ``""``.

        Type mismatches are masked; use :meth:`field` to see the raw value.
        """
        value = self.data.get(name)
        return value if isinstance(value, str) else ""

    def set(self, name: str, value: Any) -> Record:
        self.data[name] = value
        return self

    def set_id(self, value: str) -> Record:
        self.data[ID_KEY] = value
        return self

    def set_type(self, type_name: str) -> Record:
        attrs = self.attributes
        url = attrs.url if attrs is not None else ""
        self.data[ATTRIBUTES_KEY] = {"type": type_name, "url": url}
        return self

    def bind(self, session: Optional[Session]) -> Record:
        self.session = session
        return self

    def related_record(self, type_name: str, field: str) -> Optional[Record]:
        """Follow a lookup field.

        A scalar Id yields an unfetched stub of ``type_name``.  An expanded
        relationship (nested object with its own ``attributes``) yields a full
        Record whose Id is taken from the last segment of its url.
        """
        value = self.data.get(field)
        if isinstance(value, Record):
            value = value.data

        if isinstance(value, str):
            if not value:
                return None
            return Record(type_name, session=self.session).set_id(value)

        if isinstance(value, Mapping):
            attrs = RecordAttributes.from_value(value.get(ATTRIBUTES_KEY))
            if attrs is None or not attrs.type or not attrs.url:
                return None
            rec_id = attrs.url.rstrip("/").rsplit("/", 1)[-1]
            if not rec_id:
                return None
            return Record.from_wire(value, self.session).set_id(rec_id)

        return None

    def to_wire(self, exclude: Iterable[str] = ()) -> Dict[str, Any]:
        """Copy of the writable fields, as sent on create/update/upsert.

        Drops ``attributes``, ``Id``, the server-managed fields and ``exclude``.
        """
        denied = SERVER_MANAGED_FIELDS.union(exclude, (ATTRIBUTES_KEY, ID_KEY))
        return {k: v for k, v in self.data.items() if k not in denied}

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    def _require_session(self) -> Session:
        if not self.type_name:
            raise PreconditionError("Record has no sObject type")
        if self.session is None:
            raise PreconditionError(f"{self.type_name} record is not bound to a session")
        return self.session

    def _require_id(self, explicit: Optional[str] = None) -> str:
        rec_id = explicit or self.id
        if not rec_id:
            raise PreconditionError(f"{self.type_name} record has no Id")
        return rec_id

    def describe(self) -> Dict[str, Any]:
        """Return the describe metadata for this record's sObject type."""
        session = self._require_session()
        url = session.sobject_url(self.type_name, "describe")
        return session.call_json("GET", url)

    def fetch(self, id: Optional[str] = None) -> Record:
        """Load all fields of the record in place and return it."""
        session = self._require_session()
        rec_id = self._require_id(id)
        url = session.sobject_url(self.type_name, rec_id)
        payload = session.call_json("GET", url)
        if not isinstance(payload, dict):
            raise DecodeError(f"Expected a JSON object for {self.type_name}/{rec_id}")
        self.data.update(payload)
        return self

    def create(self, exclude: Iterable[str] = (), allow_duplicates: bool = False) -> Record:
        """Insert the record and store the new Id on it."""
        session = self._require_session()
        url = session.sobject_url(self.type_name)
        headers = {DUPLICATE_RULE_HEADER: "allowSave=true"} if allow_duplicates else None

        resp = session.request("POST", url, data=self._encode(exclude), headers=headers)
        payload = session.decode_json(resp)
        if not isinstance(payload, dict):
            raise DecodeError("Create response is not a JSON object", body=resp.text)
        self._check_success(resp, payload, "Create")
        new_id = payload.get("id")
        if not new_id:
            raise DecodeError("Create response has no id", body=resp.text)

        self.set_id(new_id)
        _logger.info("Created %s %s", self.type_name, new_id)
        return self

    def update(self, exclude: Iterable[str] = ()) -> None:
        session = self._require_session()
        rec_id = self._require_id()
        url = session.sobject_url(self.type_name, rec_id)
        session.request("PATCH", url, data=self._encode(exclude))
        _logger.info("Updated %s %s", self.type_name, rec_id)

    def upsert(
        self,
        external_id_field: str,
        external_id_value: str,
        exclude: Iterable[str] = (),
    ) -> Record:
        """Create or update keyed by an external Id field.

        Salesforce answers 201 with ``{"id": ..., "created": true}`` when it
        inserted a row. An update of an existing row is 204 with no body, or
        200 with ``"created": false`` from API v46.0 on. Only an insert
        changes ``Id``.
        """
        session = self._require_session()
        if not external_id_field or not external_id_value:
            raise PreconditionError("Upsert needs an external Id field and value")
        url = session.sobject_url(self.type_name, external_id_field, external_id_value)

        resp = session.request("PATCH", url, data=self._encode(exclude))

        if resp.status_code != 201 and not resp.content:
            _logger.info("Upsert updated %s %s=%s", self.type_name, external_id_field, external_id_value)
            return self

        payload = session.decode_json(resp)
        if not isinstance(payload, dict):
            raise DecodeError("Upsert response is not a JSON object", body=resp.text)
        self._check_success(resp, payload, "Upsert")

        if resp.status_code != 201 and payload.get("created") is not True:
            _logger.info("Upsert updated %s %s=%s", self.type_name, external_id_field, external_id_value)
            return self

        new_id = payload.get("id")
        if not new_id:
            raise DecodeError("Upsert created a record but returned no id", body=resp.text)
        self.set_id(new_id)
        _logger.info("Upsert created %s %s", self.type_name, new_id)
        return self

    def delete(self, id: Optional[str] = None) -> None:
        """Delete the remote record. The local value is left untouched."""
        session = self._require_session()
        rec_id = self._require_id(id)
        session.request("DELETE", session.sobject_url(self.type_name, rec_id))
        _logger.info("Deleted %s %s", self.type_name, rec_id)

    def _check_success(self, resp: Any, payload: Dict[str, Any], action: str) -> None:
        # A missing flag counts as failure.
        if payload.get("success") is not True:
            raise SalesforceError(
                resp.status_code,
                f"{action} {self.type_name} failed: {payload.get('errors')}",
                body=resp.text,
            )

    def _encode(self, exclude: Iterable[str]) -> bytes:
        return json.dumps(self.to_wire(exclude), default=json_default).encode("utf-8")
