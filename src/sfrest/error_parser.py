"""
Normalise Salesforce error responses.

Salesforce reports failures in one of three shapes:

- the REST envelope, a JSON array of ``{"message": ..., "errorCode": ...}``
- a SOAP fault with ``faultstring`` / ``faultcode`` under ``Envelope/Body/Fault``
- anything else (HTML error pages, plain text, empty bodies)

``parse_error`` tries them in that order and never raises.
"""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from typing import Optional, Tuple, Union

from .exceptions import SalesforceError


def _as_text(body: Union[bytes, str, None]) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def _local(tag: str) -> str:
    """Strip an ElementTree ``{namespace}`` prefix."""
    return tag.rsplit("}", 1)[-1]


def _child(elem: ET.Element, name: str) -> Optional[ET.Element]:
    for c in elem:
        if _local(c.tag) == name:
            return c
    return None


def _from_json(text: str) -> Optional[Tuple[str, Optional[str]]]:
    try:
        payload = json.loads(text)
    except ValueError:
        return None
    if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
        return None
    first = payload[0]
    message = first.get("message")
    code = first.get("errorCode")
    return (
        "" if message is None else str(message),
        None if code is None else str(code),
    )


def _from_xml(text: str) -> Optional[Tuple[str, Optional[str]]]:
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError:
        return None
    body = _child(root, "Body")
    fault = _child(body, "Fault") if body is not None else None
    if fault is None:
        return None
    faultstring = _child(fault, "faultstring")
    faultcode = _child(fault, "faultcode")
    message = (faultstring.text or "").strip() if faultstring is not None else ""
    code = (faultcode.text or "").strip() if faultcode is not None else None
    return message, code


def format_message(status: int, message: str, code: Optional[str]) -> str:
    return f"HTTP {status}: {message} (errorCode: {code or 'UNKNOWN'})"


def parse_error(status: int, body: Union[bytes, str, None]) -> SalesforceError:
    """Build a :class:`SalesforceError` from a status code and raw body.

    Pure function: the same inputs always produce an equal error value.
    """
    text = _as_text(body)

    for decoder in (_from_json, _from_xml):
        parsed = decoder(text)
        if parsed is not None:
            message, code = parsed
            return SalesforceError(
                status,
                format_message(status, message, code),
                error_code=code,
                error_message=message,
                body=text,
            )

    return SalesforceError(status, text, body=text)
