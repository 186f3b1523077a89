"""
Client header parsing.

The app id is always read from its own header. Everything else comes from
the base64 JSON ``Ninja-Header-Payload`` when present, otherwise from the
individual headers. Values are trimmed and blanks treated as absent; the
git email is lowercased.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from shared.errors import ValidationError


APP_ID_HEADER = "Ninja-App-Id"
PAYLOAD_HEADER = "Ninja-Header-Payload"

INDIVIDUAL_HEADERS = {
    "git_user_name": "Ninja-Git-Name",
    "git_user_email": "Ninja-Git-Email",
    "app_publisher": "Ninja-App-Publisher",
    "app_name": "Ninja-App-Name",
    "app_version": "Ninja-App-Version",
    "client_version": "Ninja-Version",
}

PAYLOAD_KEYS = {
    "git_user_name": "gitUserName",
    "git_user_email": "gitUserEmail",
    "app_publisher": "appPublisher",
    "app_name": "appName",
    "app_version": "appVersion",
    "client_version": "ninjaVersion",
}


@dataclass(frozen=True)
class NinjaHeaders:
    """Caller identity as sent by the client."""
    app_id: Optional[str] = None
    git_user_name: Optional[str] = None
    git_user_email: Optional[str] = None
    app_publisher: Optional[str] = None
    app_name: Optional[str] = None
    app_version: Optional[str] = None
    client_version: Optional[str] = None


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _decode_payload(raw: str) -> Mapping[str, Any]:
    try:
        payload = json.loads(base64.b64decode(raw, validate=False).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValidationError("Malformed Ninja-Header-Payload", {"error": str(e)}) from e
    if not isinstance(payload, dict):
        raise ValidationError("Ninja-Header-Payload must be a JSON object")
    return payload


def parse_ninja_headers(headers: Mapping[str, str]) -> NinjaHeaders:
    """Parse caller headers; ``headers`` must be case-insensitive (as Starlette's are)."""
    app_id = _clean(headers.get(APP_ID_HEADER))

    raw_payload = headers.get(PAYLOAD_HEADER)
    if raw_payload:
        payload = _decode_payload(raw_payload)
        values = {name: _clean(payload.get(key)) for name, key in PAYLOAD_KEYS.items()}
    else:
        values = {name: _clean(headers.get(header)) for name, header in INDIVIDUAL_HEADERS.items()}

    if values["git_user_email"]:
        values["git_user_email"] = values["git_user_email"].lower()

    return NinjaHeaders(app_id=app_id, **values)
