from __future__ import annotations

import json
from typing import Any

MSG_TYPE_AUTH = "auth"
MSG_TYPE_AUTH_REQUIRED = "auth_required"
MSG_TYPE_AUTH_INVALID = "auth_invalid"
MSG_TYPE_AUTH_OK = "auth_ok"


def auth_message(access_token: str) -> str:
    return json.dumps({"type": MSG_TYPE_AUTH, "access_token": access_token})


def parse_message(data: str) -> dict[str, Any] | None:
    """Decode a JSON text frame. Returns None unless it is an object."""
    try:
        msg = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return None

    if not isinstance(msg, dict):
        return None
    return msg
