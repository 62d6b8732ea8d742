from typing import Optional

from flask import request


def request_token() -> Optional[str]:
    """
    Dashboard token for the current request.

    Prefers the Authorization bearer header and falls back to the
    `token` field of the JSON body, which older dashboards still send.
    """
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        token = header[7:].strip()
        if token:
            return token

    body = request.get_json(silent=True) or {}
    token = body.get('token') if isinstance(body, dict) else None
    return token or None
