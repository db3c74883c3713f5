"""Shared builders for tests."""

import json
from unittest.mock import MagicMock

from aadauth.primitives.jwt import encode_segment


def make_jwt(payload, header=None, signature="c2lnbmF0dXJl"):
    """Build an unsigned-looking JWT carrying the given claims."""
    header = header or {"alg": "RS256", "typ": "JWT"}
    return f"{encode_segment(header)}.{encode_segment(payload)}.{signature}"


def json_response(status_code, body):
    """Build a mock httpx response with a JSON body."""
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = json.dumps(body)
    return response


def text_response(status_code, text):
    """Build a mock httpx response whose body isn't JSON."""
    response = MagicMock()
    response.status_code = status_code
    response.json.side_effect = ValueError("not json")
    response.text = text
    return response
