"""Unverified JWT decoding and base64url helpers.

Decoding here never touches the signature: the decoded claims are for
reading an expiry time or displaying a token, not for trusting it.
"""

from __future__ import annotations

import base64
import json
from typing import Any


def base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def base64url_decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def encode_segment(obj: dict[str, Any]) -> str:
    """Encode a JSON object as a compact base64url JWT segment."""
    return base64url_encode(json.dumps(obj, separators=(",", ":")).encode("utf-8"))


def decode_jwt(token: Any) -> dict[str, Any]:
    """Decode a JWT into its header, payload and (raw) signature.

    Args:
        token: An encoded JWT string, or anything ``extract_jwt`` accepts

    Returns:
        Dictionary with "header" and "payload" and, if present, "signature"

    Raises:
        ValueError: If the token isn't a decodable JWT
    """
    parts = extract_jwt(token).split(".")
    if len(parts) < 2:
        raise ValueError("Not a JWT: expected at least two dot-separated segments")

    try:
        decoded: dict[str, Any] = {
            "header": json.loads(base64url_decode(parts[0])),
            "payload": json.loads(base64url_decode(parts[1])),
        }
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"Not a JWT: {e}") from e

    if len(parts) > 2 and parts[2]:
        decoded["signature"] = parts[2]
    return decoded


def extract_jwt(token: Any) -> str:
    """Return the raw access token string from a token object or string."""
    if isinstance(token, str):
        return token

    credentials = getattr(token, "credentials", None)
    access_token = getattr(credentials, "access_token", None)
    if isinstance(access_token, str):
        return access_token

    raise TypeError(f"Can't extract a JWT from {type(token).__name__}")
