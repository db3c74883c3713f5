"""Deterministic fingerprints for cached tokens.

The fingerprint is a 128-bit MD5 digest over a canonical JSON encoding of
every input that defines a token request. Nothing time-dependent and
nothing from the returned credentials goes in, so the same logical request
maps to the same cache file in every process.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

FINGERPRINT_PATTERN = re.compile(r"^[0-9a-f]{32}$")


def token_hash_internal(
    version: int,
    aad_host: str,
    tenant: str,
    auth_type: str,
    client: dict[str, Any],
    resource: str | None,
    scope: list[str] | tuple[str, ...] | None,
    authorize_args: dict[str, Any] | None,
    token_args: dict[str, Any] | None,
) -> str:
    """Compute the fingerprint of a token request.

    Returns:
        32-character lowercase hex digest
    """
    fields = [
        version,
        aad_host,
        tenant,
        auth_type,
        client,
        resource,
        list(scope) if scope is not None else None,
        authorize_args or {},
        token_args or {},
    ]
    message = json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(message.encode("utf-8")).hexdigest()


def is_fingerprint(value: str) -> bool:
    return bool(FINGERPRINT_PATTERN.match(value))
