"""Expiry resolution for provider token responses.

Providers are inconsistent about expiry: v1.0 returns an absolute
``expires_on``, v2.0 only a relative ``expires_in``, and some responses carry
nothing but the ``exp`` claim inside the token itself.
"""

from __future__ import annotations

import logging
import math
import warnings
from typing import Any

from aadauth.models.errors import ExpiryUnresolvedWarning
from aadauth.primitives.jwt import decode_jwt

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY = 3600


def _as_number(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def jwt_expiry(token: str | None) -> float | None:
    """Read the ``exp`` claim from a JWT, or None if it can't be read."""
    if not token:
        return None
    try:
        return _as_number(decode_jwt(token)["payload"].get("exp"))
    except (ValueError, TypeError, AttributeError):
        return None


def resolve_expiry(credentials: dict[str, Any], request_time: float) -> float:
    """Resolve the expiry instant of a credential set.

    Resolution order:
    1. the provider's absolute ``expires_on``
    2. otherwise request time plus the provider's ``expires_in``
    3. the ``exp`` claim of the access token, falling back to the ID token

    When both a provider-given expiry (1 or 2) and a JWT claim (3) exist,
    the earlier one wins. If none resolves, the token is given one hour from
    the request time and an ExpiryUnresolvedWarning is emitted.

    Args:
        credentials: Raw credential fields from the provider
        request_time: Unix time at which the token was requested

    Returns:
        Expiry as a Unix timestamp
    """
    request_time = math.floor(request_time)

    provider_expiry = _as_number(credentials.get("expires_on"))
    if provider_expiry is None:
        expires_in = _as_number(credentials.get("expires_in"))
        if expires_in is not None:
            provider_expiry = request_time + expires_in

    claim_expiry = jwt_expiry(credentials.get("access_token"))
    if claim_expiry is None:
        claim_expiry = jwt_expiry(credentials.get("id_token"))

    candidates = [e for e in (provider_expiry, claim_expiry) if e is not None]
    if candidates:
        return min(candidates)

    logger.warning("Could not set expiry time, using default validity period")
    warnings.warn(
        "Could not set expiry time, using default validity period of 1 hour",
        ExpiryUnresolvedWarning,
        stacklevel=2,
    )
    return float(request_time + DEFAULT_VALIDITY)
