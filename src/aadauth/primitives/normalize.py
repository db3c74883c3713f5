"""Normalization of tenants, GUIDs, protocol versions and v2.0 scopes.

Tenants may be given as a name, a fully qualified domain name or a GUID in
any of the usual .NET formats (N, D, B and P). Scopes are checked before any
request is made, since a bad scope makes the v2.0 authorize endpoint show an
error page instead of redirecting back.
"""

from __future__ import annotations

import re
import warnings
from urllib.parse import urlparse, urlunparse

from aadauth.models.errors import InvalidScopeError, ScopeNormalizedWarning

_GUID_PATTERNS = (
    re.compile(r"^[0-9a-f]{32}$", re.IGNORECASE),
    re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE),
    re.compile(r"^\{[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\}$", re.IGNORECASE),
    re.compile(r"^\([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\)$", re.IGNORECASE),
)

OPENID_SCOPES = ("openid", "email", "profile", "offline_access")
UNSUPPORTED_OPENID_SCOPES = ("address", "phone")


def is_guid(value: str) -> bool:
    """Check whether a string is a GUID in N, D, B or P format."""
    return any(pattern.match(value) for pattern in _GUID_PATTERNS)


def normalize_guid(value: str) -> str:
    """Return a GUID in canonical lowercase D format.

    Raises:
        ValueError: If the value isn't a validly formatted GUID
    """
    if not is_guid(value):
        raise ValueError(f"Not a GUID: {value}")

    digits = re.sub(r"[^0-9a-f]", "", value.lower())
    return "-".join(
        (digits[0:8], digits[8:12], digits[12:16], digits[16:20], digits[20:32])
    )


def normalize_tenant(tenant: str) -> str:
    """Normalize a tenant name, domain or GUID.

    1. a GUID is returned in canonical form
    2. a name without a dot (other than "common") gets ".onmicrosoft.com"
    3. anything else is returned unchanged
    """
    if is_guid(tenant):
        return normalize_guid(tenant)

    if "." not in tenant and tenant != "common":
        return f"{tenant}.onmicrosoft.com"
    return tenant


def normalize_version(version: int | float | str) -> int:
    """Normalize a protocol version to 1 or 2."""
    text = str(version).strip().lower().lstrip("v")
    if text in ("1", "1.0"):
        return 1
    if text in ("2", "2.0"):
        return 2
    raise ValueError(f"Invalid protocol version: {version!r} (must be 1 or 2)")


def verify_v2_scope(scope: str) -> str:
    """Validate a v2.0 scope, filling in a default path where it's missing.

    Returns:
        The scope, possibly with "/.default" appended

    Raises:
        InvalidScopeError: If the scope is neither an OpenID scope, a URI nor
            a GUID-based scope
    """
    if scope in OPENID_SCOPES:
        return scope

    if scope in UNSUPPORTED_OPENID_SCOPES:
        raise InvalidScopeError(f"Unsupported OpenID scope: {scope}")

    parsed = urlparse(scope)
    if parsed.scheme and parsed.netloc:
        if parsed.path in ("", "/"):
            warnings.warn(
                f"No path supplied for scope {scope}; setting to /.default",
                ScopeNormalizedWarning,
                stacklevel=2,
            )
            return urlunparse(parsed._replace(path="/.default"))
        return scope

    app_id, _, path = scope.partition("/")
    if not is_guid(app_id):
        raise InvalidScopeError(f"Invalid scope (must be a URI or GUID): {scope}")
    if not path:
        raise InvalidScopeError(
            f"Scope {scope} is a bare GUID: supply a path such as {app_id}/.default"
        )
    return scope
