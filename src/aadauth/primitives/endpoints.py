"""URI composition for the authorize, token and devicecode endpoints."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode, urlparse, urlunparse

from aadauth.models.errors import InvalidEndpointError

ENDPOINT_TYPES = ("authorize", "token", "devicecode")


def oauth_path(version: int) -> str:
    return "oauth2" if version == 1 else "oauth2/v2.0"


def aad_uri(
    aad_host: str,
    tenant: str,
    version: int,
    endpoint_type: str,
    query: dict[str, Any] | None = None,
) -> str:
    """Build an endpoint URI for a host, tenant and protocol version.

    A host with no path gets ``{tenant}/{oauth path}/{type}``. A host that
    already carries a path (a B2C or custom authority, or the managed
    identity endpoint) has the endpoint type appended to that path instead.

    Args:
        aad_host: Base URL of the identity provider
        tenant: Normalized tenant
        version: Protocol version, 1 or 2
        endpoint_type: One of "authorize", "token" or "devicecode"
        query: Optional query parameters; None values are dropped

    Returns:
        The endpoint URI as a string
    """
    parsed = urlparse(aad_host)
    host_path = parsed.path.strip("/")

    if host_path:
        path = f"/{host_path}/{endpoint_type}"
    else:
        path = f"/{tenant}/{oauth_path(version)}/{endpoint_type}"

    params = {k: v for k, v in (query or {}).items() if v is not None}
    return urlunparse(parsed._replace(path=path, query=urlencode(params)))


@dataclass(frozen=True)
class AADEndpoint:
    """An endpoint URI checked against the type it claims to be.

    Used when a caller hands in a ready-made endpoint rather than a host and
    tenant, so a token URI can't be mistaken for an authorize URI.
    """

    uri: str
    endpoint_type: str
    version: int = 1

    def __post_init__(self) -> None:
        if self.endpoint_type not in ENDPOINT_TYPES:
            raise InvalidEndpointError(
                f"Unknown endpoint type {self.endpoint_type!r}; "
                f"expected one of {', '.join(ENDPOINT_TYPES)}"
            )
        path = urlparse(self.uri).path
        if not re.search(rf"{self.endpoint_type}/?$", path):
            raise InvalidEndpointError(
                f"Not an OAuth {self.endpoint_type} endpoint: {self.uri}"
            )

    @classmethod
    def build(
        cls, aad_host: str, tenant: str, version: int, endpoint_type: str
    ) -> AADEndpoint:
        return cls(aad_uri(aad_host, tenant, version, endpoint_type), endpoint_type, version)

    def with_query(self, query: dict[str, Any]) -> str:
        """Return the endpoint URI with query parameters attached."""
        params = {k: v for k, v in query.items() if v is not None}
        return urlunparse(urlparse(self.uri)._replace(query=urlencode(params)))
