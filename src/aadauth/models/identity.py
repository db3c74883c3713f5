"""Request-defining identity of a token.

Everything that determines which token a request produces lives here, and
nothing else: the fingerprint used as the cache key is computed from this
value alone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from aadauth.models.credentials import ClientIdentity, TokenCredentials, TokenSnapshot
from aadauth.models.flow import AuthType
from aadauth.primitives.endpoints import aad_uri
from aadauth.primitives.fingerprint import token_hash_internal


@dataclass(frozen=True)
class TokenIdentity:
    """Immutable inputs of a token request.

    Exactly one of ``resource`` (v1.0) and ``scope`` (v2.0) is set.
    """

    version: int
    aad_host: str
    tenant: str
    auth_type: AuthType
    client: ClientIdentity
    resource: str | None = None
    scope: tuple[str, ...] | None = None
    authorize_args: dict[str, Any] = field(default_factory=dict)
    token_args: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.version == 1 and (self.resource is None or self.scope is not None):
            raise ValueError("A v1.0 token needs a resource and no scope")
        if self.version == 2 and (not self.scope or self.resource is not None):
            raise ValueError("A v2.0 token needs a non-empty scope and no resource")

    def fingerprint(self) -> str:
        """Compute the 128-bit hex fingerprint of this identity."""
        return token_hash_internal(
            self.version,
            self.aad_host,
            self.tenant,
            self.auth_type.value,
            self.client.fingerprint_fields(),
            self.resource,
            self.scope,
            self.authorize_args,
            self.token_args,
        )

    @property
    def scope_string(self) -> str | None:
        return " ".join(self.scope) if self.scope else None

    def resource_params(self) -> dict[str, str]:
        """Return the resource (v1.0) or space-joined scope (v2.0) parameter."""
        if self.version == 1:
            return {"resource": self.resource}
        return {"scope": self.scope_string}

    def endpoint(self, endpoint_type: str, query: dict[str, Any] | None = None) -> str:
        return aad_uri(self.aad_host, self.tenant, self.version, endpoint_type, query)

    def snapshot(self, credentials: TokenCredentials) -> TokenSnapshot:
        """Return a detached, secret-free copy for the cache."""
        return TokenSnapshot(
            version=self.version,
            aad_host=self.aad_host,
            tenant=self.tenant,
            auth_type=self.auth_type.value,
            client=self.client.public_fields(),
            resource=self.resource,
            scope=list(self.scope) if self.scope else None,
            credentials=credentials.model_copy(deep=True),
            authorize_args=dict(self.authorize_args),
            token_args=dict(self.token_args),
        )
