"""Construction of token identities from caller arguments."""

from __future__ import annotations

import warnings
from typing import Any, Iterable

from aadauth.models.credentials import (
    DEVICE_CODE_GRANT,
    JWT_BEARER_GRANT,
    ClientIdentity,
)
from aadauth.models.errors import InvalidScopeError, ScopeNormalizedWarning
from aadauth.models.flow import AuthType
from aadauth.models.identity import TokenIdentity
from aadauth.models.settings import DEFAULT_AAD_HOST
from aadauth.primitives.jwt import extract_jwt
from aadauth.primitives.normalize import (
    normalize_tenant,
    normalize_version,
    verify_v2_scope,
)
from aadauth.services.assertion import as_assertion
from aadauth.services.selector import select_auth_type


def request_credentials(
    app: str | None,
    password: str | None,
    username: str | None,
    certificate: Any,
    auth_type: AuthType,
    version: int,
    on_behalf_of: Any = None,
) -> ClientIdentity:
    """Build the client credentials a grant type sends to the token endpoint."""
    certificate = as_assertion(certificate)

    if auth_type == AuthType.AUTHORIZATION_CODE:
        # a web app may need its secret; the username is only a login hint
        return ClientIdentity(
            client_id=app,
            grant_type="authorization_code",
            client_secret=password,
            login_hint=username,
            certificate=certificate,
        )

    if auth_type == AuthType.DEVICE_CODE:
        return ClientIdentity(
            client_id=app,
            grant_type="device_code" if version == 1 else DEVICE_CODE_GRANT,
        )

    if auth_type == AuthType.CLIENT_CREDENTIALS:
        return ClientIdentity(
            client_id=app,
            grant_type="client_credentials",
            client_secret=password,
            certificate=certificate,
        )

    if auth_type == AuthType.RESOURCE_OWNER:
        return ClientIdentity(
            client_id=app,
            grant_type="password",
            username=username,
            password=password,
        )

    if auth_type == AuthType.ON_BEHALF_OF:
        return ClientIdentity(
            client_id=app,
            grant_type=JWT_BEARER_GRANT,
            client_secret=password,
            certificate=certificate,
            assertion=extract_jwt(on_behalf_of) if on_behalf_of else None,
            requested_token_use="on_behalf_of",
        )

    if auth_type == AuthType.MANAGED:
        return ClientIdentity()

    return ClientIdentity(client_id=app)


def normalize_scopes(resource: str | Iterable[str]) -> tuple[str, ...]:
    scopes = [resource] if isinstance(resource, str) else list(resource)
    if not scopes:
        raise InvalidScopeError("A v2.0 token needs at least one scope")
    return tuple(verify_v2_scope(s) for s in scopes)


def build_identity(
    resource: str | Iterable[str],
    tenant: str,
    app: str | None,
    password: str | None = None,
    username: str | None = None,
    certificate: Any = None,
    auth_type: str | AuthType | None = None,
    aad_host: str = DEFAULT_AAD_HOST,
    version: int | str = 1,
    authorize_args: dict[str, Any] | None = None,
    token_args: dict[str, Any] | None = None,
    on_behalf_of: Any = None,
    has_listener: bool | None = None,
    quiet: bool = False,
) -> TokenIdentity:
    """Normalize caller arguments into a TokenIdentity.

    Args:
        resource: v1.0 resource string, or v2.0 scope(s)
        tenant: Tenant name, domain or GUID
        app: Client (app) ID
        password: Client secret, or the user's password with ``username``
        username: User name for the resource owner grant, or a login hint
        certificate: Certificate file, signer or CertificateAssertion
        auth_type: Explicit grant type; inferred when omitted
        aad_host: Identity provider host
        version: Protocol version, 1 or 2
        authorize_args: Extra query parameters for the authorize endpoint
        token_args: Extra body parameters for the token endpoint
        on_behalf_of: Token (or raw JWT) to exchange in the on-behalf-of flow
        has_listener: Whether the authorization code flow can run locally
        quiet: Suppress scope normalization warnings

    Raises:
        ValueError: If a v1.0 resource isn't a single string
        InvalidScopeError: If a v2.0 scope is invalid
    """
    version = normalize_version(version)
    selected = select_auth_type(
        password, username, certificate, auth_type, on_behalf_of, has_listener
    )

    scope: tuple[str, ...] | None = None
    v1_resource: str | None = None
    if version == 1:
        if not isinstance(resource, str):
            raise ValueError("Resource for a v1.0 token must be a single string")
        v1_resource = resource
    else:
        with warnings.catch_warnings():
            if quiet:
                warnings.simplefilter("ignore", ScopeNormalizedWarning)
            scope = normalize_scopes(resource)

    return TokenIdentity(
        version=version,
        aad_host=aad_host,
        tenant=normalize_tenant(tenant),
        auth_type=selected,
        client=request_credentials(
            app, password, username, certificate, selected, version, on_behalf_of
        ),
        resource=v1_resource,
        scope=scope,
        authorize_args=dict(authorize_args or {}),
        token_args=dict(token_args or {}),
    )
