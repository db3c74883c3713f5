"""Public entry points for obtaining and managing tokens."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from aadauth.cache import TokenCache
from aadauth.models.credentials import ClientIdentity, DeviceCodeSession, TokenSnapshot
from aadauth.models.flow import DEFAULT_REDIRECT_URI, AuthType
from aadauth.models.identity import TokenIdentity
from aadauth.models.settings import DEFAULT_AAD_HOST, AuthSettings, get_settings
from aadauth.primitives.endpoints import AADEndpoint
from aadauth.primitives.fingerprint import is_fingerprint
from aadauth.services.azure_cli import az_login
from aadauth.services.flows import (
    build_authorization_request,
    create_flow,
    request_device_code as request_device_session,
)
from aadauth.services.identity import build_identity
from aadauth.services.tokens import TokenEndpointClient
from aadauth.token import AzureToken, is_azure_token

logger = logging.getLogger(__name__)

__all__ = [
    "az_login",
    "build_authorization_uri",
    "clean_token_directory",
    "delete_azure_token",
    "get_azure_token",
    "get_managed_token",
    "is_azure_token",
    "list_azure_tokens",
    "request_device_code",
    "token_hash",
]


def _cache_for(cache: TokenCache | None, settings: AuthSettings | None) -> TokenCache:
    if cache is not None:
        return cache
    return TokenCache((settings or get_settings()).data_dir)


def get_azure_token(
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
    use_cache: bool = True,
    on_behalf_of: Any = None,
    auth_code: str | None = None,
    device_creds: DeviceCodeSession | dict[str, Any] | None = None,
    notify: Callable[[str], object] = print,
    cache: TokenCache | None = None,
    client: TokenEndpointClient | None = None,
    settings: AuthSettings | None = None,
) -> AzureToken:
    """Obtain an Azure Active Directory token.

    The grant type is inferred from the supplied credentials unless
    ``auth_type`` is given:

    - no password, username or certificate: authorization_code when a
      browser is available, device_code otherwise
    - password and username: resource_owner
    - password or certificate alone: client_credentials, or on_behalf_of
      when ``on_behalf_of`` holds a token to exchange

    Args:
        resource: For v1.0, the resource URI. For v2.0, one or more scopes
        tenant: Tenant name, domain or GUID
        app: Client (app) ID
        password: Client secret, or the user's password with ``username``
        username: User name for resource_owner, or a login hint
        certificate: PEM/PFX file, CertificateSigner, or cert_assertion()
        auth_type: Explicit grant type
        aad_host: Identity provider host
        version: Protocol version, 1 or 2
        authorize_args: Extra authorize endpoint parameters
        token_args: Extra token endpoint parameters
        use_cache: Whether to load from and save to the token cache
        on_behalf_of: Token (or raw JWT) to exchange in on_behalf_of
        auth_code: Authorization code captured by the caller
        device_creds: Device code session already shown to the user
        notify: Where device code instructions are sent
        cache: Token cache to use instead of the configured one
        client: Token endpoint client
        settings: Environment settings

    Returns:
        An AzureToken holding valid credentials

    Raises:
        AuthError: If the token can't be obtained
    """
    # a supplied code or device session settles the interactive flow
    has_listener = None
    if auth_code is not None:
        has_listener = True
    elif device_creds is not None:
        has_listener = False

    identity = build_identity(
        resource,
        tenant,
        app,
        password=password,
        username=username,
        certificate=certificate,
        auth_type=auth_type,
        aad_host=aad_host,
        version=version,
        authorize_args=authorize_args,
        token_args=token_args,
        on_behalf_of=on_behalf_of,
        has_listener=has_listener,
    )

    if isinstance(device_creds, dict):
        device_creds = DeviceCodeSession.model_validate(device_creds)

    flow = create_flow(
        identity.auth_type,
        auth_code=auth_code,
        device_session=device_creds,
        notify=notify,
    )
    settings = settings or get_settings()
    return AzureToken(
        identity,
        flow=flow,
        use_cache=use_cache,
        cache=_cache_for(cache, settings),
        client=client,
        settings=settings,
    )


def managed_identity(
    resource: str,
    token_args: dict[str, Any] | None = None,
    settings: AuthSettings | None = None,
) -> TokenIdentity:
    settings = settings or get_settings()
    return TokenIdentity(
        version=1,
        aad_host=settings.msi_endpoint,
        tenant="managed",
        auth_type=AuthType.MANAGED,
        client=ClientIdentity(),
        resource=resource,
        token_args=dict(token_args or {}),
    )


def get_managed_token(
    resource: str,
    client_id: str | None = None,
    object_id: str | None = None,
    mi_res_id: str | None = None,
    token_args: dict[str, Any] | None = None,
    use_cache: bool = True,
    cache: TokenCache | None = None,
    client: TokenEndpointClient | None = None,
    settings: AuthSettings | None = None,
) -> AzureToken:
    """Obtain a token from the host's managed identity.

    Args:
        resource: Resource URI to request a token for
        client_id: Client ID of a user-assigned identity
        object_id: Object ID of a user-assigned identity
        mi_res_id: Azure resource ID of a user-assigned identity
        token_args: Extra query parameters for the metadata endpoint
        use_cache: Whether to load from and save to the token cache
        cache: Token cache to use instead of the configured one
        client: Token endpoint client
        settings: Environment settings
    """
    args = dict(token_args or {})
    user_assigned = {"client_id": client_id, "object_id": object_id, "mi_res_id": mi_res_id}
    args.update({k: v for k, v in user_assigned.items() if v is not None})

    settings = settings or get_settings()
    identity = managed_identity(resource, args, settings)
    logger.info(f"Requesting managed identity token for {resource}")
    return AzureToken(
        identity,
        use_cache=use_cache,
        cache=_cache_for(cache, settings),
        client=client,
        settings=settings,
    )


def token_hash(
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
) -> str:
    """Compute the fingerprint a token with these inputs would have.

    Takes the same arguments as ``get_azure_token`` and never contacts the
    identity provider.
    """
    identity = build_identity(
        resource,
        tenant,
        app,
        password=password,
        username=username,
        certificate=certificate,
        auth_type=auth_type,
        aad_host=aad_host,
        version=version,
        authorize_args=authorize_args,
        token_args=token_args,
        on_behalf_of=on_behalf_of,
        quiet=True,
    )
    return identity.fingerprint()


def delete_azure_token(
    *args: Any,
    hash: str | None = None,
    cache: TokenCache | None = None,
    **kwargs: Any,
) -> bool:
    """Delete a cached token.

    Identify the token either by ``hash`` or by the arguments that were
    used to obtain it, as accepted by ``token_hash``.

    Returns:
        True if a cache record was removed
    """
    if hash is None:
        hash = token_hash(*args, **kwargs)
    elif not is_fingerprint(hash):
        raise ValueError(f"Not a token hash: {hash}")
    return _cache_for(cache, None).delete(hash)


def list_azure_tokens(cache: TokenCache | None = None) -> dict[str, TokenSnapshot]:
    """Return every cached token, keyed by hash."""
    return _cache_for(cache, None).list()


def clean_token_directory(cache: TokenCache | None = None) -> int:
    """Delete every cached token. Returns the number deleted."""
    return _cache_for(cache, None).clean()


def build_authorization_uri(
    resource: str | Iterable[str],
    tenant: str,
    app: str,
    username: str | None = None,
    aad_host: str = DEFAULT_AAD_HOST,
    version: int | str = 1,
    redirect_uri: str = DEFAULT_REDIRECT_URI,
    **authorize_args: Any,
) -> str:
    """Build the authorize URI for an app that captures the redirect itself.

    Pass the code from the redirect to ``get_azure_token`` as ``auth_code``.
    """
    identity = build_identity(
        resource,
        tenant,
        app,
        username=username,
        auth_type=AuthType.AUTHORIZATION_CODE,
        aad_host=aad_host,
        version=version,
        authorize_args=authorize_args,
    )
    query = build_authorization_request(identity, redirect_uri).to_query()
    endpoint = AADEndpoint.build(identity.aad_host, identity.tenant, identity.version, "authorize")
    return endpoint.with_query(query)


def request_device_code(
    resource: str | Iterable[str],
    tenant: str,
    app: str,
    aad_host: str = DEFAULT_AAD_HOST,
    version: int | str = 1,
    client: TokenEndpointClient | None = None,
) -> DeviceCodeSession:
    """Start a device code session for an app that shows the code itself.

    Pass the session to ``get_azure_token`` as ``device_creds``.
    """
    identity = build_identity(
        resource,
        tenant,
        app,
        auth_type=AuthType.DEVICE_CODE,
        aad_host=aad_host,
        version=version,
    )
    if client is not None:
        return request_device_session(client, identity)
    with TokenEndpointClient() as owned:
        return request_device_session(owned, identity)
