"""Grant type implementations.

Each flow knows how to obtain a raw credential dictionary for a token
identity. Flows hold only their per-acquisition inputs (a code captured by
the caller, a device code session); everything that identifies the token
lives on the TokenIdentity.
"""

from __future__ import annotations

import logging
import subprocess
import time
import webbrowser
from dataclasses import dataclass, replace
from typing import Any, Callable, ClassVar, Protocol

from aadauth.models.credentials import DeviceCodeSession
from aadauth.models.errors import (
    MissingAssertionTokenError,
    MissingCredentialsError,
    MissingListenerCapabilityError,
    TokenEndpointError,
)
from aadauth.models.flow import DEFAULT_REDIRECT_URI, AuthorizationRequest, AuthType
from aadauth.models.identity import TokenIdentity
from aadauth.models.settings import AuthSettings
from aadauth.primitives.security import generate_state
from aadauth.services.assertion import build_assertion
from aadauth.services.azure_cli import (
    build_az_token_cmd,
    execute_az_token_cmd,
    process_cli_response,
)
from aadauth.services.listener import RedirectListener
from aadauth.services.poller import poll_for_token
from aadauth.services.selector import listener_available
from aadauth.services.tokens import TokenEndpointClient

logger = logging.getLogger(__name__)


@dataclass
class FlowContext:
    """What a flow needs to talk to the identity provider."""

    identity: TokenIdentity
    client: TokenEndpointClient
    settings: AuthSettings

    def client_assertion(self) -> str | None:
        """Sign a fresh client assertion, if the client uses a certificate."""
        identity = self.identity
        return build_assertion(
            identity.client.certificate,
            identity.tenant,
            identity.client.client_id,
            identity.aad_host,
            identity.version,
        )

    def access_body(self) -> dict[str, Any]:
        """Build the common token request body.

        Client credentials first, then the resource or scope, then any
        caller-supplied token arguments.
        """
        body: dict[str, Any] = self.identity.client.to_form_data(self.client_assertion())
        body.update(self.identity.resource_params())
        body.update(self.identity.token_args)
        return body

    def token_uri(self) -> str:
        return self.identity.endpoint("token")


class TokenFlow(Protocol):
    auth_type: ClassVar[AuthType]

    def acquire(self, context: FlowContext) -> dict[str, Any]:
        """Obtain a raw credential dictionary from the provider."""
        ...

    def renewed(self) -> TokenFlow:
        """Return the flow to use when a token has to be obtained afresh."""
        ...


def build_authorization_request(
    identity: TokenIdentity, redirect_uri: str = DEFAULT_REDIRECT_URI
) -> AuthorizationRequest:
    return AuthorizationRequest(
        client_id=identity.client.client_id,
        state=generate_state(),
        redirect_uri=redirect_uri,
        login_hint=identity.client.login_hint,
        resource=identity.resource,
        scope=identity.scope_string,
        extra_params=dict(identity.authorize_args),
    )


@dataclass
class AuthorizationCodeFlow:
    """Interactive login through the authorize endpoint.

    With ``auth_code`` set, the code is exchanged directly; this is how an
    embedding web app that captured the redirect itself uses the flow.
    Otherwise the authorize page is opened in a browser and the redirect is
    caught by a local listener.
    """

    auth_type: ClassVar[AuthType] = AuthType.AUTHORIZATION_CODE

    auth_code: str | None = None
    has_listener: bool | None = None
    browse: Callable[[str], object] = webbrowser.open
    timeout: float | None = 300.0

    def acquire(self, context: FlowContext) -> dict[str, Any]:
        identity = context.identity
        query = build_authorization_request(identity).to_query()
        redirect_uri = query.get("redirect_uri", DEFAULT_REDIRECT_URI)

        code = self.auth_code
        if code is None:
            has_listener = self.has_listener
            if has_listener is None:
                has_listener = listener_available()
            if not has_listener:
                raise MissingListenerCapabilityError(
                    "The authorization code flow needs a browser and a local "
                    "listener; pass an authorization code or use the device code flow"
                )
            listener = RedirectListener(redirect_uri, self.timeout, self.browse)
            code = listener.wait_for_code(
                identity.endpoint("authorize", query), query.get("state")
            )

        body = context.access_body()
        body["code"] = code
        body["redirect_uri"] = redirect_uri

        credentials = context.client.request_token(context.token_uri(), body)
        if not credentials.get("refresh_token"):
            hint = " Add offline_access to the scopes to get one." if identity.version == 2 else ""
            logger.warning(
                f"Server did not provide a refresh token: you will have to reauthenticate.{hint}"
            )
        return credentials

    def renewed(self) -> AuthorizationCodeFlow:
        # a captured code is single-use
        return replace(self, auth_code=None)


def request_device_code(client: TokenEndpointClient, identity: TokenIdentity) -> DeviceCodeSession:
    """Start a device code session at the devicecode endpoint."""
    body: dict[str, Any] = {"client_id": identity.client.client_id}
    body.update(identity.resource_params())
    response = client.request_token(identity.endpoint("devicecode"), body)
    try:
        return DeviceCodeSession.model_validate(response)
    except ValueError as e:
        raise TokenEndpointError(f"Invalid device code response: {e}") from e


@dataclass
class DeviceCodeFlow:
    """Login on a second device, polling until the user completes it.

    With ``device_session`` set, polling starts on a session the caller has
    already shown to the user.
    """

    auth_type: ClassVar[AuthType] = AuthType.DEVICE_CODE

    device_session: DeviceCodeSession | None = None
    notify: Callable[[str], object] = print
    sleep: Callable[[float], None] = time.sleep

    def acquire(self, context: FlowContext) -> dict[str, Any]:
        session = self.device_session
        if session is None:
            session = request_device_code(context.client, context.identity)
            self.notify(session.instructions())

        body = context.access_body()
        # v1.0 takes the device code as "code"
        field_name = "code" if context.identity.version == 1 else "device_code"
        body[field_name] = session.device_code

        return poll_for_token(
            context.client,
            context.token_uri(),
            body,
            session.interval,
            session.expires_in,
            self.sleep,
        )

    def renewed(self) -> DeviceCodeFlow:
        return replace(self, device_session=None)


@dataclass
class ClientCredentialsFlow:
    auth_type: ClassVar[AuthType] = AuthType.CLIENT_CREDENTIALS

    def acquire(self, context: FlowContext) -> dict[str, Any]:
        return context.client.request_token(context.token_uri(), context.access_body())

    def renewed(self) -> ClientCredentialsFlow:
        return self


@dataclass
class ResourceOwnerFlow:
    auth_type: ClassVar[AuthType] = AuthType.RESOURCE_OWNER

    def acquire(self, context: FlowContext) -> dict[str, Any]:
        client = context.identity.client
        if not client.username or not client.password:
            raise MissingCredentialsError(
                "The resource owner flow needs both a username and a password"
            )
        return context.client.request_token(context.token_uri(), context.access_body())

    def renewed(self) -> ResourceOwnerFlow:
        return self


@dataclass
class OnBehalfOfFlow:
    auth_type: ClassVar[AuthType] = AuthType.ON_BEHALF_OF

    def acquire(self, context: FlowContext) -> dict[str, Any]:
        if not context.identity.client.assertion:
            raise MissingAssertionTokenError(
                "The on-behalf-of flow needs a token to exchange"
            )
        return context.client.request_token(context.token_uri(), context.access_body())

    def renewed(self) -> OnBehalfOfFlow:
        return self


@dataclass
class ManagedIdentityFlow:
    """Token from the host's managed identity metadata endpoint.

    A user-assigned identity is picked with ``client_id``, ``object_id`` or
    ``mi_res_id`` in the token arguments.
    """

    auth_type: ClassVar[AuthType] = AuthType.MANAGED

    def acquire(self, context: FlowContext) -> dict[str, Any]:
        identity = context.identity
        settings = context.settings

        query: dict[str, Any] = dict(identity.token_args)
        query["api-version"] = settings.imds_api_version
        query["resource"] = identity.resource

        if settings.msi_secret:
            headers = {"secret": settings.msi_secret}
        else:
            headers = {"Metadata": "true"}

        response = context.client.get(context.token_uri(), params=query, headers=headers)
        return context.client.process_response(response)

    def renewed(self) -> ManagedIdentityFlow:
        return self


@dataclass
class AzureCLIFlow:
    """Token delegated to a logged-in Azure CLI."""

    auth_type: ClassVar[AuthType] = AuthType.CLI

    command: str = "az"
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run

    def acquire(self, context: FlowContext) -> dict[str, Any]:
        identity = context.identity
        args = build_az_token_cmd(
            self.command, identity.resource, identity.scope, identity.tenant
        )
        output = execute_az_token_cmd(args, self.runner)
        return process_cli_response(output, identity.resource)

    def renewed(self) -> AzureCLIFlow:
        return self


FLOW_TYPES: dict[AuthType, type] = {
    flow.auth_type: flow
    for flow in (
        AuthorizationCodeFlow,
        DeviceCodeFlow,
        ClientCredentialsFlow,
        ResourceOwnerFlow,
        OnBehalfOfFlow,
        ManagedIdentityFlow,
        AzureCLIFlow,
    )
}


def create_flow(
    auth_type: AuthType,
    auth_code: str | None = None,
    device_session: DeviceCodeSession | None = None,
    has_listener: bool | None = None,
    notify: Callable[[str], object] = print,
) -> TokenFlow:
    """Create the flow for a grant type with its per-acquisition inputs."""
    if auth_type == AuthType.AUTHORIZATION_CODE:
        return AuthorizationCodeFlow(auth_code=auth_code, has_listener=has_listener)
    if auth_type == AuthType.DEVICE_CODE:
        return DeviceCodeFlow(device_session=device_session, notify=notify)
    return FLOW_TYPES[AuthType(auth_type)]()
