"""Credential set and client identity models.

Contains the provider's token response and the client credentials that are
sent to the token endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"


class TokenCredentials(BaseModel):
    """Credential set returned by the identity provider.

    Providers disagree on field types (v1.0 returns numbers as strings) and
    on which expiry fields they send, so numbers are coerced and unknown
    fields are kept as extras.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    expires_on: float | None = None
    ext_expires_in: int | None = None
    not_before: float | None = None
    resource: str | None = None
    scope: str | None = None

    def can_refresh(self) -> bool:
        """Check if the credential set carries a refresh token."""
        return bool(self.refresh_token)

    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"


@dataclass(frozen=True)
class ClientIdentity:
    """Client credentials sent with every token endpoint request.

    Which fields are set depends on the grant type. ``certificate`` holds a
    certificate assertion source; it's signed into a fresh JWT for each request
    and never sent as-is.
    """

    client_id: str | None = None
    grant_type: str | None = None
    client_secret: str | None = None
    username: str | None = None
    password: str | None = None
    login_hint: str | None = None
    certificate: Any = None
    assertion: str | None = None
    requested_token_use: str | None = None

    def to_form_data(self, client_assertion: str | None = None) -> dict[str, str]:
        """Convert to form data for an application/x-www-form-urlencoded request.

        Args:
            client_assertion: Signed JWT to send in place of the certificate

        Returns:
            Dictionary suitable for the httpx data parameter
        """
        data: dict[str, str] = {}
        if self.client_id:
            data["client_id"] = self.client_id
        if self.grant_type:
            data["grant_type"] = self.grant_type
        if self.client_secret:
            data["client_secret"] = self.client_secret
        if client_assertion:
            data["client_assertion"] = client_assertion
            data["client_assertion_type"] = CLIENT_ASSERTION_TYPE
        if self.username:
            data["username"] = self.username
        if self.password:
            data["password"] = self.password
        if self.requested_token_use:
            data["requested_token_use"] = self.requested_token_use
        if self.assertion:
            data["assertion"] = self.assertion

        return data

    def fingerprint_fields(self) -> dict[str, Any]:
        """Return the identity as plain values for cache fingerprinting."""
        fields = {
            "client_id": self.client_id,
            "grant_type": self.grant_type,
            "client_secret": self.client_secret,
            "username": self.username,
            "password": self.password,
            "login_hint": self.login_hint,
            "assertion": self.assertion,
            "requested_token_use": self.requested_token_use,
        }
        if self.certificate is not None:
            fields["certificate"] = self.certificate.fingerprint_fields()
        return fields

    def public_fields(self) -> dict[str, Any]:
        """Return the identity without secrets, for cache snapshots."""
        fields = {
            "client_id": self.client_id,
            "grant_type": self.grant_type,
            "username": self.username,
            "login_hint": self.login_hint,
        }
        if self.certificate is not None:
            fields["certificate"] = self.certificate.fingerprint_fields()["certificate"]
        return fields


class DeviceCodeSession(BaseModel):
    """Device code session returned by the devicecode endpoint.

    The v1.0 endpoint calls the verification URI ``verification_url``.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user_code: str
    device_code: str
    verification_uri: str | None = None
    verification_url: str | None = None
    expires_in: int = 900
    interval: int = 5
    message: str | None = None

    def instructions(self) -> str:
        """Return the login instructions to show the user."""
        if self.message:
            return self.message
        uri = self.verification_uri or self.verification_url
        return f"To sign in, open {uri} and enter the code {self.user_code}"


class TokenSnapshot(BaseModel):
    """Detached copy of a token, as persisted in the cache.

    Holds no secrets and no certificate objects, only the identity fields
    needed to describe the token and its credential set.
    """

    version: int
    aad_host: str
    tenant: str
    auth_type: str
    client: dict[str, Any]
    resource: str | None
    scope: list[str] | None
    credentials: TokenCredentials
    authorize_args: dict[str, Any] = Field(default_factory=dict)
    token_args: dict[str, Any] = Field(default_factory=dict)
