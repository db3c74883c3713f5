"""Authorization flow models.

Contains the grant types and the authorization request and redirect
models used by the interactive flow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_REDIRECT_URI = "http://localhost:1410/"


class AuthType(str, Enum):
    """Grant types the engine can use to obtain a token."""

    AUTHORIZATION_CODE = "authorization_code"
    DEVICE_CODE = "device_code"
    CLIENT_CREDENTIALS = "client_credentials"
    RESOURCE_OWNER = "resource_owner"
    ON_BEHALF_OF = "on_behalf_of"
    MANAGED = "managed"
    CLI = "cli"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorize endpoint request parameters."""

    client_id: str | None
    state: str
    redirect_uri: str = DEFAULT_REDIRECT_URI
    login_hint: str | None = None
    resource: str | None = None
    scope: str | None = None
    extra_params: dict[str, Any] = field(default_factory=dict)

    def to_query(self) -> dict[str, Any]:
        """Build the query parameters, letting extra params override defaults."""
        params: dict[str, Any] = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "login_hint": self.login_hint,
            "state": self.state,
        }

        if self.resource:
            params["resource"] = self.resource
        if self.scope:
            params["scope"] = self.scope

        params.update(self.extra_params)
        return {k: v for k, v in params.items() if v is not None}


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None
