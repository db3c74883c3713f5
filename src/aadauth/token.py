"""Token entity and its lifecycle.

An AzureToken pairs a TokenIdentity with the credential set obtained for
it. It loads itself from the cache when it can, refreshes when expired, and
persists every new credential set.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Generator

import httpx
from pydantic import ValidationError

from aadauth.cache import TokenCache
from aadauth.models.credentials import CLIENT_ASSERTION_TYPE, TokenCredentials
from aadauth.models.errors import (
    RefreshFailedError,
    TokenEndpointError,
    TokenStateError,
)
from aadauth.models.identity import TokenIdentity
from aadauth.models.settings import AuthSettings, get_settings
from aadauth.primitives.expiry import resolve_expiry
from aadauth.services.flows import FlowContext, TokenFlow, create_flow
from aadauth.services.tokens import TokenEndpointClient, default_client

logger = logging.getLogger(__name__)


class TokenState(str, Enum):
    UNREQUESTED = "unrequested"
    CACHED_VALID = "cached_valid"
    CACHED_EXPIRED = "cached_expired"
    REFRESHING = "refreshing"
    VALID = "valid"
    INVALID = "invalid"


TRANSITIONS: dict[TokenState, frozenset[TokenState]] = {
    TokenState.UNREQUESTED: frozenset(
        {TokenState.CACHED_VALID, TokenState.VALID, TokenState.INVALID}
    ),
    TokenState.CACHED_VALID: frozenset({TokenState.CACHED_EXPIRED, TokenState.REFRESHING}),
    TokenState.CACHED_EXPIRED: frozenset({TokenState.REFRESHING}),
    TokenState.REFRESHING: frozenset({TokenState.VALID, TokenState.INVALID}),
    TokenState.VALID: frozenset({TokenState.REFRESHING}),
    TokenState.INVALID: frozenset({TokenState.REFRESHING}),
}


class AzureToken(httpx.Auth):
    """An OAuth token for Azure Active Directory.

    Construct through ``get_azure_token``. The token can be passed as the
    ``auth`` of an httpx client; it refreshes itself before a request when
    it has expired.

    Usage:
        token = get_azure_token("https://management.azure.com/", "contoso", app_id)
        with httpx.Client(auth=token) as client:
            client.get("https://management.azure.com/subscriptions?api-version=2020-01-01")
    """

    def __init__(
        self,
        identity: TokenIdentity,
        flow: TokenFlow | None = None,
        use_cache: bool = True,
        cache: TokenCache | None = None,
        client: TokenEndpointClient | None = None,
        settings: AuthSettings | None = None,
    ):
        """Load or acquire a token for an identity.

        Args:
            identity: Inputs that define the token
            flow: Grant type implementation; defaults to the identity's
            use_cache: Whether to load from and save to the cache
            cache: Token cache; defaults to the configured data directory
            client: Token endpoint client
            settings: Environment settings

        Raises:
            AuthError: If the token can't be obtained
        """
        self.identity = identity
        self.settings = settings or get_settings()
        self.use_cache = use_cache
        self.credentials: TokenCredentials | None = None
        self.state = TokenState.UNREQUESTED

        self._flow = flow or create_flow(identity.auth_type)
        self._cache = cache or TokenCache(self.settings.data_dir)
        self._client = client or default_client()
        self._context = FlowContext(identity, self._client, self.settings)

        if use_cache and self._load_cached():
            if not self.validate():
                logger.info("Cached token has expired, refreshing")
                self._transition(TokenState.CACHED_EXPIRED)
                self.refresh()
            return

        request_time = time.time()
        try:
            self._set_credentials(self._flow.acquire(self._context), request_time)
        except Exception:
            self._transition(TokenState.INVALID)
            raise
        self._transition(TokenState.VALID)
        self.cache()

    @property
    def version(self) -> int:
        return self.identity.version

    @property
    def auth_type(self) -> str:
        return self.identity.auth_type.value

    def hash(self) -> str:
        """Return the fingerprint that names this token in the cache."""
        return self.identity.fingerprint()

    def validate(self) -> bool:
        """Check whether the token has not yet expired.

        A token with no known expiry is assumed valid. A token may still be
        rejected for other reasons, such as being revoked.
        """
        if self.credentials is None:
            return False
        if self.credentials.expires_on is None:
            return True
        return time.time() < self.credentials.expires_on

    def can_refresh(self) -> bool:
        return True

    def refresh(self) -> AzureToken:
        """Refresh the token.

        Uses the refresh token when there is one; otherwise the token is
        requested again through its flow.

        Raises:
            RefreshFailedError: If no new credentials could be obtained. The
                cache record is deleted first.
        """
        self._transition(TokenState.REFRESHING)
        request_time = time.time()
        previous = self.credentials

        try:
            if previous is not None and previous.can_refresh():
                logger.info("Refreshing token with refresh token")
                raw = self._refresh_with_token(previous.refresh_token)
            else:
                logger.info("No refresh token, requesting a new token")
                self._flow = self._flow.renewed()
                raw = self._flow.acquire(self._context)
            self._set_credentials(raw, request_time, previous)
        except Exception as e:
            self._cache.delete(self.hash())
            self._transition(TokenState.INVALID)
            raise RefreshFailedError(f"Unable to refresh token: {e}") from e

        self._transition(TokenState.VALID)
        self.cache()
        return self

    def cache(self) -> bool:
        """Store the token on disk, if caching is enabled."""
        if not self.use_cache or self.credentials is None:
            return False
        return self._cache.save(self.hash(), self.identity.snapshot(self.credentials))

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if not self.validate():
            self.refresh()
        if self.credentials is None:
            raise TokenStateError("Token has no credentials to authenticate with")
        request.headers["Authorization"] = self.credentials.authorization_header()
        yield request

    def _load_cached(self) -> bool:
        snapshot = self._cache.load(self.hash())
        if snapshot is None:
            return False

        logger.info("Loading cached token")
        self.credentials = snapshot.credentials
        self._transition(TokenState.CACHED_VALID)
        return True

    def _refresh_with_token(self, refresh_token: str | None) -> dict[str, Any]:
        client = self.identity.client
        body: dict[str, Any] = {"grant_type": "refresh_token", "client_id": client.client_id}
        if client.client_secret:
            body["client_secret"] = client.client_secret

        assertion = self._context.client_assertion()
        if assertion:
            body["client_assertion"] = assertion
            body["client_assertion_type"] = CLIENT_ASSERTION_TYPE

        body.update(self.identity.resource_params())
        body["refresh_token"] = refresh_token
        body = {k: v for k, v in body.items() if v is not None}
        return self._client.request_token(self._context.token_uri(), body)

    def _set_credentials(
        self,
        raw: dict[str, Any],
        request_time: float,
        previous: TokenCredentials | None = None,
    ) -> None:
        raw = dict(raw)
        # providers may not rotate the refresh token
        if not raw.get("refresh_token") and previous is not None and previous.refresh_token:
            raw["refresh_token"] = previous.refresh_token
        raw["expires_on"] = resolve_expiry(raw, request_time)

        try:
            self.credentials = TokenCredentials.model_validate(raw)
        except ValidationError as e:
            raise TokenEndpointError(f"Invalid token response: {e}") from e

    def _transition(self, new_state: TokenState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise TokenStateError(
                f"Invalid token state transition: {self.state.value} -> {new_state.value}"
            )
        logger.debug(f"Token {self.hash()}: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def __str__(self) -> str:
        identity = self.identity
        if identity.version == 1:
            target = f"v1.0 token for resource {identity.resource}"
        else:
            target = f"v2.0 token for scopes {identity.scope_string}"

        validity = "until: unknown"
        credentials = self.credentials
        if credentials is not None and credentials.expires_on is not None:
            expiry = datetime.fromtimestamp(credentials.expires_on).astimezone()
            validity = f"to: {expiry:%Y-%m-%d %H:%M:%S %Z}"
            if credentials.expires_in is not None:
                obtained = datetime.fromtimestamp(
                    credentials.expires_on - credentials.expires_in
                ).astimezone()
                validity = f"from: {obtained:%Y-%m-%d %H:%M:%S %Z}  {validity}"

        return (
            f"Azure Active Directory {target}\n"
            f"  Tenant: {identity.tenant}\n"
            f"  App ID: {identity.client.client_id}\n"
            f"  Authentication method: {identity.auth_type.value}\n"
            f"  Token valid {validity}\n"
            f"  MD5 hash of inputs: {self.hash()}\n"
        )

    def __repr__(self) -> str:
        return f"<AzureToken {self.auth_type} {self.hash()} state={self.state.value}>"


def is_azure_token(obj: Any) -> bool:
    return isinstance(obj, AzureToken)
