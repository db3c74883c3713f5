"""Tests for the token entity lifecycle."""

import json
import subprocess
import time
from unittest.mock import MagicMock

import httpx
import pytest

from aadauth.cache import TokenCache
from aadauth.models.credentials import TokenCredentials
from aadauth.models.errors import ProviderError, RefreshFailedError, TokenStateError
from aadauth.models.settings import AuthSettings
from aadauth.services.flows import AzureCLIFlow
from aadauth.services.identity import build_identity
from aadauth.services.tokens import TokenEndpointClient, default_client
from aadauth.token import AzureToken, TokenState, is_azure_token
from helpers import json_response, make_jwt

APP = "11111111-1111-1111-1111-111111111111"
RESOURCE = "https://management.azure.com/"
TOKEN_URI = "https://login.microsoftonline.com/contoso.onmicrosoft.com/oauth2/token"


class TestTokenLifecycle:
    """Test acquisition, caching and refresh."""

    @pytest.fixture(autouse=True)
    def setup(self, tmp_path):
        # Arrange
        self.identity = build_identity(
            RESOURCE, "contoso", APP, password="secret", has_listener=False
        )
        self.cache = TokenCache(tmp_path)
        self.settings = AuthSettings(data_dir=tmp_path, msi_secret=None)
        self.client = TokenEndpointClient()
        self.client._http_client = MagicMock()
        self.flow = MagicMock()
        self.flow.renewed.return_value = self.flow
        self.flow.acquire.return_value = {
            "access_token": "access-1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "refresh-1",
        }

    def make_token(self, use_cache=True):
        return AzureToken(
            self.identity,
            flow=self.flow,
            use_cache=use_cache,
            cache=self.cache,
            client=self.client,
            settings=self.settings,
        )

    def save_cached(self, **credentials):
        fields = {"access_token": "cached", "refresh_token": "refresh-cached"}
        fields.update(credentials)
        self.cache.save(
            self.identity.fingerprint(),
            self.identity.snapshot(TokenCredentials(**fields)),
        )

    def test_new_token_is_acquired_and_cached(self):
        # Arrange
        before = time.time()

        # Act
        token = self.make_token()

        # Assert
        assert token.state == TokenState.VALID
        assert token.credentials.access_token == "access-1"
        assert before + 3590 <= token.credentials.expires_on <= time.time() + 3600
        assert token.validate()
        assert is_azure_token(token)
        self.flow.acquire.assert_called_once()

        cached = self.cache.load(token.hash())
        assert cached.credentials.access_token == "access-1"
        assert "client_secret" not in cached.client

    def test_cache_can_be_disabled(self):
        # Act
        token = self.make_token(use_cache=False)

        # Assert
        assert self.cache.load(token.hash()) is None
        assert token.cache() is False

    def test_valid_cached_token_is_reused(self):
        # Arrange
        self.save_cached(expires_on=time.time() + 600)

        # Act
        token = self.make_token()

        # Assert
        assert token.state == TokenState.CACHED_VALID
        assert token.credentials.access_token == "cached"
        self.flow.acquire.assert_not_called()

    def test_expired_cached_token_is_refreshed(self):
        # Arrange
        self.save_cached(expires_on=time.time() - 60)
        self.client._http_client.post.return_value = json_response(
            200, {"access_token": "access-2", "expires_in": 3600}
        )

        # Act
        token = self.make_token()

        # Assert
        assert token.state == TokenState.VALID
        assert token.credentials.access_token == "access-2"
        # the provider didn't rotate it, so the old refresh token is kept
        assert token.credentials.refresh_token == "refresh-cached"
        self.flow.acquire.assert_not_called()

        call_args = self.client._http_client.post.call_args
        assert call_args[0][0] == TOKEN_URI
        assert call_args[1]["data"] == {
            "grant_type": "refresh_token",
            "client_id": APP,
            "client_secret": "secret",
            "resource": RESOURCE,
            "refresh_token": "refresh-cached",
        }
        assert self.cache.load(token.hash()).credentials.access_token == "access-2"

    def test_refresh_without_refresh_token_reruns_flow(self):
        # Arrange
        self.flow.acquire.return_value = {"access_token": "access-1", "expires_in": 3600}
        token = self.make_token()
        self.flow.acquire.return_value = {"access_token": "access-2", "expires_in": 3600}

        # Act
        token.refresh()

        # Assert
        assert token.credentials.access_token == "access-2"
        self.flow.renewed.assert_called_once()
        assert self.flow.acquire.call_count == 2
        self.client._http_client.post.assert_not_called()

    def test_failed_refresh_deletes_cache_record(self):
        # Arrange
        token = self.make_token()
        self.client._http_client.post.return_value = json_response(
            400, {"error": "invalid_grant", "error_description": "Refresh token expired"}
        )

        # Act
        with pytest.raises(RefreshFailedError) as exc_info:
            token.refresh()

        # Assert
        assert isinstance(exc_info.value.__cause__, ProviderError)
        assert token.state == TokenState.INVALID
        assert self.cache.load(token.hash()) is None

    def test_invalid_token_can_be_refreshed_again(self):
        # Arrange
        token = self.make_token()
        self.client._http_client.post.side_effect = [
            json_response(400, {"error": "temporarily_unavailable"}),
            json_response(200, {"access_token": "access-3", "expires_in": 3600}),
        ]
        with pytest.raises(RefreshFailedError):
            token.refresh()

        # Act
        token.refresh()

        # Assert
        assert token.state == TokenState.VALID
        assert token.credentials.access_token == "access-3"

    def test_acquisition_failure_propagates(self):
        # Arrange
        self.flow.acquire.side_effect = ProviderError("Unable to obtain token (401)", 401)

        # Act & Assert
        with pytest.raises(ProviderError):
            self.make_token()
        assert self.cache.fingerprints() == []

    def test_illegal_transition_is_rejected(self):
        # Arrange
        token = self.make_token()

        # Act & Assert
        with pytest.raises(TokenStateError):
            token._transition(TokenState.CACHED_EXPIRED)

    def test_unexpected_refresh_error_invalidates_token(self):
        # Arrange
        self.flow.acquire.return_value = {"access_token": "access-1", "expires_in": 3600}
        token = self.make_token()
        self.flow.acquire.side_effect = KeyError("expiresOn")

        # Act
        with pytest.raises(RefreshFailedError) as exc_info:
            token.refresh()

        # Assert
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert token.state == TokenState.INVALID
        assert self.cache.load(token.hash()) is None

    def test_refresh_recovers_after_unexpected_error(self):
        # Arrange
        self.flow.acquire.return_value = {"access_token": "access-1", "expires_in": 3600}
        token = self.make_token()
        self.flow.acquire.side_effect = [
            FileNotFoundError("app.pem"),
            {"access_token": "access-2", "expires_in": 3600},
        ]
        with pytest.raises(RefreshFailedError):
            token.refresh()

        # Act
        token.refresh()

        # Assert
        assert token.state == TokenState.VALID
        assert token.credentials.access_token == "access-2"

    def test_unexpected_acquisition_error_propagates(self):
        # Arrange
        self.flow.acquire.side_effect = ValueError("bad output")

        # Act & Assert
        with pytest.raises(ValueError):
            self.make_token()
        assert self.cache.fingerprints() == []

    def test_shares_default_client(self):
        # Act
        first = AzureToken(
            self.identity, flow=self.flow, use_cache=False, cache=self.cache,
            settings=self.settings,
        )
        second = AzureToken(
            self.identity, flow=self.flow, use_cache=False, cache=self.cache,
            settings=self.settings,
        )

        # Assert
        assert first._client is second._client
        assert first._client is default_client()

    def test_hash_matches_identity_fingerprint(self):
        token = self.make_token()
        assert token.hash() == self.identity.fingerprint()


class TestTokenValidity:
    """Test expiry checks and request authentication."""

    @pytest.fixture
    def token(self, tmp_path):
        identity = build_identity(RESOURCE, "contoso", APP, password="secret", has_listener=False)
        flow = MagicMock()
        flow.renewed.return_value = flow
        flow.acquire.return_value = {"access_token": "access-1", "expires_in": 3600}
        return AzureToken(
            identity,
            flow=flow,
            use_cache=False,
            cache=TokenCache(tmp_path),
            client=MagicMock(),
            settings=AuthSettings(data_dir=tmp_path),
        )

    def test_missing_expiry_counts_as_valid(self, token):
        # Arrange
        token.credentials = TokenCredentials(access_token="a")

        # Act & Assert
        assert token.validate()

    def test_past_expiry_is_invalid(self, token):
        token.credentials = TokenCredentials(access_token="a", expires_on=time.time() - 1)
        assert not token.validate()

    def test_auth_header_is_set_on_requests(self, token):
        # Arrange
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers["Authorization"]
            return httpx.Response(200)

        # Act
        with httpx.Client(auth=token, transport=httpx.MockTransport(handler)) as client:
            client.get("https://management.azure.com/subscriptions")

        # Assert
        assert seen["authorization"] == "Bearer access-1"

    def test_expired_token_refreshes_before_request(self, token):
        # Arrange
        token.credentials = TokenCredentials(access_token="old", expires_on=time.time() - 1)
        token._flow.acquire.return_value = {"access_token": "new", "expires_in": 3600}
        seen = {}

        def handler(request):
            seen["authorization"] = request.headers["Authorization"]
            return httpx.Response(200)

        # Act
        with httpx.Client(auth=token, transport=httpx.MockTransport(handler)) as client:
            client.get("https://management.azure.com/subscriptions")

        # Assert
        assert seen["authorization"] == "Bearer new"

    def test_summary(self, token):
        # Act
        summary = str(token)

        # Assert
        assert summary.startswith(
            f"Azure Active Directory v1.0 token for resource {RESOURCE}\n"
        )
        assert "  Tenant: contoso.onmicrosoft.com\n" in summary
        assert f"  App ID: {APP}\n" in summary
        assert "  Authentication method: client_credentials\n" in summary
        assert "  Token valid from: " in summary
        assert f"  MD5 hash of inputs: {token.hash()}\n" in summary

    def test_request_without_credentials_is_rejected(self, token):
        # Arrange
        token.credentials = None
        token.refresh = MagicMock()
        request = httpx.Request("GET", "https://management.azure.com/subscriptions")

        # Act & Assert
        with pytest.raises(TokenStateError):
            next(token.auth_flow(request))


class TestCliToken:
    """Test tokens delegated to the Azure CLI."""

    def test_expiry_comes_from_jwt_when_cli_omits_it(self, tmp_path):
        # Arrange
        access_token = make_jwt({"exp": 1_900_000_000})
        runner = MagicMock(
            return_value=subprocess.CompletedProcess(
                args=[], returncode=0,
                stdout=json.dumps({"accessToken": access_token, "tokenType": "Bearer"}),
                stderr="",
            )
        )
        identity = build_identity(RESOURCE, "contoso", APP, auth_type="cli")

        # Act
        token = AzureToken(
            identity,
            flow=AzureCLIFlow(runner=runner),
            use_cache=False,
            cache=TokenCache(tmp_path),
            client=MagicMock(),
            settings=AuthSettings(data_dir=tmp_path),
        )

        # Assert
        assert token.state == TokenState.VALID
        assert token.credentials.expires_on == 1_900_000_000
