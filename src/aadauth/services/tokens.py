"""Token endpoint interactions.

Sends form-encoded requests to the token and devicecode endpoints and
metadata requests to the managed identity endpoint, and turns provider
responses into credential dictionaries or errors.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

import httpx

from aadauth.models.errors import ProviderError, TokenEndpointError

logger = logging.getLogger(__name__)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class TokenEndpointClient:
    """Blocking HTTP client for the identity provider's endpoints.

    Uses application/x-www-form-urlencoded encoding for every POST, as
    required by OAuth 2.0. A failed call is surfaced immediately; nothing is
    retried here.
    """

    def __init__(self, timeout: float = 30.0, http_client: httpx.Client | None = None):
        """Initialize the token endpoint client.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional preconfigured httpx client
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.Client(timeout=timeout)

    def post_form(self, uri: str, form_data: dict[str, Any]) -> httpx.Response:
        """POST form data to an endpoint and return the raw response.

        Raises:
            TokenEndpointError: If the request fails at the transport level
        """
        logger.debug(
            f"POST {uri}: grant_type={form_data.get('grant_type', 'none')}, "
            f"client_id={form_data.get('client_id', 'none')}"
        )

        try:
            return self._http_client.post(uri, data=form_data, headers=FORM_HEADERS)
        except httpx.HTTPError as e:
            raise TokenEndpointError(f"HTTP error contacting {uri}: {e}") from e

    def get(
        self,
        uri: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """GET an endpoint with query parameters and return the raw response.

        Raises:
            TokenEndpointError: If the request fails at the transport level
        """
        logger.debug(f"GET {uri}")

        try:
            return self._http_client.get(uri, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise TokenEndpointError(f"HTTP error contacting {uri}: {e}") from e

    def request_token(self, uri: str, form_data: dict[str, Any]) -> dict[str, Any]:
        """POST to a token endpoint and return the decoded credentials."""
        return self.process_response(self.post_form(uri, form_data))

    def process_response(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a provider response, raising on error statuses.

        Handles both successful responses and OAuth error responses
        (RFC 6749 Section 5.2).

        Args:
            response: HTTP response from the identity provider

        Returns:
            The decoded JSON body

        Raises:
            ProviderError: If the status is 300 or above
            TokenEndpointError: If a successful response can't be decoded
        """
        if response.status_code >= 300:
            raise provider_error(response)

        try:
            body = response.json()
        except ValueError as e:
            raise TokenEndpointError(f"Invalid token response format: {e}") from e

        if not isinstance(body, dict):
            raise TokenEndpointError("Invalid token response format: expected a JSON object")
        return body

    def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        self._http_client.close()

    def __enter__(self) -> TokenEndpointClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


@lru_cache
def default_client() -> TokenEndpointClient:
    """Return the process-wide client shared by tokens created without one."""
    return TokenEndpointClient()


def provider_error(response: httpx.Response) -> ProviderError:
    """Build a ProviderError from an error response.

    The message carries the provider's ``error_description`` when the body
    is a JSON object, or the body itself when it's plain text.
    """
    error_code: str | None = None
    description: str | None = None

    try:
        body = response.json()
    except ValueError:
        body = response.text

    if isinstance(body, dict):
        error_code = body.get("error")
        description = body.get("error_description")
    elif isinstance(body, str) and body:
        description = body

    message = f"Unable to obtain token ({response.status_code})"
    if description:
        message += f". Message:\n{description.rstrip('.')}"
    elif error_code:
        message += f": {error_code}"

    logger.warning(
        f"Token request failed with {response.status_code}: "
        f"{error_code or 'unknown_error'}"
    )
    return ProviderError(
        message,
        status_code=response.status_code,
        error=error_code,
        error_description=description,
    )
