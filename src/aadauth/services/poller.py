"""Token endpoint polling for the device code flow."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from aadauth.models.errors import DeviceCodeExpiredError
from aadauth.services.tokens import TokenEndpointClient

logger = logging.getLogger(__name__)


def _is_pending(response: Any) -> bool:
    if response.status_code != 400:
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    return isinstance(body, dict) and body.get("error") == "authorization_pending"


def poll_for_token(
    client: TokenEndpointClient,
    uri: str,
    form_data: dict[str, Any],
    interval: float,
    expires_in: float,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """Poll the token endpoint until the user completes device login.

    Sleeps ``interval`` seconds before each request and makes at most
    ``expires_in // interval`` requests. An ``authorization_pending`` reply
    keeps the loop going; any other error status ends it.

    Args:
        client: Token endpoint client
        uri: Token endpoint URI
        form_data: Request body carrying the device code
        interval: Seconds between requests, as given by the provider
        expires_in: Validity of the device code in seconds
        sleep: Sleep function; interruptible with Ctrl-C

    Returns:
        The decoded credentials from the first successful response

    Raises:
        ProviderError: On an error response other than authorization_pending
        DeviceCodeExpiredError: If the attempts run out
    """
    interval = float(interval)
    attempts = int(float(expires_in) // interval) if interval > 0 else 0

    logger.info("Waiting for device code in browser... Press Ctrl+C to abort")
    for attempt in range(1, attempts + 1):
        sleep(interval)

        response = client.post_form(uri, form_data)
        if _is_pending(response):
            logger.debug(f"Authorization pending (attempt {attempt} of {attempts})")
            continue

        credentials = client.process_response(response)
        logger.info("Authentication complete")
        return credentials

    raise DeviceCodeExpiredError(
        f"Device code expired after {attempts} attempts; please restart the login"
    )
