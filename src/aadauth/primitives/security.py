"""Random nonces for the authorization code flow."""

from __future__ import annotations

import secrets
import string


def generate_state() -> str:
    """Generate a cryptographically secure state parameter.

    The state parameter lets the authorize request be matched to its
    redirect, guarding against forged redirects.

    Returns:
        Random state string (32 characters)
    """
    alphabet = string.ascii_letters + string.digits + "-._~"
    return "".join(secrets.choice(alphabet) for _ in range(32))


def state_matches(expected: str, actual: str | None) -> bool:
    """Compare a redirect's state parameter with the one that was sent."""
    if actual is None:
        return False
    return secrets.compare_digest(expected, actual)
