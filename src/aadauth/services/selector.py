"""Selection of the grant type from the supplied credentials."""

from __future__ import annotations

import logging
import webbrowser
from typing import Any

from aadauth.models.errors import AmbiguousAuthTypeError, InvalidAuthTypeError
from aadauth.models.flow import AuthType

logger = logging.getLogger(__name__)


def listener_available() -> bool:
    """Check whether the authorization code flow can run interactively.

    The flow needs a browser to open the authorize page in; the redirect is
    caught by a local HTTP server, which is always available.
    """
    try:
        webbrowser.get()
    except webbrowser.Error:
        return False
    return True


def select_auth_type(
    password: str | None = None,
    username: str | None = None,
    certificate: Any = None,
    auth_type: str | AuthType | None = None,
    on_behalf_of: Any = None,
    has_listener: bool | None = None,
) -> AuthType:
    """Infer the grant type from which credentials were supplied.

    Rules, in priority order:
    1. an explicit auth type is validated and returned
    2. password and username, no certificate: resource_owner
    3. no password, username or certificate: authorization_code if a local
       listener is available, device_code otherwise
    4. username only, with a listener: authorization_code (login hint)
    5. password without username, or a certificate: client_credentials, or
       on_behalf_of when a token to exchange was supplied

    Raises:
        InvalidAuthTypeError: If the explicit auth type isn't recognised
        AmbiguousAuthTypeError: If no rule matches
    """
    if auth_type is not None:
        try:
            return AuthType(auth_type)
        except ValueError:
            raise InvalidAuthTypeError(
                f"Invalid authentication method: {auth_type}. Expected one of: "
                + ", ".join(t.value for t in AuthType)
            ) from None

    got_pwd = password is not None
    got_user = username is not None
    got_cert = certificate is not None

    if has_listener is None:
        has_listener = listener_available()

    if got_pwd and got_user and not got_cert:
        selected = AuthType.RESOURCE_OWNER
    elif not got_pwd and not got_user and not got_cert:
        if has_listener:
            selected = AuthType.AUTHORIZATION_CODE
        else:
            logger.info("No browser available, defaulting to device code authentication")
            selected = AuthType.DEVICE_CODE
    elif not got_pwd and not got_cert and got_user and has_listener:
        selected = AuthType.AUTHORIZATION_CODE
    elif (got_pwd and not got_user) or got_cert:
        if on_behalf_of:
            selected = AuthType.ON_BEHALF_OF
        else:
            selected = AuthType.CLIENT_CREDENTIALS
    else:
        raise AmbiguousAuthTypeError(
            "Can't select authentication method: a username without a password "
            "needs a browser for the authorization code flow"
        )

    logger.info(f"Using {selected.value} flow")
    return selected
