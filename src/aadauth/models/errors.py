"""Exception hierarchy for token acquisition and lifecycle errors.

Provides specific exception types for different failure modes to enable
precise error handling and recovery strategies.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base exception for all token acquisition errors."""

    pass


class InvalidAuthTypeError(AuthError):
    """Raised when an explicit authentication type is not recognised."""

    pass


class AmbiguousAuthTypeError(AuthError):
    """Raised when the supplied credentials don't determine a flow."""

    pass


class MissingCredentialsError(AuthError):
    """Raised when a flow is missing a credential it requires."""

    pass


class MissingAssertionTokenError(MissingCredentialsError):
    """Raised when the on-behalf-of flow has no token to exchange."""

    pass


class MissingListenerCapabilityError(AuthError):
    """Raised when the authorization code flow can't listen for a redirect."""

    pass


class AuthorizationError(AuthError):
    """Raised when the interactive authorization step fails."""

    pass


class AuthorizationDeniedError(AuthorizationError):
    """Raised when the identity provider redirects back with an error."""

    pass


class AuthorizationTimeoutError(AuthorizationError):
    """Raised when no redirect arrives before the listener times out."""

    pass


class DeviceCodeExpiredError(AuthError):
    """Raised when device code polling runs out of attempts."""

    pass


class InvalidScopeError(AuthError, ValueError):
    """Raised when a v2.0 scope is malformed or unsupported."""

    pass


class InvalidEndpointError(AuthError, ValueError):
    """Raised when a URI doesn't point at the requested endpoint type."""

    pass


class InvalidCertificateError(AuthError):
    """Raised when certificate material can't be used to sign an assertion."""

    pass


class TokenEndpointError(AuthError):
    """Raised when the token endpoint can't be reached or its reply parsed."""

    pass


class ProviderError(AuthError):
    """Raised when the identity provider answers with a non-2xx status.

    Carries the HTTP status together with the OAuth error code and the
    provider's description, when the body had them.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.error_description = error_description


class RefreshFailedError(AuthError):
    """Raised when a token can't be refreshed or reacquired."""

    pass


class TokenStateError(AuthError):
    """Raised when a token is moved to a state it can't reach from its current one."""

    pass


class CacheCorruptError(AuthError):
    """Raised internally when a cache record can't be read.

    Never surfaced to callers: the cache deletes the record and behaves as
    if it didn't exist.
    """

    pass


class AzureCLIError(AuthError):
    """Raised when the Azure CLI fails to return a token."""

    pass


class AzureCLINotInstalledError(AzureCLIError):
    """Raised when the Azure CLI executable can't be found."""

    pass


class AzureCLINotLoggedInError(AzureCLIError):
    """Raised when the Azure CLI has no logged-in account."""

    pass


class ExpiryUnresolvedWarning(UserWarning):
    """Emitted when no expiry could be determined for a token."""

    pass


class ScopeNormalizedWarning(UserWarning):
    """Emitted when a v2.0 scope without a path is given a default one."""

    pass
