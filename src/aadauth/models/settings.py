"""Environment-driven configuration for token caching and managed identity.

Settings are resolved once from the process environment and passed
explicitly to the components that need them.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_AAD_HOST = "https://login.microsoftonline.com/"
DEFAULT_MSI_ENDPOINT = "http://169.254.169.254/metadata/identity/oauth2"


def default_data_dir() -> Path:
    return Path.home() / ".local" / "share" / "AzureR"


class AuthSettings(BaseSettings):
    """Settings loaded from environment variables.

    - ``AZURE_DATA_DIR`` overrides the token cache directory
    - ``MSI_ENDPOINT`` overrides the managed identity metadata endpoint
    - ``MSI_SECRET`` switches managed identity requests to the shared-secret
      header used by App Service
    - ``AZURE_IMDS_VERSION`` sets the metadata API version
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    data_dir: Path = Field(
        default_factory=default_data_dir,
        validation_alias="AZURE_DATA_DIR",
    )
    msi_endpoint: str = Field(
        default=DEFAULT_MSI_ENDPOINT,
        validation_alias="MSI_ENDPOINT",
    )
    msi_secret: str | None = Field(default=None, validation_alias="MSI_SECRET")
    imds_api_version: str = Field(
        default="2018-02-01",
        validation_alias="AZURE_IMDS_VERSION",
    )


@lru_cache
def get_settings() -> AuthSettings:
    """Return the process-wide settings, read from the environment once."""
    return AuthSettings()
