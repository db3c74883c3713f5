"""Tokens delegated to the Azure CLI.

Runs ``az account get-access-token`` to reuse a login the CLI already holds,
and maps its output onto the common credential shape.
"""

from __future__ import annotations

import json
import logging
import subprocess
from datetime import datetime
from typing import Any, Callable, Sequence

from aadauth.models.errors import (
    AzureCLIError,
    AzureCLINotInstalledError,
    AzureCLINotLoggedInError,
)

logger = logging.getLogger(__name__)

INSTALL_URL = "https://learn.microsoft.com/en-us/cli/azure/install-azure-cli"

Runner = Callable[..., subprocess.CompletedProcess]


def build_az_token_cmd(
    command: str = "az",
    resource: str | None = None,
    scope: Sequence[str] | None = None,
    tenant: str | None = None,
) -> list[str]:
    """Build the argument list for ``az account get-access-token``."""
    args = [command, "account", "get-access-token", "--output", "json"]
    if resource:
        args += ["--resource", resource]
    if scope:
        args += ["--scope", *scope]
    if tenant and tenant != "common":
        args += ["--tenant", tenant]
    return args


def classify_az_error(command: str, output: str) -> AzureCLIError:
    """Turn Azure CLI failure output into an actionable error."""
    if "az login" in output or "az account set" in output:
        return AzureCLINotLoggedInError(
            "You are not logged into the Azure CLI. "
            f"Please run '{command} login' from your shell and try again."
        )
    if "not found" in output or "error in running" in output:
        return AzureCLINotInstalledError(
            f"{command} is not installed or not in PATH. "
            f"Please see {INSTALL_URL} for installation instructions."
        )
    return AzureCLIError(f"Failed to invoke the Azure CLI: {output.strip()}")


def execute_az_token_cmd(args: list[str], runner: Runner = subprocess.run) -> str:
    """Run the CLI and return its standard output.

    Raises:
        AzureCLINotInstalledError: If the executable can't be found
        AzureCLINotLoggedInError: If the CLI has no logged-in account
        AzureCLIError: For any other failure
    """
    logger.debug(f"Running {' '.join(args[:3])}")

    try:
        result = runner(args, capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
        raise AzureCLINotInstalledError(
            f"{args[0]} is not installed or not in PATH. "
            f"Please see {INSTALL_URL} for installation instructions."
        ) from e

    if result.returncode != 0:
        raise classify_az_error(args[0], f"{result.stderr or ''}\n{result.stdout or ''}")
    return result.stdout


def process_cli_response(output: str, resource: str | None = None) -> dict[str, Any]:
    """Map Azure CLI JSON output onto the credential fields.

    Newer CLI versions report ``expires_on`` as a Unix timestamp; older ones
    only report ``expiresOn`` as a local time string. With neither, the
    expiry is left for the resolver to work out from the token itself.

    Raises:
        AzureCLIError: If the output isn't a token object or its expiry
            can't be parsed
    """
    try:
        data = json.loads(output)
    except ValueError as e:
        raise AzureCLIError(f"Unable to parse Azure CLI output: {e}") from e

    if not isinstance(data, dict):
        raise AzureCLIError("Unable to parse Azure CLI output: expected a JSON object")
    if not data.get("accessToken"):
        raise AzureCLIError("Azure CLI output has no access token")

    credentials: dict[str, Any] = {
        "token_type": data.get("tokenType") or "Bearer",
        "access_token": data["accessToken"],
    }

    try:
        if data.get("expires_on") is not None:
            credentials["expires_on"] = float(data["expires_on"])
        elif data.get("expiresOn"):
            credentials["expires_on"] = datetime.fromisoformat(data["expiresOn"]).timestamp()
        else:
            logger.debug("Azure CLI output has no expiry")
    except (TypeError, ValueError) as e:
        raise AzureCLIError(f"Unable to parse Azure CLI token expiry: {e}") from e

    # the CLI doesn't echo the resource, so pass it through
    if resource is not None:
        credentials["resource"] = resource
    return credentials


def az_login(command: str = "az", runner: Runner = subprocess.run, **options: Any) -> int:
    """Log into the Azure CLI interactively.

    Supported options: username, password, tenant, scope, service_principal,
    use_device_code. Boolean options are passed as bare flags.

    Returns:
        The CLI's exit status
    """
    args = [command, "login"]
    for name in ("username", "password", "tenant", "scope", "service_principal", "use_device_code"):
        value = options.get(name)
        if value is None or value is False:
            continue
        flag = "--" + name.replace("_", "-")
        args += [flag] if value is True else [flag, str(value)]

    logger.info("Trying to open a web browser to log into the Azure CLI...")
    try:
        return runner(args, check=False).returncode
    except FileNotFoundError as e:
        raise AzureCLINotInstalledError(f"{command} is not installed or not in PATH.") from e
