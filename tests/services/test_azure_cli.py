"""Tests for delegating token requests to the Azure CLI."""

import json
import subprocess
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from aadauth.models.errors import (
    AzureCLIError,
    AzureCLINotInstalledError,
    AzureCLINotLoggedInError,
)
from aadauth.services.azure_cli import (
    az_login,
    build_az_token_cmd,
    execute_az_token_cmd,
    process_cli_response,
)


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class TestBuildCommand:
    def test_v1_resource(self):
        assert build_az_token_cmd("az", resource="https://management.azure.com/") == [
            "az", "account", "get-access-token", "--output", "json",
            "--resource", "https://management.azure.com/",
        ]

    def test_v2_scopes_and_tenant(self):
        # Act
        args = build_az_token_cmd(
            "az",
            scope=["https://graph.microsoft.com/.default", "offline_access"],
            tenant="contoso.onmicrosoft.com",
        )

        # Assert
        assert args[5:] == [
            "--scope", "https://graph.microsoft.com/.default", "offline_access",
            "--tenant", "contoso.onmicrosoft.com",
        ]

    def test_common_tenant_is_omitted(self):
        assert "--tenant" not in build_az_token_cmd("az", resource="r", tenant="common")


class TestExecute:
    """Test running the CLI and classifying failures."""

    def test_returns_stdout(self):
        runner = MagicMock(return_value=completed(stdout='{"accessToken": "t"}'))
        assert execute_az_token_cmd(["az"], runner) == '{"accessToken": "t"}'

    def test_missing_executable(self):
        # Arrange
        runner = MagicMock(side_effect=FileNotFoundError("az"))

        # Act & Assert
        with pytest.raises(AzureCLINotInstalledError):
            execute_az_token_cmd(["az", "account", "get-access-token"], runner)

    def test_not_found_in_output(self):
        runner = MagicMock(return_value=completed(127, stderr="az: command not found"))
        with pytest.raises(AzureCLINotInstalledError):
            execute_az_token_cmd(["az"], runner)

    def test_not_logged_in(self):
        # Arrange
        runner = MagicMock(
            return_value=completed(1, stderr="ERROR: Please run 'az login' to setup account.")
        )

        # Act & Assert
        with pytest.raises(AzureCLINotLoggedInError) as exc_info:
            execute_az_token_cmd(["az"], runner)
        assert "az login" in str(exc_info.value)

    def test_other_failures(self):
        runner = MagicMock(return_value=completed(2, stderr="ERROR: something else"))
        with pytest.raises(AzureCLIError) as exc_info:
            execute_az_token_cmd(["az"], runner)
        assert type(exc_info.value) is AzureCLIError


class TestProcessResponse:
    def test_epoch_expiry_is_preferred(self):
        # Arrange
        output = json.dumps(
            {
                "accessToken": "token",
                "expiresOn": "2023-11-14 23:13:20.000000",
                "expires_on": 1700000000,
                "tokenType": "Bearer",
            }
        )

        # Act
        credentials = process_cli_response(output, "https://management.azure.com/")

        # Assert
        assert credentials == {
            "token_type": "Bearer",
            "access_token": "token",
            "expires_on": 1700000000.0,
            "resource": "https://management.azure.com/",
        }

    def test_local_time_expiry(self):
        # Arrange
        output = json.dumps({"accessToken": "token", "expiresOn": "2023-11-14 23:13:20.000000"})

        # Act
        credentials = process_cli_response(output)

        # Assert
        assert credentials["expires_on"] == datetime(2023, 11, 14, 23, 13, 20).timestamp()
        assert credentials["token_type"] == "Bearer"
        assert "resource" not in credentials

    def test_missing_expiry_is_left_unset(self):
        # Arrange
        output = json.dumps({"accessToken": "x.y.z", "tokenType": "Bearer"})

        # Act
        credentials = process_cli_response(output)

        # Assert
        assert credentials == {"token_type": "Bearer", "access_token": "x.y.z"}

    def test_unparseable_expiry(self):
        output = json.dumps({"accessToken": "token", "expiresOn": "next tuesday"})
        with pytest.raises(AzureCLIError):
            process_cli_response(output)

    def test_missing_access_token(self):
        with pytest.raises(AzureCLIError):
            process_cli_response(json.dumps({"expires_on": 1700000000}))

    def test_output_must_be_an_object(self):
        with pytest.raises(AzureCLIError):
            process_cli_response(json.dumps(["token"]))

    def test_unparseable_output(self):
        with pytest.raises(AzureCLIError):
            process_cli_response("not json")


class TestAzLogin:
    def test_options_become_flags(self):
        # Arrange
        runner = MagicMock(return_value=completed())

        # Act
        status = az_login(runner=runner, tenant="contoso.com", use_device_code=True, username=None)

        # Assert
        assert status == 0
        assert runner.call_args[0][0] == [
            "az", "login", "--tenant", "contoso.com", "--use-device-code",
        ]

    def test_missing_executable(self):
        with pytest.raises(AzureCLINotInstalledError):
            az_login(runner=MagicMock(side_effect=FileNotFoundError))
