"""Tests for the on-disk token cache."""

import logging
import os
import stat

import pytest

from aadauth.cache import TokenCache
from aadauth.models.credentials import TokenCredentials, TokenSnapshot

FINGERPRINT = "0123456789abcdef0123456789abcdef"
OTHER = "fedcba9876543210fedcba9876543210"


def make_snapshot(access_token="token-abc", **overrides):
    fields = dict(
        version=1,
        aad_host="https://login.microsoftonline.com/",
        tenant="contoso.onmicrosoft.com",
        auth_type="client_credentials",
        client={"client_id": "app", "grant_type": "client_credentials"},
        resource="https://management.azure.com/",
        scope=None,
        credentials=TokenCredentials(
            access_token=access_token, expires_on=1_700_003_600, refresh_token="refresh"
        ),
    )
    fields.update(overrides)
    return TokenSnapshot(**fields)


class TestTokenCache:
    """Test saving and loading snapshots."""

    def setup_method(self):
        self.snapshot = make_snapshot()

    def test_save_then_load(self, tmp_path):
        # Arrange
        cache = TokenCache(tmp_path)

        # Act
        saved = cache.save(FINGERPRINT, self.snapshot)
        loaded = cache.load(FINGERPRINT)

        # Assert
        assert saved is True
        assert loaded == self.snapshot
        assert loaded.credentials.refresh_token == "refresh"

    def test_record_is_owner_only(self, tmp_path):
        # Arrange
        cache = TokenCache(tmp_path)

        # Act
        cache.save(FINGERPRINT, self.snapshot)

        # Assert
        mode = stat.S_IMODE(os.stat(cache.path(FINGERPRINT)).st_mode)
        assert mode == 0o600

    def test_save_replaces_existing_record(self, tmp_path):
        # Arrange
        cache = TokenCache(tmp_path)
        cache.save(FINGERPRINT, self.snapshot)

        # Act
        cache.save(FINGERPRINT, make_snapshot("token-new"))

        # Assert
        assert cache.load(FINGERPRINT).credentials.access_token == "token-new"
        assert sorted(p.name for p in tmp_path.iterdir()) == [FINGERPRINT]

    def test_missing_directory_skips_save(self, tmp_path):
        # Arrange
        cache = TokenCache(tmp_path / "missing")

        # Act & Assert
        assert cache.save(FINGERPRINT, self.snapshot) is False
        assert not (tmp_path / "missing").exists()

    def test_missing_record_loads_as_none(self, tmp_path):
        assert TokenCache(tmp_path).load(FINGERPRINT) is None

    def test_corrupt_record_is_deleted(self, tmp_path, caplog):
        # Arrange
        cache = TokenCache(tmp_path)
        cache.path(FINGERPRINT).write_text("{not json")

        # Act
        with caplog.at_level(logging.WARNING, logger="aadauth.cache"):
            loaded = cache.load(FINGERPRINT)

        # Assert
        assert loaded is None
        assert not cache.path(FINGERPRINT).exists()
        assert "unusable cache record" in caplog.text

    def test_record_with_wrong_shape_is_deleted(self, tmp_path):
        # Arrange
        cache = TokenCache(tmp_path)
        cache.path(FINGERPRINT).write_text('{"version": 1}')

        # Act & Assert
        assert cache.load(FINGERPRINT) is None
        assert not cache.path(FINGERPRINT).exists()

    def test_ensure_directory_is_idempotent(self, tmp_path):
        # Arrange
        cache = TokenCache(tmp_path / "AzureR")

        # Act
        cache.ensure_directory()
        cache.ensure_directory()

        # Assert
        assert (tmp_path / "AzureR").is_dir()


class TestCacheMaintenance:
    """Test listing, deleting and cleaning."""

    @pytest.fixture
    def cache(self, tmp_path):
        cache = TokenCache(tmp_path)
        cache.save(FINGERPRINT, make_snapshot())
        cache.save(OTHER, make_snapshot("token-other", resource="https://graph.microsoft.com/"))
        (tmp_path / "notes.txt").write_text("keep me")
        return cache

    def test_list_returns_records_by_fingerprint(self, cache):
        # Act
        snapshots = cache.list()

        # Assert
        assert list(snapshots) == [FINGERPRINT, OTHER]
        assert snapshots[OTHER].resource == "https://graph.microsoft.com/"

    def test_delete(self, cache):
        # Act & Assert
        assert cache.delete(FINGERPRINT) is True
        assert cache.delete(FINGERPRINT) is False
        assert cache.fingerprints() == [OTHER]

    def test_clean_only_removes_token_records(self, cache, tmp_path):
        # Act
        removed = cache.clean()

        # Assert
        assert removed == 2
        assert sorted(p.name for p in tmp_path.iterdir()) == ["notes.txt"]

    def test_list_of_missing_directory_is_empty(self, tmp_path):
        assert TokenCache(tmp_path / "missing").list() == {}
