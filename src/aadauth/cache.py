"""On-disk token cache.

One JSON file per token, named by the token's fingerprint. Records are
written atomically with owner-only permissions; a record that can't be read
back is deleted and treated as missing.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from aadauth.models.credentials import TokenSnapshot
from aadauth.models.errors import CacheCorruptError
from aadauth.primitives.fingerprint import is_fingerprint

logger = logging.getLogger(__name__)


class TokenCache:
    """Fingerprint-keyed store of token snapshots.

    Usage:
        cache = TokenCache(get_settings().data_dir)
        cache.save(token.hash(), snapshot)
        snapshot = cache.load(token.hash())
    """

    def __init__(self, directory: str | os.PathLike[str]):
        self.directory = Path(directory)

    def path(self, fingerprint: str) -> Path:
        return self.directory / fingerprint

    def ensure_directory(self) -> Path:
        """Create the cache directory if needed, readable by the owner only."""
        self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        return self.directory

    def load(self, fingerprint: str) -> TokenSnapshot | None:
        """Read a cached snapshot, or None if there isn't a usable one."""
        path = self.path(fingerprint)
        if not path.is_file():
            return None

        try:
            return self._read(path)
        except CacheCorruptError as e:
            logger.warning(f"Deleting unusable cache record {fingerprint}: {e}")
            path.unlink(missing_ok=True)
            return None

    def save(self, fingerprint: str, snapshot: TokenSnapshot) -> bool:
        """Write a snapshot atomically.

        Nothing is written when the cache directory doesn't exist; callers
        create it explicitly.

        Returns:
            True if the record was written
        """
        if not self.directory.is_dir():
            logger.debug(f"Cache directory {self.directory} doesn't exist, not saving token")
            return False

        data = snapshot.model_dump_json(indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path(fingerprint))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug(f"Saved token {fingerprint} to {self.directory}")
        return True

    def delete(self, fingerprint: str) -> bool:
        """Remove a cached record. Returns True if one was removed."""
        path = self.path(fingerprint)
        if not path.is_file():
            return False
        path.unlink(missing_ok=True)
        logger.info(f"Deleted cached token {fingerprint}")
        return True

    def fingerprints(self) -> list[str]:
        """List the fingerprints of all records in the cache directory."""
        if not self.directory.is_dir():
            return []
        return sorted(
            p.name for p in self.directory.iterdir() if p.is_file() and is_fingerprint(p.name)
        )

    def list(self) -> dict[str, TokenSnapshot]:
        """Load every readable record, keyed by fingerprint."""
        snapshots = {}
        for fingerprint in self.fingerprints():
            snapshot = self.load(fingerprint)
            if snapshot is not None:
                snapshots[fingerprint] = snapshot
        return snapshots

    def clean(self) -> int:
        """Delete every token record, leaving other files alone.

        Returns:
            The number of records deleted
        """
        removed = 0
        for fingerprint in self.fingerprints():
            self.path(fingerprint).unlink(missing_ok=True)
            removed += 1
        logger.info(f"Deleted {removed} cached token(s) from {self.directory}")
        return removed

    def _read(self, path: Path) -> TokenSnapshot:
        try:
            return TokenSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            raise CacheCorruptError(str(e)) from e
