"""
src/storage/local.py
=====================
Local Object Storage — PlayCoach

Responsibility:
    - Store and fetch recording bytes by storage key under a root directory
    - Reject keys that escape the root and placeholder ``mock://`` keys

Keys are relative POSIX-style paths, e.g. "<user_id>/<session_id>.m4a".

This module does NOT:
    - Decode or validate audio content (see src.audio.probe)
    - Track sessions (see src.store)
"""

import logging
from pathlib import Path

from src.errors import StorageError

logger = logging.getLogger("playcoach.storage.local")

MOCK_KEY_PREFIX = "mock://"


class LocalObjectStorage:
    """Filesystem-backed object storage rooted at ``root``."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def store(self, key: str, data: bytes) -> str:
        """
        Write ``data`` under ``key``, replacing any previous object.

        Returns:
            The storage key.

        Raises:
            StorageError: If the key is invalid or the write fails.
        """
        path = self._resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to store {key}: {exc}") from exc

        logger.info("Stored %s (%.2f KB).", key, len(data) / 1024)
        return key

    def fetch(self, key: str) -> bytes:
        """
        Read the object stored under ``key``.

        Raises:
            StorageError: If the key is a mock key, escapes the root, is
                          missing, or cannot be read.
        """
        path = self._resolve(key)
        if not path.is_file():
            raise StorageError(f"Audio file not found in storage: {key}")
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {key}: {exc}") from exc

        logger.debug("Fetched %s (%.2f KB).", key, len(data) / 1024)
        return data

    def exists(self, key: str) -> bool:
        try:
            return self._resolve(key).is_file()
        except StorageError:
            return False

    def _resolve(self, key: str) -> Path:
        if not key:
            raise StorageError("Storage key is empty.")
        if key.startswith(MOCK_KEY_PREFIX):
            raise StorageError(
                f"Session uses a mock storage key ({key}); no real audio to process."
            )
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageError(f"Storage key escapes the storage root: {key}")
        return path
