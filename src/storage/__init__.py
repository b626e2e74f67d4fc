# src/storage/__init__.py
# ========================
# Object Storage — PlayCoach
#
#   - local.py: LocalObjectStorage(root) with store(key, data) / fetch(key)
#   - s3.py:    S3ObjectStorage(bucket) with the same interface (boto3)
#
# Recordings are addressed by storage key; mock:// keys never resolve.

from src.storage.local import MOCK_KEY_PREFIX, LocalObjectStorage  # noqa: F401
from src.storage.s3 import S3ObjectStorage  # noqa: F401

__all__ = ["MOCK_KEY_PREFIX", "LocalObjectStorage", "S3ObjectStorage"]
