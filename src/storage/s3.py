"""
src/storage/s3.py
==================
S3 Object Storage — PlayCoach

Responsibility:
    - Store and fetch recording bytes in an S3-compatible bucket
      (AWS S3, R2, MinIO) under the same keys LocalObjectStorage uses
    - Map botocore failures to StorageError

Credentials come from the standard boto3 chain (environment, shared
config, instance role). ``endpoint_url`` selects a non-AWS provider.

This module does NOT:
    - Presign URLs or manage bucket lifecycle
    - Decode or validate audio content (see src.audio.probe)
"""

import logging
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from src.errors import StorageError
from src.storage.local import MOCK_KEY_PREFIX

logger = logging.getLogger("playcoach.storage.s3")

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")

_CONTENT_TYPES = {
    "m4a": "audio/x-m4a",
    "mp4": "audio/mp4",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
}


class S3ObjectStorage:
    """
    Bucket-backed object storage.

    Args:
        bucket:       Bucket name.
        client:       Optional pre-built boto3 S3 client.
        endpoint_url: Optional S3-compatible endpoint.
        region:       Optional region name.
    """

    def __init__(
        self,
        bucket: str,
        client=None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
    ):
        if not bucket:
            raise StorageError("S3 storage needs a bucket name.")
        self.bucket = bucket
        self._s3 = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            config=Config(signature_version="s3v4"),
        )

    def store(self, key: str, data: bytes) -> str:
        _check_key(key)
        extension = key.rsplit(".", 1)[-1].lower() if "." in key else ""
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=_CONTENT_TYPES.get(extension, "application/octet-stream"),
            )
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"S3 put_object failed for {key}: {exc}") from exc

        logger.info("Stored s3://%s/%s (%.2f KB).", self.bucket, key, len(data) / 1024)
        return key

    def fetch(self, key: str) -> bytes:
        _check_key(key)
        try:
            response = self._s3.get_object(Bucket=self.bucket, Key=key)
            data = response["Body"].read()
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                raise StorageError(f"Audio file not found in storage: {key}") from exc
            raise StorageError(f"S3 get_object failed for {key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 get_object failed for {key}: {exc}") from exc

        logger.debug("Fetched s3://%s/%s (%.2f KB).", self.bucket, key, len(data) / 1024)
        return data

    def exists(self, key: str) -> bool:
        try:
            _check_key(key)
            self._s3.head_object(Bucket=self.bucket, Key=key)
            return True
        except StorageError:
            return False
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise StorageError(f"S3 head_object failed for {key}: {exc}") from exc


def _check_key(key: str) -> None:
    if not key:
        raise StorageError("Storage key is empty.")
    if key.startswith(MOCK_KEY_PREFIX):
        raise StorageError(
            f"Session uses a mock storage key ({key}); no real audio to process."
        )


def _error_code(exc: ClientError) -> Optional[str]:
    return exc.response.get("Error", {}).get("Code")
