"""
tests/test_config.py
=====================
Runtime Configuration Tests — PlayCoach

Tests verify environment parsing, per-provider model defaults, and
validation of out-of-range values.
"""

import os
import sys
import unittest
from unittest.mock import patch

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.config import Settings, load_settings

_ENV_KEYS = (
    "TRANSCRIPTION_PROVIDER", "TRANSCRIPTION_MODE", "MERGE_STRATEGY",
    "QUALITY_MODEL", "DIARIZATION_MODEL", "DIARIZATION_THRESHOLD",
    "PASS_TIMEOUT_SECONDS", "SILENCE_THRESHOLD_SECONDS", "ANALYSIS_MAX_ATTEMPTS",
    "ANALYSIS_RETRY_DELAYS", "ANALYSIS_TIMEOUT_SECONDS", "OPENAI_MODEL",
    "ALERT_WEBHOOK_URL", "STORAGE_ROOT", "SESSION_DB_PATH",
    "STORAGE_BACKEND", "S3_BUCKET", "S3_ENDPOINT_URL", "AWS_REGION",
)


def _clean_env(**overrides):
    env = {k: v for k, v in os.environ.items() if k not in _ENV_KEYS}
    env.update(overrides)
    return patch.dict(os.environ, env, clear=True)


class TestLoadSettings(unittest.TestCase):

    def test_defaults(self):
        with _clean_env():
            settings = load_settings()
        self.assertEqual(settings.transcription_provider, "elevenlabs")
        self.assertEqual(settings.transcription_mode, "two-pass")
        self.assertEqual(settings.merge_strategy, "utterance")
        self.assertEqual(settings.silence_threshold_seconds, 3.0)
        self.assertEqual(settings.analysis_max_attempts, 3)
        self.assertEqual(settings.analysis_retry_delays, (0.0, 5.0, 15.0))
        self.assertIsNone(settings.alert_webhook_url)

    def test_deepgram_model_defaults(self):
        with _clean_env(TRANSCRIPTION_PROVIDER="Deepgram"):
            settings = load_settings()
        self.assertEqual(settings.transcription_provider, "deepgram")
        self.assertEqual(settings.quality_model, "nova-3")
        self.assertEqual(settings.diarization_model, "nova-2")

    def test_explicit_values(self):
        with _clean_env(
            MERGE_STRATEGY="word",
            SILENCE_THRESHOLD_SECONDS="2.5",
            ANALYSIS_RETRY_DELAYS="1, 2",
            ALERT_WEBHOOK_URL="https://hooks.example.com/x",
        ):
            settings = load_settings()
        self.assertEqual(settings.merge_strategy, "word")
        self.assertEqual(settings.silence_threshold_seconds, 2.5)
        self.assertEqual(settings.analysis_retry_delays, (1.0, 2.0))
        self.assertEqual(settings.alert_webhook_url, "https://hooks.example.com/x")

    def test_non_numeric_rejected(self):
        with _clean_env(PASS_TIMEOUT_SECONDS="soon"):
            with self.assertRaises(ValueError):
                load_settings()

    def test_s3_backend(self):
        with _clean_env(STORAGE_BACKEND="S3", S3_BUCKET="recordings", S3_ENDPOINT_URL="http://minio:9000"):
            settings = load_settings()
        self.assertEqual(settings.storage_backend, "s3")
        self.assertEqual(settings.s3_bucket, "recordings")
        self.assertEqual(settings.s3_endpoint_url, "http://minio:9000")

    def test_unknown_provider_rejected(self):
        with _clean_env(TRANSCRIPTION_PROVIDER="whisper"):
            with self.assertRaises(ValueError):
                load_settings()


class TestSettings(unittest.TestCase):

    def test_zero_silence_threshold_rejected(self):
        with self.assertRaises(ValueError):
            Settings(silence_threshold_seconds=0)

    def test_zero_attempts_rejected(self):
        with self.assertRaises(ValueError):
            Settings(analysis_max_attempts=0)

    def test_unknown_mode_rejected(self):
        with self.assertRaises(ValueError):
            Settings(transcription_mode="three-pass")

    def test_s3_without_bucket_rejected(self):
        with self.assertRaises(ValueError):
            Settings(storage_backend="s3")

    def test_unknown_storage_backend_rejected(self):
        with self.assertRaises(ValueError):
            Settings(storage_backend="gcs")

    def test_retry_delay_repeats_last(self):
        settings = Settings(analysis_max_attempts=5)
        self.assertEqual(
            [settings.retry_delay(n) for n in range(5)],
            [0.0, 5.0, 15.0, 15.0, 15.0],
        )


if __name__ == "__main__":
    unittest.main()
