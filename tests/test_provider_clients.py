"""
tests/test_provider_clients.py
===============================
Provider Pass Client Tests — PlayCoach Transcription Stage

Tests verify, for both ElevenLabs (requests) and Deepgram (SDK):
    1. Request construction (model, diarization, keyterms, timeout)
    2. Failure mapping: missing key, timeout, HTTP / SDK errors

All tests are OFFLINE — requests and the Deepgram client are mocked.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import requests

from src.errors import PassTimeoutError, TranscriptionPassError
from src.schemas.transcript import PassConfig
from src.stt import deepgram_client, elevenlabs_client

QUALITY_CONFIG = PassConfig(
    role="quality",
    model="scribe_v2",
    diarize=True,
    diarization_threshold=0.1,
    keyterms=("Mia",),
    timeout=120.0,
)


# ===================================================================
# ElevenLabs
# ===================================================================


class TestElevenLabsClient(unittest.TestCase):

    def setUp(self):
        env = patch.dict(os.environ, {"ELEVENLABS_API_KEY": "test-key"})
        env.start()
        self.addCleanup(env.stop)

    @patch("src.stt.elevenlabs_client.requests.post")
    def test_request_fields(self, mock_post):
        mock_post.return_value.json.return_value = {"words": []}

        body = elevenlabs_client.transcribe_pass(b"audio", QUALITY_CONFIG, "M4A", "req-1")

        self.assertEqual(body, {"words": []})
        kwargs = mock_post.call_args.kwargs
        self.assertEqual(kwargs["headers"], {"xi-api-key": "test-key"})
        self.assertEqual(kwargs["timeout"], 120.0)
        self.assertEqual(kwargs["data"]["model_id"], "scribe_v2")
        self.assertEqual(kwargs["data"]["diarize"], "true")
        self.assertEqual(kwargs["data"]["diarization_threshold"], "0.1")
        self.assertEqual(kwargs["data"]["keyterms"], "Mia")
        filename, _, content_type = kwargs["files"]["file"]
        self.assertEqual(filename, "req-1.m4a")
        self.assertEqual(content_type, "audio/x-m4a")

    @patch("src.stt.elevenlabs_client.requests.post")
    def test_no_keyterms_field_without_keyterms(self, mock_post):
        mock_post.return_value.json.return_value = {"words": []}
        config = PassConfig(role="diarization", model="scribe_v1")
        elevenlabs_client.transcribe_pass(b"audio", config)
        self.assertNotIn("keyterms", mock_post.call_args.kwargs["data"])

    @patch("src.stt.elevenlabs_client.requests.post")
    def test_timeout(self, mock_post):
        mock_post.side_effect = requests.Timeout("slow")
        with self.assertRaises(PassTimeoutError) as ctx:
            elevenlabs_client.transcribe_pass(b"audio", QUALITY_CONFIG)
        self.assertEqual(ctx.exception.pass_role, "quality")

    @patch("src.stt.elevenlabs_client.requests.post")
    def test_http_error(self, mock_post):
        error_response = MagicMock()
        error_response.status_code = 401
        error_response.json.return_value = {"detail": {"message": "invalid api key"}}
        mock_post.return_value.raise_for_status.side_effect = requests.HTTPError(
            response=error_response
        )

        with self.assertRaises(TranscriptionPassError) as ctx:
            elevenlabs_client.transcribe_pass(b"audio", QUALITY_CONFIG)
        self.assertIn("invalid api key", str(ctx.exception))
        self.assertNotIsInstance(ctx.exception, PassTimeoutError)

    @patch("src.stt.elevenlabs_client.requests.post")
    def test_connection_error(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(TranscriptionPassError):
            elevenlabs_client.transcribe_pass(b"audio", QUALITY_CONFIG)

    @patch("src.stt.elevenlabs_client.requests.post")
    def test_non_json_body(self, mock_post):
        mock_post.return_value.json.side_effect = ValueError("not json")
        with self.assertRaises(TranscriptionPassError):
            elevenlabs_client.transcribe_pass(b"audio", QUALITY_CONFIG)

    def test_missing_api_key(self):
        with patch.dict(os.environ, {"ELEVENLABS_API_KEY": ""}):
            with self.assertRaises(TranscriptionPassError):
                elevenlabs_client.transcribe_pass(b"audio", QUALITY_CONFIG)


# ===================================================================
# Deepgram
# ===================================================================


class DeepgramTimeoutError(Exception):
    pass


class TestDeepgramClient(unittest.TestCase):

    def setUp(self):
        env = patch.dict(os.environ, {"DEEPGRAM_API_KEY": "dg-key"})
        env.start()
        self.addCleanup(env.stop)

        client_patch = patch("deepgram.DeepgramClient")
        self.mock_client_cls = client_patch.start()
        self.addCleanup(client_patch.stop)
        self.transcribe_file = self.mock_client_cls.return_value.listen.v1.media.transcribe_file

    def test_request_options(self):
        self.transcribe_file.return_value = {"results": {"channels": []}}
        config = PassConfig(role="quality", model="nova-3", keyterms=("Mia",), timeout=90.0)

        body = deepgram_client.transcribe_pass(b"audio", config)

        self.assertEqual(body, {"results": {"channels": []}})
        self.mock_client_cls.assert_called_once_with(api_key="dg-key")
        kwargs = self.transcribe_file.call_args.kwargs
        self.assertEqual(kwargs["request"], b"audio")
        self.assertEqual(kwargs["model"], "nova-3")
        self.assertTrue(kwargs["diarize"])
        self.assertEqual(kwargs["keyterm"], ["Mia"])
        self.assertEqual(kwargs["request_options"], {"timeout_in_seconds": 90})

    def test_sdk_object_converted(self):
        response = MagicMock()
        response.model_dump.return_value = {"metadata": {"duration": 1.0}}
        self.transcribe_file.return_value = response

        body = deepgram_client.transcribe_pass(b"audio", PassConfig(role="quality", model="nova-3"))
        self.assertEqual(body, {"metadata": {"duration": 1.0}})

    def test_timeout_mapped(self):
        self.transcribe_file.side_effect = DeepgramTimeoutError("read timed out")
        with self.assertRaises(PassTimeoutError):
            deepgram_client.transcribe_pass(b"audio", PassConfig(role="diarization", model="nova-2"))

    def test_sdk_error_mapped(self):
        self.transcribe_file.side_effect = RuntimeError("400 bad request")
        with self.assertRaises(TranscriptionPassError) as ctx:
            deepgram_client.transcribe_pass(b"audio", PassConfig(role="diarization", model="nova-2"))
        self.assertNotIsInstance(ctx.exception, PassTimeoutError)

    def test_missing_api_key(self):
        with patch.dict(os.environ, {"DEEPGRAM_API_KEY": ""}):
            with self.assertRaises(TranscriptionPassError):
                deepgram_client.transcribe_pass(b"audio", PassConfig(role="quality", model="nova-3"))
        self.mock_client_cls.assert_not_called()


if __name__ == "__main__":
    unittest.main()
