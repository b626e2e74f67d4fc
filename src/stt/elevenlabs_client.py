"""
src/stt/elevenlabs_client.py
=============================
ElevenLabs Scribe STT Client — PlayCoach Transcription Stage

Responsibility:
    - Send the full session audio to the ElevenLabs speech-to-text API
      for ONE pass (quality pass: scribe_v2, diarization pass: scribe_v1)
    - Request word-level timestamps, diarization and audio-event tags
    - Pass the child's name as a keyterm to improve recognition
    - Return the raw JSON response (normalized by word_normalizer)

Failure mapping:
    - Timeout              → PassTimeoutError
    - Network / non-2xx    → TranscriptionPassError
    - Missing API key      → TranscriptionPassError

This module does NOT:
    - Retry (only the orchestrator retries, and only the analysis stage)
    - Normalize, merge, or segment words
    - Store data
"""

import io
import logging
import os

import requests
from dotenv import load_dotenv

from src.errors import PassTimeoutError, TranscriptionPassError
from src.schemas.transcript import PassConfig

load_dotenv()

logger = logging.getLogger("playcoach.stt.elevenlabs_client")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

ELEVENLABS_STT_ENDPOINT = "https://api.elevenlabs.io/v1/speech-to-text"

CONTENT_TYPE_MAP: dict[str, str] = {
    "m4a": "audio/x-m4a",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "webm": "audio/webm",
    "aac": "audio/aac",
}
_DEFAULT_CONTENT_TYPE = "audio/m4a"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def transcribe_pass(
    audio_bytes: bytes,
    config: PassConfig,
    extension: str = "m4a",
    request_id: str = "audio",
) -> dict:
    """
    Run one ElevenLabs transcription pass over the whole recording.

    Args:
        audio_bytes: Raw audio bytes as stored for the session.
        config:      Pass configuration (model, diarization, keyterms, timeout).
        extension:   File extension used to pick the upload content type.
        request_id:  Anonymized id used as the upload filename.

    Returns:
        The provider's JSON response as a dict.

    Raises:
        PassTimeoutError:       If the request exceeds ``config.timeout``.
        TranscriptionPassError: On missing key, network error, or non-2xx.
    """
    api_key = os.environ.get("ELEVENLABS_API_KEY")
    if not api_key:
        raise TranscriptionPassError(
            config.role, "ELEVENLABS_API_KEY environment variable is not set."
        )

    ext = extension.lower().lstrip(".")
    content_type = CONTENT_TYPE_MAP.get(ext, _DEFAULT_CONTENT_TYPE)

    headers = {
        "xi-api-key": api_key,
    }

    files = {
        "file": (f"{request_id}.{ext}", io.BytesIO(audio_bytes), content_type),
    }

    data: dict[str, str] = {
        "model_id": config.model,
        "diarize": "true" if config.diarize else "false",
        "temperature": "0",
        "tag_audio_events": "true",
        "timestamps_granularity": "word",
    }
    if config.diarize and config.diarization_threshold is not None:
        data["diarization_threshold"] = str(config.diarization_threshold)
    if config.keyterms:
        data["keyterms"] = ",".join(config.keyterms)

    logger.info(
        "Sending %s pass to ElevenLabs (%s, %d bytes)...",
        config.role, config.model, len(audio_bytes),
    )

    try:
        resp = requests.post(
            ELEVENLABS_STT_ENDPOINT,
            params={"include_timestamps": "true"},
            headers=headers,
            files=files,
            data=data,
            timeout=config.timeout,
        )
        resp.raise_for_status()
    except requests.Timeout as exc:
        raise PassTimeoutError(config.role, config.timeout) from exc
    except requests.HTTPError as exc:
        raise TranscriptionPassError(
            config.role,
            f"ElevenLabs API error ({config.model}): {_error_detail(exc.response)}",
        ) from exc
    except requests.RequestException as exc:
        raise TranscriptionPassError(
            config.role, f"ElevenLabs request failed: {exc}"
        ) from exc

    try:
        body = resp.json()
    except ValueError as exc:
        raise TranscriptionPassError(
            config.role, "ElevenLabs returned a non-JSON body."
        ) from exc

    logger.info(
        "ElevenLabs %s pass done: language=%s, %d tokens.",
        config.role,
        body.get("language_code", "unknown") if isinstance(body, dict) else "unknown",
        len(body.get("words") or []) if isinstance(body, dict) else 0,
    )
    return body


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _error_detail(response) -> str:
    """Best-effort error message from an ElevenLabs error response."""
    if response is None:
        return "no response"
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict) and detail.get("message"):
        return f"HTTP {response.status_code}: {detail['message']}"
    if isinstance(detail, str):
        return f"HTTP {response.status_code}: {detail}"
    return f"HTTP {response.status_code}"
