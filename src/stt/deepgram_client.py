"""
src/stt/deepgram_client.py
===========================
Deepgram STT Client — PlayCoach Transcription Stage

Responsibility:
    - Transcribe the full session audio using the Deepgram SDK for ONE
      pass (quality pass: nova-3, diarization pass: nova-2 by default)
    - Enable per-word speaker labels when the pass asks for diarization
    - Return the raw response as a dict (normalized by word_normalizer)

Alternative provider to ElevenLabs, selected with
TRANSCRIPTION_PROVIDER=deepgram. Deepgram responses carry no spacing
tokens; speakers are integers and become "speaker_<n>" downstream.

Failure mapping:
    - Timeout              → PassTimeoutError
    - Any SDK / API error  → TranscriptionPassError

This module does NOT:
    - Retry, merge, segment, or store anything
"""

import logging
import os

from dotenv import load_dotenv

from src.errors import PassTimeoutError, TranscriptionPassError
from src.schemas.transcript import PassConfig

load_dotenv()

logger = logging.getLogger("playcoach.stt.deepgram_client")


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
    Run one Deepgram transcription pass over the whole recording.

    ``extension`` and ``request_id`` are accepted for interface parity with
    the ElevenLabs client; Deepgram sniffs the container itself.

    Returns:
        The Deepgram prerecorded response as a dict.

    Raises:
        PassTimeoutError:       If the SDK call times out.
        TranscriptionPassError: If the API key is missing or the call fails.
    """
    api_key = os.environ.get("DEEPGRAM_API_KEY")
    if not api_key:
        raise TranscriptionPassError(
            config.role, "DEEPGRAM_API_KEY environment variable is not set."
        )

    from deepgram import DeepgramClient

    client = DeepgramClient(api_key=api_key)

    options = {
        "model": config.model,
        "diarize": config.diarize,
        "smart_format": True,
        "punctuate": True,
        "utterances": False,
    }
    if config.keyterms:
        options["keyterm"] = list(config.keyterms)

    try:
        logger.info(
            "Sending %s pass to Deepgram (%s, %d bytes)...",
            config.role, config.model, len(audio_bytes),
        )
        response = client.listen.v1.media.transcribe_file(
            request=audio_bytes,
            request_options={"timeout_in_seconds": int(config.timeout)},
            **options,
        )
    except Exception as exc:
        if "timeout" in type(exc).__name__.lower():
            raise PassTimeoutError(config.role, config.timeout) from exc
        raise TranscriptionPassError(
            config.role, f"Deepgram transcription failed: {exc}"
        ) from exc

    body = _to_dict(response)
    _log_response_metadata(body, len(audio_bytes), config.role)
    return body


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _to_dict(response) -> dict:
    """Convert an SDK response object into a plain dict."""
    if isinstance(response, dict):
        return response
    for method in ("model_dump", "to_dict", "dict"):
        fn = getattr(response, method, None)
        if callable(fn):
            return fn()
    raise TranscriptionPassError("deepgram", "Unrecognized Deepgram response object.")


def _log_response_metadata(body: dict, audio_size: int, role: str) -> None:
    """Log Deepgram response metadata for debugging."""
    metadata = body.get("metadata") or {}
    duration = metadata.get("duration") or 0.0

    channels = (body.get("results") or {}).get("channels") or []
    n_words = 0
    speakers: set = set()
    if channels:
        alternatives = channels[0].get("alternatives") or []
        if alternatives:
            words = alternatives[0].get("words") or []
            n_words = len(words)
            speakers = {w.get("speaker") for w in words if w.get("speaker") is not None}

    logger.info(
        "Deepgram %s pass done: audio_size=%d bytes, duration=%.2fs, words=%d, speakers=%d",
        role, audio_size, duration, n_words, len(speakers),
    )

    if duration and duration < 5.0 and audio_size > 100_000:
        logger.warning(
            "Deepgram reported only %.2fs duration for %d bytes of audio. "
            "This suggests audio may be truncated or malformed.",
            duration, audio_size,
        )
