"""
src/audio/probe.py
===================
Audio Probe — PlayCoach Transcription Stage

Responsibility:
    - Validate that a stored recording is non-empty and decodable
    - Determine the recording duration (seconds) with pydub when the
      session has none recorded, so trailing silence can be detected

The audio itself is sent to the provider unchanged; nothing is resampled
or re-encoded here.

This module does NOT:
    - Transcribe, chunk, or store audio
"""

import io
import logging

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from src.errors import AudioValidationError

logger = logging.getLogger("playcoach.audio.probe")


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ALLOWED_EXTENSIONS = {"m4a", "mp3", "wav", "webm", "aac"}
MAX_DURATION_SECONDS = 3600  # 60 minutes


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_not_empty(audio_bytes: bytes) -> None:
    """
    Check that the recording is not empty (zero bytes).

    Raises:
        AudioValidationError: If the recording has no content.
    """
    if not audio_bytes:
        raise AudioValidationError("Audio file is empty.")


def validate_extension(extension: str) -> str:
    """
    Normalize and check a container extension ("M4A", ".m4a" → "m4a").

    Raises:
        AudioValidationError: If the extension is not allowed.
    """
    ext = (extension or "").lower().lstrip(".")
    if ext not in ALLOWED_EXTENSIONS:
        raise AudioValidationError(
            f"Unsupported file type '{ext}'. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    return ext


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------


def probe_duration(audio_bytes: bytes, extension: str = "m4a") -> float:
    """
    Decode the recording and return its duration in seconds.

    Args:
        audio_bytes: Raw bytes of the stored recording.
        extension:   Container extension used as the decoder format hint.

    Returns:
        Duration in seconds, rounded to milliseconds.

    Raises:
        AudioValidationError: If the audio is empty, undecodable, has zero
                              duration, or exceeds MAX_DURATION_SECONDS.
    """
    validate_not_empty(audio_bytes)
    ext = validate_extension(extension)

    try:
        audio = AudioSegment.from_file(io.BytesIO(audio_bytes), format=ext)
    except CouldntDecodeError as exc:
        raise AudioValidationError("Audio file is corrupt or could not be decoded.") from exc
    except Exception as exc:
        raise AudioValidationError(f"Unexpected error decoding audio: {exc}") from exc

    duration_seconds = round(len(audio) / 1000.0, 3)
    if duration_seconds == 0:
        raise AudioValidationError("Audio file has zero duration.")
    if duration_seconds > MAX_DURATION_SECONDS:
        raise AudioValidationError(
            f"Audio duration ({duration_seconds:.1f}s) exceeds the "
            f"maximum allowed ({MAX_DURATION_SECONDS}s)."
        )

    logger.info(
        "Probed audio: %.2fs, %d channel(s), %d Hz.",
        duration_seconds, audio.channels, audio.frame_rate,
    )
    return duration_seconds


def extension_of(path: str, default: str = "m4a") -> str:
    """Return the lowercase extension of a storage key or filename, without the dot."""
    dot_index = path.rfind(".")
    if dot_index == -1 or dot_index < path.rfind("/"):
        return default
    return path[dot_index + 1:].lower() or default
