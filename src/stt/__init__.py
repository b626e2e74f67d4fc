# src/stt/__init__.py
# ====================
# Speech-to-Text Layer — PlayCoach
#
# Two-pass pipeline:
#   1. Quality pass + diarization pass issued concurrently
#      (elevenlabs_client / deepgram_client, one call per pass)
#   2. word_normalizer: provider payload → time-ordered Word stream
#   3. reconciler: quality text + diarization speakers → utterances
#   4. utterance_segmenter: speaker-change / sentence-end segmentation,
#      plain-text transcript formatting
#   5. silence: silent slots for gaps over the threshold, final ordering
#
# Public API:
#   TwoPassTranscriber(settings).transcribe(audio_bytes, ...) → TranscriptionResult

from src.stt.reconciler import reconcile  # noqa: F401
from src.stt.silence import extract_silent_slots, insert_silent_slots  # noqa: F401
from src.stt.stt_pipeline import TranscriptionResult, TwoPassTranscriber  # noqa: F401
from src.stt.utterance_segmenter import format_transcript, segment_words  # noqa: F401
from src.stt.word_normalizer import normalize_pass, normalize_words  # noqa: F401

__all__ = [
    "reconcile",
    "extract_silent_slots",
    "insert_silent_slots",
    "TranscriptionResult",
    "TwoPassTranscriber",
    "format_transcript",
    "segment_words",
    "normalize_pass",
    "normalize_words",
]
