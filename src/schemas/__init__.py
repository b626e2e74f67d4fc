# src/schemas/__init__.py
# ========================
# Data Types — PlayCoach Session Pipeline
#
#   - transcript.py: Word, TranscriptionPass, Utterance, silence marker
#   - session.py:    Session, AnalysisStatus, AnalysisResult, transitions
#
# All transcript records are frozen dataclasses; a Session is mutated only
# through the session store (src/store/).

from src.schemas.session import (  # noqa: F401
    AnalysisResult,
    AnalysisStatus,
    Session,
    is_transition_allowed,
    utcnow,
)
from src.schemas.transcript import (  # noqa: F401
    PASS_ROLE_DIARIZATION,
    PASS_ROLE_QUALITY,
    SILENT_SPEAKER_ID,
    SILENT_TAG,
    WORD_TYPE_SPACING,
    WORD_TYPE_WORD,
    PassConfig,
    TranscriptionPass,
    Utterance,
    Word,
)

__all__ = [
    "AnalysisResult",
    "AnalysisStatus",
    "Session",
    "is_transition_allowed",
    "utcnow",
    "PASS_ROLE_DIARIZATION",
    "PASS_ROLE_QUALITY",
    "SILENT_SPEAKER_ID",
    "SILENT_TAG",
    "WORD_TYPE_SPACING",
    "WORD_TYPE_WORD",
    "PassConfig",
    "TranscriptionPass",
    "Utterance",
    "Word",
]
