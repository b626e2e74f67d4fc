"""
src/schemas/transcript.py
==========================
Transcript Data Types — PlayCoach Session Pipeline

Responsibility:
    - Define the immutable Word, TranscriptionPass, and Utterance records
      that flow between the normalizer, reconciler, segmenter, and
      silence extractor
    - Define the reserved silence speaker marker

This module does NOT:
    - Parse provider payloads (handled by src.stt.word_normalizer)
    - Segment, merge, or persist anything
"""

from dataclasses import dataclass, replace
from typing import Optional

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

WORD_TYPE_WORD = "word"
WORD_TYPE_SPACING = "spacing"

PASS_ROLE_QUALITY = "quality"
PASS_ROLE_DIARIZATION = "diarization"

# Reserved speaker id for synthesized silent slots.
SILENT_SPEAKER_ID = "__SILENT__"
SILENT_TAG = "SILENT"


# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Word:
    """A single timed token from one transcription pass."""

    text: str
    start: float
    end: float
    type: str = WORD_TYPE_WORD
    speaker_id: Optional[str] = None

    @property
    def is_spacing(self) -> bool:
        return self.type == WORD_TYPE_SPACING

    @property
    def midpoint(self) -> float:
        return (self.start + self.end) / 2


@dataclass(frozen=True)
class TranscriptionPass:
    """The full, normalized output of one provider call for one audio file."""

    role: str
    words: tuple[Word, ...] = ()
    model: Optional[str] = None

    @classmethod
    def empty(cls, role: str, model: Optional[str] = None) -> "TranscriptionPass":
        """An empty pass, used in place of a failed or timed-out call."""
        return cls(role=role, words=(), model=model)

    def spoken_words(self) -> list[Word]:
        """Non-spacing words in time order."""
        return [w for w in self.words if not w.is_spacing]

    @property
    def is_empty(self) -> bool:
        return not self.spoken_words()

    def speakers(self) -> list[str]:
        """Distinct speaker ids in order of first appearance."""
        seen: list[str] = []
        for w in self.spoken_words():
            if w.speaker_id is not None and w.speaker_id not in seen:
                seen.append(w.speaker_id)
        return seen


@dataclass(frozen=True)
class Utterance:
    """A contiguous, single-speaker span of speech (or a silent slot)."""

    speaker: Optional[str]
    text: str
    start_time: float
    end_time: float
    order: int = 0
    role: Optional[str] = None
    tag: Optional[str] = None
    feedback: Optional[str] = None

    @property
    def duration(self) -> float:
        return round(self.end_time - self.start_time, 2)

    @property
    def midpoint(self) -> float:
        return (self.start_time + self.end_time) / 2

    @property
    def is_silent(self) -> bool:
        return self.speaker == SILENT_SPEAKER_ID

    def with_order(self, order: int) -> "Utterance":
        return replace(self, order=order)

    def with_speaker(self, speaker: Optional[str]) -> "Utterance":
        return replace(self, speaker=speaker)

    def with_analysis(
        self,
        role: Optional[str],
        tag: Optional[str],
        feedback: Optional[str],
    ) -> "Utterance":
        return replace(self, role=role, tag=tag, feedback=feedback)

    def to_dict(self) -> dict:
        """Serialize to the persisted / API utterance format."""
        return {
            "order": self.order,
            "speaker": self.speaker,
            "role": self.role,
            "text": self.text,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "tag": self.tag,
            "feedback": self.feedback,
        }


@dataclass(frozen=True)
class PassConfig:
    """How to call the provider for one pass."""

    role: str
    model: str
    diarize: bool = True
    diarization_threshold: Optional[float] = None
    keyterms: tuple[str, ...] = ()
    timeout: float = 300.0
