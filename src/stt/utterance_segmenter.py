"""
src/stt/utterance_segmenter.py
===============================
Utterance Segmenter — PlayCoach Transcription Stage

Responsibility:
    - Group a single (already reconciled) word stream into utterances
      at speaker-change and sentence-boundary points
    - Strip parenthesized non-speech annotations ("(laughter)"),
      collapse whitespace, drop utterances left empty
    - Number utterances 0..n-1 in time order
    - Format an utterance list as the plain-text transcript stored on
      the session

Segmentation rules (per word, spacing tokens skipped):
    - Empty accumulator        → open it with this word's speaker / start
    - Speaker change + text    → close at this word's start, reopen
    - Always                   → append text (single space; standalone
                                 punctuation attaches), advance end
    - Sentence terminal + text → close at this word's end, reset

Output is strictly time-ordered and non-overlapping by construction when
the input words are.

This module does NOT:
    - Merge passes (handled by src.stt.reconciler)
    - Insert silent slots (handled by src.stt.silence)
    - Persist anything
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from src.schemas.transcript import Utterance, Word

logger = logging.getLogger("playcoach.stt.utterance_segmenter")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# Sentence-terminal characters, ASCII and full-width.
_SENTENCE_END_PATTERN = re.compile(r"[.!?。！？]$")

# Non-speech event tags such as "(laughter)" or "(toy squeaks)".
_ANNOTATION_PATTERN = re.compile(r"\([^)]*\)")
_WHITESPACE_PATTERN = re.compile(r"\s+")

# Standalone punctuation tokens ("!", "?", ",") attach to the previous word.
_PUNCTUATION_ONLY_PATTERN = re.compile(r"^[^\w\s(]+$")


@dataclass
class _Accumulator:
    speaker: Optional[str] = None
    text: str = ""
    start: Optional[float] = None
    end: Optional[float] = None
    is_open: bool = False

    def open(self, word: Word) -> None:
        self.speaker = word.speaker_id
        self.text = ""
        self.start = word.start
        self.end = None
        self.is_open = True

    def close(self, end: float) -> Utterance:
        utterance = Utterance(
            speaker=self.speaker,
            text=self.text,
            start_time=self.start,
            end_time=end,
        )
        self.speaker, self.text, self.start, self.end = None, "", None, None
        self.is_open = False
        return utterance


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def segment_words(words: Iterable[Word]) -> list[Utterance]:
    """
    Segment a word stream into ordered utterances.

    Args:
        words: Time-ordered Words from one (reconciled) pass.

    Returns:
        Utterances numbered 0..n-1, annotations stripped, empties dropped.
    """
    raw: list[Utterance] = []
    acc = _Accumulator()

    for word in words:
        if word.is_spacing:
            continue

        if not acc.is_open:
            acc.open(word)

        # Speaker change → close current utterance at this word's start
        if word.speaker_id != acc.speaker and acc.text.strip():
            raw.append(acc.close(word.start))
            acc.open(word)

        acc.text = _join(acc.text, word.text)
        acc.end = word.end

        # Sentence boundary → close at this word's end
        if _SENTENCE_END_PATTERN.search(word.text) and acc.text.strip():
            raw.append(acc.close(word.end))

    if acc.is_open and acc.text.strip():
        raw.append(acc.close(acc.end))

    cleaned: list[Utterance] = []
    for utt in raw:
        text = strip_annotations(utt.text)
        if not text:
            logger.debug(
                "Dropping annotation-only utterance at %.2fs (speaker=%s).",
                utt.start_time, utt.speaker,
            )
            continue
        cleaned.append(
            Utterance(
                speaker=utt.speaker,
                text=text,
                start_time=utt.start_time,
                end_time=utt.end_time,
                order=len(cleaned),
            )
        )

    logger.debug(
        "Segmented %d utterances (%d dropped as empty).",
        len(cleaned), len(raw) - len(cleaned),
    )
    return cleaned


def _join(text: str, token: str) -> str:
    if not text:
        return token
    if _PUNCTUATION_ONLY_PATTERN.match(token):
        return text + token
    return f"{text} {token}"


def strip_annotations(text: str) -> str:
    """Remove parenthesized annotations and collapse whitespace."""
    without = _ANNOTATION_PATTERN.sub("", text)
    return _WHITESPACE_PATTERN.sub(" ", without).strip()


def format_transcript(utterances: list[Utterance]) -> str:
    """
    Format utterances as the readable transcript stored on the session.

    One line per utterance:
        [01] speaker_0 | 0.00-1.20s     | Good job!
    """
    if not utterances:
        return ""

    lines = []
    for idx, utt in enumerate(utterances):
        time_range = f"{utt.start_time:.2f}-{utt.end_time:.2f}s"
        lines.append(
            f"[{idx + 1:02d}] {utt.speaker} | {time_range:<14} | {utt.text}"
        )
    return "\n".join(lines)
