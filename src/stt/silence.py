"""
src/stt/silence.py
===================
Silence Slot Extractor — PlayCoach Transcription Stage

Responsibility:
    - Scan the gaps before the first utterance, between neighbours, and
      after the last utterance (up to the recording duration)
    - Synthesize a silent-slot utterance for every gap strictly longer
      than the threshold
    - Interleave slots with speech and renumber ``order`` so the merged
      sequence is strictly increasing in both order and start time

Silent slots carry the reserved speaker "__SILENT__", empty text, the
"SILENT" tag and a duration-based coaching nudge.

Pure functions: no I/O, no persistence.

This module does NOT:
    - Detect silence acoustically (gaps come from utterance timing only)
    - Persist or analyze utterances
"""

import logging
from typing import Optional

from src.schemas.transcript import SILENT_SPEAKER_ID, SILENT_TAG, Utterance

logger = logging.getLogger("playcoach.stt.silence")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_SILENCE_THRESHOLD_SECONDS: float = 3.0

_LONG_SILENCE_SECONDS = 10.0
_MEDIUM_SILENCE_SECONDS = 5.0


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_silent_slots(
    utterances: list[Utterance],
    duration_seconds: Optional[float] = None,
    threshold: float = DEFAULT_SILENCE_THRESHOLD_SECONDS,
) -> list[Utterance]:
    """
    Find gaps longer than ``threshold`` and return them as silent slots.

    Args:
        utterances:       Speech utterances sorted by start time.
        duration_seconds: Total recording length; the trailing gap is only
                          checked when this is known.
        threshold:        Minimum gap length (exclusive), in seconds.

    Returns:
        Silent-slot utterances in time order (``order`` not yet final).

    Raises:
        ValueError: If ``threshold`` is not positive.
    """
    if threshold <= 0:
        raise ValueError(f"Silence threshold must be positive, got {threshold}")

    # Virtual bounds: 0 before the first utterance, duration after the last.
    bounds: list[tuple[float, float]] = []
    prev_end = 0.0
    for utt in utterances:
        bounds.append((prev_end, utt.start_time))
        prev_end = max(prev_end, utt.end_time)
    if duration_seconds is not None:
        bounds.append((prev_end, float(duration_seconds)))

    slots = [
        _make_slot(start, end)
        for start, end in bounds
        if end - start > threshold
    ]

    logger.info(
        "Found %d silent slot(s) over %d utterance(s) (threshold: %.1fs).",
        len(slots), len(utterances), threshold,
    )
    return slots


def insert_silent_slots(
    utterances: list[Utterance],
    duration_seconds: Optional[float] = None,
    threshold: float = DEFAULT_SILENCE_THRESHOLD_SECONDS,
) -> list[Utterance]:
    """
    Interleave silent slots with speech and renumber the merged sequence.

    Returns:
        Speech and silent-slot utterances ordered by start time, with
        ``order`` = 0..n-1.
    """
    slots = extract_silent_slots(utterances, duration_seconds, threshold)

    merged = sorted(list(utterances) + slots, key=lambda u: u.start_time)
    return [utt.with_order(i) for i, utt in enumerate(merged)]


def silent_slot_feedback(duration: float) -> str:
    """Coaching nudge attached to a silent slot, by how long it lasted."""
    if duration >= _LONG_SILENCE_SECONDS:
        return (
            "This was a long quiet moment. Try narrating what your child "
            "is doing or give a labeled praise!"
        )
    if duration >= _MEDIUM_SILENCE_SECONDS:
        return (
            "Nice pause here! You could describe what your child is doing "
            "during quiet moments."
        )
    return "A brief pause - great opportunity to add a narration or reflection."


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _make_slot(start: float, end: float) -> Utterance:
    return Utterance(
        speaker=SILENT_SPEAKER_ID,
        text="",
        start_time=start,
        end_time=end,
        tag=SILENT_TAG,
        feedback=silent_slot_feedback(end - start),
    )
