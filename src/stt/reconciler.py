"""
src/stt/reconciler.py
======================
Two-Pass Reconciler — PlayCoach Transcription Stage

Responsibility:
    - Combine a quality pass (better wording) and a diarization pass
      (better speaker labels) into one utterance stream that keeps the
      quality pass's text and repairs its speaker attribution
    - Degrade to a single-pass result when either pass is empty

Strategies:
    "utterance" (default):
        Segment the quality pass alone, then give each provisional
        utterance the diarization speaker with the greatest accumulated
        time overlap. Ties go to the speaker first met in accumulation
        order. No overlap at all → nearest-midpoint lookup.
    "word":
        Give every quality word the speaker of the diarization word whose
        midpoint is closest to its own, then segment. Cheaper, noisier at
        fast turn-taking.

Both strategies are pure and deterministic. No check is made that the two
passes share a time scale: wildly misaligned passes still reconcile via
the nearest-midpoint fallback.

This module does NOT:
    - Call any provider or handle pass failures (see stt_pipeline)
    - Map speaker ids to adult / child roles (analysis collaborator)
    - Insert silent slots or persist anything
"""

import logging
from typing import Optional

from src.schemas.transcript import TranscriptionPass, Utterance, Word
from src.stt.utterance_segmenter import segment_words

logger = logging.getLogger("playcoach.stt.reconciler")

STRATEGY_UTTERANCE = "utterance"
STRATEGY_WORD = "word"


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def reconcile(
    quality: TranscriptionPass,
    diarization: TranscriptionPass,
    strategy: str = STRATEGY_UTTERANCE,
) -> list[Utterance]:
    """
    Reconcile two passes into one ordered utterance list.

    Args:
        quality:     Pass favored for text content.
        diarization: Pass favored for speaker identity.
        strategy:    "utterance" or "word".

    Returns:
        Utterances numbered 0..n-1. Empty if both passes are empty.

    Raises:
        ValueError: If ``strategy`` is unknown.
    """
    if strategy not in (STRATEGY_UTTERANCE, STRATEGY_WORD):
        raise ValueError(f"Unknown merge strategy: {strategy!r}")

    if quality.is_empty and diarization.is_empty:
        logger.warning("Both passes are empty — nothing to reconcile.")
        return []

    if quality.is_empty:
        logger.warning(
            "Quality pass is empty — using diarization pass alone (%d words).",
            len(diarization.spoken_words()),
        )
        return segment_words(diarization.words)

    if diarization.is_empty:
        logger.warning(
            "Diarization pass is empty — keeping quality pass speakers (%d words).",
            len(quality.spoken_words()),
        )
        return segment_words(quality.words)

    if strategy == STRATEGY_WORD:
        utterances = segment_words(merge_word_level(quality, diarization))
    else:
        utterances = merge_utterance_level(quality, diarization)

    logger.info(
        "Reconciled %s-level: %d utterances, %d speakers (quality had %d, diarization %d).",
        strategy,
        len(utterances),
        len({u.speaker for u in utterances}),
        len(quality.speakers()),
        len(diarization.speakers()),
    )
    return utterances


def merge_word_level(
    quality: TranscriptionPass,
    diarization: TranscriptionPass,
) -> list[Word]:
    """
    Assign each quality word the nearest-midpoint diarization speaker.

    Spacing tokens pass through unchanged. A word keeps its own speaker
    id when the diarization pass has no speaker-bearing words.
    """
    reference = diarization.spoken_words()
    merged: list[Word] = []

    for word in quality.words:
        if word.is_spacing:
            merged.append(word)
            continue

        speaker = find_speaker_at_time(reference, word.midpoint)
        merged.append(
            Word(
                text=word.text,
                start=word.start,
                end=word.end,
                type=word.type,
                speaker_id=speaker if speaker is not None else word.speaker_id,
            )
        )

    return merged


def merge_utterance_level(
    quality: TranscriptionPass,
    diarization: TranscriptionPass,
) -> list[Utterance]:
    """
    Segment the quality pass, then vote each utterance's speaker by overlap.
    """
    provisional = segment_words(quality.words)
    reference = diarization.spoken_words()

    merged: list[Utterance] = []
    fallbacks = 0
    for utt in provisional:
        speaker, used_fallback = _assign_speaker(utt, reference)
        fallbacks += used_fallback
        merged.append(utt.with_speaker(speaker if speaker is not None else utt.speaker))

    if fallbacks:
        logger.debug(
            "%d/%d utterances had no diarization overlap — used nearest midpoint.",
            fallbacks, len(provisional),
        )
    return merged


def speaker_overlap(utterance: Utterance, words: list[Word]) -> dict[str, float]:
    """
    Accumulate per-speaker time overlap with ``utterance``.

    Only positive overlaps are counted; the returned dict preserves the
    order in which speakers were first accumulated.
    """
    totals: dict[str, float] = {}
    for w in words:
        if w.is_spacing or w.speaker_id is None:
            continue
        overlap = min(w.end, utterance.end_time) - max(w.start, utterance.start_time)
        if overlap > 0:
            totals[w.speaker_id] = totals.get(w.speaker_id, 0.0) + overlap
    return totals


def find_speaker_at_time(words: list[Word], target: float) -> Optional[str]:
    """
    Speaker of the word whose midpoint is nearest ``target``.

    Ties keep the first word in scan order. Returns None if no word carries
    a speaker id.
    """
    best_speaker: Optional[str] = None
    best_distance = float("inf")

    for w in words:
        if w.is_spacing or w.speaker_id is None:
            continue
        distance = abs(w.midpoint - target)
        if distance < best_distance:
            best_distance = distance
            best_speaker = w.speaker_id

    return best_speaker


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _assign_speaker(utterance: Utterance, words: list[Word]) -> tuple[Optional[str], bool]:
    """Return (speaker, used_fallback) for one provisional utterance."""
    totals = speaker_overlap(utterance, words)

    if not totals:
        return (find_speaker_at_time(words, utterance.midpoint), True)

    best_speaker = None
    best_total = -1.0
    for speaker, total in totals.items():
        if total > best_total:
            best_speaker, best_total = speaker, total
    return (best_speaker, False)
