"""
src/stt/word_normalizer.py
===========================
Word Stream Normalizer — PlayCoach Transcription Stage

Responsibility:
    - Turn one provider's raw transcription response into a flat,
      time-ordered sequence of Word tokens
    - Drop provider envelope fields; keep text, start, end, type and
      speaker id
    - Accept both supported response shapes:
        * ElevenLabs Scribe:  {"words": [{"text", "start", "end",
                               "type", "speaker_id"}, ...]}
        * Deepgram:           {"results": {"channels": [{"alternatives":
                               [{"words": [{"word", "punctuated_word",
                               "start", "end", "speaker"}]}]}]}}
    - Accept SDK response objects as well as plain dicts

Spacing tokens are retained (type "spacing"); boundary logic downstream
skips them. ElevenLabs "audio_event" tokens such as "(laughter)" are kept
as words so the segmenter's annotation stripping removes them.

This module does NOT:
    - Call any provider
    - Merge passes or build utterances
    - Retry anything: a malformed payload raises TranscriptionFormatError
      and the caller decides
"""

import logging
from typing import Any

from src.errors import TranscriptionFormatError
from src.schemas.transcript import (
    WORD_TYPE_SPACING,
    WORD_TYPE_WORD,
    TranscriptionPass,
    Word,
)

logger = logging.getLogger("playcoach.stt.word_normalizer")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_words(payload: Any) -> list[Word]:
    """
    Flatten a provider response into time-ordered Words.

    Args:
        payload: ElevenLabs or Deepgram response (dict or SDK object).

    Returns:
        Words sorted by start time (stable, so provider order breaks ties).

    Raises:
        TranscriptionFormatError: If the payload is missing, has no word
            list, has an empty word list, or contains a malformed token.
    """
    payload = _as_mapping(payload)
    if payload is None:
        raise TranscriptionFormatError("Provider payload is empty or not an object.")

    raw_words, flavour = _locate_word_list(payload)
    if raw_words is None:
        raise TranscriptionFormatError(
            "Provider payload has no recognizable word list."
        )
    if not raw_words:
        raise TranscriptionFormatError("Provider payload contains no words.")

    if flavour == "deepgram":
        words = [_deepgram_token(tok, i) for i, tok in enumerate(raw_words)]
    else:
        words = [_elevenlabs_token(tok, i) for i, tok in enumerate(raw_words)]

    words.sort(key=lambda w: w.start)

    logger.debug(
        "Normalized %d %s tokens (%d spoken).",
        len(words),
        flavour,
        sum(1 for w in words if not w.is_spacing),
    )
    return words


def normalize_pass(payload: Any, role: str, model: str | None = None) -> TranscriptionPass:
    """Normalize a provider response into a TranscriptionPass for ``role``."""
    return TranscriptionPass(role=role, words=tuple(normalize_words(payload)), model=model)


# ---------------------------------------------------------------------------
# Shape detection
# ---------------------------------------------------------------------------


def _locate_word_list(payload: dict) -> tuple[list | None, str]:
    """Return (raw word list, flavour) or (None, "") if neither shape matches."""
    if "words" in payload:
        words = payload.get("words")
        if words is not None and not isinstance(words, (list, tuple)):
            raise TranscriptionFormatError("'words' must be a list.")
        return (list(words or []), "elevenlabs")

    results = _as_mapping(payload.get("results"))
    if results is None:
        return (None, "")

    channels = _list_field(results, "channels")
    if not channels:
        return ([], "deepgram")

    ch0 = _as_mapping(channels[0]) or {}
    alternatives = _list_field(ch0, "alternatives")
    if not alternatives:
        return ([], "deepgram")

    alt0 = _as_mapping(alternatives[0]) or {}
    return (_list_field(alt0, "words"), "deepgram")


def _list_field(obj, name: str) -> list:
    value = _get_attr(obj, name, None)
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise TranscriptionFormatError(f"'{name}' must be a list.")
    return list(value)


# ---------------------------------------------------------------------------
# Token conversion
# ---------------------------------------------------------------------------


def _elevenlabs_token(token: Any, index: int) -> Word:
    tok = _as_mapping(token)
    if tok is None:
        raise TranscriptionFormatError(f"Token {index} is not an object.")

    text = tok.get("text")
    if not isinstance(text, str):
        raise TranscriptionFormatError(f"Token {index} has no text.")

    start, end = _times(tok, index)
    token_type = WORD_TYPE_SPACING if tok.get("type") == WORD_TYPE_SPACING else WORD_TYPE_WORD

    speaker = tok.get("speaker_id")
    return Word(
        text=text,
        start=start,
        end=end,
        type=token_type,
        speaker_id=str(speaker) if speaker not in (None, "") else None,
    )


def _deepgram_token(token: Any, index: int) -> Word:
    tok = _as_mapping(token)
    if tok is None:
        raise TranscriptionFormatError(f"Token {index} is not an object.")

    text = tok.get("punctuated_word") or tok.get("word")
    if not isinstance(text, str):
        raise TranscriptionFormatError(f"Token {index} has no text.")

    start, end = _times(tok, index)

    speaker = tok.get("speaker")
    return Word(
        text=text,
        start=start,
        end=end,
        type=WORD_TYPE_WORD,
        speaker_id=f"speaker_{speaker}" if speaker is not None else None,
    )


def _times(tok: dict, index: int) -> tuple[float, float]:
    try:
        start = float(tok["start"])
        end = float(tok["end"])
    except KeyError as exc:
        raise TranscriptionFormatError(
            f"Token {index} is missing '{exc.args[0]}'."
        ) from exc
    except (TypeError, ValueError) as exc:
        raise TranscriptionFormatError(
            f"Token {index} has non-numeric timestamps."
        ) from exc

    if end < start:
        raise TranscriptionFormatError(
            f"Token {index} ends before it starts ({start:.2f} > {end:.2f})."
        )
    return (start, end)


# ---------------------------------------------------------------------------
# SDK object / dict access
# ---------------------------------------------------------------------------


def _as_mapping(obj: Any) -> dict | None:
    """Convert an SDK response object to a dict; pass dicts through."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj
    for method in ("model_dump", "to_dict", "dict"):
        fn = getattr(obj, method, None)
        if callable(fn):
            converted = fn()
            if isinstance(converted, dict):
                return converted
    return None


def _get_attr(obj, name: str, default):
    """Get an attribute from an SDK object or dict key, with a default."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)
