"""
src/analysis/coach.py
======================
Play-Session Coach Analyzer — PlayCoach Analysis Stage

Responsibility:
    - Identify which diarization speaker is the ADULT and which the CHILD
    - Code every adult utterance with a DPICS behavior code and a short
      coaching feedback line (OpenAI, JSON output, temperature 0)
    - Derive tag counts and the overall session score deterministically
      from the codes (no model involvement)

DPICS codes → display tags:
    RF, RQ → Echo          LP → Labeled Praise    UP → Unlabeled Praise
    BD → Narration         DC, IC → Command       Q → Question
    NTA → Criticism        ID, AK → Neutral

Score (child-directed play, "shield" model):
    Praise, echo and narration (each capped at 10) build a shield worth up
    to 40 points over a base of 60. Each question / command / criticism
    costs 10/3 points while the shield holds; once broken, every remaining
    negative costs 1 point from 60. Sessions that miss the mastery gate
    (10+ of each skill, 3 or fewer negatives) are capped at 89.

Failure mapping:
    - No speech utterances           → InvalidAnalysisInputError (never retried)
    - OpenAI error / invalid output  → AnalysisError (retried by the orchestrator)

This module does NOT:
    - Retry (the orchestrator owns retries)
    - Persist results or touch session status
    - Tag silent slots (they keep their SILENT tag)
"""

import json
import logging
import os
from typing import Any, Optional

from openai import OpenAI, OpenAIError

from src.errors import AnalysisError, InvalidAnalysisInputError
from src.schemas.session import AnalysisResult
from src.schemas.transcript import Utterance

logger = logging.getLogger("playcoach.analysis.coach")


# ---------------------------------------------------------------------------
# Code tables
# ---------------------------------------------------------------------------

DPICS_TO_TAG: dict[str, str] = {
    "RF": "Echo",
    "RQ": "Echo",
    "LP": "Labeled Praise",
    "UP": "Unlabeled Praise",
    "BD": "Narration",
    "DC": "Command",
    "IC": "Command",
    "Q": "Question",
    "NTA": "Criticism",
    "ID": "Neutral",
    "AK": "Neutral",
}

# code -> counters it increments
_CODE_COUNTERS: dict[str, tuple[str, ...]] = {
    "RF": ("echo",),
    "RQ": ("echo",),
    "LP": ("labeled_praise", "praise"),
    "UP": ("unlabeled_praise",),
    "BD": ("narration",),
    "DC": ("direct_command", "command"),
    "IC": ("indirect_command", "command"),
    "Q": ("question",),
    "NTA": ("criticism",),
    "ID": ("neutral",),
    "AK": ("neutral",),
}

TAG_COUNT_KEYS: tuple[str, ...] = (
    "echo", "labeled_praise", "unlabeled_praise", "praise", "narration",
    "direct_command", "indirect_command", "command", "question",
    "criticism", "neutral",
)

_VALID_ROLES = {"ADULT", "CHILD"}

# Shield scoring
_BASE_SCORE = 60
_MAX_SHIELD_POINTS = 40
_SKILL_POINTS_FOR_MAX_SHIELD = 30
_SKILL_TARGET = 10
_MAX_DONTS = 3
_PASS_CAP = 100
_FAIL_CAP = 89


# ---------------------------------------------------------------------------
# OpenAI prompts
# ---------------------------------------------------------------------------

_ROLE_SYSTEM_PROMPT: str = (
    "You identify speaker roles in a transcribed parent-child play session. "
    "Each utterance carries a diarization speaker id.\n\n"
    "RULES:\n"
    "- Return ONLY a valid JSON object with one key: \"speaker_identification\".\n"
    "- \"speaker_identification\" maps EVERY speaker id to an object with keys "
    "\"role\" (\"ADULT\" or \"CHILD\"), \"confidence\" (0.0-1.0) and "
    "\"utterance_count\" (int).\n"
    "- At least one speaker MUST be ADULT.\n"
    "- Do NOT include explanations or any other keys.\n\n"
    "EXAMPLE OUTPUT:\n"
    '{"speaker_identification": {"speaker_0": {"role": "ADULT", "confidence": 0.9, '
    '"utterance_count": 12}, "speaker_1": {"role": "CHILD", "confidence": 0.8, '
    '"utterance_count": 7}}}\n'
)

_CODING_SYSTEM_PROMPT: str = (
    "You are an expert parent-child interaction therapy (PCIT) coder. "
    "Code every ADULT utterance with exactly one DPICS code:\n"
    "RF (reflection), RQ (reflective question), LP (labeled praise), "
    "UP (unlabeled praise), BD (behavioral description), DC (direct command), "
    "IC (indirect command), Q (question), NTA (negative talk), "
    "ID (informational description), AK (acknowledgement).\n\n"
    "RULES:\n"
    "- Return ONLY a valid JSON object with keys \"results\" and \"summary\".\n"
    "- \"results\" is an array of {\"id\": <int>, \"code\": <string>, "
    "\"feedback\": <string>} with one entry per ADULT utterance, using the "
    "utterance id given in the input.\n"
    "- Do NOT include CHILD utterances.\n"
    "- \"feedback\" is one short, warm, specific coaching sentence.\n"
    "- \"summary\" is two or three sentences of encouraging overall coaching.\n"
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class CoachAnalyzer:
    """
    OpenAI-backed analysis collaborator.

    Args:
        model:  OpenAI chat model id.
        client: Optional pre-built OpenAI client (created lazily otherwise).
    """

    def __init__(self, model: str = "gpt-4o-mini", client: Optional[Any] = None):
        self.model = model
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = OpenAI(api_key=os.environ.get("OPENAI_API_KEY"))
        return self._client

    def analyze(self, utterances: list[Utterance], metadata: Optional[dict] = None) -> AnalysisResult:
        """
        Identify roles, code adult utterances and score the session.

        Args:
            utterances: Persisted utterances (speech + silent slots) in order.
            metadata:   Session metadata; ``child_name`` personalizes feedback.

        Returns:
            AnalysisResult keyed by utterance order.

        Raises:
            InvalidAnalysisInputError: If there is no speech to analyze.
            AnalysisError:             On OpenAI failure or invalid output.
        """
        speech = [u for u in utterances if not u.is_silent and u.text.strip()]
        if not speech:
            raise InvalidAnalysisInputError("No speech utterances to analyze.")

        child_name = str((metadata or {}).get("child_name") or "the child")

        # Step 1: speaker roles
        role_map = self._identify_roles(speech)
        logger.info("Role map: %s", role_map)

        # Step 2: behavior coding of adult speech
        codes, summary = self._code_utterances(speech, role_map, child_name)

        tag_counts = count_tags(code for code, _ in codes.values())
        score, passed = calculate_score(tag_counts)

        utterance_tags = {
            order: (DPICS_TO_TAG.get(code, code), feedback)
            for order, (code, feedback) in codes.items()
        }

        logger.info(
            "Analysis complete: %d coded utterance(s), score=%d (%s).",
            len(utterance_tags), score, "passed" if passed else "not passed",
        )

        return AnalysisResult(
            role_map=role_map,
            utterance_tags=utterance_tags,
            tag_counts=tag_counts,
            overall_score=score,
            coaching_summary=summary,
        )

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _identify_roles(self, speech: list[Utterance]) -> dict[str, str]:
        payload = [
            {"speaker": u.speaker, "text": u.text, "start": u.start_time, "end": u.end_time}
            for u in speech
        ]
        raw = self._complete(_ROLE_SYSTEM_PROMPT, json.dumps(payload), max_tokens=1024)
        try:
            return parse_role_response(raw)
        except ValueError as exc:
            raise AnalysisError(f"Failed to parse role identification: {exc}") from exc

    def _code_utterances(
        self,
        speech: list[Utterance],
        role_map: dict[str, str],
        child_name: str,
    ) -> tuple[dict[int, tuple[str, Optional[str]]], str]:
        payload = [
            {"id": u.order, "role": role_map.get(u.speaker, "unknown"), "text": u.text}
            for u in speech
        ]
        user_message = (
            f"The child's name is {child_name}.\n"
            f"Dialogue turns ({len(payload)}):\n{json.dumps(payload)}"
        )
        raw = self._complete(_CODING_SYSTEM_PROMPT, user_message, max_tokens=8192)
        try:
            return parse_coding_response(raw, {u.order for u in speech})
        except ValueError as exc:
            raise AnalysisError(f"Failed to parse behavior coding: {exc}") from exc

    def _complete(self, system_prompt: str, user_message: str, max_tokens: int) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                temperature=0.0,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise AnalysisError(f"OpenAI call failed: {exc}") from exc

        raw = response.choices[0].message.content or ""
        logger.debug("OpenAI raw response: %s", raw[:500])
        return raw


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def parse_role_response(raw: str) -> dict[str, str]:
    """
    Parse the role identification JSON into ``{speaker_id: "adult"|"child"}``.

    Raises:
        ValueError: If the JSON is invalid, a role is unknown, or no ADULT exists.
    """
    parsed = _load_object(raw)
    identification = parsed.get("speaker_identification")
    if not isinstance(identification, dict) or not identification:
        raise ValueError("Missing speaker_identification object")

    role_map: dict[str, str] = {}
    for speaker_id, info in identification.items():
        role = info.get("role") if isinstance(info, dict) else None
        if not isinstance(role, str) or role.upper() not in _VALID_ROLES:
            raise ValueError(f"Invalid role for {speaker_id}: {role!r}")
        role_map[str(speaker_id)] = role.lower()

    if "adult" not in role_map.values():
        raise ValueError("No adult speakers found in role identification")
    return role_map


def parse_coding_response(
    raw: str,
    valid_ids: set[int],
) -> tuple[dict[int, tuple[str, Optional[str]]], str]:
    """
    Parse the behavior coding JSON.

    Entries referencing unknown utterance ids are skipped.

    Returns:
        (``{order: (code, feedback)}``, coaching summary)

    Raises:
        ValueError: If the JSON is invalid or ``results`` is not a list.
    """
    parsed = _load_object(raw)
    results = parsed.get("results")
    if not isinstance(results, list):
        raise ValueError("Expected \"results\" array of coding results")

    codes: dict[int, tuple[str, Optional[str]]] = {}
    for entry in results:
        if not isinstance(entry, dict):
            continue
        utt_id, code = entry.get("id"), entry.get("code")
        if not isinstance(utt_id, int) or utt_id not in valid_ids:
            continue
        if not isinstance(code, str) or not code.strip():
            continue
        feedback = entry.get("feedback")
        codes[utt_id] = (code.strip().upper(), feedback if isinstance(feedback, str) else None)

    summary = parsed.get("summary")
    return codes, summary if isinstance(summary, str) else ""


def _load_object(raw: str) -> dict:
    text = (raw or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        text = text[text.find("{"):] if "{" in text else text
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"OpenAI response is not valid JSON: {raw[:200]!r}") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected JSON object, got {type(parsed).__name__}")
    return parsed


# ---------------------------------------------------------------------------
# Deterministic scoring
# ---------------------------------------------------------------------------


def count_tags(codes) -> dict[str, int]:
    """Count DPICS codes into the session tag counters. Unknown codes are ignored."""
    counts = {key: 0 for key in TAG_COUNT_KEYS}
    for code in codes:
        for counter in _CODE_COUNTERS.get(code, ()):
            counts[counter] += 1
    return counts


def calculate_score(tag_counts: dict[str, int]) -> tuple[int, bool]:
    """
    Shield-model session score.

    Returns:
        (score 0-100, whether the mastery gate passed)
    """
    praise = tag_counts.get("praise", 0)
    echo = tag_counts.get("echo", 0)
    narration = tag_counts.get("narration", 0)
    negatives = (
        tag_counts.get("question", 0)
        + tag_counts.get("command", 0)
        + tag_counts.get("criticism", 0)
    )

    effective = sum(min(n, _SKILL_TARGET) for n in (praise, echo, narration))
    shield = effective * (_MAX_SHIELD_POINTS / _SKILL_POINTS_FOR_MAX_SHIELD)
    damage_per_hit = _SKILL_TARGET / 3
    hits_to_break = shield / damage_per_hit

    if negatives <= hits_to_break:
        raw_score = _BASE_SCORE + shield - negatives * damage_per_hit
    else:
        raw_score = _BASE_SCORE - (negatives - hits_to_break)

    passed = (
        praise >= _SKILL_TARGET
        and echo >= _SKILL_TARGET
        and narration >= _SKILL_TARGET
        and negatives <= _MAX_DONTS
    )
    score = min(raw_score, _PASS_CAP if passed else _FAIL_CAP)
    return int(round(max(score, 0))), passed
