"""
src/store/base.py
==================
Session Store Interface — PlayCoach Session Pipeline

Responsibility:
    - Define the persistence contract used by the orchestrator
    - Provide the field-clearing helpers shared by every backend

Every operation is individually atomic. Status changes are
compare-and-set: the caller names the status it expects, and the write
only happens if the stored status still matches.

Run tokens: ``claim_run`` stamps a PENDING session with a fresh
``run_id``. Every write that accepts ``run_id`` only applies while the
stored token still matches, so a run superseded by a reset (which clears
the token) or by a later claim cannot write into the new run's results.
Writes without a token skip that check.

Backend failures surface as PersistenceError. Lookups of unknown ids
raise SessionNotFoundError; lost compare-and-sets and illegal targets
raise InvalidTransitionError; writes from a superseded run raise
StaleRunError.

This module does NOT:
    - Sequence pipeline stages (see src.pipeline)
    - Talk to any provider
"""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional

from src.schemas.session import AnalysisResult, AnalysisStatus, Session
from src.schemas.transcript import Utterance

# Session attributes that update_status(**fields) may set.
UPDATABLE_FIELDS = frozenset({
    "duration_seconds",
    "transcript",
    "transcription_service",
    "transcribed_at",
    "retry_count",
    "last_retried_at",
    "analysis_error",
    "analysis_failed_at",
    "permanent_failure",
    "role_map",
    "tag_counts",
    "overall_score",
    "coaching_summary",
    "analyzed_at",
})

# Values written by reset_session.
RESET_FIELDS: dict[str, Any] = {
    "transcript": "",
    "transcription_service": None,
    "transcribed_at": None,
    "retry_count": 0,
    "last_retried_at": None,
    "analysis_error": None,
    "analysis_failed_at": None,
    "permanent_failure": False,
    "role_map": None,
    "tag_counts": None,
    "overall_score": None,
    "coaching_summary": None,
    "analyzed_at": None,
    "run_id": None,
}


class SessionStore(ABC):
    """Persisted session + utterance store."""

    @abstractmethod
    def create_session(self, session: Session) -> Session:
        """Insert a new session. Raises PersistenceError if the id exists."""

    @abstractmethod
    def find_by_id(self, session_id: str) -> Optional[Session]:
        """Return the session, or None if unknown."""

    @abstractmethod
    def claim_run(self, session_id: str) -> Session:
        """Stamp a PENDING session with a new ``run_id``, replacing any earlier one."""

    @abstractmethod
    def update_status(
        self,
        session_id: str,
        expected: AnalysisStatus,
        target: AnalysisStatus,
        run_id: Optional[str] = None,
        **fields: Any,
    ) -> Session:
        """Compare-and-set ``expected -> target``, writing ``fields`` in the same step."""

    @abstractmethod
    def replace_utterances(
        self,
        session_id: str,
        utterances: list[Utterance],
        run_id: Optional[str] = None,
    ) -> None:
        """Atomically replace every utterance of a PENDING session."""

    @abstractmethod
    def list_utterances(self, session_id: str) -> list[Utterance]:
        """Return the session's utterances ordered by ``order``."""

    @abstractmethod
    def record_transcript(
        self,
        session_id: str,
        transcript: str,
        service: str,
        duration_seconds: Optional[float] = None,
        run_id: Optional[str] = None,
    ) -> Session:
        """Store the transcript text and service while the session is PENDING."""

    @abstractmethod
    def record_retry(self, session_id: str, attempt: int, run_id: Optional[str] = None) -> Session:
        """Persist ``retry_count = attempt`` and the retry time."""

    @abstractmethod
    def record_analysis_result(
        self,
        session_id: str,
        result: AnalysisResult,
        run_id: Optional[str] = None,
    ) -> Session:
        """Write derived fields and utterance tags, and move PROCESSING -> COMPLETED."""

    @abstractmethod
    def record_failure(self, session_id: str, error: str, run_id: Optional[str] = None) -> Session:
        """Move PENDING|PROCESSING -> FAILED with a permanent failure record."""

    @abstractmethod
    def reset_session(self, session_id: str, force: bool = False) -> Session:
        """Move any status -> PENDING, clearing transcript, utterances, run token and derived fields."""


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def new_run_id() -> str:
    return uuid.uuid4().hex


def check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update session field(s): {', '.join(sorted(unknown))}")


def apply_tags(utterances: list[Utterance], result: AnalysisResult) -> list[Utterance]:
    """
    Copy each utterance with its resolved role and the analysis tag /
    feedback keyed by its order. Untagged utterances keep their own tag.
    """
    tagged = []
    for utt in utterances:
        role = result.role_map.get(utt.speaker, utt.role)
        tag, feedback = result.utterance_tags.get(utt.order, (utt.tag, utt.feedback))
        tagged.append(utt.with_analysis(role, tag, feedback))
    return tagged
