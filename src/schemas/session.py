"""
src/schemas/session.py
=======================
Session Data Types — PlayCoach Session Pipeline

Responsibility:
    - Define the persisted Session record and its AnalysisStatus enum
    - Define the legal status transitions of the processing state machine
    - Define the AnalysisResult returned by the analysis collaborator

This module does NOT:
    - Persist sessions (handled by src.store)
    - Perform transitions (handled by src.pipeline)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class AnalysisStatus(str, Enum):
    """Processing status of one recorded session."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# target -> statuses it may be entered from
_ALLOWED_TRANSITIONS: dict[AnalysisStatus, frozenset[AnalysisStatus]] = {
    AnalysisStatus.PROCESSING: frozenset({AnalysisStatus.PENDING}),
    AnalysisStatus.COMPLETED: frozenset({AnalysisStatus.PROCESSING}),
    AnalysisStatus.FAILED: frozenset(
        {AnalysisStatus.PENDING, AnalysisStatus.PROCESSING}
    ),
    AnalysisStatus.PENDING: frozenset(
        {
            AnalysisStatus.PENDING,
            AnalysisStatus.PROCESSING,
            AnalysisStatus.COMPLETED,
            AnalysisStatus.FAILED,
        }
    ),
}


def is_transition_allowed(current: AnalysisStatus, target: AnalysisStatus) -> bool:
    """Return True if ``current -> target`` is a legal transition."""
    return AnalysisStatus(current) in _ALLOWED_TRANSITIONS[AnalysisStatus(target)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AnalysisResult:
    """Structured scoring and feedback returned by the analysis collaborator."""

    role_map: dict[str, str] = field(default_factory=dict)
    # utterance order -> (tag, feedback)
    utterance_tags: dict[int, tuple[str, Optional[str]]] = field(default_factory=dict)
    tag_counts: dict[str, int] = field(default_factory=dict)
    overall_score: Optional[int] = None
    coaching_summary: str = ""


@dataclass
class Session:
    """One recorded play session and everything derived from it."""

    id: str
    user_id: str
    storage_path: Optional[str] = None
    duration_seconds: Optional[float] = None
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    metadata: dict[str, Any] = field(default_factory=dict)
    # token of the run currently allowed to write; cleared by reset
    run_id: Optional[str] = None

    # Transcription stage
    transcript: str = ""
    transcription_service: Optional[str] = None
    transcribed_at: Optional[datetime] = None

    # Retry / failure bookkeeping
    retry_count: int = 0
    last_retried_at: Optional[datetime] = None
    analysis_error: Optional[str] = None
    analysis_failed_at: Optional[datetime] = None
    permanent_failure: bool = False

    # Derived analysis fields
    role_map: Optional[dict[str, str]] = None
    tag_counts: Optional[dict[str, int]] = None
    overall_score: Optional[int] = None
    coaching_summary: Optional[str] = None
    analyzed_at: Optional[datetime] = None

    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the API status format."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "storage_path": self.storage_path,
            "duration_seconds": self.duration_seconds,
            "analysis_status": AnalysisStatus(self.analysis_status).value,
            "transcript": self.transcript,
            "transcription_service": self.transcription_service,
            "retry_count": self.retry_count,
            "analysis_error": self.analysis_error,
            "permanent_failure": self.permanent_failure,
            "role_map": self.role_map,
            "tag_counts": self.tag_counts,
            "overall_score": self.overall_score,
            "coaching_summary": self.coaching_summary,
            "created_at": _iso(self.created_at),
            "transcribed_at": _iso(self.transcribed_at),
            "analyzed_at": _iso(self.analyzed_at),
            "analysis_failed_at": _iso(self.analysis_failed_at),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
