"""
src/store/memory.py
====================
In-Memory Session Store — PlayCoach Session Pipeline

Responsibility:
    - Hold sessions and utterances in process memory
    - Make every store operation atomic under a single lock

Used by tests and single-process development runs. Callers always get
copies: mutating a returned Session never changes stored state.
"""

import copy
import logging
import threading
from typing import Any, Optional

from src.errors import (
    InvalidTransitionError,
    PersistenceError,
    SessionBusyError,
    SessionNotFoundError,
    StaleRunError,
)
from src.schemas.session import (
    AnalysisResult,
    AnalysisStatus,
    Session,
    is_transition_allowed,
    utcnow,
)
from src.schemas.transcript import Utterance
from src.store.base import (
    RESET_FIELDS,
    SessionStore,
    apply_tags,
    check_fields,
    new_run_id,
)

logger = logging.getLogger("playcoach.store.memory")


class InMemorySessionStore(SessionStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}
        self._utterances: dict[str, list[Utterance]] = {}

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    def create_session(self, session: Session) -> Session:
        with self._lock:
            if session.id in self._sessions:
                raise PersistenceError(f"Session {session.id} already exists")
            self._sessions[session.id] = copy.deepcopy(session)
            self._utterances[session.id] = []
            return copy.deepcopy(session)

    def find_by_id(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session is not None else None

    def claim_run(self, session_id: str) -> Session:
        with self._lock:
            session = self._get(session_id)
            self._require_pending(session, AnalysisStatus.PROCESSING)
            session.run_id = new_run_id()
            return copy.deepcopy(session)

    def update_status(
        self,
        session_id: str,
        expected: AnalysisStatus,
        target: AnalysisStatus,
        run_id: Optional[str] = None,
        **fields: Any,
    ) -> Session:
        check_fields(fields)
        with self._lock:
            session = self._get(session_id)
            self._check_run(session, run_id)
            self._compare_and_check(session, expected, target)
            session.analysis_status = AnalysisStatus(target)
            for name, value in fields.items():
                setattr(session, name, value)
            return copy.deepcopy(session)

    def record_transcript(
        self,
        session_id: str,
        transcript: str,
        service: str,
        duration_seconds: Optional[float] = None,
        run_id: Optional[str] = None,
    ) -> Session:
        with self._lock:
            session = self._get(session_id)
            self._check_run(session, run_id)
            self._require_pending(session, AnalysisStatus.PROCESSING)
            session.transcript = transcript
            session.transcription_service = service
            session.transcribed_at = utcnow()
            if duration_seconds is not None:
                session.duration_seconds = duration_seconds
            return copy.deepcopy(session)

    def record_retry(self, session_id: str, attempt: int, run_id: Optional[str] = None) -> Session:
        with self._lock:
            session = self._get(session_id)
            self._check_run(session, run_id)
            session.retry_count = attempt
            session.last_retried_at = utcnow()
            return copy.deepcopy(session)

    def record_analysis_result(
        self,
        session_id: str,
        result: AnalysisResult,
        run_id: Optional[str] = None,
    ) -> Session:
        with self._lock:
            session = self._get(session_id)
            self._check_run(session, run_id)
            self._compare_and_check(
                session, AnalysisStatus.PROCESSING, AnalysisStatus.COMPLETED
            )
            self._utterances[session_id] = apply_tags(self._utterances[session_id], result)
            session.role_map = dict(result.role_map)
            session.tag_counts = dict(result.tag_counts)
            session.overall_score = result.overall_score
            session.coaching_summary = result.coaching_summary
            session.analyzed_at = utcnow()
            session.analysis_status = AnalysisStatus.COMPLETED
            return copy.deepcopy(session)

    def record_failure(self, session_id: str, error: str, run_id: Optional[str] = None) -> Session:
        with self._lock:
            session = self._get(session_id)
            self._check_run(session, run_id)
            if not is_transition_allowed(session.analysis_status, AnalysisStatus.FAILED):
                raise InvalidTransitionError(
                    session_id, session.analysis_status, AnalysisStatus.FAILED
                )
            session.analysis_status = AnalysisStatus.FAILED
            session.analysis_error = error
            session.analysis_failed_at = utcnow()
            session.permanent_failure = True
            return copy.deepcopy(session)

    def reset_session(self, session_id: str, force: bool = False) -> Session:
        with self._lock:
            session = self._get(session_id)
            if session.analysis_status == AnalysisStatus.PROCESSING and not force:
                raise SessionBusyError(
                    session_id, session.analysis_status, AnalysisStatus.PENDING
                )
            for name, value in RESET_FIELDS.items():
                setattr(session, name, value)
            session.analysis_status = AnalysisStatus.PENDING
            self._utterances[session_id] = []
            return copy.deepcopy(session)

    # -----------------------------------------------------------------------
    # Utterances
    # -----------------------------------------------------------------------

    def replace_utterances(
        self,
        session_id: str,
        utterances: list[Utterance],
        run_id: Optional[str] = None,
    ) -> None:
        with self._lock:
            session = self._get(session_id)
            self._check_run(session, run_id)
            self._require_pending(session, AnalysisStatus.PROCESSING)
            self._utterances[session_id] = sorted(utterances, key=lambda u: u.order)

    def list_utterances(self, session_id: str) -> list[Utterance]:
        with self._lock:
            self._get(session_id)
            return list(self._utterances.get(session_id, []))

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _get(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    @staticmethod
    def _check_run(session: Session, run_id: Optional[str]) -> None:
        if run_id is not None and session.run_id != run_id:
            raise StaleRunError(session.id, session.analysis_status, run_id)

    @staticmethod
    def _require_pending(session: Session, target: AnalysisStatus) -> None:
        if session.analysis_status != AnalysisStatus.PENDING:
            raise InvalidTransitionError(session.id, session.analysis_status, target)

    @staticmethod
    def _compare_and_check(
        session: Session,
        expected: AnalysisStatus,
        target: AnalysisStatus,
    ) -> None:
        if session.analysis_status != AnalysisStatus(expected):
            raise InvalidTransitionError(session.id, session.analysis_status, target)
        if not is_transition_allowed(expected, target):
            raise InvalidTransitionError(session.id, expected, target)
