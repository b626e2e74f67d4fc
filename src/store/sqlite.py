"""
src/store/sqlite.py
====================
SQLite Session Store — PlayCoach Session Pipeline

Responsibility:
    - Persist sessions and utterances in a SQLite database file through
      SQLModel tables (``SessionRow``, ``UtteranceRow``)
    - Implement every status change as a single conditional UPDATE
      (``WHERE analysis_status = :expected [AND run_id = :run_id]``)
      checked by rowcount, so the compare-and-set holds across processes
      sharing the file
    - Wrap multi-statement operations (analysis result + utterance tags,
      reset + utterance delete, utterance replace-all) in one transaction

JSON-valued fields (metadata, role_map, tag_counts) use JSON columns.
Timestamps are stored in UTC and returned timezone-aware.

Every SQLAlchemyError surfaces as PersistenceError.

This module does NOT:
    - Migrate schemas beyond ``SQLModel.metadata.create_all``
"""

import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import JSON, Column, Field, SQLModel, create_engine, select
from sqlmodel import Session as DBSession

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

logger = logging.getLogger("playcoach.store.sqlite")


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


class SessionRow(SQLModel, table=True):
    __tablename__ = "sessions"

    id: str = Field(primary_key=True)
    user_id: str
    storage_path: Optional[str] = None
    duration_seconds: Optional[float] = None
    analysis_status: str = Field(default=AnalysisStatus.PENDING.value, index=True)
    run_id: Optional[str] = None
    session_metadata: Dict[str, Any] = Field(default={}, sa_column=Column(JSON))

    transcript: str = ""
    transcription_service: Optional[str] = None
    transcribed_at: Optional[datetime] = None

    retry_count: int = 0
    last_retried_at: Optional[datetime] = None
    analysis_error: Optional[str] = None
    analysis_failed_at: Optional[datetime] = None
    permanent_failure: bool = False

    role_map: Optional[Dict[str, str]] = Field(default=None, sa_column=Column(JSON))
    tag_counts: Optional[Dict[str, int]] = Field(default=None, sa_column=Column(JSON))
    overall_score: Optional[int] = None
    coaching_summary: Optional[str] = None
    analyzed_at: Optional[datetime] = None

    created_at: datetime


class UtteranceRow(SQLModel, table=True):
    __tablename__ = "utterances"

    session_id: str = Field(foreign_key="sessions.id", primary_key=True)
    position: int = Field(primary_key=True)
    speaker: Optional[str] = None
    role: Optional[str] = None
    text: str = ""
    start_time: float
    end_time: float
    tag: Optional[str] = None
    feedback: Optional[str] = None


_PENDING = AnalysisStatus.PENDING.value
_PROCESSING = AnalysisStatus.PROCESSING.value


class SqliteSessionStore(SessionStore):
    """
    SQLite-backed store.

    Args:
        db_path: Database file path, or ":memory:" for a private in-memory DB.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()
        try:
            self._engine = _make_engine(db_path)
            SQLModel.metadata.create_all(self._engine)
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError(f"Cannot open session database {db_path}: {exc}") from exc

        logger.info("Session store ready: %s", db_path)

    def close(self) -> None:
        with self._lock:
            self._engine.dispose()

    # -----------------------------------------------------------------------
    # Sessions
    # -----------------------------------------------------------------------

    def create_session(self, session: Session) -> Session:
        with self._transaction() as db:
            db.add(_to_row(session))
        return self.find_by_id(session.id)

    def find_by_id(self, session_id: str) -> Optional[Session]:
        with self._transaction() as db:
            row = db.get(SessionRow, session_id)
            return _to_session(row) if row is not None else None

    def claim_run(self, session_id: str) -> Session:
        with self._transaction() as db:
            self._cas(
                db, session_id, {"run_id": new_run_id()},
                SessionRow.analysis_status == _PENDING,
                target=AnalysisStatus.PROCESSING,
            )
        return self.find_by_id(session_id)

    def update_status(
        self,
        session_id: str,
        expected: AnalysisStatus,
        target: AnalysisStatus,
        run_id: Optional[str] = None,
        **fields: Any,
    ) -> Session:
        check_fields(fields)
        expected = AnalysisStatus(expected)
        target = AnalysisStatus(target)
        if not is_transition_allowed(expected, target):
            raise InvalidTransitionError(session_id, expected, target)

        values = dict(fields, analysis_status=target.value)
        with self._transaction() as db:
            self._cas(
                db, session_id, values,
                SessionRow.analysis_status == expected.value,
                run_id=run_id, target=target,
            )
        return self.find_by_id(session_id)

    def record_transcript(
        self,
        session_id: str,
        transcript: str,
        service: str,
        duration_seconds: Optional[float] = None,
        run_id: Optional[str] = None,
    ) -> Session:
        values: dict[str, Any] = {
            "transcript": transcript,
            "transcription_service": service,
            "transcribed_at": utcnow(),
        }
        if duration_seconds is not None:
            values["duration_seconds"] = duration_seconds

        with self._transaction() as db:
            self._cas(
                db, session_id, values,
                SessionRow.analysis_status == _PENDING,
                run_id=run_id, target=AnalysisStatus.PROCESSING,
            )
        return self.find_by_id(session_id)

    def record_retry(self, session_id: str, attempt: int, run_id: Optional[str] = None) -> Session:
        values = {"retry_count": attempt, "last_retried_at": utcnow()}
        with self._transaction() as db:
            self._cas(db, session_id, values, run_id=run_id)
        return self.find_by_id(session_id)

    def record_analysis_result(
        self,
        session_id: str,
        result: AnalysisResult,
        run_id: Optional[str] = None,
    ) -> Session:
        values = {
            "analysis_status": AnalysisStatus.COMPLETED.value,
            "role_map": dict(result.role_map),
            "tag_counts": dict(result.tag_counts),
            "overall_score": result.overall_score,
            "coaching_summary": result.coaching_summary,
            "analyzed_at": utcnow(),
        }
        with self._transaction() as db:
            self._cas(
                db, session_id, values,
                SessionRow.analysis_status == _PROCESSING,
                run_id=run_id, target=AnalysisStatus.COMPLETED,
            )
            tagged = apply_tags(self._select_utterances(db, session_id), result)
            self._write_utterances(db, session_id, tagged)
        return self.find_by_id(session_id)

    def record_failure(self, session_id: str, error: str, run_id: Optional[str] = None) -> Session:
        values = {
            "analysis_status": AnalysisStatus.FAILED.value,
            "analysis_error": error,
            "analysis_failed_at": utcnow(),
            "permanent_failure": True,
        }
        with self._transaction() as db:
            self._cas(
                db, session_id, values,
                SessionRow.analysis_status.in_([_PENDING, _PROCESSING]),
                run_id=run_id, target=AnalysisStatus.FAILED,
            )
        return self.find_by_id(session_id)

    def reset_session(self, session_id: str, force: bool = False) -> Session:
        values = dict(RESET_FIELDS, analysis_status=_PENDING)

        with self._transaction() as db:
            if force:
                self._cas(db, session_id, values)
            else:
                self._cas(
                    db, session_id, values,
                    SessionRow.analysis_status != _PROCESSING,
                    target=AnalysisStatus.PENDING, busy=True,
                )
            db.exec(delete(UtteranceRow).where(UtteranceRow.session_id == session_id))
        return self.find_by_id(session_id)

    # -----------------------------------------------------------------------
    # Utterances
    # -----------------------------------------------------------------------

    def replace_utterances(
        self,
        session_id: str,
        utterances: list[Utterance],
        run_id: Optional[str] = None,
    ) -> None:
        with self._transaction() as db:
            # self-assignment: locks the row and checks status + token in one statement
            self._cas(
                db, session_id, {"run_id": SessionRow.run_id},
                SessionRow.analysis_status == _PENDING,
                run_id=run_id, target=AnalysisStatus.PROCESSING,
            )
            self._write_utterances(db, session_id, utterances)

    def list_utterances(self, session_id: str) -> list[Utterance]:
        with self._transaction() as db:
            self._require(db, session_id)
            return self._select_utterances(db, session_id)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[DBSession]:
        """Serialize access and commit / roll back one transaction."""
        with self._lock:
            try:
                with DBSession(self._engine) as db:
                    yield db
                    db.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Session store error: {exc}") from exc

    def _cas(
        self,
        db: DBSession,
        session_id: str,
        values: dict[str, Any],
        *conditions: Any,
        run_id: Optional[str] = None,
        target: Optional[AnalysisStatus] = None,
        busy: bool = False,
    ) -> None:
        """Conditional UPDATE of one session row; raise on a lost compare-and-set."""
        stmt = update(SessionRow).where(SessionRow.id == session_id, *conditions)
        if run_id is not None:
            stmt = stmt.where(SessionRow.run_id == run_id)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        if db.exec(stmt).rowcount == 1:
            return

        row = self._require(db, session_id)
        if run_id is not None and row.run_id != run_id:
            raise StaleRunError(session_id, row.analysis_status, run_id)
        error_cls = SessionBusyError if busy else InvalidTransitionError
        raise error_cls(session_id, row.analysis_status, target or row.analysis_status)

    @staticmethod
    def _require(db: DBSession, session_id: str) -> SessionRow:
        row = db.get(SessionRow, session_id)
        if row is None:
            raise SessionNotFoundError(session_id)
        return row

    @staticmethod
    def _select_utterances(db: DBSession, session_id: str) -> list[Utterance]:
        rows = db.exec(
            select(UtteranceRow)
            .where(UtteranceRow.session_id == session_id)
            .order_by(UtteranceRow.position)
        ).all()
        utterances = [
            Utterance(
                speaker=row.speaker,
                text=row.text,
                start_time=row.start_time,
                end_time=row.end_time,
                order=row.position,
                role=row.role,
                tag=row.tag,
                feedback=row.feedback,
            )
            for row in rows
        ]
        # rows are rewritten under the same keys by _write_utterances
        db.expunge_all()
        return utterances

    @staticmethod
    def _write_utterances(
        db: DBSession,
        session_id: str,
        utterances: list[Utterance],
    ) -> None:
        db.exec(delete(UtteranceRow).where(UtteranceRow.session_id == session_id))
        db.add_all(
            UtteranceRow(
                session_id=session_id,
                position=u.order,
                speaker=u.speaker,
                role=u.role,
                text=u.text,
                start_time=u.start_time,
                end_time=u.end_time,
                tag=u.tag,
                feedback=u.feedback,
            )
            for u in utterances
        )


# ---------------------------------------------------------------------------
# Engine + row conversion
# ---------------------------------------------------------------------------


def _make_engine(db_path: str):
    if db_path == ":memory:":
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_row(session: Session) -> SessionRow:
    return SessionRow(
        id=session.id,
        user_id=session.user_id,
        storage_path=session.storage_path,
        duration_seconds=session.duration_seconds,
        analysis_status=AnalysisStatus(session.analysis_status).value,
        run_id=session.run_id,
        session_metadata=dict(session.metadata or {}),
        transcript=session.transcript or "",
        transcription_service=session.transcription_service,
        transcribed_at=session.transcribed_at,
        retry_count=session.retry_count,
        last_retried_at=session.last_retried_at,
        analysis_error=session.analysis_error,
        analysis_failed_at=session.analysis_failed_at,
        permanent_failure=session.permanent_failure,
        role_map=session.role_map,
        tag_counts=session.tag_counts,
        overall_score=session.overall_score,
        coaching_summary=session.coaching_summary,
        analyzed_at=session.analyzed_at,
        created_at=session.created_at,
    )


def _to_session(row: SessionRow) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        storage_path=row.storage_path,
        duration_seconds=row.duration_seconds,
        analysis_status=AnalysisStatus(row.analysis_status),
        run_id=row.run_id,
        metadata=dict(row.session_metadata or {}),
        transcript=row.transcript or "",
        transcription_service=row.transcription_service,
        transcribed_at=_aware(row.transcribed_at),
        retry_count=row.retry_count,
        last_retried_at=_aware(row.last_retried_at),
        analysis_error=row.analysis_error,
        analysis_failed_at=_aware(row.analysis_failed_at),
        permanent_failure=bool(row.permanent_failure),
        role_map=row.role_map,
        tag_counts=row.tag_counts,
        overall_score=row.overall_score,
        coaching_summary=row.coaching_summary,
        analyzed_at=_aware(row.analyzed_at),
        created_at=_aware(row.created_at),
    )
