"""
src/pipeline.py
================
Session Processing Orchestrator — PlayCoach Integration Layer

Responsibility:
    Drive one recorded session through its persisted state machine:

        PENDING ──(transcription stage)──► PROCESSING ──(analysis)──► COMPLETED
           │                                   │
           └──────────────► FAILED ◄───────────┘
        any status ──(reset)──► PENDING   (PROCESSING only with force=True)

    Stage 1: Transcription
        claim run token → fetch audio → probe duration (if unknown) →
        two-pass STT → record transcript → replace utterances → CAS PENDING → PROCESSING
    Stage 2: Analysis
        analysis collaborator with bounded retry (default 3 attempts,
        0 s / 5 s / 15 s) → record result + COMPLETED atomically

Failure policy:
    - TranscriptionError / StorageError / empty audio → FAILED + alert
    - AnalysisError after the last attempt            → FAILED + alert
    - InvalidAnalysisInputError                       → FAILED + alert, no retry
    - PersistenceError → fatal: best-effort FAILED + alert, then re-raised
    - Any other unexpected exception                  → FAILED + alert, then re-raised
    - Lost compare-and-set / superseded run           → re-raised, session
      left to whoever won, no alert

Concurrency:
    Every run first claims a run token (``claim_run``: PENDING only, new
    ``run_id``). All of the run's writes carry that token and the store
    rejects them with StaleRunError once a reset has cleared it or a later
    claim has replaced it, so a superseded run in any process cannot write
    into a newer run's data. Within one process an active-run registry
    refuses a second concurrent run of the same session; a forced reset
    cancels the registered run before resetting.

This layer MUST NOT:
    - Transcribe, reconcile, or analyze itself
    - Retry anything but the analysis stage
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from src.alerts import WebhookAlerter
from src.analysis.coach import CoachAnalyzer
from src.audio.probe import extension_of, probe_duration, validate_not_empty
from src.config import Settings
from src.errors import (
    AnalysisError,
    AudioValidationError,
    InvalidAnalysisInputError,
    InvalidTransitionError,
    PersistenceError,
    PipelineError,
    SessionBusyError,
    SessionNotFoundError,
    StaleRunError,
    StorageError,
    TranscriptionError,
)
from src.retry import retry_async
from src.schemas.session import AnalysisResult, AnalysisStatus, Session
from src.store.base import SessionStore
from src.stt.stt_pipeline import TwoPassTranscriber

logger = logging.getLogger("playcoach.pipeline")


class SessionProcessor:
    """
    Async orchestrator over the store, storage, transcriber, analyzer and alerter.
    """

    def __init__(
        self,
        store: SessionStore,
        storage,
        transcriber: TwoPassTranscriber,
        analyzer: CoachAnalyzer,
        alerter: WebhookAlerter,
        settings: Settings,
    ):
        self.store = store
        self.storage = storage
        self.transcriber = transcriber
        self.analyzer = analyzer
        self.alerter = alerter
        self.settings = settings
        self._active: dict[str, Optional[asyncio.Task]] = {}

    # =====================================================================
    # Public API
    # =====================================================================

    async def process_session(self, session_id: str) -> Session:
        """
        Run both stages for a PENDING session.

        Returns:
            The session in its terminal status (COMPLETED or FAILED).

        Raises:
            SessionNotFoundError:   Unknown session id.
            SessionBusyError:       The session is PROCESSING or already running here.
            InvalidTransitionError: The session is not PENDING, or a
                                    compare-and-set was lost mid-run.
            PersistenceError:       The store failed (after marking FAILED if possible).
        """
        session = await self._find(session_id)
        status = AnalysisStatus(session.analysis_status)
        if status == AnalysisStatus.PROCESSING:
            raise SessionBusyError(session_id, status, AnalysisStatus.PROCESSING)
        if status != AnalysisStatus.PENDING:
            raise InvalidTransitionError(session_id, status, AnalysisStatus.PROCESSING)

        with self._claim(session_id):
            session = await asyncio.to_thread(self.store.claim_run, session_id)
            try:
                try:
                    session = await self._transcription_stage(session)
                except (TranscriptionError, StorageError, AudioValidationError) as exc:
                    logger.error(
                        "Transcription stage failed for session %s: %s", session_id[:8], exc,
                    )
                    return await self._fail(session, exc)

                try:
                    result = await self._run_analysis(session)
                except AnalysisError as exc:
                    return await self._fail(session, exc)

                session = await asyncio.to_thread(
                    self.store.record_analysis_result, session_id, result, session.run_id
                )
            except PersistenceError as exc:
                logger.error("Persistence failure for session %s: %s", session_id[:8], exc)
                await self._fail(session, exc)
                raise
            except InvalidTransitionError:
                raise
            except Exception as exc:
                logger.error(
                    "Unexpected failure for session %s: %s: %s",
                    session_id[:8], type(exc).__name__, exc, exc_info=True,
                )
                await self._fail(session, exc)
                raise

        logger.info("=" * 60)
        logger.info(
            "Session %s COMPLETED (score=%s, retries=%d).",
            session_id[:8], session.overall_score, session.retry_count,
        )
        logger.info("=" * 60)
        return session

    async def reset_session(self, session_id: str, force: bool = False) -> Session:
        """
        Move a session back to PENDING, clearing transcript, utterances and
        derived fields.

        A session running in this process (or PROCESSING in the store) is
        only reset with ``force=True``; the local run is cancelled first.

        Raises:
            SessionNotFoundError: Unknown session id.
            SessionBusyError:     The session is running and ``force`` is False.
        """
        session = await self._find(session_id)

        if session_id in self._active:
            if not force:
                raise SessionBusyError(
                    session_id, session.analysis_status, AnalysisStatus.PENDING
                )
            await self._cancel_active(session_id)

        reset = await asyncio.to_thread(self.store.reset_session, session_id, force)
        logger.info(
            "Session %s reset to PENDING (was %s%s).",
            session_id[:8],
            AnalysisStatus(session.analysis_status).value,
            ", forced" if force else "",
        )
        return reset

    async def reprocess_session(self, session_id: str, force: bool = False) -> Session:
        """Reset then process. Always overwrites previous results."""
        await self.reset_session(session_id, force=force)
        return await self.process_session(session_id)

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    # =====================================================================
    # Stage 1: Transcription
    # =====================================================================

    async def _transcription_stage(self, session: Session) -> Session:
        logger.info("=" * 60)
        logger.info("STAGE 1: Transcription — session %s", session.id[:8])
        logger.info("=" * 60)

        if not session.storage_path:
            raise StorageError("Session has no audio file path.")

        audio_bytes = await asyncio.to_thread(self.storage.fetch, session.storage_path)
        validate_not_empty(audio_bytes)
        extension = extension_of(session.storage_path)

        duration = session.duration_seconds
        if duration is None:
            try:
                duration = await asyncio.to_thread(probe_duration, audio_bytes, extension)
            except AudioValidationError as exc:
                logger.warning(
                    "Could not probe duration for session %s (%s) — trailing silence skipped.",
                    session.id[:8], exc,
                )

        result = await self.transcriber.transcribe(
            audio_bytes,
            extension=extension,
            duration_seconds=duration,
            metadata=session.metadata,
        )

        await asyncio.to_thread(
            self.store.record_transcript,
            session.id, result.transcript, result.service, duration, session.run_id,
        )
        await asyncio.to_thread(
            self.store.replace_utterances, session.id, result.utterances, session.run_id
        )
        session = await asyncio.to_thread(
            self.store.update_status,
            session.id, AnalysisStatus.PENDING, AnalysisStatus.PROCESSING, session.run_id,
        )

        logger.info(
            "Stage 1 complete: %d utterance(s) stored via %s%s.",
            len(result.utterances),
            result.service,
            f" (degraded: {', '.join(result.failed_passes)} failed)" if result.failed_passes else "",
        )
        return session

    # =====================================================================
    # Stage 2: Analysis
    # =====================================================================

    async def _run_analysis(self, session: Session) -> AnalysisResult:
        logger.info("=" * 60)
        logger.info("STAGE 2: Analysis — session %s", session.id[:8])
        logger.info("=" * 60)

        timeout = self.settings.analysis_timeout_seconds

        async def attempt(n: int) -> AnalysisResult:
            logger.info(
                "Analysis attempt %d/%d for session %s.",
                n + 1, self.settings.analysis_max_attempts, session.id[:8],
            )
            utterances = await asyncio.to_thread(self.store.list_utterances, session.id)
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(self.analyzer.analyze, utterances, session.metadata),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as exc:
                raise AnalysisError(f"Analysis timed out after {timeout:.0f}s") from exc
            except PipelineError:
                raise
            except Exception as exc:
                raise AnalysisError(f"Analysis failed: {exc}") from exc

        async def record_retry(n: int) -> None:
            await asyncio.to_thread(self.store.record_retry, session.id, n, session.run_id)

        return await retry_async(
            attempt,
            max_attempts=self.settings.analysis_max_attempts,
            delay_for=self.settings.retry_delay,
            retry_on=(AnalysisError,),
            is_retryable=lambda exc: not isinstance(exc, InvalidAnalysisInputError),
            on_retry=record_retry,
            label=f"Analysis of session {session.id[:8]}",
        )

    # =====================================================================
    # Failure handling
    # =====================================================================

    async def _fail(self, session: Session, error: BaseException) -> Session:
        """Mark the session FAILED (best effort) and alert. Never raises."""
        failed = session
        try:
            failed = await asyncio.to_thread(
                self.store.record_failure, session.id, str(error), session.run_id
            )
        except StaleRunError as exc:
            logger.warning(
                "Session %s not marked FAILED — this run was superseded: %s",
                session.id[:8], exc,
            )
            return failed
        except InvalidTransitionError as exc:
            logger.warning(
                "Session %s not marked FAILED — status changed underneath: %s",
                session.id[:8], exc,
            )
        except PipelineError as exc:
            logger.error("Could not mark session %s FAILED: %s", session.id[:8], exc)

        await self.alerter.notify_failure(
            session.id,
            session.user_id,
            error,
            retry_count=failed.retry_count,
            duration_seconds=failed.duration_seconds,
        )
        return failed

    # =====================================================================
    # Active-run registry
    # =====================================================================

    @contextmanager
    def _claim(self, session_id: str) -> Iterator[None]:
        if session_id in self._active:
            raise SessionBusyError(session_id, AnalysisStatus.PROCESSING, AnalysisStatus.PROCESSING)
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        self._active[session_id] = task
        try:
            yield
        finally:
            if self._active.get(session_id) is task:
                del self._active[session_id]

    async def _cancel_active(self, session_id: str) -> None:
        task = self._active.get(session_id)
        if task is None or task is asyncio.current_task() or task.done():
            self._active.pop(session_id, None)
            return

        logger.warning("Cancelling active run of session %s.", session_id[:8])
        task.cancel()
        await asyncio.wait({task})
        self._active.pop(session_id, None)

    async def _find(self, session_id: str) -> Session:
        session = await asyncio.to_thread(self.store.find_by_id, session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session
