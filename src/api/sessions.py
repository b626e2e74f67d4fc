"""
src/api/sessions.py
====================
Session API — PlayCoach Job Surface

Responsibility:
    - POST /api/v1/sessions                 register a recording and start
                                            processing in the background
    - POST /api/v1/sessions/{id}/reprocess  reset (optionally forced) and
                                            process again in the background
    - GET  /api/v1/sessions/{id}            session status + derived fields
    - GET  /api/v1/sessions/{id}/utterances ordered utterances

Status codes:
    201 created, 202 reprocess accepted, 404 unknown session,
    409 busy / invalid transition, 422 empty or unsupported upload.

This module does NOT:
    - Run pipeline stages itself (delegates to SessionProcessor)
    - Authenticate callers
"""

import asyncio
import logging
import uuid
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.alerts import WebhookAlerter
from src.analysis.coach import CoachAnalyzer
from src.audio.probe import validate_extension
from src.config import Settings, load_settings
from src.errors import (
    AudioValidationError,
    InvalidTransitionError,
    PipelineError,
    SessionNotFoundError,
    StorageError,
)
from src.pipeline import SessionProcessor
from src.schemas.session import Session
from src.storage.local import LocalObjectStorage
from src.storage.s3 import S3ObjectStorage
from src.store.sqlite import SqliteSessionStore
from src.stt.stt_pipeline import TwoPassTranscriber

logger = logging.getLogger("playcoach.api.sessions")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_processor(settings: Settings) -> SessionProcessor:
    """Assemble the production processor from settings."""
    return SessionProcessor(
        store=SqliteSessionStore(settings.session_db_path),
        storage=build_storage(settings),
        transcriber=TwoPassTranscriber(settings),
        analyzer=CoachAnalyzer(model=settings.openai_model),
        alerter=WebhookAlerter(settings.alert_webhook_url, settings.analysis_max_attempts),
        settings=settings,
    )


def build_storage(settings: Settings):
    if settings.storage_backend == "s3":
        return S3ObjectStorage(
            settings.s3_bucket,
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
        )
    return LocalObjectStorage(settings.storage_root)


async def run_in_background(processor: SessionProcessor, session_id: str) -> None:
    """Process one session as its own task; log instead of raising."""
    task = asyncio.create_task(processor.process_session(session_id))
    try:
        session = await task
        logger.info(
            "Background run of session %s finished: %s",
            session_id[:8], session.analysis_status.value,
        )
    except asyncio.CancelledError:
        logger.warning("Background run of session %s was cancelled.", session_id[:8])
    except PipelineError as exc:
        logger.error("Background run of session %s stopped: %s", session_id[:8], exc)
    except Exception as exc:
        logger.error(
            "Background run of session %s crashed: %s", session_id[:8], exc, exc_info=True,
        )


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(processor: Optional[SessionProcessor] = None) -> FastAPI:
    """
    Build the FastAPI app. The production processor is created on first
    use unless one is injected.
    """
    app = FastAPI(
        title="PlayCoach",
        description="Play-session transcription and coaching analysis pipeline.",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.processor = processor

    def get_processor() -> SessionProcessor:
        if app.state.processor is None:
            app.state.processor = build_processor(load_settings())
        return app.state.processor

    # -----------------------------------------------------------------------
    # Endpoints
    # -----------------------------------------------------------------------

    @app.post("/api/v1/sessions", status_code=201)
    async def create_session(
        background_tasks: BackgroundTasks,
        audio_file: UploadFile = File(...),
        user_id: str = Form(...),
        duration_seconds: Optional[float] = Form(None),
        child_name: Optional[str] = Form(None),
    ):
        """Store an uploaded recording, create a PENDING session, start processing."""
        proc = get_processor()

        filename = audio_file.filename or ""
        extension = filename.rsplit(".", 1)[-1] if "." in filename else "m4a"
        try:
            extension = validate_extension(extension)
        except AudioValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc))

        audio_bytes = await audio_file.read()
        if not audio_bytes:
            raise HTTPException(status_code=422, detail="Audio file is empty.")

        logger.info(
            "Recording received for user %s: %s (%.2f KB)",
            user_id[:8], filename, len(audio_bytes) / 1024,
        )

        session_id = str(uuid.uuid4())
        storage_key = f"{user_id}/{session_id}.{extension}"
        try:
            await asyncio.to_thread(proc.storage.store, storage_key, audio_bytes)
        except StorageError as exc:
            logger.error("Storing recording failed: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc))

        metadata = {"child_name": child_name} if child_name else {}
        session = Session(
            id=session_id,
            user_id=user_id,
            storage_path=storage_key,
            duration_seconds=duration_seconds,
            metadata=metadata,
        )
        try:
            session = await asyncio.to_thread(proc.store.create_session, session)
        except PipelineError as exc:
            logger.error("Creating session failed: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc))

        background_tasks.add_task(run_in_background, proc, session_id)
        return JSONResponse(status_code=201, content=session.to_dict())

    @app.post("/api/v1/sessions/{session_id}/reprocess", status_code=202)
    async def reprocess_session(
        session_id: str,
        background_tasks: BackgroundTasks,
        force: bool = False,
    ):
        """Reset the session now, then process it again in the background."""
        proc = get_processor()
        try:
            session = await proc.reset_session(session_id, force=force)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except InvalidTransitionError as exc:
            raise HTTPException(status_code=409, detail=str(exc))

        background_tasks.add_task(run_in_background, proc, session_id)
        return JSONResponse(status_code=202, content=session.to_dict())

    @app.get("/api/v1/sessions/{session_id}")
    async def get_session(session_id: str):
        proc = get_processor()
        session = await asyncio.to_thread(proc.store.find_by_id, session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        content = session.to_dict()
        content["is_active"] = proc.is_active(session_id)
        return JSONResponse(status_code=200, content=content)

    @app.get("/api/v1/sessions/{session_id}/utterances")
    async def list_utterances(session_id: str):
        proc = get_processor()
        try:
            utterances = await asyncio.to_thread(proc.store.list_utterances, session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        return JSONResponse(
            status_code=200,
            content={
                "session_id": session_id,
                "utterances": [u.to_dict() for u in utterances],
            },
        )

    return app


app = create_app()
