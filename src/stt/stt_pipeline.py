"""
src/stt/stt_pipeline.py
========================
Two-Pass STT Pipeline — PlayCoach Transcription Stage

Responsibility:
    Turn one session recording into a speaker-attributed utterance list:
        1. Build the pass configs (quality + diarization) from Settings
        2. Issue both provider passes concurrently, each with its own timeout
        3. Normalize each response into a TranscriptionPass
        4. Degrade gracefully: a failed / timed-out pass becomes empty
        5. Reconcile the passes (utterance- or word-level strategy)
        6. Format the plain-text transcript
        7. Interleave silent slots and assign final order numbers

Pass failure rules:
    - Timeout                   → logged at WARNING, pass treated as empty
    - Provider / format error   → logged at WARNING, pass treated as empty
    - Any other exception       → logged at ERROR, pass treated as empty
    - Every requested pass fails → TranscriptionError (stage failure)

Single-pass modes ("quality", "diarization") issue one pass only; the
reconciler then segments it alone.

This module does NOT:
    - Retry passes (only the orchestrator retries, and only analysis)
    - Persist transcripts or utterances
    - Map speakers to adult / child roles
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from src.config import Settings
from src.errors import (
    PassTimeoutError,
    TranscriptionError,
    TranscriptionFormatError,
    TranscriptionPassError,
)
from src.schemas.transcript import (
    PASS_ROLE_DIARIZATION,
    PASS_ROLE_QUALITY,
    PassConfig,
    TranscriptionPass,
    Utterance,
)
from src.stt import deepgram_client, elevenlabs_client
from src.stt.reconciler import reconcile
from src.stt.silence import insert_silent_slots
from src.stt.utterance_segmenter import format_transcript
from src.stt.word_normalizer import normalize_pass

logger = logging.getLogger("playcoach.stt.stt_pipeline")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# provider name -> blocking pass function (audio_bytes, config, extension, request_id) -> dict
PASS_CLIENTS: dict[str, Callable[..., dict]] = {
    "elevenlabs": elevenlabs_client.transcribe_pass,
    "deepgram": deepgram_client.transcribe_pass,
}


@dataclass
class TranscriptionResult:
    """Output of one transcription stage run."""

    transcript: str
    utterances: list[Utterance]
    service: str
    speech_count: int = 0
    failed_passes: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class TwoPassTranscriber:
    """
    Concurrent two-pass transcriber.

    Args:
        settings:    Pipeline settings (provider, mode, models, timeouts).
        pass_client: Optional override of the blocking pass function;
                     defaults to the client registered for the provider.
    """

    def __init__(self, settings: Settings, pass_client: Optional[Callable[..., dict]] = None):
        self.settings = settings
        self._pass_client = pass_client or PASS_CLIENTS[settings.transcription_provider]

    @property
    def service_name(self) -> str:
        return f"{self.settings.transcription_provider}-{self.settings.transcription_mode}"

    def build_pass_configs(self, metadata: Optional[dict] = None) -> list[PassConfig]:
        """Pass configs for the configured mode, in (quality, diarization) order."""
        s = self.settings
        keyterms = _keyterms_from_metadata(metadata)

        configs = []
        if s.transcription_mode in ("two-pass", "quality"):
            configs.append(PassConfig(
                role=PASS_ROLE_QUALITY,
                model=s.quality_model,
                diarize=True,
                diarization_threshold=s.diarization_threshold,
                keyterms=keyterms,
                timeout=s.pass_timeout_seconds,
            ))
        if s.transcription_mode in ("two-pass", "diarization"):
            configs.append(PassConfig(
                role=PASS_ROLE_DIARIZATION,
                model=s.diarization_model,
                diarize=True,
                diarization_threshold=s.diarization_threshold,
                keyterms=keyterms,
                timeout=s.pass_timeout_seconds,
            ))
        return configs

    async def transcribe(
        self,
        audio_bytes: bytes,
        extension: str = "m4a",
        duration_seconds: Optional[float] = None,
        metadata: Optional[dict] = None,
    ) -> TranscriptionResult:
        """
        Run the transcription stage end to end.

        Args:
            audio_bytes:      Raw session audio.
            extension:        Container extension (upload content type).
            duration_seconds: Recording length; enables the trailing silence check.
            metadata:         Session metadata (``child_name`` becomes a keyterm).

        Returns:
            TranscriptionResult with transcript text and ordered utterances
            (speech + silent slots).

        Raises:
            TranscriptionError: If every requested pass failed.
        """
        configs = self.build_pass_configs(metadata)
        request_id = uuid.uuid4().hex

        logger.info(
            "Starting %s transcription: %d pass(es), %d bytes.",
            self.service_name, len(configs), len(audio_bytes),
        )

        outcomes = await asyncio.gather(
            *(self._run_pass(audio_bytes, cfg, extension, request_id) for cfg in configs)
        )

        passes: dict[str, TranscriptionPass] = {}
        failed: list[str] = []
        for cfg, outcome in zip(configs, outcomes):
            if outcome is None:
                failed.append(cfg.role)
                passes[cfg.role] = TranscriptionPass.empty(cfg.role, cfg.model)
            else:
                passes[cfg.role] = outcome

        if len(failed) == len(configs):
            raise TranscriptionError(
                f"All transcription passes failed ({', '.join(failed)})."
            )

        quality = passes.get(PASS_ROLE_QUALITY) or TranscriptionPass.empty(PASS_ROLE_QUALITY)
        diarization = passes.get(PASS_ROLE_DIARIZATION) or TranscriptionPass.empty(PASS_ROLE_DIARIZATION)

        speech = reconcile(quality, diarization, strategy=self.settings.merge_strategy)
        transcript = format_transcript(speech)
        utterances = insert_silent_slots(
            speech,
            duration_seconds=duration_seconds,
            threshold=self.settings.silence_threshold_seconds,
        )

        logger.info(
            "Transcription complete: %d speech utterance(s), %d silent slot(s).",
            len(speech), len(utterances) - len(speech),
        )

        return TranscriptionResult(
            transcript=transcript,
            utterances=utterances,
            service=self.service_name,
            speech_count=len(speech),
            failed_passes=failed,
        )

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _run_pass(
        self,
        audio_bytes: bytes,
        config: PassConfig,
        extension: str,
        request_id: str,
    ) -> Optional[TranscriptionPass]:
        """Run one pass; return None (and log) instead of raising on failure."""
        try:
            payload = await asyncio.wait_for(
                asyncio.to_thread(
                    self._pass_client, audio_bytes, config, extension, request_id
                ),
                timeout=config.timeout,
            )
            result = normalize_pass(payload, config.role, config.model)
        except (asyncio.TimeoutError, PassTimeoutError):
            logger.warning(
                "%s pass (%s) timed out after %.0fs — treating as empty.",
                config.role, config.model, config.timeout,
            )
            return None
        except (TranscriptionPassError, TranscriptionFormatError) as exc:
            logger.warning(
                "%s pass (%s) failed — treating as empty: %s",
                config.role, config.model, exc,
            )
            return None
        except Exception as exc:
            logger.error(
                "%s pass (%s) raised unexpectedly — treating as empty: %s: %s",
                config.role, config.model, type(exc).__name__, exc,
                exc_info=True,
            )
            return None

        logger.info(
            "%s pass (%s): %d words, %d speaker(s).",
            config.role, config.model, len(result.spoken_words()), len(result.speakers()),
        )
        return result


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _keyterms_from_metadata(metadata: Optional[dict]) -> tuple[str, ...]:
    if not metadata:
        return ()
    name = str(metadata.get("child_name") or "").strip()
    return (name,) if name else ()
