"""
src/config.py
==============
Runtime Configuration — PlayCoach Session Pipeline

Responsibility:
    - Load environment variables (from the process or a .env file)
    - Parse and validate them into a single immutable Settings object
    - Provide the defaults used by the original processing service
      (two-pass transcription, 3.0 s silence threshold, 3 analysis
      attempts with 0 s / 5 s / 15 s delays)

API keys are NOT stored here: provider clients read them at call time so
that a missing key fails the pass that needs it, not the whole process.

This module does NOT:
    - Configure logging (handled by main.py)
    - Create clients, stores, or storage backends
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


# ---------------------------------------------------------------------------
# Allowed values
# ---------------------------------------------------------------------------

PROVIDERS = ("elevenlabs", "deepgram")
TRANSCRIPTION_MODES = ("two-pass", "quality", "diarization")
MERGE_STRATEGIES = ("utterance", "word")
STORAGE_BACKENDS = ("local", "s3")

_DEFAULT_MODELS: dict[str, tuple[str, str]] = {
    # provider -> (quality model, diarization model)
    "elevenlabs": ("scribe_v2", "scribe_v1"),
    "deepgram": ("nova-3", "nova-2"),
}


@dataclass(frozen=True)
class Settings:
    """Validated pipeline configuration."""

    transcription_provider: str = "elevenlabs"
    transcription_mode: str = "two-pass"
    merge_strategy: str = "utterance"
    quality_model: str = "scribe_v2"
    diarization_model: str = "scribe_v1"
    diarization_threshold: float = 0.1
    pass_timeout_seconds: float = 300.0
    silence_threshold_seconds: float = 3.0
    analysis_max_attempts: int = 3
    analysis_retry_delays: tuple[float, ...] = (0.0, 5.0, 15.0)
    analysis_timeout_seconds: float = 600.0
    openai_model: str = "gpt-4o-mini"
    alert_webhook_url: str | None = None
    storage_backend: str = "local"
    storage_root: str = "./data/audio"
    s3_bucket: str | None = None
    s3_endpoint_url: str | None = None
    s3_region: str | None = None
    session_db_path: str = "./data/sessions.db"

    def __post_init__(self) -> None:
        if self.transcription_provider not in PROVIDERS:
            raise ValueError(
                f"Unknown TRANSCRIPTION_PROVIDER {self.transcription_provider!r}. "
                f"Allowed: {', '.join(PROVIDERS)}"
            )
        if self.transcription_mode not in TRANSCRIPTION_MODES:
            raise ValueError(
                f"Unknown TRANSCRIPTION_MODE {self.transcription_mode!r}. "
                f"Allowed: {', '.join(TRANSCRIPTION_MODES)}"
            )
        if self.merge_strategy not in MERGE_STRATEGIES:
            raise ValueError(
                f"Unknown MERGE_STRATEGY {self.merge_strategy!r}. "
                f"Allowed: {', '.join(MERGE_STRATEGIES)}"
            )
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"Unknown STORAGE_BACKEND {self.storage_backend!r}. "
                f"Allowed: {', '.join(STORAGE_BACKENDS)}"
            )
        if self.storage_backend == "s3" and not self.s3_bucket:
            raise ValueError("STORAGE_BACKEND=s3 requires S3_BUCKET.")
        if self.pass_timeout_seconds <= 0:
            raise ValueError("PASS_TIMEOUT_SECONDS must be positive.")
        if self.silence_threshold_seconds <= 0:
            raise ValueError("SILENCE_THRESHOLD_SECONDS must be positive.")
        if self.analysis_max_attempts < 1:
            raise ValueError("ANALYSIS_MAX_ATTEMPTS must be at least 1.")
        if any(d < 0 for d in self.analysis_retry_delays):
            raise ValueError("ANALYSIS_RETRY_DELAYS must not be negative.")
        if self.analysis_timeout_seconds <= 0:
            raise ValueError("ANALYSIS_TIMEOUT_SECONDS must be positive.")

    def retry_delay(self, attempt: int) -> float:
        """Delay (seconds) before 0-indexed ``attempt``; the last delay repeats."""
        if not self.analysis_retry_delays:
            return 0.0
        index = min(attempt, len(self.analysis_retry_delays) - 1)
        return self.analysis_retry_delays[index]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_settings() -> Settings:
    """
    Build Settings from the environment.

    Model ids default per provider when QUALITY_MODEL / DIARIZATION_MODEL
    are not set explicitly.

    Raises:
        ValueError: If any variable has an invalid value.
    """
    provider = _env_str("TRANSCRIPTION_PROVIDER", "elevenlabs").lower()
    default_quality, default_diarization = _DEFAULT_MODELS.get(
        provider, _DEFAULT_MODELS["elevenlabs"]
    )

    return Settings(
        transcription_provider=provider,
        transcription_mode=_env_str("TRANSCRIPTION_MODE", "two-pass").lower(),
        merge_strategy=_env_str("MERGE_STRATEGY", "utterance").lower(),
        quality_model=_env_str("QUALITY_MODEL", default_quality),
        diarization_model=_env_str("DIARIZATION_MODEL", default_diarization),
        diarization_threshold=_env_float("DIARIZATION_THRESHOLD", 0.1),
        pass_timeout_seconds=_env_float("PASS_TIMEOUT_SECONDS", 300.0),
        silence_threshold_seconds=_env_float("SILENCE_THRESHOLD_SECONDS", 3.0),
        analysis_max_attempts=_env_int("ANALYSIS_MAX_ATTEMPTS", 3),
        analysis_retry_delays=_env_float_list("ANALYSIS_RETRY_DELAYS", (0.0, 5.0, 15.0)),
        analysis_timeout_seconds=_env_float("ANALYSIS_TIMEOUT_SECONDS", 600.0),
        openai_model=_env_str("OPENAI_MODEL", "gpt-4o-mini"),
        alert_webhook_url=os.environ.get("ALERT_WEBHOOK_URL") or None,
        storage_backend=_env_str("STORAGE_BACKEND", "local").lower(),
        storage_root=_env_str("STORAGE_ROOT", "./data/audio"),
        s3_bucket=os.environ.get("S3_BUCKET") or None,
        s3_endpoint_url=os.environ.get("S3_ENDPOINT_URL") or None,
        s3_region=os.environ.get("AWS_REGION") or None,
        session_db_path=_env_str("SESSION_DB_PATH", "./data/sessions.db"),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _env_str(name: str, default: str) -> str:
    value = os.environ.get(name, "").strip()
    return value or default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float_list(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return tuple(float(part) for part in raw.split(",") if part.strip())
    except ValueError as exc:
        raise ValueError(
            f"{name} must be a comma-separated list of numbers, got {raw!r}"
        ) from exc
