"""
src/errors.py
==============
Error Taxonomy — PlayCoach Session Pipeline

Responsibility:
    - Define every exception raised across the session pipeline
    - Encode the recovery policy in the class hierarchy:
        * pass-level errors are absorbed by the two-pass STT pipeline
        * analysis errors are retried by the orchestrator
        * persistence errors are always fatal

This module does NOT:
    - Log, retry, or recover from anything
    - Import any other pipeline module
"""


class PipelineError(Exception):
    """Base class for all session pipeline errors."""


# ---------------------------------------------------------------------------
# Transcription stage
# ---------------------------------------------------------------------------


class TranscriptionFormatError(PipelineError):
    """Raised when a provider payload is malformed or contains no words."""


class TranscriptionPassError(PipelineError):
    """Raised when a single provider pass fails (network, non-2xx)."""

    def __init__(self, pass_role: str, message: str):
        self.pass_role = pass_role
        self.message = message
        super().__init__(f"{pass_role} pass failed: {message}")


class PassTimeoutError(TranscriptionPassError):
    """Raised when a provider pass does not answer within its timeout."""

    def __init__(self, pass_role: str, timeout: float):
        self.timeout = timeout
        super().__init__(pass_role, f"timed out after {timeout:.1f}s")


class TranscriptionError(PipelineError):
    """Raised when no usable pass exists — a hard failure of the stage."""


# ---------------------------------------------------------------------------
# Analysis stage
# ---------------------------------------------------------------------------


class AnalysisError(PipelineError):
    """Raised when the analysis collaborator fails. Retried by the orchestrator."""


class InvalidAnalysisInputError(AnalysisError):
    """Raised for structurally invalid analysis input. Never retried."""


# ---------------------------------------------------------------------------
# Storage and persistence
# ---------------------------------------------------------------------------


class PersistenceError(PipelineError):
    """Raised when the session store fails. Always fatal, never retried."""


class StorageError(PipelineError):
    """Raised when audio bytes cannot be fetched or stored."""


class AudioValidationError(PipelineError):
    """Raised when the fetched audio is empty or cannot be decoded."""


# ---------------------------------------------------------------------------
# Session state machine
# ---------------------------------------------------------------------------


class SessionNotFoundError(PipelineError):
    """Raised when a session id is unknown to the store."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class InvalidTransitionError(PipelineError):
    """Raised when a status transition is illegal or its compare-and-set loses."""

    def __init__(self, session_id: str, current: str, target: str):
        self.session_id = session_id
        self.current = getattr(current, "value", current)
        self.target = getattr(target, "value", target)
        super().__init__(
            f"Session {session_id[:8]}: cannot move from {self.current} to {self.target}"
        )


class SessionBusyError(InvalidTransitionError):
    """Raised when a session already has an active pipeline run."""


class StaleRunError(InvalidTransitionError):
    """Raised when a write carries a run token that is no longer current."""

    def __init__(self, session_id: str, current: str, run_id: str):
        super().__init__(session_id, current, current)
        self.run_id = run_id
        self.args = (f"Session {session_id[:8]}: run {run_id[:8]} was superseded",)
