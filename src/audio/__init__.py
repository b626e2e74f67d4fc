# src/audio/__init__.py
# ======================
# Audio Layer — PlayCoach
#
#   - probe.py: non-empty / decodable checks and duration probing (pydub)
#
# Audio is forwarded to the STT providers as stored; no resampling.

from src.audio.probe import extension_of, probe_duration  # noqa: F401

__all__ = ["extension_of", "probe_duration"]
