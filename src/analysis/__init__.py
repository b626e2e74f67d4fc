# src/analysis/__init__.py
# =========================
# Analysis Stage — PlayCoach
#
#   - coach.py: OpenAI role identification + DPICS behavior coding,
#               deterministic tag counts and session score
#
# Contract: analyze(utterances, metadata) -> AnalysisResult
#   AnalysisError               → retried by the orchestrator
#   InvalidAnalysisInputError   → never retried

from src.analysis.coach import CoachAnalyzer, calculate_score, count_tags  # noqa: F401

__all__ = ["CoachAnalyzer", "calculate_score", "count_tags"]
