# src/api/__init__.py
# =====================
# API Layer — PlayCoach
#
#   - sessions.py: FastAPI app (register recording, reprocess, status,
#                  utterances); processing runs as background tasks
#
# Served by main.py: uvicorn main:app
