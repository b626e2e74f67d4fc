# src/store/__init__.py
# ======================
# Session Store — PlayCoach
#
#   - base.py:   SessionStore contract (compare-and-set status transitions)
#   - memory.py: InMemorySessionStore (tests, single process)
#   - sqlite.py: SqliteSessionStore (default for the HTTP service)

from src.store.base import SessionStore  # noqa: F401
from src.store.memory import InMemorySessionStore  # noqa: F401
from src.store.sqlite import SqliteSessionStore  # noqa: F401

__all__ = ["SessionStore", "InMemorySessionStore", "SqliteSessionStore"]
