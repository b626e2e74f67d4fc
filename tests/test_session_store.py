"""
tests/test_session_store.py
============================
Session Store Tests — PlayCoach Session Pipeline

Runs one contract suite against both backends (in-memory and SQLite).

Tests verify:
    1. Compare-and-set status updates and illegal transitions
    2. Transcript, retry, result and failure records
    3. Reset clears derived fields and utterances, refuses busy sessions
    4. Utterance replacement is ordered, atomic and PENDING-only
    5. Run tokens: writes from a superseded run are rejected
"""

import os
import shutil
import sys
import tempfile
import unittest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.errors import (
    InvalidTransitionError,
    PersistenceError,
    SessionBusyError,
    SessionNotFoundError,
    StaleRunError,
)
from src.schemas.session import AnalysisResult, AnalysisStatus, Session
from src.schemas.transcript import Utterance
from src.store import InMemorySessionStore, SqliteSessionStore


def _session(session_id="sess-0001", **kwargs):
    return Session(
        id=session_id,
        user_id="user-1",
        storage_path=f"user-1/{session_id}.m4a",
        metadata={"child_name": "Mia"},
        **kwargs,
    )


def _utterances():
    return [
        Utterance(speaker="speaker_1", text="Mine!", start_time=2.0, end_time=2.5, order=1),
        Utterance(speaker="speaker_0", text="Good job!", start_time=0.0, end_time=0.9, order=0),
    ]


class _StoreContract:
    """Mixin: subclasses provide make_store()."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()
        self.store.create_session(_session())

    def _to_processing(self):
        self.store.record_transcript("sess-0001", "[01] speaker_0 | hi", "elevenlabs-two-pass")
        self.store.replace_utterances("sess-0001", _utterances())
        self.store.update_status("sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING)

    # -- sessions ---------------------------------------------------------

    def test_create_and_find(self):
        found = self.store.find_by_id("sess-0001")
        self.assertEqual(found.user_id, "user-1")
        self.assertEqual(found.analysis_status, AnalysisStatus.PENDING)
        self.assertEqual(found.metadata, {"child_name": "Mia"})
        self.assertEqual(found.retry_count, 0)
        self.assertFalse(found.permanent_failure)

    def test_find_unknown_returns_none(self):
        self.assertIsNone(self.store.find_by_id("missing"))

    def test_duplicate_id_rejected(self):
        with self.assertRaises(PersistenceError):
            self.store.create_session(_session())

    # -- status CAS -------------------------------------------------------

    def test_cas_success(self):
        updated = self.store.update_status(
            "sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING
        )
        self.assertEqual(updated.analysis_status, AnalysisStatus.PROCESSING)

    def test_cas_loses_on_stale_expected(self):
        self.store.update_status("sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING)
        with self.assertRaises(InvalidTransitionError):
            self.store.update_status("sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING)

    def test_pending_to_completed_is_illegal(self):
        with self.assertRaises(InvalidTransitionError):
            self.store.update_status("sess-0001", AnalysisStatus.PENDING, AnalysisStatus.COMPLETED)
        self.assertEqual(
            self.store.find_by_id("sess-0001").analysis_status, AnalysisStatus.PENDING
        )

    def test_update_writes_fields(self):
        updated = self.store.update_status(
            "sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING,
            duration_seconds=42.5,
        )
        self.assertEqual(updated.duration_seconds, 42.5)

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValueError):
            self.store.update_status(
                "sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING,
                user_id="someone-else",
            )

    def test_unknown_session_update(self):
        with self.assertRaises(SessionNotFoundError):
            self.store.update_status("missing", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING)

    # -- stage records ----------------------------------------------------

    def test_record_transcript(self):
        updated = self.store.record_transcript(
            "sess-0001", "transcript text", "elevenlabs-two-pass", duration_seconds=30.0
        )
        self.assertEqual(updated.transcript, "transcript text")
        self.assertEqual(updated.transcription_service, "elevenlabs-two-pass")
        self.assertEqual(updated.duration_seconds, 30.0)
        self.assertIsNotNone(updated.transcribed_at)
        self.assertEqual(updated.analysis_status, AnalysisStatus.PENDING)

    def test_record_transcript_requires_pending(self):
        self.store.update_status("sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING)
        with self.assertRaises(InvalidTransitionError):
            self.store.record_transcript("sess-0001", "text", "svc")

    def test_record_retry(self):
        updated = self.store.record_retry("sess-0001", 2)
        self.assertEqual(updated.retry_count, 2)
        self.assertIsNotNone(updated.last_retried_at)

    def test_record_analysis_result(self):
        self._to_processing()
        result = AnalysisResult(
            role_map={"speaker_0": "adult", "speaker_1": "child"},
            utterance_tags={0: ("LP", "Great labeled praise!")},
            tag_counts={"LP": 1},
            overall_score=72,
            coaching_summary="Lots of praise.",
        )
        updated = self.store.record_analysis_result("sess-0001", result)

        self.assertEqual(updated.analysis_status, AnalysisStatus.COMPLETED)
        self.assertEqual(updated.role_map, {"speaker_0": "adult", "speaker_1": "child"})
        self.assertEqual(updated.tag_counts, {"LP": 1})
        self.assertEqual(updated.overall_score, 72)
        self.assertEqual(updated.coaching_summary, "Lots of praise.")
        self.assertIsNotNone(updated.analyzed_at)

        utts = self.store.list_utterances("sess-0001")
        self.assertEqual((utts[0].role, utts[0].tag), ("adult", "LP"))
        self.assertEqual(utts[0].feedback, "Great labeled praise!")
        self.assertEqual(utts[1].role, "child")
        self.assertIsNone(utts[1].tag)

    def test_record_analysis_result_requires_processing(self):
        with self.assertRaises(InvalidTransitionError):
            self.store.record_analysis_result("sess-0001", AnalysisResult())

    def test_record_failure(self):
        updated = self.store.record_failure("sess-0001", "all passes failed")
        self.assertEqual(updated.analysis_status, AnalysisStatus.FAILED)
        self.assertEqual(updated.analysis_error, "all passes failed")
        self.assertTrue(updated.permanent_failure)
        self.assertIsNotNone(updated.analysis_failed_at)

    def test_record_failure_from_completed_is_illegal(self):
        self._to_processing()
        self.store.record_analysis_result("sess-0001", AnalysisResult())
        with self.assertRaises(InvalidTransitionError):
            self.store.record_failure("sess-0001", "late failure")

    # -- reset ------------------------------------------------------------

    def test_reset_clears_everything(self):
        self._to_processing()
        self.store.record_retry("sess-0001", 1)
        self.store.record_failure("sess-0001", "boom")

        reset = self.store.reset_session("sess-0001")

        self.assertEqual(reset.analysis_status, AnalysisStatus.PENDING)
        self.assertEqual(reset.transcript, "")
        self.assertEqual(reset.retry_count, 0)
        self.assertIsNone(reset.analysis_error)
        self.assertFalse(reset.permanent_failure)
        self.assertIsNone(reset.transcription_service)
        self.assertEqual(reset.storage_path, "user-1/sess-0001.m4a")
        self.assertEqual(self.store.list_utterances("sess-0001"), [])

    def test_reset_busy_without_force(self):
        self._to_processing()
        with self.assertRaises(SessionBusyError):
            self.store.reset_session("sess-0001")
        self.assertEqual(
            self.store.find_by_id("sess-0001").analysis_status, AnalysisStatus.PROCESSING
        )

    def test_reset_busy_with_force(self):
        self._to_processing()
        reset = self.store.reset_session("sess-0001", force=True)
        self.assertEqual(reset.analysis_status, AnalysisStatus.PENDING)

    def test_reset_unknown(self):
        with self.assertRaises(SessionNotFoundError):
            self.store.reset_session("missing")

    # -- utterances -------------------------------------------------------

    def test_utterances_listed_by_order(self):
        self.store.replace_utterances("sess-0001", _utterances())
        self.assertEqual([u.order for u in self.store.list_utterances("sess-0001")], [0, 1])

    def test_replace_overwrites(self):
        self.store.replace_utterances("sess-0001", _utterances())
        self.store.replace_utterances(
            "sess-0001",
            [Utterance(speaker="speaker_0", text="Only", start_time=0.0, end_time=1.0)],
        )
        utts = self.store.list_utterances("sess-0001")
        self.assertEqual([u.text for u in utts], ["Only"])

    def test_replace_requires_pending(self):
        self._to_processing()
        with self.assertRaises(InvalidTransitionError):
            self.store.replace_utterances(
                "sess-0001",
                [Utterance(speaker="speaker_0", text="Late", start_time=0.0, end_time=1.0)],
            )
        self.assertEqual(len(self.store.list_utterances("sess-0001")), 2)

    # -- run tokens -------------------------------------------------------

    def test_claim_run_sets_token(self):
        claimed = self.store.claim_run("sess-0001")
        self.assertIsNotNone(claimed.run_id)
        self.assertEqual(claimed.analysis_status, AnalysisStatus.PENDING)
        self.assertEqual(self.store.find_by_id("sess-0001").run_id, claimed.run_id)

    def test_claim_run_requires_pending(self):
        self.store.update_status("sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING)
        with self.assertRaises(InvalidTransitionError):
            self.store.claim_run("sess-0001")

    def test_matching_token_writes(self):
        run_id = self.store.claim_run("sess-0001").run_id
        self.store.record_transcript("sess-0001", "text", "svc", run_id=run_id)
        self.store.replace_utterances("sess-0001", _utterances(), run_id=run_id)
        updated = self.store.update_status(
            "sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING, run_id=run_id,
        )
        self.assertEqual(updated.analysis_status, AnalysisStatus.PROCESSING)
        self.assertEqual(self.store.record_retry("sess-0001", 1, run_id=run_id).retry_count, 1)

    def test_later_claim_supersedes_earlier(self):
        first = self.store.claim_run("sess-0001").run_id
        second = self.store.claim_run("sess-0001").run_id
        self.assertNotEqual(first, second)

        with self.assertRaises(StaleRunError):
            self.store.record_transcript("sess-0001", "stale", "svc", run_id=first)
        updated = self.store.record_transcript("sess-0001", "fresh", "svc", run_id=second)
        self.assertEqual(updated.transcript, "fresh")

    def test_reset_invalidates_run(self):
        run_id = self.store.claim_run("sess-0001").run_id
        self.store.reset_session("sess-0001")

        with self.assertRaises(StaleRunError):
            self.store.replace_utterances("sess-0001", _utterances(), run_id=run_id)
        with self.assertRaises(StaleRunError):
            self.store.record_failure("sess-0001", "stale failure", run_id=run_id)
        with self.assertRaises(StaleRunError):
            self.store.record_retry("sess-0001", 1, run_id=run_id)

        found = self.store.find_by_id("sess-0001")
        self.assertEqual(found.analysis_status, AnalysisStatus.PENDING)
        self.assertEqual(found.retry_count, 0)
        self.assertEqual(self.store.list_utterances("sess-0001"), [])

    def test_stale_analysis_result_rejected(self):
        old = self.store.claim_run("sess-0001").run_id
        self.store.update_status(
            "sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING, run_id=old,
        )
        self.store.reset_session("sess-0001", force=True)

        new = self.store.claim_run("sess-0001").run_id
        self.store.replace_utterances("sess-0001", _utterances(), run_id=new)
        self.store.update_status(
            "sess-0001", AnalysisStatus.PENDING, AnalysisStatus.PROCESSING, run_id=new,
        )

        stale = AnalysisResult(utterance_tags={0: ("CRIT", "stale")}, overall_score=10)
        with self.assertRaises(StaleRunError):
            self.store.record_analysis_result("sess-0001", stale, run_id=old)

        found = self.store.find_by_id("sess-0001")
        self.assertEqual(found.analysis_status, AnalysisStatus.PROCESSING)
        self.assertIsNone(found.overall_score)
        self.assertIsNone(self.store.list_utterances("sess-0001")[0].tag)

    def test_list_unknown(self):
        with self.assertRaises(SessionNotFoundError):
            self.store.list_utterances("missing")


class TestInMemorySessionStore(_StoreContract, unittest.TestCase):

    def make_store(self):
        return InMemorySessionStore()

    def test_returned_copies_are_detached(self):
        found = self.store.find_by_id("sess-0001")
        found.transcript = "mutated"
        self.assertEqual(self.store.find_by_id("sess-0001").transcript, "")


class TestSqliteSessionStore(_StoreContract, unittest.TestCase):

    def make_store(self):
        self.tmpdir = tempfile.mkdtemp()
        store = SqliteSessionStore(os.path.join(self.tmpdir, "sessions.db"))
        self.addCleanup(shutil.rmtree, self.tmpdir, ignore_errors=True)
        self.addCleanup(store.close)
        return store

    def test_state_survives_reopen(self):
        self._to_processing()
        reopened = SqliteSessionStore(os.path.join(self.tmpdir, "sessions.db"))
        self.addCleanup(reopened.close)
        found = reopened.find_by_id("sess-0001")
        self.assertEqual(found.analysis_status, AnalysisStatus.PROCESSING)
        self.assertEqual(len(reopened.list_utterances("sess-0001")), 2)


if __name__ == "__main__":
    unittest.main()
