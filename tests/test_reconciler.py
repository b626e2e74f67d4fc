"""
tests/test_reconciler.py
=========================
Two-Pass Reconciler Tests — PlayCoach Transcription Stage

Tests verify:
    1. Quality text is kept, diarization speakers are applied
    2. Overlap ties go to the first accumulated speaker
    3. No overlap falls back to the nearest midpoint
    4. Empty passes degrade to single-pass output
    5. Word-level strategy and unknown-strategy rejection
"""

import os
import sys
import unittest

# Ensure project root is on sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from src.schemas.transcript import (
    PASS_ROLE_DIARIZATION,
    PASS_ROLE_QUALITY,
    TranscriptionPass,
    Utterance,
    Word,
)
from src.stt.reconciler import (
    find_speaker_at_time,
    reconcile,
    speaker_overlap,
)


def _quality(*words):
    return TranscriptionPass(role=PASS_ROLE_QUALITY, words=tuple(words))


def _diarization(*words):
    return TranscriptionPass(role=PASS_ROLE_DIARIZATION, words=tuple(words))


# ===================================================================
# Utterance-level strategy
# ===================================================================


class TestUtteranceLevel(unittest.TestCase):

    def test_good_job_takes_diarization_speaker(self):
        quality = _quality(
            Word("Good", 0.0, 0.4, speaker_id="X"),
            Word("job", 0.5, 0.8, speaker_id="X"),
            Word("!", 0.8, 0.9, speaker_id="X"),
        )
        diarization = _diarization(
            Word("good", 0.0, 0.4, speaker_id="P1"),
            Word("job", 0.5, 0.8, speaker_id="P1"),
            Word("!", 0.8, 0.9, speaker_id="P1"),
        )

        result = reconcile(quality, diarization)

        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].speaker, "P1")
        self.assertEqual(result[0].text, "Good job!")
        self.assertEqual(result[0].start_time, 0.0)
        self.assertEqual(result[0].end_time, 0.9)
        self.assertEqual(result[0].order, 0)

    def test_quality_text_kept(self):
        quality = _quality(Word("Look", 0.0, 0.5, speaker_id="X"), Word("here.", 0.5, 1.0, speaker_id="X"))
        diarization = _diarization(Word("luke", 0.0, 0.5, speaker_id="P1"), Word("hear", 0.5, 1.0, speaker_id="P1"))
        result = reconcile(quality, diarization)
        self.assertEqual(result[0].text, "Look here.")

    def test_even_split_goes_to_first_speaker(self):
        quality = _quality(Word("Hi", 0.0, 1.0, speaker_id="X"), Word("there", 1.0, 2.0, speaker_id="X"))
        diarization = _diarization(Word("hi", 0.0, 1.0, speaker_id="A"), Word("there", 1.0, 2.0, speaker_id="B"))
        result = reconcile(quality, diarization)
        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].speaker, "A")

    def test_even_split_follows_accumulation_order(self):
        quality = _quality(Word("Hi", 0.0, 1.0, speaker_id="X"), Word("there", 1.0, 2.0, speaker_id="X"))
        diarization = _diarization(Word("there", 1.0, 2.0, speaker_id="B"), Word("hi", 0.0, 1.0, speaker_id="A"))
        result = reconcile(quality, diarization)
        self.assertEqual(result[0].speaker, "B")

    def test_majority_overlap_wins(self):
        quality = _quality(Word("Stack", 0.0, 1.0, speaker_id="X"), Word("them", 1.0, 3.0, speaker_id="X"))
        diarization = _diarization(Word("stack", 0.0, 1.0, speaker_id="A"), Word("them", 1.0, 3.0, speaker_id="B"))
        self.assertEqual(reconcile(quality, diarization)[0].speaker, "B")

    def test_no_overlap_uses_nearest_midpoint(self):
        quality = _quality(Word("Hello.", 10.0, 11.0, speaker_id="X"))
        diarization = _diarization(
            Word("far", 0.0, 1.0, speaker_id="A"),
            Word("near", 12.0, 13.0, speaker_id="B"),
        )
        self.assertEqual(reconcile(quality, diarization)[0].speaker, "B")

    def test_sentences_stay_separate(self):
        quality = _quality(
            Word("Nice.", 0.0, 0.5, speaker_id="X"),
            Word("Thanks!", 1.0, 1.5, speaker_id="X"),
        )
        diarization = _diarization(
            Word("nice", 0.0, 0.5, speaker_id="P1"),
            Word("thanks", 1.0, 1.5, speaker_id="P2"),
        )
        result = reconcile(quality, diarization)
        self.assertEqual([u.speaker for u in result], ["P1", "P2"])
        self.assertEqual([u.order for u in result], [0, 1])


# ===================================================================
# Degraded inputs
# ===================================================================


class TestDegradedPasses(unittest.TestCase):

    def test_empty_diarization_keeps_quality_speakers(self):
        quality = _quality(Word("Hi.", 0.0, 0.5, speaker_id="X"))
        result = reconcile(quality, TranscriptionPass.empty(PASS_ROLE_DIARIZATION))
        self.assertEqual(result[0].speaker, "X")
        self.assertEqual(result[0].text, "Hi.")

    def test_empty_quality_uses_diarization(self):
        diarization = _diarization(Word("Hi.", 0.0, 0.5, speaker_id="P1"))
        result = reconcile(TranscriptionPass.empty(PASS_ROLE_QUALITY), diarization)
        self.assertEqual(result[0].speaker, "P1")

    def test_both_empty(self):
        self.assertEqual(
            reconcile(
                TranscriptionPass.empty(PASS_ROLE_QUALITY),
                TranscriptionPass.empty(PASS_ROLE_DIARIZATION),
            ),
            [],
        )

    def test_spacing_only_pass_counts_as_empty(self):
        quality = _quality(Word("Hi.", 0.0, 0.5, speaker_id="X"))
        diarization = _diarization(Word(" ", 0.0, 0.5, type="spacing", speaker_id="P1"))
        self.assertEqual(reconcile(quality, diarization)[0].speaker, "X")


# ===================================================================
# Word-level strategy
# ===================================================================


class TestWordLevel(unittest.TestCase):

    def test_speaker_change_splits_utterance(self):
        quality = _quality(
            Word("Red", 0.0, 0.5, speaker_id="X"),
            Word("blue", 1.0, 1.5, speaker_id="X"),
        )
        diarization = _diarization(
            Word("red", 0.0, 0.5, speaker_id="P1"),
            Word("blue", 1.0, 1.5, speaker_id="P2"),
        )
        result = reconcile(quality, diarization, strategy="word")
        self.assertEqual([(u.speaker, u.text) for u in result], [("P1", "Red"), ("P2", "blue")])
        self.assertEqual(result[0].end_time, 1.0)

    def test_unknown_strategy_rejected(self):
        with self.assertRaises(ValueError):
            reconcile(_quality(), _diarization(), strategy="sentence")


# ===================================================================
# Helpers
# ===================================================================


class TestHelpers(unittest.TestCase):

    def test_speaker_overlap_ignores_touching_words(self):
        utt = Utterance(speaker="X", text="hi", start_time=1.0, end_time=2.0)
        words = [Word("a", 0.0, 1.0, speaker_id="A"), Word("b", 1.5, 2.5, speaker_id="B")]
        self.assertEqual(speaker_overlap(utt, words), {"B": 0.5})

    def test_find_speaker_without_speakers(self):
        self.assertIsNone(find_speaker_at_time([Word("a", 0.0, 1.0)], 0.5))


# ===================================================================
# Output properties
# ===================================================================


class TestOutputProperties(unittest.TestCase):

    def _passes(self):
        quality = _quality(
            Word("Look", 0.0, 0.3, speaker_id="X"),
            Word("at", 0.3, 0.4, speaker_id="X"),
            Word("that.", 0.4, 0.8, speaker_id="X"),
            Word("Mine", 1.2, 1.5, speaker_id="Y"),
            Word("!", 1.5, 1.6, speaker_id="Y"),
            Word("Okay", 4.0, 4.3, speaker_id="X"),
        )
        diarization = _diarization(
            Word("look", 0.0, 0.3, speaker_id="P1"),
            Word("at", 0.3, 0.4, speaker_id="P1"),
            Word("that", 0.4, 0.8, speaker_id="P1"),
            Word("mine", 1.2, 1.6, speaker_id="P2"),
            Word("okay", 4.0, 4.3, speaker_id="P1"),
        )
        return quality, diarization

    def test_deterministic(self):
        quality, diarization = self._passes()
        for strategy in ("utterance", "word"):
            self.assertEqual(
                reconcile(quality, diarization, strategy),
                reconcile(quality, diarization, strategy),
            )

    def test_ordered_and_non_overlapping(self):
        quality, diarization = self._passes()
        for strategy in ("utterance", "word"):
            result = reconcile(quality, diarization, strategy)
            self.assertEqual([u.order for u in result], list(range(len(result))))
            for prev, nxt in zip(result, result[1:]):
                self.assertLessEqual(prev.end_time, nxt.start_time)

    def test_speakers_assigned(self):
        quality, diarization = self._passes()
        result = reconcile(quality, diarization)
        self.assertEqual(
            [(u.speaker, u.text) for u in result],
            [("P1", "Look at that."), ("P2", "Mine!"), ("P1", "Okay")],
        )


if __name__ == "__main__":
    unittest.main()
