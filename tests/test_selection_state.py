import unittest

from config import MASK_TOKEN, PREDICT_WORD
from selection_state import SelectionStateMachine, VariantSet

LONG_SENTENCE = "we remain lingering this evening near the glassframe since the".split()


class TestVariantCycling(unittest.TestCase):
    def setUp(self):
        self.sm = SelectionStateMachine(["we", "remain", "lingering"])

    def test_first_move_requests_variants(self):
        request = self.sm.on_left_angle(5.0)

        self.assertIsNotNone(request)
        self.assertEqual(request.word, "we")
        self.assertEqual(request.context, "we remain lingering")
        self.assertEqual(request.position, 0)
        self.assertFalse(request.is_extension)
        # Only one request while it is in flight
        self.assertIsNone(self.sm.on_left_angle(10.0))

    def test_cycling_example(self):
        request = self.sm.on_left_angle(5.0)
        self.assertTrue(self.sm.apply_variants(request, ["I", "they", "she"]))

        self.assertEqual(self.sm.variant_set.variants, ["we", "I", "they", "she"])
        self.assertEqual(self.sm.words[0], "we")  # fetch alone does not change the word
        self.assertEqual(self.sm.last_fetched_cursor, 0)

        self.assertIsNone(self.sm.on_left_angle(125.0))
        self.assertEqual(self.sm.words[0], "they")

        # Negative rotation uses the magnitude
        self.sm.on_left_angle(-61.0)
        self.assertEqual(self.sm.words[0], "I")

        # 360 degrees = 6 steps, wraps modulo the list
        self.sm.on_left_angle(360.0)
        self.assertEqual(self.sm.words[0], "they")

    def test_empty_results_keep_word(self):
        request = self.sm.on_left_angle(5.0)
        self.sm.apply_variants(request, [])

        self.assertEqual(self.sm.last_fetched_cursor, 0)
        self.sm.on_left_angle(125.0)
        self.assertEqual(self.sm.words[0], "we")

    def test_failed_fetch_allows_retry(self):
        request = self.sm.on_left_angle(5.0)
        self.sm.fetch_failed(request)

        self.assertIsNone(self.sm.last_fetched_cursor)
        retry = self.sm.on_left_angle(6.0)
        self.assertIsNotNone(retry)
        self.assertEqual(retry.word, "we")

    def test_stale_fetch_guard(self):
        sm = SelectionStateMachine(LONG_SENTENCE)
        sm.on_right_angle(120.0)
        self.assertEqual(sm.cursor, 2)
        request = sm.on_left_angle(1.0)

        sm.on_right_angle(240.0)
        self.assertEqual(sm.cursor, 4)

        self.assertFalse(sm.apply_variants(request, ["lingered", "waiting"]))
        self.assertEqual(sm.variant_set, VariantSet(4, ["evening"]))
        self.assertIsNone(sm.last_fetched_cursor)

    def test_stale_fetch_after_returning_to_same_cursor(self):
        sm = SelectionStateMachine(LONG_SENTENCE)
        sm.on_right_angle(120.0)
        request = sm.on_left_angle(1.0)
        sm.on_right_angle(180.0)
        sm.on_right_angle(120.0)
        self.assertEqual(sm.cursor, 2)

        self.assertFalse(sm.apply_variants(request, ["lingered"]))
        self.assertIsNone(sm.last_fetched_cursor)


class TestNavigation(unittest.TestCase):
    def test_remainder_preserved_across_small_changes(self):
        batched = SelectionStateMachine(LONG_SENTENCE)
        angle = 0.0
        for _ in range(10):
            angle += 6.0
            batched.on_right_angle(angle)

        single = SelectionStateMachine(LONG_SENTENCE)
        single.on_right_angle(60.0)

        self.assertEqual(batched.cursor, 1)
        self.assertEqual(single.cursor, batched.cursor)

    def test_remainder_carries_forward(self):
        sm = SelectionStateMachine(LONG_SENTENCE)
        angle = 0.0
        for _ in range(10):
            angle += 13.0
            sm.on_right_angle(angle)

        self.assertEqual(sm.cursor, 2)  # floor(130 / 60)
        self.assertAlmostEqual(sm.last_consumed_angle, 120.0)

    def test_cursor_floor(self):
        sm = SelectionStateMachine(LONG_SENTENCE)
        sm.on_right_angle(120.0)
        for angle in (-60.0, -300.0, -900.0):
            sm.on_right_angle(angle)
            self.assertEqual(sm.cursor, 0)

    def test_cursor_change_resets_variants(self):
        sm = SelectionStateMachine(LONG_SENTENCE)
        request = sm.on_left_angle(5.0)
        sm.apply_variants(request, ["I"])

        sm.on_right_angle(60.0)
        self.assertEqual(sm.variant_set, VariantSet(1, ["remain"]))
        self.assertIsNone(sm.last_fetched_cursor)

    def test_rebase_does_not_move_cursor(self):
        sm = SelectionStateMachine(LONG_SENTENCE)
        sm.rebase_navigation(1800.0)
        sm.on_right_angle(1800.0)
        self.assertEqual(sm.cursor, 0)
        sm.on_right_angle(1861.0)
        self.assertEqual(sm.cursor, 1)


class TestExtension(unittest.TestCase):
    def setUp(self):
        self.sm = SelectionStateMachine(["we", "remain", "lingering"])
        self.sm.on_right_angle(120.0)
        self.assertEqual(self.sm.cursor, 2)

    def test_round_trip(self):
        request = self.sm.on_right_angle(180.0)

        self.assertEqual(self.sm.cursor, 3)
        self.assertTrue(self.sm.is_extending)
        self.assertTrue(request.is_extension)
        self.assertEqual(request.word, PREDICT_WORD)
        self.assertEqual(request.context, f"we remain lingering {MASK_TOKEN}")
        self.assertEqual(request.position, 3)

        # Input is held back while the prediction is pending
        self.assertIsNone(self.sm.on_right_angle(400.0))
        self.assertIsNone(self.sm.on_left_angle(100.0))
        self.assertEqual(self.sm.cursor, 3)

        self.assertTrue(self.sm.complete_extension(request, ["word4"]))
        self.assertEqual(self.sm.words, ["we", "remain", "lingering", "word4"])
        self.assertEqual(self.sm.cursor, 3)
        self.assertFalse(self.sm.is_extending)
        self.assertEqual(self.sm.variant_set, VariantSet(3, ["word4"]))
        self.assertEqual(self.sm.last_fetched_cursor, 3)

        # The left dial can cycle the new word without another fetch
        self.assertIsNone(self.sm.on_left_angle(0.0))

    def test_predicted_list_becomes_variants(self):
        request = self.sm.on_right_angle(180.0)
        self.sm.complete_extension(request, ["tonight", "alone", "still"])

        self.sm.on_left_angle(130.0)
        self.assertEqual(self.sm.words[3], "still")

    def test_failure_reverts_cursor(self):
        request = self.sm.on_right_angle(180.0)

        self.assertFalse(self.sm.complete_extension(request, []))
        self.assertEqual(len(self.sm.words), 3)
        self.assertEqual(self.sm.cursor, 2)
        self.assertFalse(self.sm.is_extending)
        self.assertEqual(self.sm.variant_set, VariantSet(2, ["lingering"]))

    def test_transport_failure_reverts_cursor(self):
        request = self.sm.on_right_angle(180.0)
        self.sm.fail_extension(request)

        self.assertEqual(self.sm.cursor, 2)
        self.assertFalse(self.sm.is_extending)
        # Navigation continues afterwards
        self.sm.on_right_angle(120.0)
        self.assertEqual(self.sm.cursor, 1)

    def test_overshoot_lands_on_sentinel(self):
        request = self.sm.on_right_angle(600.0)
        self.assertEqual(self.sm.cursor, 3)
        self.assertIsNotNone(request)


class TestDisplay(unittest.TestCase):
    def test_window_centered_and_clamped(self):
        sm = SelectionStateMachine(LONG_SENTENCE)

        start, window = sm.visible_window()
        self.assertEqual((start, window), (0, LONG_SENTENCE[0:6]))

        sm.on_right_angle(300.0)
        start, window = sm.visible_window()
        self.assertEqual((start, window), (2, LONG_SENTENCE[2:8]))

        sm.on_right_angle(540.0)
        self.assertEqual(sm.cursor, 9)
        start, window = sm.visible_window()
        self.assertEqual((start, window), (4, LONG_SENTENCE[4:10]))

    def test_short_sentence_shows_everything(self):
        sm = SelectionStateMachine(["a", "b", "c"])
        self.assertEqual(sm.visible_window(), (0, ["a", "b", "c"]))

    def test_snapshot(self):
        sm = SelectionStateMachine(["a", "b", "c"], window_width=2)
        snap = sm.snapshot()
        self.assertEqual(snap.words, ("a", "b", "c"))
        self.assertEqual(snap.window, ("a", "b"))
        self.assertEqual(snap.variants, ("a",))
        self.assertFalse(snap.variants_fetched)

    def test_empty_sentence_rejected(self):
        with self.assertRaises(ValueError):
            SelectionStateMachine([])


if __name__ == "__main__":
    unittest.main()
