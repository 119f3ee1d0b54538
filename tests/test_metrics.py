"""
Tests for Writing Metrics Module

Speed window, paste suppression, trend, pauses and deletion ratio.
"""

from datetime import timedelta

import pytest

from writing_coach.metrics import (
    EditDelta,
    MetricsEngine,
    PauseLocation,
    WpmTrend,
    calculate_trend,
    classify_pause_location,
    diff_texts,
)


def seconds(n):
    return timedelta(seconds=n)


class TestDiffTexts:

    def test_append(self):
        assert diff_texts("hello", "hello world") == (" world", "")

    def test_delete(self):
        assert diff_texts("hello world", "hello") == ("", " world")

    def test_replace_middle(self):
        assert diff_texts("the red door", "the blue door") == ("blue", "red")

    def test_identical(self):
        assert diff_texts("same", "same") == ("", "")


class TestEditDelta:

    def test_whitespace_only_is_not_substantive(self, start_time):
        assert not EditDelta(start_time, inserted_text="  \n").is_substantive

    def test_deletion_is_substantive(self, start_time):
        assert EditDelta(start_time, removed_text="word").is_substantive


class TestTrend:

    def test_fewer_than_three_readings_stable(self):
        assert calculate_trend([]) == WpmTrend.STABLE
        assert calculate_trend([0, 100]) == WpmTrend.STABLE

    def test_increasing(self):
        assert calculate_trend([10, 10, 20, 30, 30]) == WpmTrend.INCREASING

    def test_decreasing(self):
        assert calculate_trend([40, 40, 30, 20, 20]) == WpmTrend.DECREASING

    def test_small_step_stable(self):
        assert calculate_trend([20, 22, 21, 23, 24]) == WpmTrend.STABLE

    def test_step_of_exactly_five_is_stable(self):
        assert calculate_trend([10, 10, 0, 15, 15]) == WpmTrend.STABLE

    def test_only_last_five_readings_count(self):
        readings = [100, 100, 100, 10, 10, 10, 10, 10]
        assert calculate_trend(readings) == WpmTrend.STABLE


class TestPauseLocation:

    def test_empty_line_is_start(self):
        assert classify_pause_location("", 0) == PauseLocation.START
        assert classify_pause_location("   ", 3) == PauseLocation.START

    def test_after_terminator(self):
        assert classify_pause_location("The end.", 8, "next") == PauseLocation.END_SENTENCE

    def test_end_of_line_before_blank_line(self):
        assert classify_pause_location("Still going", 11, "") == PauseLocation.END_PARAGRAPH

    def test_end_of_last_line(self):
        assert classify_pause_location("Still going", 11, None) == PauseLocation.END_PARAGRAPH

    def test_end_of_line_before_text(self):
        assert classify_pause_location("Still going", 11, "more") == PauseLocation.END_SENTENCE

    def test_mid_sentence(self):
        assert classify_pause_location("Still going", 5, None) == PauseLocation.MID_SENTENCE


class TestMetricsEngine:

    @pytest.fixture(autouse=True)
    def engine(self, start_time):
        self.start = start_time
        self.engine = MetricsEngine(now=start_time)
        self.engine.on_editor_change("", now=start_time)
        return self.engine

    def type_text(self, text, at):
        return self.engine.on_editor_change(text, now=self.start + seconds(at))

    def test_first_change_is_baseline(self, start_time):
        engine = MetricsEngine(now=start_time)
        assert engine.on_editor_change("An existing essay of many words.", now=start_time) is None

        metrics = engine.recompute(start_time + seconds(5))
        assert metrics.words_per_minute == 0
        assert metrics.total_words == 6

    def test_speed_counts_trailing_minute(self):
        self.type_text("one two three", 5)
        self.type_text("one two three four", 70)

        metrics = self.engine.recompute(self.start + seconds(80))
        assert metrics.words_per_minute == 1

    def test_speed_sums_insertions(self):
        self.type_text("one two", 10)
        self.type_text("one two three", 20)

        metrics = self.engine.recompute(self.start + seconds(30))
        # "one two" + " three"
        assert metrics.words_per_minute == 3

    def test_speed_never_negative_after_deletions(self):
        self.type_text("one two three", 10)
        self.type_text("", 20)

        metrics = self.engine.recompute(self.start + seconds(30))
        assert metrics.words_per_minute >= 0

    def test_paste_excluded_from_speed(self):
        self.type_text("typed words", 10)
        self.type_text("typed words" + " pasted" * 20, 20)

        metrics = self.engine.recompute(self.start + seconds(30))
        assert metrics.words_per_minute == 2

    def test_large_paste_still_counts_for_deletions(self):
        block = "x" * 5000
        self.type_text(block, 10)
        self.type_text("x" * 4990, 20)

        metrics = self.engine.recompute(self.start + seconds(30))
        assert metrics.words_per_minute == 0
        assert metrics.deletion_ratio == pytest.approx(10 / 5000)

    def test_deletion_ratio(self):
        self.type_text("abcdefghij", 10)
        self.type_text("abcde", 20)

        metrics = self.engine.recompute(self.start + seconds(30))
        assert metrics.deletion_ratio == pytest.approx(0.5)

    def test_deletion_ratio_zero_without_insertions(self):
        metrics = self.engine.recompute(self.start + seconds(30))
        assert metrics.deletion_ratio == 0.0

    def test_deletion_window_is_five_minutes(self):
        self.type_text("abcdefghij", 10)
        self.type_text("abcde", 20)

        metrics = self.engine.recompute(self.start + seconds(20 + 301))
        assert metrics.deletion_ratio == 0.0

    def test_pause_duration(self):
        self.type_text("hello", 10)

        metrics = self.engine.recompute(self.start + seconds(70))
        assert metrics.pause_duration_seconds == pytest.approx(60)

    def test_pause_location_from_cursor(self):
        self.engine.on_editor_change(
            "A full sentence.",
            cursor_line_text="A full sentence.",
            cursor_offset=16,
            next_line_text="next",
            now=self.start + seconds(5),
        )
        metrics = self.engine.recompute(self.start + seconds(10))
        assert metrics.pause_location == PauseLocation.END_SENTENCE

    def test_session_duration(self):
        metrics = self.engine.recompute(self.start + timedelta(minutes=3))
        assert metrics.session_duration_minutes == pytest.approx(3.0)

    def test_readings_bounded(self):
        for i in range(15):
            metrics = self.engine.recompute(self.start + seconds(5 * (i + 1)))
        assert len(metrics.recent_wpm_readings) == 10

    def test_history_pruned_after_ten_minutes(self):
        self.type_text("hello", 10)
        self.engine.recompute(self.start + timedelta(minutes=11))
        assert len(self.engine.edit_history) == 0

    def test_snapshot_is_last_recompute(self):
        self.type_text("hello", 10)
        metrics = self.engine.recompute(self.start + seconds(20))
        assert self.engine.snapshot() is metrics

    def test_mark_advisory_resets_paragraph_counter_only(self):
        self.type_text("one\n\ntwo\n\nthree", 10)
        before = self.engine.recompute(self.start + seconds(20))
        assert before.paragraphs_since_last_advisory == 3

        self.engine.mark_advisory()
        after = self.engine.snapshot()
        assert after.paragraphs_since_last_advisory == 0
        assert after.words_per_minute == before.words_per_minute
        assert after.total_words == before.total_words

        self.type_text("one\n\ntwo\n\nthree\n\nfour", 30)
        metrics = self.engine.recompute(self.start + seconds(40))
        assert metrics.paragraphs_since_last_advisory == 1

    def test_reset(self):
        self.type_text("hello there", 10)
        self.engine.recompute(self.start + seconds(20))

        later = self.start + timedelta(minutes=5)
        self.engine.reset(later)
        assert len(self.engine.edit_history) == 0
        assert self.engine.snapshot().total_words == 0
        assert self.engine.recompute(later + seconds(30)).session_duration_minutes == pytest.approx(0.5)

    def test_analysis_failure_gives_zero_ratios(self, start_time):
        class BrokenLexicon:
            def classify(self, word):
                raise RuntimeError("tagger crashed")

        engine = MetricsEngine(lexicon=BrokenLexicon(), now=start_time)
        engine.load_document("some cold words")
        metrics = engine.recompute(start_time + seconds(5))
        assert metrics.adjective_ratio == 0.0
        assert metrics.total_words == 3
