"""
Writing Metrics Module

Turns the raw edit stream from the host editor into behavioral signals:
- Words per minute over a rolling 1-minute window
- Speed trend over the last readings
- Lexical ratios (adjectives, verbs, abstract nouns)
- Pause length and where in the text the writer paused
- Deletion ratio over the last 5 minutes

Snapshots are rebuilt wholesale on every recompute and never mutated.
"""

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple
import logging

from .text_analysis import (
    Lexicon,
    Segmenter,
    SuffixLexicon,
    TextStatistics,
    analyze_text,
    count_paragraphs,
    count_words,
)

logger = logging.getLogger(__name__)


SENTENCE_TERMINATORS = (".", "!", "?", "。", "！", "？")


class PauseLocation(Enum):
    """Where the cursor sat when the writer stopped."""
    START = "start"
    MID_SENTENCE = "mid-sentence"
    END_SENTENCE = "end-sentence"
    END_PARAGRAPH = "end-paragraph"
    UNKNOWN = "unknown"


class WpmTrend(Enum):
    """Direction of recent writing speed."""
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class EditDelta:
    """One change reported by the host editor."""
    timestamp: datetime
    inserted_text: str = ""
    removed_text: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.inserted_text and not self.removed_text

    @property
    def is_substantive(self) -> bool:
        """True when the change touches anything besides whitespace."""
        return bool(self.inserted_text.strip() or self.removed_text.strip())


@dataclass(frozen=True)
class WritingMetrics:
    """Immutable snapshot of the writer's behavior."""
    words_per_minute: float = 0.0
    total_words: float = 0.0
    session_duration_minutes: float = 0.0
    adjective_ratio: float = 0.0
    verb_ratio: float = 0.0
    abstract_noun_ratio: float = 0.0
    average_sentence_length: float = 0.0
    pause_duration_seconds: float = 0.0
    pause_location: PauseLocation = PauseLocation.UNKNOWN
    deletion_ratio: float = 0.0
    wpm_trend: WpmTrend = WpmTrend.STABLE
    recent_wpm_readings: Tuple[float, ...] = field(default_factory=tuple)
    current_paragraph_length: float = 0.0
    paragraphs_since_last_advisory: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wpm": round(self.words_per_minute, 1),
            "totalWords": round(self.total_words, 1),
            "sessionDuration": round(self.session_duration_minutes, 2),
            "adjectiveRatio": round(self.adjective_ratio, 4),
            "verbRatio": round(self.verb_ratio, 4),
            "abstractNounRatio": round(self.abstract_noun_ratio, 4),
            "averageSentenceLength": round(self.average_sentence_length, 2),
            "pauseDuration": round(self.pause_duration_seconds, 1),
            "pauseLocation": self.pause_location.value,
            "deletionRatio": round(self.deletion_ratio, 4),
            "wpmTrend": self.wpm_trend.value,
            "recentWPM": list(self.recent_wpm_readings),
            "currentParagraphLength": round(self.current_paragraph_length, 1),
            "paragraphsSinceLastCoaching": self.paragraphs_since_last_advisory,
        }


def calculate_trend(readings: List[float], threshold: float = 5.0) -> WpmTrend:
    """
    Compare the older and newer halves of the last five readings.

    Averages the first two and the last two of the window; a step above
    +threshold is increasing, below -threshold decreasing.
    """
    if len(readings) < 3:
        return WpmTrend.STABLE

    recent = readings[-5:]
    older = sum(recent[:2]) / 2
    newer = sum(recent[-2:]) / 2
    step = newer - older

    if step > threshold:
        return WpmTrend.INCREASING
    if step < -threshold:
        return WpmTrend.DECREASING
    return WpmTrend.STABLE


def classify_pause_location(
    line_text: str,
    cursor_offset: int,
    next_line_text: Optional[str] = None,
) -> PauseLocation:
    """
    Classify the cursor position on its line.

    `next_line_text` of None means the cursor line is the last line.
    """
    offset = max(0, min(cursor_offset, len(line_text)))
    before_cursor = line_text[:offset]

    if not before_cursor.strip():
        return PauseLocation.START
    if before_cursor.endswith(SENTENCE_TERMINATORS):
        return PauseLocation.END_SENTENCE
    if offset == len(line_text):
        if next_line_text is None or not next_line_text.strip():
            return PauseLocation.END_PARAGRAPH
        return PauseLocation.END_SENTENCE
    return PauseLocation.MID_SENTENCE


def diff_texts(old_text: str, new_text: str) -> Tuple[str, str]:
    """
    Derive (inserted, removed) between two document versions.

    Trims the common prefix and suffix; what remains on each side is
    the single edited region.
    """
    if old_text == new_text:
        return "", ""

    limit = min(len(old_text), len(new_text))
    prefix = 0
    while prefix < limit and old_text[prefix] == new_text[prefix]:
        prefix += 1

    suffix = 0
    while (suffix < limit - prefix and
           old_text[len(old_text) - 1 - suffix] == new_text[len(new_text) - 1 - suffix]):
        suffix += 1

    inserted = new_text[prefix:len(new_text) - suffix]
    removed = old_text[prefix:len(old_text) - suffix]
    return inserted, removed


class MetricsEngine:
    """
    Computes WritingMetrics from the live edit stream.

    Owns a bounded edit history (10 minutes) and the last 10 speed
    readings. The host calls `on_editor_change` on every change; a timer
    calls `recompute` every few seconds; everyone else reads `snapshot`.
    """

    HISTORY_WINDOW = timedelta(minutes=10)
    SPEED_WINDOW = timedelta(seconds=60)
    DELETION_WINDOW = timedelta(minutes=5)
    PASTE_THRESHOLD_CHARS = 50
    MAX_WPM_READINGS = 10

    def __init__(
        self,
        lexicon: Optional[Lexicon] = None,
        segmenter: Optional[Segmenter] = None,
        now: Optional[datetime] = None,
    ):
        self.lexicon = lexicon or SuffixLexicon()
        self.segmenter = segmenter

        self.edit_history: Deque[EditDelta] = deque()
        self.wpm_readings: Deque[float] = deque(maxlen=self.MAX_WPM_READINGS)

        self.current_text: str = ""
        self._has_baseline = False
        self.pause_location = PauseLocation.UNKNOWN
        self.paragraphs_at_last_advisory = 0

        start = now or datetime.now()
        self.session_start = start
        self.last_edit_time = start
        self._metrics = WritingMetrics()

    def load_document(self, text: str):
        """Set the baseline text without counting it as typing."""
        self.current_text = text
        self._has_baseline = True

    def on_editor_change(
        self,
        text: str,
        cursor_line_text: str = "",
        cursor_offset: int = 0,
        next_line_text: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[EditDelta]:
        """
        Host callback for every content change.

        The first change only establishes the baseline (opening a file
        is not writing). Returns the derived delta, or None.
        """
        self.pause_location = classify_pause_location(
            cursor_line_text, cursor_offset, next_line_text
        )

        if not self._has_baseline:
            self.load_document(text)
            logger.debug("Initial document load, skipping speed accounting")
            return None

        inserted, removed = diff_texts(self.current_text, text)
        self.current_text = text

        delta = EditDelta(
            timestamp=now or datetime.now(),
            inserted_text=inserted,
            removed_text=removed,
        )
        if delta.is_empty:
            return None

        self.ingest(delta)
        return delta

    def ingest(self, delta: EditDelta):
        """Append a delta to the bounded history."""
        if delta.is_empty:
            return

        self.edit_history.append(delta)
        self.last_edit_time = max(self.last_edit_time, delta.timestamp)
        self._prune(delta.timestamp)

    def _prune(self, now: datetime):
        cutoff = now - self.HISTORY_WINDOW
        while self.edit_history and self.edit_history[0].timestamp <= cutoff:
            self.edit_history.popleft()

    def calculate_wpm(self, now: datetime) -> float:
        """Words inserted in the last minute, ignoring bulk pastes."""
        cutoff = now - self.SPEED_WINDOW
        return sum(
            count_words(d.inserted_text)
            for d in self.edit_history
            if d.timestamp > cutoff and len(d.inserted_text) <= self.PASTE_THRESHOLD_CHARS
        )

    def calculate_deletion_ratio(self, now: datetime) -> float:
        """Removed chars / inserted chars over the last 5 minutes."""
        cutoff = now - self.DELETION_WINDOW
        written = 0
        deleted = 0
        for d in self.edit_history:
            if d.timestamp > cutoff:
                written += len(d.inserted_text)
                deleted += len(d.removed_text)
        return deleted / written if written > 0 else 0.0

    def _analyze(self) -> TextStatistics:
        try:
            return analyze_text(self.current_text, self.lexicon, self.segmenter)
        except Exception as e:
            logger.warning(f"Text analysis failed, metrics zeroed: {e}")
            return TextStatistics()

    def recompute(self, now: Optional[datetime] = None) -> WritingMetrics:
        """Rebuild the snapshot. Called on the metrics cadence."""
        now = now or datetime.now()
        self._prune(now)

        wpm = self.calculate_wpm(now)
        self.wpm_readings.append(wpm)
        readings = list(self.wpm_readings)

        stats = self._analyze()
        paragraphs_since = max(0, stats.paragraph_count - self.paragraphs_at_last_advisory)

        self._metrics = WritingMetrics(
            words_per_minute=wpm,
            total_words=count_words(self.current_text),
            session_duration_minutes=(now - self.session_start).total_seconds() / 60,
            adjective_ratio=stats.adjective_ratio,
            verb_ratio=stats.verb_ratio,
            abstract_noun_ratio=stats.abstract_noun_ratio,
            average_sentence_length=stats.average_sentence_length,
            pause_duration_seconds=max(0.0, (now - self.last_edit_time).total_seconds()),
            pause_location=self.pause_location,
            deletion_ratio=self.calculate_deletion_ratio(now),
            wpm_trend=calculate_trend(readings),
            recent_wpm_readings=tuple(readings),
            current_paragraph_length=stats.current_paragraph_length,
            paragraphs_since_last_advisory=paragraphs_since,
        )

        logger.debug(
            f"Metrics updated: wpm={wpm:.1f} pause={self._metrics.pause_duration_seconds:.0f}s "
            f"adj={stats.adjective_ratio:.1%} trend={self._metrics.wpm_trend.value}"
        )
        return self._metrics

    def snapshot(self) -> WritingMetrics:
        """Latest fully-formed metrics."""
        return self._metrics

    def mark_advisory(self):
        """An advisory was issued; restart the paragraph counter only."""
        self.paragraphs_at_last_advisory = count_paragraphs(self.current_text)
        self._metrics = replace(self._metrics, paragraphs_since_last_advisory=0)

    def reset(self, now: Optional[datetime] = None):
        """Clear all history and restart the session clock."""
        start = now or datetime.now()
        self.edit_history.clear()
        self.wpm_readings.clear()
        self.current_text = ""
        self._has_baseline = False
        self.pause_location = PauseLocation.UNKNOWN
        self.paragraphs_at_last_advisory = 0
        self.session_start = start
        self.last_edit_time = start
        self._metrics = WritingMetrics()
