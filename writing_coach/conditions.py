"""
Condition Expressions

Parses the small expression language used in trigger rule conditions
and evaluates it against one metric value.

Grammar:
    expression := relation | keyword | boolean
    relation   := ( ">" | "<" | ">=" | "<=" | "=" ) number
    keyword    := trend name | pause location name
    boolean    := "true" | "false"

Malformed expressions and type mismatches evaluate to False and are
logged as configuration defects. Nothing here raises to the caller.
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Union
import logging
import math
import operator

from .metrics import PauseLocation, WpmTrend, WritingMetrics

logger = logging.getLogger(__name__)


class ConfigurationDefect(ValueError):
    """A rule references an unknown metric or uses a malformed expression."""


class MetricKey(Enum):
    """Metric names usable in rule conditions."""
    WPM = "wpm"
    TOTAL_WORDS = "totalWords"
    SESSION_DURATION = "sessionDuration"
    ADJECTIVE_RATIO = "adjectiveRatio"
    VERB_RATIO = "verbRatio"
    ABSTRACT_NOUN_RATIO = "abstractNounRatio"
    AVERAGE_SENTENCE_LENGTH = "averageSentenceLength"
    PAUSE_DURATION = "pauseDuration"
    PAUSE_LOCATION = "pauseLocation"
    DELETION_RATIO = "deletionRatio"
    WPM_TREND = "wpmTrend"
    CURRENT_PARAGRAPH_LENGTH = "currentParagraphLength"
    PARAGRAPHS_SINCE_LAST_ADVISORY = "paragraphsSinceLastCoaching"


METRIC_ATTRIBUTES: Dict[MetricKey, str] = {
    MetricKey.WPM: "words_per_minute",
    MetricKey.TOTAL_WORDS: "total_words",
    MetricKey.SESSION_DURATION: "session_duration_minutes",
    MetricKey.ADJECTIVE_RATIO: "adjective_ratio",
    MetricKey.VERB_RATIO: "verb_ratio",
    MetricKey.ABSTRACT_NOUN_RATIO: "abstract_noun_ratio",
    MetricKey.AVERAGE_SENTENCE_LENGTH: "average_sentence_length",
    MetricKey.PAUSE_DURATION: "pause_duration_seconds",
    MetricKey.PAUSE_LOCATION: "pause_location",
    MetricKey.DELETION_RATIO: "deletion_ratio",
    MetricKey.WPM_TREND: "wpm_trend",
    MetricKey.CURRENT_PARAGRAPH_LENGTH: "current_paragraph_length",
    MetricKey.PARAGRAPHS_SINCE_LAST_ADVISORY: "paragraphs_since_last_advisory",
}

# Alternate spellings accepted in rule files
METRIC_ALIASES: Dict[str, MetricKey] = {
    "duration": MetricKey.SESSION_DURATION,
    "sessionDurationMinutes": MetricKey.SESSION_DURATION,
    "wordsPerMinute": MetricKey.WPM,
    "pauseDurationSeconds": MetricKey.PAUSE_DURATION,
    "paragraphsSinceLastAdvisory": MetricKey.PARAGRAPHS_SINCE_LAST_ADVISORY,
}


@lru_cache(maxsize=256)
def _find_metric_key(name: str) -> Optional[MetricKey]:
    # Cached per name, so an unknown key is logged once
    if name in METRIC_ALIASES:
        return METRIC_ALIASES[name]
    try:
        return MetricKey(name)
    except ValueError:
        logger.warning(f"Configuration defect: unknown metric key {name!r}")
        return None


def resolve_metric_key(name: str) -> MetricKey:
    """Map a condition key to a MetricKey. Unknown names are defects."""
    key = _find_metric_key(name)
    if key is None:
        raise ConfigurationDefect(f"Unknown metric key: {name!r}")
    return key


def lookup_metric(metrics: WritingMetrics, name: str) -> Any:
    return getattr(metrics, METRIC_ATTRIBUTES[resolve_metric_key(name)])


# ---------------------------------------------------------------------------
# Expression tree
# ---------------------------------------------------------------------------

COMPARATORS = {
    ">=": operator.ge,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
    "=": operator.eq,
}

# Longest operators first so ">=" is not read as ">"
OPERATOR_TOKENS = (">=", "<=", ">", "<", "=")


@dataclass(frozen=True)
class Comparison:
    """Numeric relation, e.g. `> 40`."""
    op: str
    threshold: float


@dataclass(frozen=True)
class CategoryMatch:
    """Equality with an enum literal (trend or pause location)."""
    category: Union[WpmTrend, PauseLocation]


@dataclass(frozen=True)
class BooleanLiteral:
    value: bool


@dataclass(frozen=True)
class InvalidExpression:
    """Anything that failed to parse. Always evaluates to False."""
    source: str
    reason: str


Expression = Union[Comparison, CategoryMatch, BooleanLiteral, InvalidExpression]


CATEGORY_KEYWORDS: Dict[str, Union[WpmTrend, PauseLocation]] = {
    **{trend.value: trend for trend in WpmTrend},
    **{location.value: location for location in PauseLocation},
}


@lru_cache(maxsize=512)
def parse_expression(source: str) -> Expression:
    """
    Parse a condition string into an expression node.

    Cached per distinct string, so each defect is logged once.
    """
    text = (source or "").strip()
    lowered = text.lower()

    if not text:
        return _invalid(source, "empty expression")

    for token in OPERATOR_TOKENS:
        if text.startswith(token):
            operand = text[len(token):].strip()
            try:
                threshold = float(operand)
            except ValueError:
                return _invalid(source, f"non-numeric operand {operand!r}")
            if not math.isfinite(threshold):
                return _invalid(source, f"non-finite operand {operand!r}")
            return Comparison(op=token, threshold=threshold)

    if lowered in ("true", "false"):
        return BooleanLiteral(value=lowered == "true")

    if lowered in CATEGORY_KEYWORDS:
        return CategoryMatch(category=CATEGORY_KEYWORDS[lowered])

    return _invalid(source, "unrecognized expression")


def _invalid(source: str, reason: str) -> InvalidExpression:
    logger.warning(f"Configuration defect in condition {source!r}: {reason}")
    return InvalidExpression(source=source, reason=reason)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate(value: Any, expression: str) -> bool:
    """
    Evaluate one metric value against one condition string.

    Pure: the same (value, expression) always gives the same answer.
    """
    node = parse_expression(expression)

    if isinstance(node, Comparison):
        if not _is_number(value):
            logger.debug(f"Type mismatch: {expression!r} needs a number, got {value!r}")
            return False
        return COMPARATORS[node.op](float(value), node.threshold)

    if isinstance(node, CategoryMatch):
        if isinstance(value, Enum):
            return value is node.category
        return value == node.category.value

    if isinstance(node, BooleanLiteral):
        return isinstance(value, bool) and value is node.value

    return False


def evaluate_conditions(conditions: Mapping[str, str], metrics: WritingMetrics) -> bool:
    """
    AND of every condition in a rule.

    Short-circuits on the first failure; an unknown metric key fails the
    whole set without raising (logged once per key).
    """
    for key, expression in conditions.items():
        try:
            value = lookup_metric(metrics, key)
        except ConfigurationDefect as e:
            logger.debug(f"Condition set fails closed: {e}")
            return False

        if not evaluate(value, expression):
            return False

    return True
