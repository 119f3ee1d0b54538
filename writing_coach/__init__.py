"""
Writing Coach - Behavioral Sensing & Advisory Pipeline

Watches how a writer edits, derives behavioral metrics, and decides
through declarative rules when to ask a generative backend for a short
coaching message, optionally continuing as a conversation.

Layers:
1. Text Analysis (word counts, lexicon lookup) - text_analysis.py
2. Metrics (speed, trend, pauses, deletions) - metrics.py
3. Conditions (rule expression language) - conditions.py
4. Rules (trigger rules, writing modes) - rules.py
5. Scheduler (cooldowns, dwell, one fire per tick) - scheduler.py
6. Advisory (prompts, Gemini backend) - advisory.py
7. Session (single message / conversation state machine) - session.py

Runtime:
8. Configuration (env + hot-reloaded files) - config.py
9. Coach (orchestrator, periodic schedules) - coach.py
10. HTTP surface (FastAPI) - server.py
"""

__version__ = "0.3.0"

from .text_analysis import (
    JiebaSegmenter,
    Lexicon,
    SuffixLexicon,
    TextStatistics,
    WordCategory,
    analyze_text,
    count_words,
)

from .metrics import (
    EditDelta,
    MetricsEngine,
    PauseLocation,
    WpmTrend,
    WritingMetrics,
)

from .conditions import (
    ConfigurationDefect,
    MetricKey,
    evaluate,
    evaluate_conditions,
    parse_expression,
)

from .rules import (
    Priority,
    TriggerRule,
    TriggerRuleSet,
    WritingMode,
    WritingModeCatalog,
    default_trigger_rules,
    default_writing_modes,
)

from .scheduler import (
    SchedulerState,
    TriggerEvent,
    TriggerResult,
    TriggerScheduler,
    evaluate_tick,
)

from .advisory import (
    AdvisoryRequest,
    BackendFailure,
    BackendFailureKind,
    FallbackAdvisoryBackend,
    GeminiAdvisoryBackend,
    Turn,
)

from .session import (
    CoachingSession,
    InvalidSessionState,
    SessionEndReason,
    SessionStatus,
)

from .config import (
    CoachConfig,
    ConfigProvider,
    Settings,
)

from .coach import (
    UnknownWritingMode,
    WritingCoach,
)

__all__ = [
    # Text analysis
    "JiebaSegmenter",
    "Lexicon",
    "SuffixLexicon",
    "TextStatistics",
    "WordCategory",
    "analyze_text",
    "count_words",
    # Metrics
    "EditDelta",
    "MetricsEngine",
    "PauseLocation",
    "WpmTrend",
    "WritingMetrics",
    # Conditions
    "ConfigurationDefect",
    "MetricKey",
    "evaluate",
    "evaluate_conditions",
    "parse_expression",
    # Rules
    "Priority",
    "TriggerRule",
    "TriggerRuleSet",
    "WritingMode",
    "WritingModeCatalog",
    "default_trigger_rules",
    "default_writing_modes",
    # Scheduler
    "SchedulerState",
    "TriggerEvent",
    "TriggerResult",
    "TriggerScheduler",
    "evaluate_tick",
    # Advisory
    "AdvisoryRequest",
    "BackendFailure",
    "BackendFailureKind",
    "FallbackAdvisoryBackend",
    "GeminiAdvisoryBackend",
    "Turn",
    # Session
    "CoachingSession",
    "InvalidSessionState",
    "SessionEndReason",
    "SessionStatus",
    # Runtime
    "CoachConfig",
    "ConfigProvider",
    "Settings",
    "UnknownWritingMode",
    "WritingCoach",
]
