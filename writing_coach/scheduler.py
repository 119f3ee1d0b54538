"""
Trigger Scheduler Module

Decides, once per evaluation tick, whether any trigger rule should fire.

Key rules:
1. Rules are checked in declaration order
2. At most one rule fires per tick
3. One global cooldown measured from the last fire of ANY rule;
   high-priority rules use a shorter override window
4. A rule's conditions must hold for its delay before it may fire

The decision itself is the pure function `evaluate_tick`: state in,
(result, new state) out. `TriggerScheduler` holds that state between
ticks and notifies listeners.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple
import logging

from .conditions import evaluate_conditions
from .metrics import WritingMetrics
from .rules import TriggerRule, TriggerRuleSet

logger = logging.getLogger(__name__)


MAX_HISTORY = 100

# Shortened cooldowns for diagnostics
DEV_GLOBAL_COOLDOWN_SECONDS = 60.0
DEV_HIGH_PRIORITY_COOLDOWN_SECONDS = 30.0

# Dwell markers older than this gap since the previous evaluation are stale
MAX_TICK_GAP_SECONDS = 60.0


@dataclass(frozen=True)
class TriggerResult:
    """A rule that fired on this tick."""
    rule_name: str
    rule: TriggerRule
    metrics: WritingMetrics
    writing_mode: str
    timestamp: datetime
    forced: bool = False

    @property
    def requires_conversation(self) -> bool:
        return self.rule.requires_conversation


@dataclass(frozen=True)
class TriggerEvent:
    """Historical record of a fire."""
    rule_name: str
    timestamp: datetime
    metrics_snapshot: WritingMetrics
    writing_mode: str

    def to_dict(self) -> Dict:
        return {
            "ruleName": self.rule_name,
            "timestamp": self.timestamp.isoformat(),
            "writingMode": self.writing_mode,
            "metrics": self.metrics_snapshot.to_dict(),
        }


@dataclass(frozen=True)
class SchedulerState:
    """
    Everything the scheduler remembers between ticks.

    `condition_since` maps a rule name to the first tick at which its
    conditions were seen holding without interruption. `last_evaluated`
    is the time of the previous evaluation.
    """
    last_fire_time: Optional[datetime] = None
    last_evaluated: Optional[datetime] = None
    history: Tuple[TriggerEvent, ...] = ()
    condition_since: Dict[str, datetime] = field(default_factory=dict)
    paused: bool = False


def cooldown_seconds(rule: TriggerRule, rule_set: TriggerRuleSet, dev_mode: bool = False) -> float:
    """Required quiet time before `rule` may fire."""
    if dev_mode:
        return DEV_HIGH_PRIORITY_COOLDOWN_SECONDS if rule.is_high_priority else DEV_GLOBAL_COOLDOWN_SECONDS

    settings = rule_set.global_settings
    if rule.is_high_priority:
        return settings.priority_override.high
    return settings.minimum_interval_seconds


def _record_fire(
    state: SchedulerState,
    event: TriggerEvent,
    condition_since: Dict[str, datetime],
) -> SchedulerState:
    history = (state.history + (event,))[-MAX_HISTORY:]
    return replace(
        state,
        last_fire_time=event.timestamp,
        history=history,
        condition_since=condition_since,
    )


def evaluate_tick(
    rule_set: TriggerRuleSet,
    state: SchedulerState,
    metrics: WritingMetrics,
    writing_mode: str,
    now: datetime,
    dev_mode: bool = False,
    enabled: Optional[FrozenSet[str]] = None,
    max_gap_seconds: float = MAX_TICK_GAP_SECONDS,
) -> Tuple[Optional[TriggerResult], SchedulerState]:
    """
    Run one evaluation tick.

    Args:
        rule_set: Active rules, in declaration order
        state: State returned by the previous tick
        metrics: Latest metrics snapshot
        writing_mode: Currently selected writing mode id
        now: Tick time
        dev_mode: Use the shortened diagnostic cooldowns
        enabled: Rule names allowed to fire; None means all
        max_gap_seconds: A longer gap since the previous evaluation drops
            every dwell marker, so delays restart from this tick

    Returns:
        (TriggerResult or None, new SchedulerState)
    """
    if state.paused:
        return None, state

    since = dict(state.condition_since)
    if state.last_evaluated is not None and since:
        gap = (now - state.last_evaluated).total_seconds()
        if gap > max_gap_seconds:
            logger.debug(f"No evaluation for {gap:.0f}s, restarting dwell timers")
            since = {}

    for name, rule in rule_set.triggers.items():
        if enabled is not None and name not in enabled:
            since.pop(name, None)
            continue

        if not rule.applies_to(writing_mode):
            since.pop(name, None)
            continue

        if not evaluate_conditions(rule.conditions, metrics):
            since.pop(name, None)
            continue

        held_since = since.setdefault(name, now)
        held_for = (now - held_since).total_seconds()
        if held_for < rule.delay_seconds:
            logger.debug(f"{name} conditions met, dwelling {held_for:.0f}/{rule.delay_seconds:.0f}s")
            continue

        required = cooldown_seconds(rule, rule_set, dev_mode)
        if state.last_fire_time is not None:
            elapsed = (now - state.last_fire_time).total_seconds()
            if elapsed < required:
                logger.debug(f"{name} conditions met but rate limited. Wait: {required - elapsed:.0f}s")
                continue

        since.pop(name, None)
        event = TriggerEvent(
            rule_name=name,
            timestamp=now,
            metrics_snapshot=metrics,
            writing_mode=writing_mode,
        )
        result = TriggerResult(
            rule_name=name,
            rule=rule,
            metrics=metrics,
            writing_mode=writing_mode,
            timestamp=now,
        )
        return result, replace(_record_fire(state, event, since), last_evaluated=now)

    return None, replace(state, condition_since=since, last_evaluated=now)


TriggerListener = Callable[[TriggerResult], None]


class TriggerScheduler:
    """
    Stateful wrapper around `evaluate_tick`.

    Last-fire time is committed before listeners run, so a listener
    that re-enters `tick` sees the cooldown already in force.
    """

    def __init__(
        self,
        rule_set: TriggerRuleSet,
        dev_mode: bool = False,
        enabled_rules: Optional[FrozenSet[str]] = None,
        max_tick_gap_seconds: float = MAX_TICK_GAP_SECONDS,
    ):
        self.rule_set = rule_set
        self.dev_mode = dev_mode
        self.enabled_rules = enabled_rules
        self.max_tick_gap_seconds = max_tick_gap_seconds
        self.state = SchedulerState()
        self._listeners: List[TriggerListener] = []

    def add_listener(self, callback: TriggerListener):
        self._listeners.append(callback)

    def _notify(self, result: TriggerResult):
        for callback in self._listeners:
            try:
                callback(result)
            except Exception:
                logger.exception(f"Trigger listener failed for {result.rule_name}")

    @property
    def is_paused(self) -> bool:
        return self.state.paused

    def pause(self):
        self.state = replace(self.state, paused=True, condition_since={})
        logger.info("Trigger checks paused")

    def resume(self):
        self.state = replace(self.state, paused=False, condition_since={})
        logger.info("Trigger checks resumed")

    def clear_dwell(self):
        """Restart every delay timer, e.g. after ticks were skipped."""
        if self.state.condition_since:
            self.state = replace(self.state, condition_since={})

    def update_rules(self, rule_set: TriggerRuleSet):
        """Swap in a new rule set. Dwell markers of removed rules are dropped."""
        self.rule_set = rule_set
        kept = {
            name: since for name, since in self.state.condition_since.items()
            if name in rule_set.triggers
        }
        self.state = replace(self.state, condition_since=kept)
        logger.info(f"Trigger rules updated ({len(rule_set.triggers)} rules)")

    def tick(
        self,
        metrics: WritingMetrics,
        writing_mode: str,
        now: Optional[datetime] = None,
    ) -> Optional[TriggerResult]:
        now = now or datetime.now()
        result, self.state = evaluate_tick(
            self.rule_set,
            self.state,
            metrics,
            writing_mode,
            now,
            dev_mode=self.dev_mode,
            enabled=self.enabled_rules,
            max_gap_seconds=self.max_tick_gap_seconds,
        )

        if result is not None:
            logger.info(f"Trigger fired: {result.rule_name} (mode={writing_mode})")
            self._notify(result)
        return result

    def force_fire(
        self,
        rule_name: str,
        metrics: WritingMetrics,
        writing_mode: str = "",
        now: Optional[datetime] = None,
    ) -> Optional[TriggerResult]:
        """
        Fire a rule immediately, ignoring mode, conditions and cooldown.

        The fire still counts toward the cooldown of later ticks.
        """
        rule = self.rule_set.get(rule_name)
        if rule is None:
            logger.warning(f"Unknown trigger: {rule_name}")
            return None

        now = now or datetime.now()
        since = dict(self.state.condition_since)
        since.pop(rule_name, None)
        event = TriggerEvent(
            rule_name=rule_name,
            timestamp=now,
            metrics_snapshot=metrics,
            writing_mode=writing_mode,
        )
        self.state = _record_fire(self.state, event, since)

        result = TriggerResult(
            rule_name=rule_name,
            rule=rule,
            metrics=metrics,
            writing_mode=writing_mode,
            timestamp=now,
            forced=True,
        )
        logger.info(f"Force triggering: {rule_name}")
        self._notify(result)
        return result

    def time_until_next_trigger(self, now: Optional[datetime] = None) -> float:
        """Seconds left on the global cooldown, 0 when a fire is allowed."""
        if self.state.last_fire_time is None:
            return 0.0

        now = now or datetime.now()
        if self.dev_mode:
            interval = DEV_GLOBAL_COOLDOWN_SECONDS
        else:
            interval = self.rule_set.global_settings.minimum_interval_seconds
        elapsed = (now - self.state.last_fire_time).total_seconds()
        return max(0.0, interval - elapsed)

    def history(self) -> List[TriggerEvent]:
        return list(self.state.history)

    def reset(self):
        """Forget fires and dwell markers. Pause state is kept."""
        self.state = SchedulerState(paused=self.state.paused)
