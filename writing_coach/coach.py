"""
Writing Coach Orchestrator

Wires the metrics engine, trigger scheduler and coaching session
together and runs the periodic schedules:
- metrics recompute (default every 5s)
- trigger evaluation (default every 30s)
- configuration polling (default every 2s)

The host feeds editor changes in; the presentation layer reads
snapshots and sends commands.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional
import asyncio
import logging

from .advisory import AdvisoryBackend, BackendFailure, FallbackAdvisoryBackend, GeminiAdvisoryBackend
from .config import CoachConfig, ConfigProvider, Settings
from .metrics import EditDelta, MetricsEngine, WritingMetrics
from .rules import WritingMode
from .scheduler import TriggerListener, TriggerResult, TriggerScheduler
from .session import CoachingSession, InvalidSessionState, SessionListener
from .text_analysis import Lexicon, Segmenter

logger = logging.getLogger(__name__)


DEFAULT_WRITING_MODE = "scene"


class UnknownWritingMode(KeyError):
    """The requested writing mode is not in the catalog."""


MetricsListener = Callable[[WritingMetrics], None]


def build_backend(settings: Settings) -> AdvisoryBackend:
    """Gemini when a key is configured, otherwise the offline fallback."""
    if settings.gemini_api_key:
        return GeminiAdvisoryBackend(settings.gemini_api_key, model=settings.gemini_model)

    logger.warning("No Gemini API key configured, using fallback advisories")
    return FallbackAdvisoryBackend()


class WritingCoach:
    """
    One editing context: one metrics engine, one scheduler, one session.

    All methods run on the event loop thread; the only awaited work is
    the advisory backend call.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config_provider: Optional[ConfigProvider] = None,
        backend: Optional[AdvisoryBackend] = None,
        lexicon: Optional[Lexicon] = None,
        segmenter: Optional[Segmenter] = None,
        now: Optional[datetime] = None,
    ):
        self.settings = settings or Settings()
        self.config_provider = config_provider or ConfigProvider.from_settings(self.settings)
        config = self.config_provider.load()

        self.backend = backend or build_backend(self.settings)
        self.engine = MetricsEngine(lexicon=lexicon, segmenter=segmenter, now=now)
        self.scheduler = TriggerScheduler(
            config.rules,
            dev_mode=self.settings.dev_mode,
            enabled_rules=self.settings.enabled_triggers,
            max_tick_gap_seconds=2 * self.settings.trigger_interval_seconds,
        )

        conversation_rules = config.rules.global_settings.conversation_rules
        self.session = CoachingSession(
            self.backend,
            methodology=config.methodology,
            auto_close_on_writing=conversation_rules.auto_close_on_writing,
            max_conversation_length=conversation_rules.max_conversation_length,
            timeout_seconds=self.settings.backend_timeout_seconds,
        )

        mode_ids = config.modes.ids()
        self.writing_mode = DEFAULT_WRITING_MODE
        if mode_ids and DEFAULT_WRITING_MODE not in mode_ids:
            self.writing_mode = mode_ids[0]

        self._metrics_listeners: List[MetricsListener] = []
        self._tasks: List[asyncio.Task] = []

        self.config_provider.add_listener(self._on_config_changed)

    @property
    def config(self) -> CoachConfig:
        return self.config_provider.config

    # -- listeners ---------------------------------------------------------

    def add_metrics_listener(self, callback: MetricsListener):
        self._metrics_listeners.append(callback)

    def add_trigger_listener(self, callback: TriggerListener):
        self.scheduler.add_listener(callback)

    def add_session_listener(self, callback: SessionListener):
        self.session.add_listener(callback)

    def _on_config_changed(self, config: CoachConfig):
        self.scheduler.update_rules(config.rules)
        conversation_rules = config.rules.global_settings.conversation_rules
        self.session.update_config(
            methodology=config.methodology,
            auto_close_on_writing=conversation_rules.auto_close_on_writing,
            max_conversation_length=conversation_rules.max_conversation_length,
        )
        if config.modes.get(self.writing_mode) is None:
            logger.warning(f"Writing mode {self.writing_mode!r} no longer in catalog")

    # -- host editor -------------------------------------------------------

    def load_document(self, text: str):
        """A document was opened; its text is the baseline, not typing."""
        self.engine.load_document(text)

    def on_editor_change(
        self,
        text: str,
        cursor_line_text: str = "",
        cursor_offset: int = 0,
        next_line_text: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[EditDelta]:
        delta = self.engine.on_editor_change(
            text,
            cursor_line_text=cursor_line_text,
            cursor_offset=cursor_offset,
            next_line_text=next_line_text,
            now=now,
        )
        if delta is not None and self.session.on_user_edit(delta):
            logger.info("User started writing, closing conversation")
        return delta

    # -- periodic work -----------------------------------------------------

    def recompute_metrics(self, now: Optional[datetime] = None) -> WritingMetrics:
        metrics = self.engine.recompute(now)
        for callback in self._metrics_listeners:
            try:
                callback(metrics)
            except Exception:
                logger.exception("Metrics listener failed")
        return metrics

    async def check_triggers(self, now: Optional[datetime] = None) -> Optional[TriggerResult]:
        """
        One scheduler tick. Skipped while a session is active.

        Raises:
            BackendFailure: the fired advisory could not be generated
        """
        if not self.session.is_idle:
            logger.debug(f"Session {self.session.status.value}, skipping trigger check")
            self.scheduler.clear_dwell()
            return None

        result = self.scheduler.tick(self.engine.snapshot(), self.writing_mode, now)
        if result is not None:
            await self._start_advisory(result)
        return result

    async def _start_advisory(self, result: TriggerResult) -> Optional[str]:
        self.engine.mark_advisory()
        mode = self.config.modes.get(result.writing_mode)
        return await self.session.start(result, self.engine.current_text, mode)

    # -- presentation commands ---------------------------------------------

    def writing_modes(self) -> List[WritingMode]:
        return list(self.config.modes.types)

    def select_mode(self, mode_id: str):
        if self.config.modes.get(mode_id) is None:
            raise UnknownWritingMode(mode_id)
        self.writing_mode = mode_id
        logger.info(f"Writing type changed to: {mode_id}")

    async def force_fire_rule(self, rule_name: str, now: Optional[datetime] = None) -> Optional[TriggerResult]:
        """
        Fire a rule right away (diagnostics). None for an unknown rule.

        Raises:
            InvalidSessionState: a session is already active
            BackendFailure: the advisory could not be generated
        """
        if not self.session.is_idle:
            raise InvalidSessionState(f"Cannot fire {rule_name} while {self.session.status.value}")

        result = self.scheduler.force_fire(rule_name, self.engine.snapshot(), self.writing_mode, now)
        if result is not None:
            await self._start_advisory(result)
        return result

    async def send_user_turn(self, text: str) -> Optional[str]:
        return await self.session.send_user_turn(text)

    def dismiss(self):
        self.session.dismiss()
        logger.info("Coaching dismissed")

    def acknowledge(self):
        self.session.acknowledge()
        logger.info("Coaching marked helpful")

    def pause(self):
        self.scheduler.pause()

    def resume(self):
        self.scheduler.resume()

    def reset(self, now: Optional[datetime] = None):
        self.session.reset()
        self.scheduler.reset()
        self.engine.reset(now)

    def status(self, now: Optional[datetime] = None) -> Dict:
        usage = self.backend.get_usage()
        return {
            "writingMode": self.writing_mode,
            "paused": self.scheduler.is_paused,
            "devMode": self.scheduler.dev_mode,
            "timeUntilNextTrigger": round(self.scheduler.time_until_next_trigger(now), 1),
            "metrics": self.engine.snapshot().to_dict(),
            "session": self.session.snapshot().to_dict(),
            "usage": usage.to_dict(),
        }

    # -- schedules ---------------------------------------------------------

    async def _metrics_loop(self):
        while True:
            await asyncio.sleep(self.settings.metrics_interval_seconds)
            try:
                self.recompute_metrics()
            except Exception:
                logger.exception("Metrics recompute failed")

    async def _trigger_loop(self):
        while True:
            await asyncio.sleep(self.settings.trigger_interval_seconds)
            try:
                await self.check_triggers()
            except BackendFailure as e:
                logger.error(f"Error generating coaching: {e.kind.value}: {e.message}")
            except Exception:
                logger.exception("Trigger check failed")

    async def _config_loop(self):
        while True:
            await asyncio.sleep(self.settings.config_poll_seconds)
            try:
                self.config_provider.reload_if_changed()
            except Exception:
                logger.exception("Config reload failed")

    def start(self):
        """Start the periodic schedules on the running event loop."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._metrics_loop()),
            asyncio.create_task(self._trigger_loop()),
            asyncio.create_task(self._config_loop()),
        ]
        logger.info(
            f"Coach started: metrics every {self.settings.metrics_interval_seconds:g}s, "
            f"triggers every {self.settings.trigger_interval_seconds:g}s"
        )

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Coach stopped")
