"""
Tests for the Writing Coach orchestrator

End-to-end flows through metrics, scheduler and session with a
scripted backend and an injected clock.
"""

import asyncio
import json
import os
from dataclasses import replace
from datetime import timedelta

import pytest

from writing_coach.coach import UnknownWritingMode, WritingCoach
from writing_coach.config import Settings
from writing_coach.session import InvalidSessionState, SessionEndReason, SessionStatus

# 6 words, 24 chars, no adjectives
CHUNK = "we went to the door and "


class TestWritingCoach:

    @pytest.fixture(autouse=True)
    def setup(self, config_dir, methodology_file, fake_backend, start_time):
        self.start = start_time
        self.backend = fake_backend
        self.config_dir = config_dir
        self.settings = Settings(config_dir=config_dir, methodology_file=methodology_file)
        self.coach = WritingCoach(self.settings, backend=fake_backend, now=start_time)
        self.coach.load_document("")
        self.text = ""

    def at(self, seconds):
        return self.start + timedelta(seconds=seconds)

    def type_chunks(self, count, start_second=0, step=5):
        for i in range(count):
            self.text += CHUNK
            self.coach.on_editor_change(self.text, now=self.at(start_second + step * (i + 1)))

    def test_initial_state(self):
        assert self.coach.writing_mode == "scene"
        assert self.coach.session.status == SessionStatus.IDLE
        assert self.coach.config.rules.names() == ["rushing", "stuck"]

    def test_rushing_fires_single_advisory(self):
        self.type_chunks(8)
        metrics = self.coach.recompute_metrics(self.at(45))
        assert metrics.words_per_minute == 48

        result = asyncio.run(self.coach.check_triggers(self.at(45)))

        assert result.rule_name == "rushing"
        assert self.coach.session.status == SessionStatus.PENDING
        assert self.coach.session.message == "reply 1"
        assert CHUNK.strip() in self.backend.requests[0].turns[0].text
        assert "Slow them down." in self.backend.requests[0].system_context

    def test_scheduler_skipped_while_session_active(self):
        self.type_chunks(8)
        self.coach.recompute_metrics(self.at(45))
        asyncio.run(self.coach.check_triggers(self.at(45)))

        self.coach.recompute_metrics(self.at(400))
        assert asyncio.run(self.coach.check_triggers(self.at(400))) is None
        assert len(self.coach.scheduler.history()) == 1

    def test_other_mode_does_not_fire_rushing(self):
        self.coach.select_mode("memory")
        self.type_chunks(8)
        self.coach.recompute_metrics(self.at(45))

        assert asyncio.run(self.coach.check_triggers(self.at(45))) is None

    def test_paste_does_not_count_as_speed(self):
        self.text = "x" * 5000
        self.coach.on_editor_change(self.text, now=self.at(10))
        self.text = "x" * 4990
        self.coach.on_editor_change(self.text, now=self.at(20))

        metrics = self.coach.recompute_metrics(self.at(30))
        assert metrics.words_per_minute == 0
        assert metrics.deletion_ratio == pytest.approx(10 / 5000)
        assert asyncio.run(self.coach.check_triggers(self.at(30))) is None

    def test_stuck_opens_conversation_and_writing_closes_it(self):
        self.type_chunks(1)
        self.coach.recompute_metrics(self.at(205))

        result = asyncio.run(self.coach.check_triggers(self.at(205)))
        assert result.rule_name == "stuck"
        assert self.coach.session.status == SessionStatus.CONVERSING

        reply = asyncio.run(self.coach.send_user_turn("I am not sure what comes next."))
        assert reply == "reply 2"

        self.text += "The hallway smelled of rain."
        self.coach.on_editor_change(self.text, now=self.at(260))
        assert self.coach.session.status == SessionStatus.IDLE
        assert self.coach.session.transition_history[-1].reason == SessionEndReason.USER_RESUMED_WRITING

    def test_advisory_resets_paragraph_counter(self):
        self.text = "first\n\nsecond\n\n"
        self.coach.on_editor_change(self.text, now=self.at(5))
        assert self.coach.recompute_metrics(self.at(10)).paragraphs_since_last_advisory == 2

        asyncio.run(self.coach.force_fire_rule("rushing", self.at(10)))
        assert self.coach.engine.snapshot().paragraphs_since_last_advisory == 0

    def test_force_fire(self):
        result = asyncio.run(self.coach.force_fire_rule("stuck", self.at(0)))

        assert result.forced
        assert self.coach.session.status == SessionStatus.CONVERSING
        assert self.coach.scheduler.history()[-1].rule_name == "stuck"

    def test_force_fire_unknown_rule(self):
        assert asyncio.run(self.coach.force_fire_rule("nope", self.at(0))) is None
        assert self.coach.session.status == SessionStatus.IDLE

    def test_force_fire_rejected_while_active(self):
        asyncio.run(self.coach.force_fire_rule("rushing", self.at(0)))
        with pytest.raises(InvalidSessionState):
            asyncio.run(self.coach.force_fire_rule("stuck", self.at(10)))

    def test_select_unknown_mode(self):
        with pytest.raises(UnknownWritingMode):
            self.coach.select_mode("poetry")
        assert self.coach.writing_mode == "scene"

    def test_pause_blocks_triggers(self):
        self.coach.pause()
        self.type_chunks(8)
        self.coach.recompute_metrics(self.at(45))
        assert asyncio.run(self.coach.check_triggers(self.at(45))) is None

        self.coach.resume()
        assert asyncio.run(self.coach.check_triggers(self.at(50))) is not None

    def test_config_reload_reaches_scheduler_and_session(self):
        path = self.config_dir / "trigger-rules.json"
        rules = json.loads(path.read_text())
        rules["globalSettings"]["conversationRules"]["autoCloseOnWriting"] = False
        del rules["triggers"]["rushing"]
        path.write_text(json.dumps(rules))
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        assert self.coach.config_provider.reload_if_changed()
        assert self.coach.scheduler.rule_set.names() == ["stuck"]
        assert not self.coach.session.auto_close_on_writing

    def test_reset(self):
        self.type_chunks(8)
        self.coach.recompute_metrics(self.at(45))
        asyncio.run(self.coach.check_triggers(self.at(45)))

        self.coach.reset(self.at(60))
        assert self.coach.session.status == SessionStatus.IDLE
        assert self.coach.scheduler.history() == []
        assert self.coach.engine.snapshot().total_words == 0

    def test_status(self):
        self.type_chunks(2)
        self.coach.recompute_metrics(self.at(20))
        status = self.coach.status(self.at(20))

        assert status["writingMode"] == "scene"
        assert not status["paused"]
        assert status["timeUntilNextTrigger"] == 0
        assert status["metrics"]["wpm"] == 12
        assert status["session"]["status"] == "idle"
        assert status["usage"]["calls"] == 0

    def test_metrics_listener(self):
        seen = []
        self.coach.add_metrics_listener(seen.append)
        metrics = self.coach.recompute_metrics(self.at(5))
        assert seen == [metrics]

    def test_dwell_does_not_carry_over_a_session(self):
        path = self.config_dir / "trigger-rules.json"
        rules = json.loads(path.read_text())
        rules["triggers"]["rushing"]["timing"] = {"delay": 60}
        path.write_text(json.dumps(rules))

        # Long trigger interval so only the skipped check can restart the delay
        settings = replace(self.settings, trigger_interval_seconds=300)
        self.coach = WritingCoach(settings, backend=self.backend, now=self.start)
        self.coach.load_document("")
        self.text = ""

        self.type_chunks(8)
        self.coach.recompute_metrics(self.at(45))
        assert asyncio.run(self.coach.check_triggers(self.at(45))) is None

        asyncio.run(self.coach.force_fire_rule("stuck", self.at(50)))
        assert asyncio.run(self.coach.check_triggers(self.at(100))) is None
        self.coach.dismiss()

        self.type_chunks(8, start_second=400)
        self.coach.recompute_metrics(self.at(440))
        assert asyncio.run(self.coach.check_triggers(self.at(440))) is None

        result = asyncio.run(self.coach.check_triggers(self.at(500)))
        assert result.rule_name == "rushing"
