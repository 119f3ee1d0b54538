#!/usr/bin/env python3
"""
Writing Coach - Main Runner

Usage:
    python main.py demo          # Replay a scripted writing session
    python main.py serve         # Run the HTTP surface
    python main.py rules         # Print the loaded trigger rules
"""

from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
import argparse
import asyncio
import logging

import uvicorn

from writing_coach.advisory import BackendFailure, FallbackAdvisoryBackend
from writing_coach.coach import WritingCoach
from writing_coach.config import ConfigProvider, Settings
from writing_coach.server import create_app
from writing_coach.session import SessionEvent, SessionEventKind, SessionStatus


def print_header(text: str):
    print("\n" + "=" * 60)
    print(f"  {text}")
    print("=" * 60)


def print_section(text: str):
    print(f"\n--- {text} ---")


class ScriptedWriter:
    """Feeds text into the coach on a simulated clock."""

    def __init__(self, coach: WritingCoach, start: datetime):
        self.coach = coach
        self.clock = start
        self.text = ""
        self.elapsed = 0

    def type(self, chunk: str):
        self.text += chunk
        line = self.text.split("\n")[-1]
        self.coach.on_editor_change(
            self.text,
            cursor_line_text=line,
            cursor_offset=len(line),
            now=self.clock,
        )

    async def advance(self, seconds: int, metrics_every: int, triggers_every: int):
        for _ in range(seconds):
            self.clock += timedelta(seconds=1)
            self.elapsed += 1
            if self.elapsed % metrics_every == 0:
                self.coach.recompute_metrics(self.clock)
            if self.elapsed % triggers_every == 0:
                try:
                    result = await self.coach.check_triggers(self.clock)
                except BackendFailure as e:
                    print(f"  [{self.elapsed:>4}s] advisory failed: {e.kind.value}")
                    continue
                if result:
                    print(f"  [{self.elapsed:>4}s] trigger fired: {result.rule_name}")


async def run_demo(settings: Settings):
    print_header("Writing Coach Demo - Scripted Session")

    start = datetime(2024, 1, 1, 9, 0, 0)
    coach = WritingCoach(settings, backend=FallbackAdvisoryBackend(), now=start)

    def show(event: SessionEvent):
        snapshot = event.snapshot
        if event.kind == SessionEventKind.TURN_ADDED and snapshot.message:
            print(f"  coach ({snapshot.rule_name}): {snapshot.message}")
        elif event.kind == SessionEventKind.ENDED:
            print(f"  session ended: {event.reason.value}")

    coach.add_session_listener(show)
    if coach.config.modes.get("scene"):
        coach.select_mode("scene")

    writer = ScriptedWriter(coach, start)
    writer.type("")  # opening the document sets the baseline
    metrics_every = int(settings.metrics_interval_seconds) or 5
    triggers_every = int(settings.trigger_interval_seconds) or 30

    print_section("Writing fast, few details")
    for _ in range(40):
        writer.type(" He went to the store and got milk.")
        await writer.advance(5, metrics_every, triggers_every)
        if not coach.session.is_idle:
            break

    metrics = coach.engine.snapshot()
    print(f"  wpm={metrics.words_per_minute:.0f} adjectives={metrics.adjective_ratio:.1%} "
          f"trend={metrics.wpm_trend.value}")
    if not coach.session.is_idle:
        coach.acknowledge()

    print_section("New paragraph, then a long pause")
    writer.type("\n\nIt was cold.")
    await writer.advance(420, metrics_every, triggers_every)

    if coach.session.status == SessionStatus.CONVERSING:
        print_section("Talking it through")
        reply = await coach.send_user_turn("I don't know how to describe my father.")
        print(f"  coach: {reply}")

        print_section("Back to writing")
        writer.type(" The kitchen smelled of burnt toast.")

    print_section("Trigger history")
    for event in coach.scheduler.history():
        print(f"  {event.timestamp:%H:%M:%S} {event.rule_name} ({event.writing_mode})")


def run_rules(settings: Settings):
    print_header("Trigger Rules")
    provider = ConfigProvider.from_settings(settings)
    config = provider.load()

    rules = config.rules
    print(f"Cooldown: {rules.global_settings.minimum_interval_seconds:g}s "
          f"(high priority {rules.global_settings.priority_override.high:g}s)")

    for key, rule in rules.triggers.items():
        print_section(f"{key}: {rule.name}")
        print(f"  priority:     {rule.priority.value}")
        print(f"  applies to:   {', '.join(rule.applies_to_modes)}")
        print(f"  conversation: {rule.requires_conversation}")
        print(f"  delay:        {rule.delay_seconds:g}s")
        for metric, expression in rule.conditions.items():
            print(f"  when {metric} {expression}")

    print_section("Writing modes")
    for mode in config.modes.types:
        print(f"  {mode.id:<12} {mode.description}")


def run_server(settings: Settings):
    coach = WritingCoach(settings)
    app = create_app(coach)
    uvicorn.run(app, host=settings.host, port=settings.port)


def main():
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Writing Coach")
    parser.add_argument(
        "command",
        choices=["demo", "serve", "rules"],
        default="demo",
        nargs="?",
        help="Command to run"
    )
    parser.add_argument("--config-dir", type=Path, help="Directory holding the JSON rule files")
    parser.add_argument("--methodology", type=Path, help="Methodology markdown file")
    parser.add_argument("--dev", action="store_true", help="Shortened cooldowns")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    settings = Settings.from_env()
    overrides = {}
    if args.config_dir:
        overrides["config_dir"] = args.config_dir
    if args.methodology:
        overrides["methodology_file"] = args.methodology
    if args.dev:
        overrides["dev_mode"] = True
    if overrides:
        settings = replace(settings, **overrides)

    if args.command == "demo":
        asyncio.run(run_demo(settings))
    elif args.command == "serve":
        run_server(settings)
    elif args.command == "rules":
        run_rules(settings)


if __name__ == "__main__":
    main()
