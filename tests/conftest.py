"""Shared fixtures for the writing coach tests."""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import asyncio
import json
from datetime import datetime
from typing import List, Optional

import pytest

from writing_coach.advisory import AdvisoryRequest, BackendFailure, UsageStats


class FakeBackend:
    """Scripted advisory backend. `hold()` keeps requests in flight until `release()`."""

    def __init__(self, replies: Optional[List[str]] = None, failure: Optional[BackendFailure] = None):
        self.replies = list(replies or [])
        self.failure = failure
        self.requests: List[AdvisoryRequest] = []
        self.gate: Optional[asyncio.Event] = None

    def hold(self):
        # Must be called inside the running loop
        self.gate = asyncio.Event()

    def release(self):
        if self.gate is not None:
            self.gate.set()

    async def generate(self, request: AdvisoryRequest) -> str:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.failure is not None:
            raise self.failure
        if self.replies:
            return self.replies.pop(0)
        return f"reply {len(self.requests)}"

    def get_usage(self) -> UsageStats:
        return UsageStats(calls=len(self.requests))


@pytest.fixture
def start_time():
    return datetime(2024, 1, 1, 9, 0, 0)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def config_dir(tmp_path):
    """A config directory with one fast rule and one stuck rule."""
    directory = tmp_path / "config"
    directory.mkdir()

    rules = {
        "triggers": {
            "rushing": {
                "name": "Writing Too Fast",
                "conditions": {"wpm": "> 40", "adjectiveRatio": "< 0.05"},
                "appliesTo": ["scene"],
                "timing": {"delay": 0},
                "priority": "medium",
                "enableChat": False,
                "systemPrompt": "Slow them down.",
            },
            "stuck": {
                "name": "Stuck/Blocked",
                "conditions": {"pauseDuration": "> 180"},
                "appliesTo": ["all"],
                "priority": "high",
                "enableChat": True,
                "systemPrompt": "Ask what is happening.",
                "initialMessage": "Paused here for a bit?",
            },
        },
        "globalSettings": {
            "minimumIntervalBetweenTriggers": 300,
            "priorityOverride": {"high": 180},
            "conversationRules": {"autoCloseOnWriting": True, "maxConversationLength": 3},
        },
    }
    modes = {
        "types": [
            {"id": "scene", "name": "Scene", "triggers": ["rushing"]},
            {"id": "memory", "name": "Memory Work", "triggers": ["stuck"]},
        ]
    }
    (directory / "trigger-rules.json").write_text(json.dumps(rules), encoding="utf-8")
    (directory / "writing-types.json").write_text(json.dumps(modes), encoding="utf-8")
    return directory


@pytest.fixture
def methodology_file(tmp_path):
    path = tmp_path / "methodology.md"
    path.write_text("# Method\n\nScene before summary.", encoding="utf-8")
    return path
