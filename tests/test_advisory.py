"""
Tests for Advisory Module

Prompt assembly, failure classification and both backends.
"""

import asyncio
from types import SimpleNamespace

import httpx
import pytest
from google.genai import errors as genai_errors

from writing_coach.advisory import (
    EMPTY_CONTENT_PLACEHOLDER,
    METHODOLOGY_CHAR_LIMIT,
    METHODOLOGY_TRUNCATION_MARKER,
    AdvisoryRequest,
    BackendFailure,
    BackendFailureKind,
    FallbackAdvisoryBackend,
    GeminiAdvisoryBackend,
    Turn,
    build_opening_prompt,
    build_system_context,
    classify_status,
    truncate_methodology,
)
from writing_coach.metrics import WritingMetrics
from writing_coach.rules import TriggerRule, WritingMode


class TestPrompts:

    def test_short_methodology_untouched(self):
        assert truncate_methodology("short") == "short"

    def test_long_methodology_truncated(self):
        text = "m" * (METHODOLOGY_CHAR_LIMIT + 50)
        result = truncate_methodology(text)
        assert result.endswith(METHODOLOGY_TRUNCATION_MARKER)
        assert len(result) == METHODOLOGY_CHAR_LIMIT + len(METHODOLOGY_TRUNCATION_MARKER)

    def test_system_context(self):
        rule = TriggerRule(name="Writing Too Fast", promptGuidance="Slow down.", coachingStyle="gentle-brake")
        mode = WritingMode(id="scene", name="Scene", coachingGuidance="Sensory details")
        context = build_system_context("# Method", rule, "scene", mode)

        assert "# Method" in context
        assert "User is writing: Scene" in context
        assert "Mode guidance: Sensory details" in context
        assert "Your task: Slow down." in context

    def test_opening_prompt_empty_document(self):
        prompt = build_opening_prompt("stuck", WritingMetrics(session_duration_minutes=12.4), "   ")
        assert EMPTY_CONTENT_PLACEHOLDER in prompt
        assert "working for 12 minutes" in prompt

    def test_opening_prompt_keeps_last_words(self):
        document = " ".join(f"w{i}" for i in range(600))
        prompt = build_opening_prompt("stuck", WritingMetrics(), document)
        assert "w599" in prompt
        assert "w100 " in prompt
        assert "w99 " not in prompt


class TestClassifyStatus:

    @pytest.mark.parametrize("status,kind", [
        (401, BackendFailureKind.UNAUTHORIZED),
        (403, BackendFailureKind.UNAUTHORIZED),
        (429, BackendFailureKind.RATE_LIMITED),
        (503, BackendFailureKind.TRANSIENT),
        (408, BackendFailureKind.TRANSIENT),
        (400, BackendFailureKind.UNKNOWN),
        (None, BackendFailureKind.UNKNOWN),
    ])
    def test_mapping(self, status, kind):
        assert classify_status(status) == kind


class TestFallbackBackend:

    def setup_method(self):
        self.backend = FallbackAdvisoryBackend()

    def request(self, rule, turns=1):
        return AdvisoryRequest(
            system_context="",
            turns=tuple(Turn(role="user", text=str(i)) for i in range(turns)),
            rule=rule,
        )

    def test_opening_message_preferred(self):
        rule = TriggerRule(name="stuck", initialMessage="Paused here?")
        assert asyncio.run(self.backend.generate(self.request(rule))) == "Paused here?"

    def test_style_message(self):
        rule = TriggerRule(name="rushing", coachingStyle="gentle-brake")
        reply = asyncio.run(self.backend.generate(self.request(rule)))
        assert reply == FallbackAdvisoryBackend.STYLE_MESSAGES["gentle-brake"]

    def test_follow_up(self):
        rule = TriggerRule(name="stuck", initialMessage="Paused here?")
        reply = asyncio.run(self.backend.generate(self.request(rule, turns=3)))
        assert reply == FallbackAdvisoryBackend.FOLLOW_UP_MESSAGE

    def test_usage_counts_calls(self):
        asyncio.run(self.backend.generate(self.request(None)))
        assert self.backend.get_usage().calls == 1


class FakeModels:

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def gemini_backend(models):
    client = SimpleNamespace(aio=SimpleNamespace(models=models))
    return GeminiAdvisoryBackend("test-key", model="test-model", client=client)


def request():
    return AdvisoryRequest(
        system_context="be brief",
        turns=(Turn(role="user", text="hi"), Turn(role="assistant", text="hello"), Turn(role="user", text="stuck")),
    )


class TestGeminiBackend:

    def test_success(self):
        usage = SimpleNamespace(prompt_token_count=40, candidates_token_count=12)
        models = FakeModels(response=SimpleNamespace(text="  Slow down.  ", usage_metadata=usage))
        backend = gemini_backend(models)

        assert asyncio.run(backend.generate(request())) == "Slow down."

        call = models.calls[0]
        assert call["model"] == "test-model"
        assert [content["role"] for content in call["contents"]] == ["user", "model", "user"]
        assert call["config"]["system_instruction"] == "be brief"
        assert backend.get_usage().prompt_tokens == 40
        assert backend.get_usage().response_tokens == 12

    def test_empty_reply(self):
        models = FakeModels(response=SimpleNamespace(text="", usage_metadata=None))
        with pytest.raises(BackendFailure) as excinfo:
            asyncio.run(gemini_backend(models).generate(request()))
        assert excinfo.value.kind == BackendFailureKind.UNKNOWN

    def test_rate_limited(self):
        error = genai_errors.ClientError(429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED"}})
        with pytest.raises(BackendFailure) as excinfo:
            asyncio.run(gemini_backend(FakeModels(error=error)).generate(request()))
        assert excinfo.value.kind == BackendFailureKind.RATE_LIMITED
        assert excinfo.value.retryable

    def test_network_error_is_transient(self):
        error = httpx.ConnectError("connection refused")
        with pytest.raises(BackendFailure) as excinfo:
            asyncio.run(gemini_backend(FakeModels(error=error)).generate(request()))
        assert excinfo.value.kind == BackendFailureKind.TRANSIENT

    def test_reset_usage(self):
        usage = SimpleNamespace(prompt_token_count=5, candidates_token_count=5)
        backend = gemini_backend(FakeModels(response=SimpleNamespace(text="ok", usage_metadata=usage)))
        asyncio.run(backend.generate(request()))
        backend.reset_usage()
        assert backend.get_usage().calls == 0
