"""
Advisory Backend Module

Builds prompts from methodology, rule guidance, metrics and recent text,
and sends them to a generative backend.

Backends:
- GeminiAdvisoryBackend: google-genai async client
- FallbackAdvisoryBackend: offline canned guidance when no key is set

The core never retries. Failures surface as BackendFailure with a kind
the caller can use to decide whether a retry makes sense.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Protocol, Tuple
import logging

import httpx
from google import genai
from google.genai import errors as genai_errors

from .metrics import WritingMetrics
from .rules import TriggerRule, WritingMode
from .text_analysis import last_words

logger = logging.getLogger(__name__)


METHODOLOGY_CHAR_LIMIT = 10000
METHODOLOGY_TRUNCATION_MARKER = "\n\n[Methodology truncated...]"
RECENT_WORDS_LIMIT = 500
EMPTY_CONTENT_PLACEHOLDER = "[No content yet]"

DEFAULT_MODEL = "gemini-2.0-flash"


class BackendFailureKind(Enum):
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


class BackendFailure(Exception):
    """The advisory backend could not produce a message."""

    def __init__(self, kind: BackendFailureKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value

    @property
    def retryable(self) -> bool:
        return self.kind in (BackendFailureKind.RATE_LIMITED, BackendFailureKind.TRANSIENT)

    def to_dict(self) -> Dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
        }


def classify_status(status: Optional[int]) -> BackendFailureKind:
    """Map an HTTP status code to a failure kind."""
    if status in (401, 403):
        return BackendFailureKind.UNAUTHORIZED
    if status == 429:
        return BackendFailureKind.RATE_LIMITED
    if status is not None and (status == 408 or 500 <= status < 600):
        return BackendFailureKind.TRANSIENT
    return BackendFailureKind.UNKNOWN


@dataclass(frozen=True)
class Turn:
    """One message of an advisory exchange."""
    role: str  # "user" or "assistant"
    text: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "role": self.role,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class AdvisoryRequest:
    """What the backend receives: system context plus ordered turns."""
    system_context: str
    turns: Tuple[Turn, ...]
    rule: Optional[TriggerRule] = None


@dataclass
class UsageStats:
    calls: int = 0
    prompt_tokens: int = 0
    response_tokens: int = 0
    last_reset: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        return {
            "calls": self.calls,
            "promptTokens": self.prompt_tokens,
            "responseTokens": self.response_tokens,
            "lastReset": self.last_reset.isoformat(),
        }


class AdvisoryBackend(Protocol):
    async def generate(self, request: AdvisoryRequest) -> str:
        ...

    def get_usage(self) -> UsageStats:
        ...


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------

def truncate_methodology(methodology: str, limit: int = METHODOLOGY_CHAR_LIMIT) -> str:
    if len(methodology) <= limit:
        return methodology
    return methodology[:limit] + METHODOLOGY_TRUNCATION_MARKER


def build_system_context(
    methodology: str,
    rule: TriggerRule,
    writing_mode: str,
    mode: Optional[WritingMode] = None,
) -> str:
    """System instruction for every request of one session."""
    parts = [
        "You are a writing coach for creative nonfiction.",
        "",
        "Your coaching is based on this methodology:",
        "",
        truncate_methodology(methodology),
        "",
        "Current situation:",
        f"- User is writing: {mode.name if mode and mode.name else writing_mode}",
    ]
    if mode and mode.guidance_text:
        parts.append(f"- Mode guidance: {mode.guidance_text}")
    parts.extend([
        f"- Trigger: {rule.name}",
        f"- Coaching style: {rule.coaching_style or 'gentle'}",
        f"- Your task: {rule.prompt_guidance}",
    ])

    if rule.conversation_guidance:
        parts.extend(["", f"Conversation guidance: {rule.conversation_guidance}"])
    if rule.opening_message:
        parts.extend(["", f"Suggested opening line: {rule.opening_message}"])

    parts.extend([
        "",
        "Guidelines:",
        "- Keep messages SHORT (under 50 words)",
        "- Be SPECIFIC (refer to concrete details from their writing)",
        "- Be WARM but not saccharine",
        "- Use QUESTIONS more than instructions",
        "- Honor their process - you're here to support, not direct",
        "",
        "Tone: Like a thoughtful friend who understands writing, not a teacher grading them.",
    ])
    return "\n".join(parts)


def build_opening_prompt(rule_name: str, metrics: WritingMetrics, document_text: str) -> str:
    """First user turn: metrics summary and the tail of the document."""
    recent = last_words(document_text, RECENT_WORDS_LIMIT)

    return "\n".join([
        f"The writer has been working for {round(metrics.session_duration_minutes)} minutes.",
        "",
        "Current metrics:",
        f"- WPM: {metrics.words_per_minute:g}",
        f"- Adjective ratio: {metrics.adjective_ratio * 100:.1f}%",
        f"- Abstract noun ratio: {metrics.abstract_noun_ratio * 100:.1f}%",
        f"- Current pause: {round(metrics.pause_duration_seconds)} seconds",
        f"- Pause location: {metrics.pause_location.value}",
        f"- WPM trend: {metrics.wpm_trend.value}",
        "",
        f"Trigger: {rule_name}",
        "",
        "Recent writing:",
        '"""',
        recent or EMPTY_CONTENT_PLACEHOLDER,
        '"""',
        "",
        "Generate a brief coaching message (under 50 words).",
    ])


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class GeminiAdvisoryBackend:
    """Advisory messages from Gemini via the google-genai async client."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        max_output_tokens: int = 300,
        client: Optional[genai.Client] = None,
    ):
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.client = client or genai.Client(api_key=api_key)
        self.usage = UsageStats()
        logger.info(f"Gemini advisory backend enabled with {model}")

    @staticmethod
    def _to_contents(turns: Tuple[Turn, ...]) -> List[Dict]:
        return [
            {
                "role": "user" if turn.role == "user" else "model",
                "parts": [{"text": turn.text}],
            }
            for turn in turns
        ]

    def _track_usage(self, response):
        self.usage.calls += 1
        metadata = getattr(response, "usage_metadata", None)
        if metadata is not None:
            self.usage.prompt_tokens += metadata.prompt_token_count or 0
            self.usage.response_tokens += metadata.candidates_token_count or 0

    async def generate(self, request: AdvisoryRequest) -> str:
        logger.debug(f"Calling Gemini with {len(request.turns)} turns")
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=self._to_contents(request.turns),
                config={
                    "system_instruction": request.system_context,
                    "temperature": self.temperature,
                    "max_output_tokens": self.max_output_tokens,
                },
            )
        except genai_errors.APIError as e:
            kind = classify_status(e.code)
            logger.error(f"Gemini API error {e.code}: {e.message}")
            raise BackendFailure(kind, str(e.message or e)) from e
        except httpx.TransportError as e:
            logger.error(f"Gemini network error: {e}")
            raise BackendFailure(BackendFailureKind.TRANSIENT, str(e)) from e

        self._track_usage(response)

        text = (response.text or "").strip()
        if not text:
            raise BackendFailure(BackendFailureKind.UNKNOWN, "Empty response from Gemini")
        return text

    def get_usage(self) -> UsageStats:
        return UsageStats(
            calls=self.usage.calls,
            prompt_tokens=self.usage.prompt_tokens,
            response_tokens=self.usage.response_tokens,
            last_reset=self.usage.last_reset,
        )

    def reset_usage(self):
        self.usage = UsageStats()


class FallbackAdvisoryBackend:
    """Canned guidance used when no API key is configured."""

    STYLE_MESSAGES = {
        "gentle-brake": "You're moving quickly. What's one thing in this moment you could slow down and look at more closely?",
        "conversational": "Paused here for a bit. Want to talk about what's happening?",
        "grounding": "Can you bring this back to something you saw, heard or touched?",
    }
    DEFAULT_MESSAGE = "What are you noticing right now in this part of the piece?"
    FOLLOW_UP_MESSAGE = "Tell me more. What feels most alive in that for you?"

    def __init__(self):
        self.usage = UsageStats()

    async def generate(self, request: AdvisoryRequest) -> str:
        self.usage.calls += 1
        rule = request.rule

        if len(request.turns) > 1:
            return self.FOLLOW_UP_MESSAGE
        if rule is not None and rule.opening_message:
            return rule.opening_message
        if rule is not None and rule.coaching_style in self.STYLE_MESSAGES:
            return self.STYLE_MESSAGES[rule.coaching_style]
        return self.DEFAULT_MESSAGE

    def get_usage(self) -> UsageStats:
        return UsageStats(calls=self.usage.calls, last_reset=self.usage.last_reset)

    def reset_usage(self):
        self.usage = UsageStats()
