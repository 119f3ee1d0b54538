"""
Trigger Rule & Writing Mode Models

Declarative configuration consumed by the scheduler and the session.
Models are frozen: a reload builds a new rule set, nothing is patched
in place.

Field names follow the JSON files (camelCase) with the longer names
accepted as aliases.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


ALL_MODES = "all"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TriggerRule(BaseModel):
    """When and how to start an advisory."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str
    description: str = ""
    conditions: Dict[str, str] = Field(default_factory=dict)
    applies_to_modes: Tuple[str, ...] = Field(
        default=(ALL_MODES,),
        validation_alias=AliasChoices("appliesToModes", "appliesTo", "applies_to_modes"),
    )
    priority: Priority = Priority.MEDIUM
    requires_conversation: bool = Field(
        default=False,
        validation_alias=AliasChoices("requiresConversation", "enableChat", "requires_conversation"),
    )
    delay_seconds: float = Field(
        default=0.0,
        ge=0,
        validation_alias=AliasChoices("delaySeconds", "delay_seconds"),
    )
    prompt_guidance: str = Field(
        default="",
        validation_alias=AliasChoices("promptGuidance", "systemPrompt", "prompt_guidance"),
    )
    opening_message: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("openingMessage", "initialMessage", "opening_message"),
    )
    coaching_style: str = Field(
        default="",
        validation_alias=AliasChoices("coachingStyle", "coaching_style"),
    )
    conversation_guidance: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("conversationGuidance", "conversation_guidance"),
    )
    examples: Tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _flatten_timing(cls, data: Any) -> Any:
        # {"timing": {"delay": 30}} in the original rule files
        if isinstance(data, dict) and isinstance(data.get("timing"), dict):
            data = dict(data)
            timing = data.pop("timing")
            data.setdefault("delaySeconds", timing.get("delay", 0))
        return data

    def applies_to(self, writing_mode: str) -> bool:
        return ALL_MODES in self.applies_to_modes or writing_mode in self.applies_to_modes

    @property
    def is_high_priority(self) -> bool:
        return self.priority == Priority.HIGH


class PriorityOverride(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    high: float = 180.0


class ConversationRules(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    auto_close_on_writing: bool = Field(default=True, alias="autoCloseOnWriting")
    max_conversation_length: int = Field(default=10, ge=1, alias="maxConversationLength")


class GlobalSettings(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    minimum_interval_seconds: float = Field(
        default=300.0, ge=0, alias="minimumIntervalBetweenTriggers"
    )
    priority_override: PriorityOverride = Field(
        default_factory=PriorityOverride, alias="priorityOverride"
    )
    conversation_rules: ConversationRules = Field(
        default_factory=ConversationRules, alias="conversationRules"
    )


class TriggerRuleSet(BaseModel):
    """All trigger rules in declaration order, plus global settings."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    triggers: Dict[str, TriggerRule] = Field(default_factory=dict)
    global_settings: GlobalSettings = Field(
        default_factory=GlobalSettings, alias="globalSettings"
    )
    notes: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _default_rule_names(cls, data: Any) -> Any:
        # A rule without a display name is named by its key
        if isinstance(data, dict) and isinstance(data.get("triggers"), dict):
            triggers = {}
            for key, rule in data["triggers"].items():
                if isinstance(rule, dict) and "name" not in rule:
                    rule = {**rule, "name": key}
                triggers[key] = rule
            data = {**data, "triggers": triggers}
        return data

    def get(self, rule_name: str) -> Optional[TriggerRule]:
        return self.triggers.get(rule_name)

    def names(self) -> List[str]:
        return list(self.triggers)


class WritingMode(BaseModel):
    """A user-selected kind of writing that scopes which rules apply."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    name: str = ""
    description: str = ""
    applicable_trigger_names: Tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("applicableTriggerNames", "triggers", "applicable_trigger_names"),
    )
    guidance_text: str = Field(
        default="",
        validation_alias=AliasChoices("guidanceText", "coachingGuidance", "guidance_text"),
    )
    allow_abstract: bool = Field(
        default=False, validation_alias=AliasChoices("allowAbstract", "allow_abstract")
    )
    needs_more_support: bool = Field(
        default=False, validation_alias=AliasChoices("needsMoreSupport", "needs_more_support")
    )
    target_metrics: Dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("targetMetrics", "target_metrics")
    )


class WritingModeCatalog(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    types: Tuple[WritingMode, ...] = ()
    notes: Dict[str, str] = Field(default_factory=dict)

    def get(self, mode_id: str) -> Optional[WritingMode]:
        for mode in self.types:
            if mode.id == mode_id:
                return mode
        return None

    def ids(self) -> List[str]:
        return [mode.id for mode in self.types]


def default_trigger_rules() -> TriggerRuleSet:
    """Built-in rules used when no rule file is available."""
    return TriggerRuleSet.model_validate({
        "triggers": {
            "rushing": {
                "name": "Writing Too Fast",
                "description": "User is moving through material quickly",
                "conditions": {
                    "wpm": "> 40",
                    "adjectiveRatio": "< 0.05",
                    "duration": "> 2",
                },
                "appliesTo": ["scene", "observation"],
                "timing": {"delay": 30},
                "priority": "medium",
                "coachingStyle": "gentle-brake",
                "enableChat": False,
                "systemPrompt": "The user is writing quickly. Gently remind them to slow down.",
            },
            "stuck": {
                "name": "Stuck/Blocked",
                "description": "User has paused for extended period",
                "conditions": {
                    "pauseDuration": "> 180",
                    "currentParagraphLength": "< 50",
                },
                "appliesTo": ["all"],
                "timing": {"delay": 0},
                "priority": "high",
                "coachingStyle": "conversational",
                "enableChat": True,
                "systemPrompt": "The user has been paused. Open with a gentle acknowledgment.",
                "initialMessage": "Paused here for a bit. Want to talk about what's happening?",
            },
        },
        "globalSettings": {
            "minimumIntervalBetweenTriggers": 300,
            "priorityOverride": {"high": 180},
            "conversationRules": {
                "autoCloseOnWriting": True,
                "maxConversationLength": 10,
            },
        },
    })


def default_writing_modes() -> WritingModeCatalog:
    """Built-in writing modes used when no mode file is available."""
    return WritingModeCatalog.model_validate({
        "types": [
            {
                "id": "scene",
                "name": "Scene",
                "description": "Scene writing: specific time/space/people/events",
                "triggers": ["rushing", "abstract_drift"],
                "coachingGuidance": "Encourage slowing down, sensory details",
            },
            {
                "id": "reflection",
                "name": "Reflection",
                "description": "Reflection: transitioning from scene to thinking",
                "triggers": ["abstract_drift", "stuck"],
                "allowAbstract": True,
                "coachingGuidance": "Support questioning posture",
            },
            {
                "id": "memory",
                "name": "Memory Work",
                "description": "Memory work: processing painful material",
                "triggers": ["stuck", "getting_tired"],
                "needsMoreSupport": True,
                "coachingGuidance": "Offer emotional support",
            },
        ]
    })
