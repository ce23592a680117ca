from typing import Any, List, Optional
from pydantic import BaseModel, Field, field_validator

from agenter.domain.models.cognitive_state import EmotionalTag


def clamp_unit(value: Any) -> Any:
    """Clamp a numeric score into [0, 1]; non-numbers are left for validation"""

    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return min(1.0, max(0.0, float(value)))
    return value


class ActivatedMemory(BaseModel):
    content: str
    relevance: float = Field(ge=0.0, le=1.0)
    emotional_tag: Optional[str] = None
    timestamp: Optional[str] = None

    @field_validator("relevance", mode="before")
    @classmethod
    def _clamp_relevance(cls, value: Any) -> Any:
        return clamp_unit(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp_as_text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class ActivateResult(BaseModel):
    """Hippocampus reply: memory fragments related to a cue"""
    memories: List[ActivatedMemory] = Field(default_factory=list)
    activation_pattern: str = ""


class WorkingMemoryResult(BaseModel):
    """Prefrontal reply: the new working-memory slots"""
    slots: List[Optional[str]] = Field(default_factory=list)
    operations: List[str] = Field(default_factory=list)
    reason: str = ""


class EmotionResult(EmotionalTag):
    """Amygdala reply: an emotional tag and why"""
    reason: str = ""

    @field_validator("valence", "priority", mode="before")
    @classmethod
    def _lowercase(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("arousal", mode="before")
    @classmethod
    def _clamp_arousal(cls, value: Any) -> Any:
        return clamp_unit(value)


class CompareResult(BaseModel):
    similarity: float = Field(ge=0.0, le=1.0)
    differences: List[str] = Field(default_factory=list)
    conclusion: str = ""

    @field_validator("similarity", mode="before")
    @classmethod
    def _clamp_similarity(cls, value: Any) -> Any:
        return clamp_unit(value)


class MetacognitionResult(BaseModel):
    """Coordinator reply: whether another recall round is worth it"""
    should_continue: bool
    gaps: List[str] = Field(default_factory=list)
    suggested_queries: List[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> Any:
        return clamp_unit(value)


# Appended to every user message so replies stay machine-readable
ACTIVATE_SCHEMA_HINT = (
    '{"memories": [{"content": string, "relevance": number, '
    '"emotional_tag": string?, "timestamp": string?}], "activation_pattern": string}'
)
WORKING_MEMORY_SCHEMA_HINT = '{"slots": [string|null, string|null, string|null, string|null], "operations": [string], "reason": string}'
EMOTION_SCHEMA_HINT = '{"valence": "positive"|"negative"|"neutral", "arousal": number, "priority": "high"|"medium"|"low", "reason": string}'
COMPARE_SCHEMA_HINT = '{"similarity": number, "differences": [string], "conclusion": string}'
METACOGNITION_SCHEMA_HINT = '{"should_continue": boolean, "gaps": [string], "suggested_queries": [string], "confidence": number}'
