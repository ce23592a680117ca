from typing import Dict, Any, List, Optional, Literal, Iterable
from pydantic import BaseModel, Field, StrictStr, field_validator


WORKING_MEMORY_SLOTS = 4


class CognitiveState(BaseModel):
    """Four-field summary rebuilt on every recall"""
    current_goal: StrictStr
    plan_status: List[StrictStr]
    key_facts: List[StrictStr]
    last_action_result: StrictStr


class WorkingMemory(BaseModel):
    """Bounded short-term scratchpad with exactly four positional slots

    Empty slots stay in place as ``None``. Every operation returns a new
    instance.
    """
    model_config = {"frozen": True}

    slots: List[Optional[str]] = Field(
        default_factory=lambda: [None] * WORKING_MEMORY_SLOTS
    )

    @field_validator("slots", mode="before")
    @classmethod
    def _fix_length(cls, value: Any) -> List[Optional[str]]:
        items = list(value or [])[:WORKING_MEMORY_SLOTS]
        normalized: List[Optional[str]] = []
        for item in items:
            if item is None:
                normalized.append(None)
                continue
            text = str(item).strip()
            normalized.append(text or None)
        normalized.extend([None] * (WORKING_MEMORY_SLOTS - len(normalized)))
        return normalized

    @classmethod
    def from_slots(cls, raw: Optional[Iterable[Any]]) -> "WorkingMemory":
        return cls(slots=list(raw or []))

    def entries(self) -> List[str]:
        """Filled slots in positional order"""
        return [slot for slot in self.slots if slot]

    def push(self, items: Iterable[str]) -> "WorkingMemory":
        """Place items into free slots, evicting the oldest slot when full"""

        slots = list(self.slots)
        for item in items:
            text = (item or "").strip()
            if not text:
                continue
            if None in slots:
                slots[slots.index(None)] = text
            else:
                slots = slots[1:] + [text]
        return WorkingMemory(slots=slots)

    def as_text(self) -> str:
        return " ".join(self.entries())


class EmotionalTag(BaseModel):
    """Valence/arousal/priority annotation for one activated memory fragment"""
    valence: Literal["positive", "negative", "neutral"]
    arousal: float = Field(ge=0.0, le=1.0)
    priority: Literal["high", "medium", "low"]


class RecallTrace(BaseModel):
    """Diagnostic record of one recall, kept in memory only"""
    trigger: str
    recent_count: int = 0
    related_count: int = 0
    merged_count: int = 0
    rounds: int = 0
    tool_calls: List[str] = Field(default_factory=list)
    messages: List[Dict[str, str]] = Field(default_factory=list)
    raw_response: str = ""


class RecallResult(BaseModel):
    """Cognitive state together with the trace that produced it"""
    cognitive_state: CognitiveState
    trace: RecallTrace
